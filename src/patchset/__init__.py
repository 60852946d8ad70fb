"""Third-party source patching for package installs."""

from .applicator import PatchApplicator, ProcessExecutor
from .collector import PatchCollector
from .constraints import parse_constraint, parse_version, satisfies
from .errors import (
    ConfigurationError,
    InstallerError,
    PatchApplicationFailed,
    PatchIOError,
    PatchsetError,
    ResolutionError,
    StateFileError,
)
from .installer import CommandInstaller, CopyInstaller, Installer, NullInstaller
from .packages import Install, PackageRegistry, ResolvedPackage, Uninstall, Update, load_manifest
from .patch import PackagePatchApplication, Patch, PatchApplication, PatchMethod
from .patcher import PatchRunSummary, Patcher
from .paths import LEGACY_STATE_FILENAME, STATE_FILENAME, PathResolver
from .planner import ChangePlan, plan_changes
from .resolver import PatchApplicationResolver, hash_patch_file
from .state import AppliedStateStore

__all__ = [
    "AppliedStateStore",
    "ChangePlan",
    "CommandInstaller",
    "ConfigurationError",
    "CopyInstaller",
    "Install",
    "Installer",
    "InstallerError",
    "LEGACY_STATE_FILENAME",
    "NullInstaller",
    "PackagePatchApplication",
    "PackageRegistry",
    "Patch",
    "PatchApplication",
    "PatchApplicationFailed",
    "PatchApplicationResolver",
    "PatchApplicator",
    "PatchCollector",
    "PatchIOError",
    "PatchMethod",
    "PatchRunSummary",
    "Patcher",
    "PatchsetError",
    "PathResolver",
    "ProcessExecutor",
    "ResolutionError",
    "ResolvedPackage",
    "STATE_FILENAME",
    "StateFileError",
    "Uninstall",
    "Update",
    "hash_patch_file",
    "load_manifest",
    "parse_constraint",
    "parse_version",
    "plan_changes",
    "satisfies",
]
