"""Filesystem locations derived from resolved packages."""

from __future__ import annotations

from pathlib import Path

from .packages import ResolvedPackage
from .patch import Patch

STATE_FILENAME = "patches-applied.json"
LEGACY_STATE_FILENAME = "composer.patches_applied.json"


class PathResolver:
    """Map packages and patches onto paths inside install directories."""

    def __init__(self, state_filename: str = STATE_FILENAME) -> None:
        self.state_filename = state_filename

    def install_path(self, package: ResolvedPackage) -> Path:
        """Absolute directory ``package`` is installed in."""

        return Path(package.install_path)

    def patch_source_path(self, source_package: ResolvedPackage, patch: Patch) -> Path:
        """Location of ``patch``'s file inside the declaring package."""

        return self.install_path(source_package) / patch.filename.lstrip("/")

    def state_path(self, package: ResolvedPackage) -> Path:
        """Applied-state file written for ``package``."""

        return self.install_path(package) / self.state_filename

    def legacy_state_path(self, package: ResolvedPackage) -> Path:
        """State file name used by older releases; read but never written."""

        return self.install_path(package) / LEGACY_STATE_FILENAME


__all__ = ["LEGACY_STATE_FILENAME", "PathResolver", "STATE_FILENAME"]
