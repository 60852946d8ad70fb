"""Persist and reload the patch state recorded inside each target package."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constraints import satisfies
from .errors import ResolutionError, StateFileError
from .packages import PackageRegistry, ResolvedPackage
from .patch import (
    DEFAULT_STRIP_PATH_COMPONENTS,
    DEFAULT_VERSION_CONSTRAINT,
    PackagePatchApplication,
    Patch,
    PatchApplication,
    PatchMethod,
)
from .paths import PathResolver

LOGGER = logging.getLogger(__name__)


class StateModel(BaseModel):
    """Base model for persisted records; unknown keys from older writers are ignored."""

    model_config = ConfigDict(extra="ignore")


class PackageRecord(StateModel):
    name: str
    version: Optional[str] = None
    pretty_version: Optional[str] = None
    version_normalized: Optional[str] = None
    ref: Optional[str] = None


class PatchRecord(StateModel):
    source_package: str
    target_package: str
    filename: str
    version_constraint: Optional[str] = DEFAULT_VERSION_CONSTRAINT
    description: Optional[str] = None
    strip_path_components: int = Field(default=DEFAULT_STRIP_PATH_COMPONENTS, ge=0)
    method: PatchMethod = PatchMethod.PATCH
    keep_empty_files: bool = False


class ApplicationRecord(StateModel):
    hash: str
    target_package: PackageRecord
    source_package: Optional[PackageRecord] = None
    patch: PatchRecord


class StateDocument(StateModel):
    hash: Optional[str] = None
    patches: List[ApplicationRecord] = Field(default_factory=list)


def _package_record(package: ResolvedPackage | None) -> dict[str, Any] | None:
    if package is None:
        return None
    return {
        "name": package.name,
        "version": package.version,
        "pretty_version": package.pretty_version,
        "ref": package.source_reference,
    }


def _patch_from_record(record: PatchRecord) -> Patch:
    return Patch(
        source_package=record.source_package,
        target_package=record.target_package,
        filename=record.filename,
        version_constraint=record.version_constraint,
        description=record.description,
        strip_path_components=record.strip_path_components,
        method=record.method,
        keep_empty_files=record.keep_empty_files,
    )


def encode_state(application: PackagePatchApplication) -> str:
    """Serialise ``application`` to the pretty JSON stored on disk."""

    document = {
        "hash": application.hash,
        "patches": [
            {
                "hash": item.hash,
                "target_package": _package_record(item.target_package),
                "source_package": _package_record(item.source_package),
                "patch": item.patch.to_dict(),
            }
            for item in application.applications
        ],
    }
    # json.dumps never escapes "/", so only unicode needs opting out.
    return json.dumps(document, indent=4, ensure_ascii=False) + "\n"


class AppliedStateStore:
    """Read and write ``patches-applied.json`` next to each target's sources."""

    def __init__(self, registry: PackageRegistry, path_resolver: PathResolver | None = None) -> None:
        self.registry = registry
        self.paths = path_resolver or PathResolver()

    # ------------------------------------------------------------------ reads
    def load_all(self) -> Dict[str, PackagePatchApplication]:
        """Return the recorded state of every installed package that has one."""

        applications: Dict[str, PackagePatchApplication] = {}
        for package in self.registry.packages:
            if package.is_alias:
                continue
            application = self.load(package)
            if application is not None:
                applications[package.name] = application
        return applications

    def state_file(self, package: ResolvedPackage) -> Path | None:
        """Return the state file to read for ``package`` (current name first), if any."""

        for candidate in (self.paths.state_path(package), self.paths.legacy_state_path(package)):
            if candidate.exists():
                return candidate
        return None

    def load(self, package: ResolvedPackage) -> PackagePatchApplication | None:
        """Return the recorded state of ``package``, or ``None`` when it has no state file."""

        data_file = self.state_file(package)
        if data_file is None:
            return None

        try:
            raw = data_file.read_text(encoding="utf-8")
        except OSError as error:
            raise StateFileError(
                f'Cannot load applied patches data file "{data_file}"', path=data_file, operation="read"
            ) from error

        try:
            document = StateDocument.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as error:
            raise StateFileError(
                f'Applied patches data file "{data_file}" is malformed: {error}',
                path=data_file,
                operation="parse",
            ) from error

        applications = [self._application_from_record(package, record, data_file) for record in document.patches]
        try:
            return PackagePatchApplication.build(package, applications, hash=document.hash)
        except ValueError as error:
            raise StateFileError(
                f'Applied patches data file "{data_file}" records foreign patches: {error}',
                path=data_file,
                operation="parse",
            ) from error

    def _application_from_record(
        self,
        package: ResolvedPackage,
        record: ApplicationRecord,
        data_file: Path,
    ) -> PatchApplication:
        patch = _patch_from_record(record.patch)

        source = None
        if record.source_package is not None:
            source = self._match_recorded(record.source_package)
        if source is None:
            LOGGER.debug(
                "Could not find source package %s for installed patch, it was removed probably",
                record.source_package.name if record.source_package else patch.source_package,
            )

        target = self._match_target(package, record.target_package, patch)
        if target is None:
            raise ResolutionError(
                record.target_package.name,
                record.target_package.version,
                state_path=data_file,
            )

        return PatchApplication(patch=patch, source_package=source, target_package=target, hash=record.hash)

    def _match_recorded(
        self,
        recorded: PackageRecord,
        version_constraint: str | None = None,
    ) -> ResolvedPackage | None:
        for version in (recorded.version, recorded.pretty_version, recorded.version_normalized):
            found = self.registry.find_exact(recorded.name, version)
            if found is not None:
                return found
        if version_constraint:
            return self.registry.find(recorded.name, version_constraint)
        return None

    def _match_target(
        self,
        installed: ResolvedPackage,
        recorded: PackageRecord,
        patch: Patch,
    ) -> ResolvedPackage | None:
        if installed.name == recorded.name:
            if recorded.version is not None and recorded.version in (installed.version, installed.pretty_version):
                return installed
            if recorded.pretty_version is not None and recorded.pretty_version == installed.pretty_version:
                return installed
            if patch.version_constraint and _satisfies(installed.version, patch.version_constraint):
                return installed
            LOGGER.warning(
                "Could not find installed package %s matching version %s loaded from applied patch. "
                "Name and location check out, but it might indicate a potential problem. Continuing...",
                installed.pretty_name,
                recorded.version,
            )
        return self._match_recorded(recorded, patch.version_constraint)

    # ----------------------------------------------------------------- writes
    def save(self, application: PackagePatchApplication) -> Path:
        """Write ``application`` as the new state of its target package."""

        package = application.target_package
        data_file = self.paths.state_path(package)

        if data_file.exists():
            if not os.access(data_file, os.W_OK):
                raise StateFileError(
                    f'Cannot write applied patches data file "{data_file}"', path=data_file, operation="write"
                )
        elif not os.access(data_file.parent, os.W_OK):
            raise StateFileError(
                f'Package directory is not writable "{data_file.parent}"',
                path=data_file.parent,
                operation="write",
            )

        try:
            data_file.write_text(encode_state(application), encoding="utf-8")
        except OSError as error:
            raise StateFileError(
                f'Cannot write applied patches data file "{data_file}"', path=data_file, operation="write"
            ) from error

        legacy = self.paths.legacy_state_path(package)
        if legacy != data_file and legacy.exists():
            legacy.unlink()
        return data_file

    def clear(self, package: ResolvedPackage) -> None:
        """Remove any recorded state for ``package``."""

        for candidate in (self.paths.state_path(package), self.paths.legacy_state_path(package)):
            if candidate.exists():
                try:
                    candidate.unlink()
                except OSError as error:
                    raise StateFileError(
                        f'Cannot remove applied patches data file "{candidate}"',
                        path=candidate,
                        operation="delete",
                    ) from error


def _satisfies(version: str, constraint: str) -> bool:
    try:
        return satisfies(version, constraint)
    except ValueError:
        return False


__all__ = [
    "AppliedStateStore",
    "ApplicationRecord",
    "PackageRecord",
    "PatchRecord",
    "StateDocument",
    "encode_state",
]
