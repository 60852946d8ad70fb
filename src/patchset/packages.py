"""Resolved packages and the immutable registry snapshot a run works on."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .constraints import satisfies
from .errors import ConfigurationError

ROOT_PACKAGE_TYPE = "root"


@dataclass(frozen=True, slots=True)
class ResolvedPackage:
    """Read-only view of one installed package.

    ``install_path`` is absolute. ``dist_path`` points at a pristine copy of
    the package sources when the host provides one.
    """

    name: str
    version: str
    install_path: Path
    pretty_version: str | None = None
    source_reference: str | None = None
    type: str = "library"
    extra: Mapping[str, Any] = field(default_factory=dict)
    is_root: bool = False
    is_alias: bool = False
    dist_path: Path | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "install_path", Path(self.install_path))
        if self.pretty_version is None:
            object.__setattr__(self, "pretty_version", self.version)
        if not isinstance(self.extra, MappingProxyType):
            object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))
        if self.dist_path is not None:
            object.__setattr__(self, "dist_path", Path(self.dist_path))

    @property
    def pretty_name(self) -> str:
        return f"{self.name} ({self.pretty_version})"

    def __hash__(self) -> int:
        return hash((self.name, self.version, self.is_alias))


@dataclass(frozen=True, slots=True)
class Install:
    package: ResolvedPackage


@dataclass(frozen=True, slots=True)
class Update:
    initial: ResolvedPackage
    target: ResolvedPackage


@dataclass(frozen=True, slots=True)
class Uninstall:
    package: ResolvedPackage


Operation = Union[Install, Update, Uninstall]


class PackageRegistry:
    """Immutable snapshot of every package resolved for one run."""

    def __init__(self, packages: Iterable[ResolvedPackage]) -> None:
        self._packages: tuple[ResolvedPackage, ...] = tuple(packages)

    @property
    def packages(self) -> tuple[ResolvedPackage, ...]:
        return self._packages

    @property
    def root(self) -> ResolvedPackage | None:
        for package in self._packages:
            if package.is_root:
                return package
        return None

    def __iter__(self):
        return iter(self._packages)

    def __len__(self) -> int:
        return len(self._packages)

    def find(self, name: str, constraint: str = "*") -> ResolvedPackage | None:
        """Return the first non-alias package called ``name`` matching ``constraint``."""

        for package in self._packages:
            if package.is_alias or package.name != name:
                continue
            if constraint in ("", "*"):
                return package
            try:
                if satisfies(package.version, constraint):
                    return package
            except ValueError:
                continue
        return None

    def find_exact(self, name: str, version: str | None) -> ResolvedPackage | None:
        """Return the package called ``name`` whose version or pretty version is ``version``."""

        if not version:
            return None
        for package in self._packages:
            if package.is_alias or package.name != name:
                continue
            if version in (package.version, package.pretty_version):
                return package
        return None

    def with_operations(self, operations: Sequence[Operation]) -> "PackageRegistry":
        """Return a new registry reflecting ``operations``; ``self`` is left untouched."""

        packages: List[ResolvedPackage] = list(self._packages)
        for operation in operations:
            if isinstance(operation, Install):
                packages.append(operation.package)
            elif isinstance(operation, Update):
                packages = [item for item in packages if not _same_package(item, operation.initial)]
                packages.append(operation.target)
            elif isinstance(operation, Uninstall):
                packages = [item for item in packages if not _same_package(item, operation.package)]
            else:
                raise TypeError(f"Unsupported operation: {operation!r}")
        return PackageRegistry(packages)


def _same_package(left: ResolvedPackage, right: ResolvedPackage) -> bool:
    return left.name == right.name and left.version == right.version and left.is_alias == right.is_alias


class _ManifestModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


class ManifestPackage(_ManifestModel):
    """Manifest entry describing one installed package."""

    name: str = Field(min_length=1)
    version: str = Field(min_length=1)
    pretty_version: Optional[str] = None
    source_reference: Optional[str] = None
    install_path: str
    dist_path: Optional[str] = None
    type: str = "library"
    alias: bool = False
    extra: Dict[str, Any] = Field(default_factory=dict)


class ManifestRoot(_ManifestModel):
    """Manifest entry describing the project itself."""

    name: str = Field(min_length=1)
    version: str = "dev-main"
    pretty_version: Optional[str] = None
    source_reference: Optional[str] = None
    install_path: str = "."
    extra: Dict[str, Any] = Field(default_factory=dict)


class Manifest(_ManifestModel):
    root: Optional[ManifestRoot] = None
    packages: List[ManifestPackage] = Field(default_factory=list)


def load_manifest(path: Path | str) -> PackageRegistry:
    """Load a YAML or JSON package manifest into a :class:`PackageRegistry`."""

    manifest_path = Path(path)
    if not manifest_path.exists():
        raise ConfigurationError(f"Package manifest not found: {manifest_path}", path=manifest_path)

    try:
        with manifest_path.open("r", encoding="utf-8") as handle:
            if manifest_path.suffix == ".json":
                payload = json.load(handle)
            else:
                payload = yaml.safe_load(handle) or {}
    except (OSError, ValueError, yaml.YAMLError) as error:
        raise ConfigurationError(
            f"Failed to parse package manifest {manifest_path}: {error}", path=manifest_path
        ) from error

    if not isinstance(payload, dict):
        raise ConfigurationError(
            f"Package manifest {manifest_path} must be a mapping at the top level.", path=manifest_path
        )

    try:
        manifest = Manifest.model_validate(payload)
    except ValidationError as error:
        raise ConfigurationError(
            f"Invalid package manifest {manifest_path}: {error}", path=manifest_path
        ) from error

    return registry_from_manifest(manifest, base_dir=manifest_path.parent)


def registry_from_manifest(manifest: Manifest, *, base_dir: Path) -> PackageRegistry:
    """Build a registry from ``manifest``; relative paths are anchored at ``base_dir``."""

    base = base_dir.resolve()
    packages: List[ResolvedPackage] = []
    if manifest.root is not None:
        root = manifest.root
        packages.append(
            ResolvedPackage(
                name=root.name,
                version=root.version,
                pretty_version=root.pretty_version,
                source_reference=root.source_reference,
                install_path=_resolve(base, root.install_path),
                type=ROOT_PACKAGE_TYPE,
                extra=root.extra,
                is_root=True,
            )
        )
    for entry in manifest.packages:
        packages.append(
            ResolvedPackage(
                name=entry.name,
                version=entry.version,
                pretty_version=entry.pretty_version,
                source_reference=entry.source_reference,
                install_path=_resolve(base, entry.install_path),
                type=entry.type,
                extra=entry.extra,
                is_alias=entry.alias,
                dist_path=_resolve(base, entry.dist_path) if entry.dist_path else None,
            )
        )
    return PackageRegistry(packages)


def _resolve(base: Path, value: str) -> Path:
    candidate = Path(value)
    if not candidate.is_absolute():
        candidate = base / candidate
    return candidate.resolve()


__all__ = [
    "Install",
    "Manifest",
    "ManifestPackage",
    "ManifestRoot",
    "Operation",
    "PackageRegistry",
    "ResolvedPackage",
    "Uninstall",
    "Update",
    "load_manifest",
    "registry_from_manifest",
]
