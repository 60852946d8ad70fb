"""Patch definitions and the applications binding them to resolved packages."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constraints import parse_constraint, satisfies
from .errors import ConfigurationError
from .packages import ResolvedPackage

DEFAULT_VERSION_CONSTRAINT = "*"
DEFAULT_STRIP_PATH_COMPONENTS = 1


class PatchMethod(str, Enum):
    """Tool used to apply a patch file."""

    PATCH = "patch"
    GIT = "git"

    @classmethod
    def allowed(cls) -> Tuple[str, ...]:
        return tuple(member.value for member in cls)


@dataclass(frozen=True, slots=True)
class Patch:
    """One declared patch: which file, from which patchset, for which package."""

    source_package: str
    target_package: str
    filename: str
    version_constraint: str | None = DEFAULT_VERSION_CONSTRAINT
    description: str | None = None
    strip_path_components: int = DEFAULT_STRIP_PATH_COMPONENTS
    method: PatchMethod = PatchMethod.PATCH
    keep_empty_files: bool = False

    def can_be_applied_to(self, package: ResolvedPackage) -> bool:
        """Return ``True`` when ``package`` is this patch's target at a matching version."""

        if package.name != self.target_package:
            return False
        try:
            return satisfies(package.version, self.version_constraint)
        except ValueError as error:
            raise ConfigurationError(
                f"Cannot match {package.pretty_name} against version constraint "
                f"{self.version_constraint!r} declared by {self.source_package}: {error}",
                patchset=self.source_package,
                target=package.name,
                field="version_constraint",
            ) from error

    def to_dict(self) -> dict[str, Any]:
        """Return the record written to the applied-state file."""

        return {
            "source_package": self.source_package,
            "target_package": self.target_package,
            "version_constraint": self.version_constraint,
            "filename": self.filename,
            "description": self.description,
            "strip_path_components": self.strip_path_components,
            "method": self.method.value,
            "keep_empty_files": self.keep_empty_files,
        }


class PatchOptions(BaseModel):
    """Option map of a single entry in a patch-set declaration."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    filename: str = Field(min_length=1)
    version_constraint: Optional[str] = Field(
        default=DEFAULT_VERSION_CONSTRAINT,
        validation_alias=AliasChoices("version-constraint", "version_constraint"),
    )
    description: Optional[str] = None
    strip_path_components: int = Field(
        default=DEFAULT_STRIP_PATH_COMPONENTS,
        ge=0,
        validation_alias=AliasChoices("strip-path-components", "strip_path_components"),
    )
    method: str = PatchMethod.PATCH.value
    keep_empty_files: bool = Field(
        default=False,
        validation_alias=AliasChoices("keep-empty-files", "keep_empty_files"),
    )

    @field_validator("version_constraint")
    @classmethod
    def _check_constraint(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_constraint(value)
        return value


def create_patch(source_package: str, target_package: str, options: Mapping[str, Any]) -> Patch:
    """Expand one declaration option map into a :class:`Patch`."""

    if not isinstance(options, Mapping):
        raise ConfigurationError(
            f"Patchset {source_package} declares a patch for {target_package} that is not an option map.",
            patchset=source_package,
            target=target_package,
        )

    method = options.get("method", PatchMethod.PATCH.value)
    if method not in PatchMethod.allowed():
        raise ConfigurationError(
            f"Patchset {source_package} uses unsupported method {method!r} for {target_package}; "
            f"allowed methods are: {', '.join(PatchMethod.allowed())}.",
            patchset=source_package,
            target=target_package,
            field="method",
        )

    try:
        parsed = PatchOptions.model_validate(dict(options))
    except ValidationError as error:
        first = error.errors()[0] if error.errors() else {}
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ConfigurationError(
            f"Patchset {source_package} has an invalid patch declaration for {target_package}: {error}",
            patchset=source_package,
            target=target_package,
            field=location or None,
        ) from error

    return Patch(
        source_package=source_package,
        target_package=target_package,
        filename=parsed.filename,
        version_constraint=parsed.version_constraint,
        description=parsed.description,
        strip_path_components=parsed.strip_path_components,
        method=PatchMethod(parsed.method),
        keep_empty_files=parsed.keep_empty_files,
    )


@dataclass(frozen=True, slots=True)
class PatchApplication:
    """A patch bound to the concrete packages it is applied with.

    ``source_package`` is ``None`` when the declaring patchset has been removed
    while its patch is still applied.
    """

    patch: Patch
    source_package: ResolvedPackage | None
    target_package: ResolvedPackage
    hash: str


@dataclass(frozen=True, slots=True)
class PackagePatchApplication:
    """Ordered set of patch applications for one target package."""

    target_package: ResolvedPackage
    applications: Tuple[PatchApplication, ...]
    hash: str

    @classmethod
    def build(
        cls,
        target_package: ResolvedPackage,
        applications: Sequence[PatchApplication],
        *,
        hash: str | None = None,
    ) -> "PackagePatchApplication":
        for application in applications:
            if application.patch.target_package != target_package.name:
                raise ValueError(
                    f'The package "{target_package.name}" does not support the patch '
                    f"{application.patch.filename} (declared for {application.patch.target_package})"
                )
        items = tuple(applications)
        return cls(
            target_package=target_package,
            applications=items,
            hash=hash or compute_package_hash(target_package, items),
        )

    @property
    def hashes(self) -> Tuple[str, ...]:
        """Per-application hashes in application order."""

        return tuple(application.hash for application in self.applications)


def compute_package_hash(target_package: ResolvedPackage, applications: Sequence[PatchApplication]) -> str:
    """Aggregate hash: sha1 of the source reference followed by the ``-``-joined application hashes."""

    payload = (target_package.source_reference or "") + "-".join(item.hash for item in applications)
    return hashlib.sha1(payload.encode("utf-8")).hexdigest()


__all__ = [
    "DEFAULT_STRIP_PATH_COMPONENTS",
    "DEFAULT_VERSION_CONSTRAINT",
    "PackagePatchApplication",
    "Patch",
    "PatchApplication",
    "PatchMethod",
    "PatchOptions",
    "compute_package_hash",
    "create_patch",
]
