"""Resolve declared patches into per-package patch applications."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Dict, List, Sequence

from ._logging import notice
from .errors import PatchIOError
from .packages import PackageRegistry, ResolvedPackage
from .patch import PackagePatchApplication, Patch, PatchApplication
from .paths import PathResolver

LOGGER = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16


def hash_patch_file(path: Path) -> str:
    """Return the sha1 hex digest of the patch file at ``path``."""

    digest = hashlib.sha1()
    try:
        with path.open("rb") as handle:
            for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
                digest.update(chunk)
    except OSError as error:
        raise PatchIOError(
            f'Patch source file "{path}" does not exist or is not readable',
            path=path,
            operation="read",
        ) from error
    return digest.hexdigest()


class PatchApplicationResolver:
    """Match patches against resolved packages and group them per target."""

    def __init__(self, path_resolver: PathResolver | None = None) -> None:
        self.paths = path_resolver or PathResolver()

    def application_hash(self, source_package: ResolvedPackage, patch: Patch) -> str:
        """Hash of ``patch`` as shipped by ``source_package``."""

        return hash_patch_file(self.paths.patch_source_path(source_package, patch))

    def resolve(
        self,
        patches: Sequence[Patch],
        registry: PackageRegistry,
    ) -> Dict[str, PackagePatchApplication]:
        """Return ``{target name: PackagePatchApplication}`` for every target with pending patches."""

        grouped: Dict[str, List[Patch]] = {}
        for patch in patches:
            grouped.setdefault(patch.target_package, []).append(patch)

        resolved: Dict[str, PackagePatchApplication] = {}
        for target_name, target_patches in grouped.items():
            target = registry.find(target_name)
            if target is None:
                continue

            applications: Dict[str, PatchApplication] = {}
            for patch in target_patches:
                if not patch.can_be_applied_to(target):
                    continue
                source = registry.find(patch.source_package)
                if source is None:
                    raise PatchIOError(
                        f"Patch {patch.filename} is declared by {patch.source_package}, "
                        "which is not installed",
                        path=patch.filename,
                        operation="read",
                    )
                digest = self.application_hash(source, patch)
                existing = applications.get(digest)
                if existing is not None:
                    notice(
                        LOGGER,
                        "Skipping patch %s (%s) as it was already added by package %s",
                        patch.description or patch.filename,
                        patch.source_package,
                        existing.patch.source_package,
                    )
                    continue
                applications[digest] = PatchApplication(
                    patch=patch,
                    source_package=source,
                    target_package=target,
                    hash=digest,
                )

            if not applications:
                continue
            resolved[target.name] = PackagePatchApplication.build(target, list(applications.values()))
        return resolved


__all__ = ["PatchApplicationResolver", "hash_patch_file"]
