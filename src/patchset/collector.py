"""Collect patch declarations from the resolved package set."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping

from ._logging import notice
from .errors import ConfigurationError
from .packages import PackageRegistry, ResolvedPackage
from .patch import Patch, create_patch

PATCHSET_TYPE = "patchset"
PATCHSET_EXTRA = "patchset"
IGNORE_EXTRA = "patchset-ignore"

LOGGER = logging.getLogger(__name__)


def _sort_key(package: ResolvedPackage) -> tuple[str, str, str, bool]:
    # Total order: name, version, then pretty version and alias flag as tie-breakers.
    return (package.name, package.version, package.pretty_version or "", package.is_alias)


class PatchCollector:
    """Turn the patch-set extras of every patchset package into :class:`Patch` objects."""

    def collect(self, registry: PackageRegistry) -> List[Patch]:
        """Return every declared patch in deterministic order, minus ignored files."""

        patches: List[Patch] = []
        for package in sorted(registry.packages, key=_sort_key):
            if package.is_alias:
                continue
            package_patches = self.collect_from_package(package)
            if package_patches:
                LOGGER.debug("Collected %d patches from %s", len(package_patches), package.name)
            patches.extend(package_patches)

        ignored = self.collect_ignored(registry)
        if not ignored:
            return patches
        return [patch for patch in patches if patch.filename not in ignored]

    def collect_from_package(self, package: ResolvedPackage) -> List[Patch]:
        """Return the patches ``package`` declares, or nothing when it is not a patchset."""

        if not self.is_valid_patchset(package):
            LOGGER.debug("Package %s is not a patchset", package.name)
            return []
        return self._create_patches(package.name, package.extra[PATCHSET_EXTRA])

    @staticmethod
    def is_valid_patchset(package: ResolvedPackage) -> bool:
        """Only the root package and non-alias ``patchset`` packages may declare patches."""

        if package.is_alias:
            return False
        if not (package.is_root or package.type == PATCHSET_TYPE):
            return False
        return PATCHSET_EXTRA in package.extra

    def collect_ignored(self, registry: PackageRegistry) -> set[str]:
        """Return the patch filenames listed under ``patchset-ignore`` by any package."""

        ignored: set[str] = set()
        for package in sorted(registry.packages, key=_sort_key):
            if package.is_alias:
                continue
            entries = package.extra.get(IGNORE_EXTRA) or []
            if isinstance(entries, str) or not isinstance(entries, list):
                raise ConfigurationError(
                    f"Package {package.name} declares {IGNORE_EXTRA} that is not a list of filenames.",
                    patchset=package.name,
                    field=IGNORE_EXTRA,
                )
            for entry in entries:
                notice(LOGGER, "IMPORTANT: Patch will be skipped: %s", entry)
                ignored.add(str(entry))
        return ignored

    @staticmethod
    def _create_patches(source_package: str, declaration: Any) -> List[Patch]:
        if not isinstance(declaration, Mapping):
            raise ConfigurationError(
                f"Patchset {source_package} must declare a mapping of target package to patch list.",
                patchset=source_package,
                field=PATCHSET_EXTRA,
            )
        patches: List[Patch] = []
        for target_package, entries in declaration.items():
            if isinstance(entries, (str, Mapping)) or not isinstance(entries, list):
                raise ConfigurationError(
                    f"Patchset {source_package} must declare a list of patches for {target_package}.",
                    patchset=source_package,
                    target=str(target_package),
                    field=PATCHSET_EXTRA,
                )
            for options in entries:
                patches.append(create_patch(source_package, str(target_package), options))
        return patches


__all__ = ["IGNORE_EXTRA", "PATCHSET_EXTRA", "PATCHSET_TYPE", "PatchCollector"]
