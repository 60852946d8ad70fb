"""Reconciliation driver: bring installed packages in line with declared patches.

The driver computes everything up front (collect, resolve, load recorded
state, plan) and only touches the filesystem in :meth:`Patcher.patch`:

1. packages whose patch set changed or disappeared are reinstalled;
2. packages with pending patches get every patch applied in order;
3. the new state is written once all patches of a package succeeded;
   until then a re-patched package keeps its previous record.

Any error aborts the run. Already modified files are left as they are and
the failing package keeps its previous state file, so the next run sees a
hash mismatch and reinstalls it again before patching.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Set

from ._logging import notice
from .applicator import PatchApplicator
from .collector import PatchCollector
from .installer import Installer, NullInstaller
from .packages import PackageRegistry, ResolvedPackage
from .patch import PackagePatchApplication, Patch
from .paths import PathResolver
from .planner import ChangePlan, plan_changes
from .resolver import PatchApplicationResolver
from .state import AppliedStateStore

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class PatchRunSummary:
    """What a call to :meth:`Patcher.patch` changed."""

    reinstalled: List[str] = field(default_factory=list)
    patched: List[str] = field(default_factory=list)
    applied: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.reinstalled or self.patched)


class Patcher:
    """Plan and execute the reinstall/patch actions for one registry snapshot."""

    def __init__(
        self,
        registry: PackageRegistry,
        *,
        installer: Installer | None = None,
        applicator: PatchApplicator | None = None,
        store: AppliedStateStore | None = None,
        path_resolver: PathResolver | None = None,
        collector: PatchCollector | None = None,
        resolver: PatchApplicationResolver | None = None,
    ) -> None:
        self.registry = registry
        self.paths = path_resolver or PathResolver()
        self.installer = installer or NullInstaller()
        self.applicator = applicator or PatchApplicator(path_resolver=self.paths)
        self.store = store or AppliedStateStore(registry, self.paths)
        self.collector = collector or PatchCollector()
        self.resolver = resolver or PatchApplicationResolver(self.paths)

        self.patches: List[Patch] = self.collector.collect(registry)
        self.target_applications: Dict[str, PackagePatchApplication] = self.resolver.resolve(
            self.patches, registry
        )
        self.installed_applications: Dict[str, PackagePatchApplication] = self.store.load_all()
        self.plan: ChangePlan = plan_changes(self.target_applications, self.installed_applications)

    @property
    def packages_to_reinstall(self) -> Dict[str, ResolvedPackage]:
        """Packages that must be restored to pristine sources, keyed by name."""

        return self.plan.to_reinstall

    @property
    def packages_to_patch(self) -> Dict[str, ResolvedPackage]:
        """Packages that will get their full patch set applied, keyed by name."""

        return self.plan.to_patch

    def has_actions(self) -> bool:
        """Return ``True`` when :meth:`patch` would reinstall or patch anything."""

        return self.plan.has_actions

    def patch(self) -> PatchRunSummary:
        """Execute the plan: reinstall, apply, persist."""

        summary = PatchRunSummary()
        if not self.has_actions():
            notice(LOGGER, "No patches to apply or clean")
            return summary

        unreinstallable = self._reinstall_packages(summary)
        self._apply_patches(summary, unreinstallable)
        return summary

    def _reinstall_packages(self, summary: PatchRunSummary) -> Set[str]:
        skipped: Set[str] = set()
        for name, package in self.plan.to_reinstall.items():
            if package.is_root:
                LOGGER.warning(
                    "Root package patches have changed but cannot reinstall it, will apply only new "
                    "patches. You should reinstall the whole project to be safe."
                )
                skipped.add(name)
                continue

            notice(LOGGER, "Reinstalling %s (%s) for re-patch", package.name, package.pretty_version)
            self.installer.reinstall(package)
            previous = self.installed_applications.get(name)
            if name in self.plan.to_patch and previous is not None:
                # The old record stays until the new patch set is fully applied.
                self.store.save(previous)
            else:
                self.store.clear(package)
            summary.reinstalled.append(name)
        return skipped

    def _apply_patches(self, summary: PatchRunSummary, unreinstallable: Set[str]) -> None:
        for name, package_application in self.target_applications.items():
            target = package_application.target_package
            if name not in self.plan.to_patch:
                LOGGER.debug("Not patching %s (%s) as it is up-to-date", target.name, target.pretty_version)
                continue

            notice(LOGGER, "Applying patches to %s (%s)", target.name, target.pretty_version)

            already_applied: Set[str] = set()
            if name in unreinstallable and name in self.installed_applications:
                already_applied = set(self.installed_applications[name].hashes)

            for application in package_application.applications:
                if application.hash in already_applied:
                    LOGGER.debug(
                        "Patch %s:%s is already applied to %s",
                        application.patch.source_package,
                        application.patch.filename,
                        target.name,
                    )
                    continue
                self.applicator.apply(application.patch, application.source_package, application.target_package)
                summary.applied += 1

            self.store.save(package_application)
            summary.patched.append(name)


__all__ = ["PatchRunSummary", "Patcher"]
