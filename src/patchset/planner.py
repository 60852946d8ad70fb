"""Decide which packages to reinstall and which to (re)patch."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Mapping

from .packages import ResolvedPackage
from .patch import PackagePatchApplication

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ChangePlan:
    """Packages to restore to pristine sources and packages to patch, keyed by name."""

    to_reinstall: Dict[str, ResolvedPackage] = field(default_factory=dict)
    to_patch: Dict[str, ResolvedPackage] = field(default_factory=dict)

    @property
    def has_actions(self) -> bool:
        return bool(self.to_reinstall or self.to_patch)


def plan_changes(
    target: Mapping[str, PackagePatchApplication],
    installed: Mapping[str, PackagePatchApplication],
) -> ChangePlan:
    """Diff the wanted patch state against the recorded one.

    A package whose patch set changed is always reinstalled before it is
    patched again; patches are never layered onto a previously patched tree.
    """
    plan = ChangePlan()
    names = list(installed)
    names.extend(name for name in target if name not in installed)

    for name in names:
        wanted = target.get(name)
        recorded = installed.get(name)

        if wanted is not None and recorded is None:
            LOGGER.debug("Package %s has pending patches - schedule for patching", name)
            plan.to_patch[name] = wanted.target_package
        elif wanted is None and recorded is not None:
            LOGGER.debug(
                "Package %s has no pending patches, but some installed - schedule for reinstall to clear them",
                name,
            )
            plan.to_reinstall[name] = recorded.target_package
        elif wanted is not None and recorded is not None and wanted.hash != recorded.hash:
            LOGGER.debug("Different installed patchset hash for %s - scheduled for re-patch", name)
            plan.to_patch[name] = wanted.target_package
            plan.to_reinstall[name] = wanted.target_package
        else:
            LOGGER.debug("Package %s has installed patches up to date", name)

    return plan


__all__ = ["ChangePlan", "plan_changes"]
