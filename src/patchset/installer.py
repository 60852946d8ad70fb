"""Package-manager hooks used to restore pristine package sources."""

from __future__ import annotations

import logging
import shlex
import shutil
from pathlib import Path

from .applicator import ProcessExecutor
from .errors import InstallerError
from .packages import ResolvedPackage

LOGGER = logging.getLogger(__name__)


class Installer:
    """Host package manager operations the reconciliation driver relies on."""

    def reinstall(self, package: ResolvedPackage) -> None:
        """Restore ``package`` to its pristine, unpatched sources."""

        raise NotImplementedError


class NullInstaller(Installer):
    """Installer for hosts that cannot reinstall packages."""

    def reinstall(self, package: ResolvedPackage) -> None:
        raise InstallerError(
            f"Cannot reinstall {package.pretty_name}: no installer is configured",
            package_name=package.name,
        )


class CopyInstaller(Installer):
    """Restore a package by replacing its install directory with its pristine ``dist_path``."""

    def reinstall(self, package: ResolvedPackage) -> None:
        dist_path = package.dist_path
        if dist_path is None or not Path(dist_path).is_dir():
            raise InstallerError(
                f"Cannot reinstall {package.pretty_name}: no pristine copy available at {dist_path}",
                package_name=package.name,
            )

        install_path = Path(package.install_path)
        LOGGER.debug("Uninstalling %s from %s", package.name, install_path)
        try:
            if install_path.exists():
                shutil.rmtree(install_path)
            LOGGER.debug("Installing %s from %s", package.name, dist_path)
            shutil.copytree(dist_path, install_path, symlinks=True)
        except OSError as error:
            raise InstallerError(
                f"Failed to reinstall {package.pretty_name}: {error}",
                package_name=package.name,
            ) from error


class CommandInstaller(Installer):
    """Delegate reinstalls to an external command, e.g. ``composer reinstall {name}``."""

    def __init__(
        self,
        template: str,
        *,
        working_directory: Path | None = None,
        executor: ProcessExecutor | None = None,
    ) -> None:
        if not template.strip():
            raise ValueError("Reinstall command template must not be empty")
        self.template = template
        self.working_directory = working_directory
        self.executor = executor or ProcessExecutor()

    def command_for(self, package: ResolvedPackage) -> list[str]:
        """Render the command template for ``package`` into an argument list."""

        rendered = self.template.format(
            name=package.name,
            version=package.version,
            pretty_version=package.pretty_version,
            install_path=Path(package.install_path).as_posix(),
        )
        return shlex.split(rendered)

    def reinstall(self, package: ResolvedPackage) -> None:
        command = self.command_for(package)
        result = self.executor.execute(command, cwd=self.working_directory)
        if result.returncode != 0:
            message = (result.stderr or "").strip() or (result.stdout or "").strip() or "unknown error"
            raise InstallerError(
                f"Reinstall command {' '.join(command)} failed for {package.name}: {message}",
                package_name=package.name,
                command=command,
                stderr=result.stderr or "",
            )


__all__ = ["CommandInstaller", "CopyInstaller", "Installer", "NullInstaller"]
