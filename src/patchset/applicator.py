"""Run ``patch`` / ``git apply`` against installed package sources."""

from __future__ import annotations

import logging
import os
import subprocess
from pathlib import Path
from typing import Sequence, Union

from .errors import PatchApplicationFailed
from .packages import ResolvedPackage
from .patch import Patch, PatchMethod
from .paths import PathResolver

LOGGER = logging.getLogger(__name__)

Command = Union[str, Sequence[str]]

PATCH_PROBE = "command -v patch"


class ProcessExecutor:
    """Blocking subprocess runner returning decoded output."""

    def execute(self, command: Command, *, cwd: Path | None = None) -> subprocess.CompletedProcess[str]:
        """Run ``command`` and return its exit status with decoded output; never raises on failure."""

        shell = isinstance(command, str)
        process = subprocess.run(  # noqa: S603 - commands are assembled from known arguments
            command if shell else list(command),
            cwd=cwd,
            shell=shell,
            capture_output=True,
            text=False,
            check=False,
        )
        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        return subprocess.CompletedProcess(process.args, process.returncode, stdout, stderr)


class PatchApplicator:
    """Apply a single patch file to a target package's install directory."""

    def __init__(
        self,
        executor: ProcessExecutor | None = None,
        *,
        path_resolver: PathResolver | None = None,
        working_directory: Path | None = None,
    ) -> None:
        self.executor = executor or ProcessExecutor()
        self.paths = path_resolver or PathResolver()
        self.working_directory = Path(working_directory) if working_directory is not None else None
        self._has_patch: bool | None = None

    def has_patch_command(self) -> bool:
        """Probe for the ``patch`` binary once per applicator."""

        if self._has_patch is None:
            result = self.executor.execute(PATCH_PROBE)
            self._has_patch = result.returncode == 0
            if not self._has_patch:
                LOGGER.warning("No 'patch' command found, will fall back to 'git apply' for patching")
        return self._has_patch

    def build_command(
        self,
        method: PatchMethod,
        target_directory: Path,
        patch_file: Path,
        strip_path_components: int,
    ) -> tuple[list[str], Path | None, PatchMethod]:
        """Return the command, its working directory and the method actually used."""

        if method is PatchMethod.PATCH and self.has_patch_command():
            command = [
                "patch",
                "--posix",
                f"--strip={strip_path_components}",
                f"--input={patch_file}",
                f"--directory={target_directory}",
            ]
            return command, None, PatchMethod.PATCH

        command = [
            "git",
            "apply",
            "-v",
            f"-p{strip_path_components}",
            "--inaccurate-eof",
            "--ignore-whitespace",
            str(patch_file),
        ]
        if (target_directory / ".git").is_dir():
            # Some git versions silently skip hunks unless run from inside the nested repository.
            return command, target_directory, PatchMethod.GIT

        root = self._root_directory()
        target = Path(os.path.normpath(os.path.abspath(target_directory)))
        if root != target:
            command.append(f"--directory={os.path.relpath(target, root)}")
        return command, root, PatchMethod.GIT

    def apply(
        self,
        patch: Patch,
        source_package: ResolvedPackage | None,
        target_package: ResolvedPackage,
    ) -> PatchMethod:
        """Apply ``patch`` shipped by ``source_package`` to ``target_package``."""

        if source_package is None:
            raise ValueError(f"Patch {patch.filename} has no installed source package to read it from")

        target_directory = self.paths.install_path(target_package)
        patch_file = self.paths.patch_source_path(source_package, patch)
        command, cwd, used = self.build_command(
            patch.method,
            target_directory,
            patch_file,
            patch.strip_path_components,
        )

        result = self.executor.execute(command, cwd=cwd)
        if result.returncode != 0:
            raise PatchApplicationFailed(
                command,
                result.returncode,
                result.stderr or "",
                stdout=result.stdout or "",
                cwd=cwd,
            )

        LOGGER.info(
            "Applied patch %s:%s [%s] (%s) using %s method",
            patch.source_package,
            patch.filename,
            patch.version_constraint,
            patch.description,
            used.value,
        )
        return used

    def _root_directory(self) -> Path:
        base = self.working_directory if self.working_directory is not None else Path.cwd()
        return Path(os.path.normpath(os.path.abspath(base)))


__all__ = ["PATCH_PROBE", "PatchApplicator", "ProcessExecutor"]
