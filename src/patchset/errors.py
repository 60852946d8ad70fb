"""Error taxonomy raised by the patch reconciliation engine.

Every error carries its structured fields both as attributes and in
``details`` so callers can assert on them without parsing messages.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping, Sequence


class PatchsetError(RuntimeError):
    """Base class for every fatal condition of a reconciliation run."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class ConfigurationError(PatchsetError):
    """Raised for unusable patch declarations, manifests or settings."""

    def __init__(
        self,
        message: str,
        *,
        patchset: str | None = None,
        target: str | None = None,
        field: str | None = None,
        path: Path | str | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"patchset": patchset, "target": target, "field": field, "path": _as_text(path)},
        )
        self.patchset = patchset
        self.target = target
        self.field = field
        self.path = Path(path) if path is not None else None


class ResolutionError(PatchsetError):
    """Raised when persisted state names a target that no longer resolves."""

    def __init__(
        self,
        package_name: str,
        version: str | None,
        *,
        state_path: Path | str | None = None,
    ) -> None:
        message = (
            f"Could not find target package {package_name} ({version or 'unknown version'}) "
            "for installed patch. This should not happen."
        )
        if state_path is not None:
            message = f"{message} State file: {state_path}"
        super().__init__(
            message,
            details={"package_name": package_name, "version": version, "state_path": _as_text(state_path)},
        )
        self.package_name = package_name
        self.version = version
        self.state_path = Path(state_path) if state_path is not None else None


class PatchIOError(PatchsetError):
    """Raised when a patch file or state file cannot be read or written."""

    def __init__(self, message: str, *, path: Path | str, operation: str) -> None:
        super().__init__(message, details={"path": _as_text(path), "operation": operation})
        self.path = Path(path)
        self.operation = operation


class StateFileError(PatchIOError):
    """I/O or format problem with a ``patches-applied.json`` file."""


class PatchApplicationFailed(PatchsetError):
    """Raised when ``patch`` or ``git apply`` exits with a nonzero status."""

    def __init__(
        self,
        command: Sequence[str],
        exit_code: int,
        stderr: str,
        *,
        stdout: str = "",
        cwd: Path | str | None = None,
    ) -> None:
        rendered = " ".join(command)
        output = stderr.strip() or stdout.strip()
        super().__init__(
            f'Could not apply patch - command "{rendered}" failed with: \n{output}',
            details={
                "command": list(command),
                "exit_code": exit_code,
                "stdout": stdout,
                "stderr": stderr,
                "cwd": _as_text(cwd),
            },
        )
        self.command: tuple[str, ...] = tuple(command)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.cwd = Path(cwd) if cwd is not None else None


class InstallerError(PatchsetError):
    """Raised when the package manager cannot restore pristine sources."""

    def __init__(
        self,
        message: str,
        *,
        package_name: str,
        command: Sequence[str] | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(
            message,
            details={
                "package_name": package_name,
                "command": list(command) if command is not None else None,
                "stderr": stderr,
            },
        )
        self.package_name = package_name
        self.command: tuple[str, ...] | None = tuple(command) if command is not None else None
        self.stderr = stderr


def _as_text(path: Path | str | None) -> str | None:
    if path is None:
        return None
    return Path(path).as_posix()


__all__ = [
    "ConfigurationError",
    "InstallerError",
    "PatchApplicationFailed",
    "PatchIOError",
    "PatchsetError",
    "ResolutionError",
    "StateFileError",
]
