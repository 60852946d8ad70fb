from __future__ import annotations

import logging
import shutil
import sys
import textwrap
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from patchset.packages import PackageRegistry, ResolvedPackage  # noqa: E402

ORIGINAL_SOURCE = textwrap.dedent(
    """\
    <?php
    echo "line-1";
    echo "line-2";
    echo "line-3";
    """
)

ECHO_PATCH = textwrap.dedent(
    """\
    --- a/src/test.php
    +++ b/src/test.php
    @@ -1,4 +1,5 @@
     <?php
     echo "line-1";
    +echo "patched-in-echo";
     echo "line-2";
     echo "line-3";
    """
)

LAYERED_PATCH = textwrap.dedent(
    """\
    --- a/src/test.php
    +++ b/src/test.php
    @@ -3,3 +3,4 @@
     echo "patched-in-echo";
     echo "line-2";
     echo "line-3";
    +echo "layered";
    """
)

BROKEN_PATCH = textwrap.dedent(
    """\
    --- a/src/test.php
    +++ b/src/test.php
    @@ -1,2 +1,2 @@
     <?php
    -echo "not-in-the-file";
    +echo "replacement";
    """
)

PATCHED_SOURCE = ORIGINAL_SOURCE.replace('echo "line-1";\n', 'echo "line-1";\necho "patched-in-echo";\n')
LAYERED_SOURCE = PATCHED_SOURCE + 'echo "layered";\n'

requires_patch = pytest.mark.skipif(shutil.which("patch") is None, reason="patch binary not available")
requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")


@dataclass(slots=True)
class Sandbox:
    """On-disk project with a vendor directory and pristine package copies."""

    root: Path
    packages: dict[str, ResolvedPackage] = field(default_factory=dict)

    def add_package(
        self,
        name: str,
        version: str = "1.0.0",
        *,
        files: Mapping[str, str] | None = None,
        type: str = "library",
        extra: Mapping[str, Any] | None = None,
        reference: str | None = None,
        pretty_version: str | None = None,
        alias: bool = False,
    ) -> ResolvedPackage:
        install_path = self.root / "vendor" / name
        dist_path = self.root / "dist" / name / version
        for base in (install_path, dist_path):
            base.mkdir(parents=True, exist_ok=True)
            for relative, content in (files or {}).items():
                target = base / relative
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_text(content, encoding="utf-8")
        package = ResolvedPackage(
            name=name,
            version=version,
            pretty_version=pretty_version,
            source_reference=reference or f"ref-{name}-{version}",
            install_path=install_path,
            type=type,
            extra=dict(extra or {}),
            is_alias=alias,
            dist_path=dist_path,
        )
        self.packages[f"{name}@{version}@{alias}"] = package
        return package

    def add_patchset(
        self,
        name: str,
        declarations: Mapping[str, list[Mapping[str, Any]]],
        patch_files: Mapping[str, str],
        *,
        version: str = "1.0.0",
        extra: Mapping[str, Any] | None = None,
    ) -> ResolvedPackage:
        merged = {"patchset": {target: list(items) for target, items in declarations.items()}}
        merged.update(extra or {})
        return self.add_package(name, version, files=patch_files, type="patchset", extra=merged)

    def add_root(
        self,
        name: str = "acme/project",
        *,
        extra: Mapping[str, Any] | None = None,
        files: Mapping[str, str] | None = None,
    ) -> ResolvedPackage:
        for relative, content in (files or {}).items():
            target = self.root / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        package = ResolvedPackage(
            name=name,
            version="dev-main",
            source_reference=None,
            install_path=self.root,
            type="root",
            extra=dict(extra or {}),
            is_root=True,
        )
        self.packages[f"{name}@root"] = package
        return package

    def remove(self, name: str) -> None:
        for key in [key for key, package in self.packages.items() if package.name == name]:
            package = self.packages.pop(key)
            if package.install_path.exists() and not package.is_root:
                shutil.rmtree(package.install_path)

    def registry(self) -> PackageRegistry:
        return PackageRegistry(self.packages.values())


@pytest.fixture()
def sandbox(tmp_path: Path) -> Sandbox:
    root = tmp_path / "project"
    root.mkdir()
    return Sandbox(root=root)


@pytest.fixture()
def debug_logs(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    caplog.set_level(logging.DEBUG, logger="patchset")
    return caplog
