from __future__ import annotations

import hashlib
import json
import subprocess

import pytest

from conftest import (
    BROKEN_PATCH,
    ECHO_PATCH,
    LAYERED_PATCH,
    LAYERED_SOURCE,
    ORIGINAL_SOURCE,
    PATCHED_SOURCE,
    Sandbox,
    requires_patch,
)
from patchset._logging import NOTICE
from patchset.applicator import PATCH_PROBE, PatchApplicator, ProcessExecutor
from patchset.errors import PatchApplicationFailed
from patchset.installer import CopyInstaller
from patchset.packages import Update
from patchset.paths import STATE_FILENAME
from patchset.patcher import Patcher


class CountingExecutor(ProcessExecutor):
    """Real executor that remembers every patch command it ran."""

    def __init__(self) -> None:
        self.commands: list[object] = []

    def execute(self, command, *, cwd=None):
        if command != PATCH_PROBE:
            self.commands.append(command)
        return super().execute(command, cwd=cwd)


class FakeExecutor:
    def __init__(self) -> None:
        self.commands: list[object] = []

    def execute(self, command, *, cwd=None):
        if command != PATCH_PROBE:
            self.commands.append(command)
        return subprocess.CompletedProcess(command, 0, "", "")


def _patcher(sandbox: Sandbox, executor=None, registry=None) -> Patcher:
    return Patcher(
        registry or sandbox.registry(),
        installer=CopyInstaller(),
        applicator=PatchApplicator(executor or CountingExecutor(), working_directory=sandbox.root),
    )


def _source(sandbox: Sandbox, name: str = "test/package-a") -> str:
    return (sandbox.root / "vendor" / name / "src/test.php").read_text(encoding="utf-8")


def _add_target(sandbox: Sandbox, version: str = "1.0.0"):
    return sandbox.add_package("test/package-a", version, files={"src/test.php": ORIGINAL_SOURCE})


def test_declared_patch_is_planned_and_recorded(sandbox: Sandbox) -> None:
    target = sandbox.add_package("pkg-x", "1.2.0", files={"src/test.php": ORIGINAL_SOURCE})
    source = sandbox.add_patchset(
        "patchset-a",
        {"pkg-x": [{"filename": "fix.diff", "description": "fix bug"}]},
        {"fix.diff": ECHO_PATCH},
        version="1.0",
    )
    executor = FakeExecutor()
    patcher = _patcher(sandbox, executor)

    group = patcher.target_applications["pkg-x"]
    assert [item.hash for item in group.applications] == [hashlib.sha1(ECHO_PATCH.encode("utf-8")).hexdigest()]
    assert list(patcher.packages_to_patch) == ["pkg-x"]
    assert patcher.packages_to_reinstall == {}

    summary = patcher.patch()

    assert summary.patched == ["pkg-x"]
    assert summary.applied == 1
    assert executor.commands == [
        [
            "patch",
            "--posix",
            "--strip=1",
            f"--input={source.install_path / 'fix.diff'}",
            f"--directory={target.install_path}",
        ]
    ]
    state = json.loads((target.install_path / STATE_FILENAME).read_text(encoding="utf-8"))
    assert state["hash"] == group.hash
    assert [entry["patch"]["filename"] for entry in state["patches"]] == ["fix.diff"]
    assert state["patches"][0]["patch"]["description"] == "fix bug"


@requires_patch
def test_first_run_patches_and_second_run_is_a_no_op(
    sandbox: Sandbox, debug_logs: pytest.LogCaptureFixture
) -> None:
    _add_target(sandbox)
    sandbox.add_patchset("test/patchset", {"test/package-a": [{"filename": "echo.diff"}]}, {"echo.diff": ECHO_PATCH})

    first = _patcher(sandbox).patch()
    assert first.patched == ["test/package-a"]
    assert first.reinstalled == []
    assert _source(sandbox) == PATCHED_SOURCE

    executor = CountingExecutor()
    second = _patcher(sandbox, executor)
    summary = second.patch()

    assert not second.has_actions()
    assert not summary.changed
    assert executor.commands == []
    assert _source(sandbox) == PATCHED_SOURCE
    notices = [record.getMessage() for record in debug_logs.records if record.levelno == NOTICE]
    assert "No patches to apply or clean" in notices


@requires_patch
def test_patches_are_layered_in_declaration_order(sandbox: Sandbox) -> None:
    _add_target(sandbox)
    sandbox.add_patchset(
        "test/patchset",
        {"test/package-a": [{"filename": "echo.diff"}, {"filename": "layered.diff"}]},
        {"echo.diff": ECHO_PATCH, "layered.diff": LAYERED_PATCH},
    )

    summary = _patcher(sandbox).patch()

    assert summary.applied == 2
    assert _source(sandbox) == LAYERED_SOURCE


@requires_patch
def test_duplicate_patch_files_run_once(sandbox: Sandbox) -> None:
    _add_target(sandbox)
    sandbox.add_patchset("test/one", {"test/package-a": [{"filename": "echo.diff"}]}, {"echo.diff": ECHO_PATCH})
    sandbox.add_patchset("test/two", {"test/package-a": [{"filename": "copy.diff"}]}, {"copy.diff": ECHO_PATCH})
    executor = CountingExecutor()

    _patcher(sandbox, executor).patch()

    assert len(executor.commands) == 1
    assert _source(sandbox) == PATCHED_SOURCE


@requires_patch
def test_removed_patchset_restores_pristine_sources(sandbox: Sandbox) -> None:
    _add_target(sandbox)
    sandbox.add_patchset("test/patchset", {"test/package-a": [{"filename": "echo.diff"}]}, {"echo.diff": ECHO_PATCH})
    _patcher(sandbox).patch()

    sandbox.remove("test/patchset")
    patcher = _patcher(sandbox)
    assert list(patcher.packages_to_reinstall) == ["test/package-a"]
    summary = patcher.patch()

    assert summary.reinstalled == ["test/package-a"]
    assert summary.patched == []
    assert _source(sandbox) == ORIGINAL_SOURCE
    assert not (sandbox.root / "vendor/test/package-a" / STATE_FILENAME).exists()
    assert not _patcher(sandbox).has_actions()


@requires_patch
def test_changed_patchset_reinstalls_before_repatching(sandbox: Sandbox) -> None:
    _add_target(sandbox)
    sandbox.add_patchset("test/patchset", {"test/package-a": [{"filename": "echo.diff"}]}, {"echo.diff": ECHO_PATCH})
    _patcher(sandbox).patch()

    sandbox.add_patchset(
        "test/patchset",
        {"test/package-a": [{"filename": "echo.diff"}, {"filename": "layered.diff"}]},
        {"echo.diff": ECHO_PATCH, "layered.diff": LAYERED_PATCH},
    )
    summary = _patcher(sandbox).patch()

    assert summary.reinstalled == ["test/package-a"]
    assert summary.patched == ["test/package-a"]
    assert summary.applied == 2
    assert _source(sandbox) == LAYERED_SOURCE


def test_preview_with_uninstall_leaves_registry_untouched(sandbox: Sandbox) -> None:
    target = _add_target(sandbox)
    sandbox.add_patchset("test/patchset", {"test/package-a": [{"filename": "echo.diff"}]}, {"echo.diff": ECHO_PATCH})
    registry = sandbox.registry()
    _patcher(sandbox, FakeExecutor(), registry).patch()

    updated = sandbox.add_package("test/package-a", "2.0.0", files={"src/test.php": ORIGINAL_SOURCE})
    preview = registry.with_operations([Update(target, updated)])
    patcher = _patcher(sandbox, FakeExecutor(), preview)

    assert patcher.target_applications["test/package-a"].target_package.version == "2.0.0"
    assert registry.find("test/package-a").version == "1.0.0"


def test_root_package_only_gets_new_patches(sandbox: Sandbox, caplog: pytest.LogCaptureFixture) -> None:
    sandbox.add_root(
        extra={"patchset": {"acme/project": [{"filename": "patches/echo.diff"}]}},
        files={"src/test.php": ORIGINAL_SOURCE, "patches/echo.diff": ECHO_PATCH, "patches/layered.diff": LAYERED_PATCH},
    )
    _patcher(sandbox, FakeExecutor()).patch()

    sandbox.add_root(
        extra={
            "patchset": {
                "acme/project": [{"filename": "patches/echo.diff"}, {"filename": "patches/layered.diff"}]
            }
        },
    )
    executor = FakeExecutor()
    summary = _patcher(sandbox, executor).patch()

    assert summary.reinstalled == []
    assert summary.patched == ["acme/project"]
    assert len(executor.commands) == 1
    assert f"--input={sandbox.root / 'patches/layered.diff'}" in executor.commands[0]
    assert "Root package patches have changed but cannot reinstall it" in caplog.text


@requires_patch
def test_failed_patch_keeps_previous_state(sandbox: Sandbox) -> None:
    _add_target(sandbox)
    sandbox.add_patchset("test/patchset", {"test/package-a": [{"filename": "broken.diff"}]}, {"broken.diff": BROKEN_PATCH})

    with pytest.raises(PatchApplicationFailed):
        _patcher(sandbox).patch()

    assert not (sandbox.root / "vendor/test/package-a" / STATE_FILENAME).exists()
    assert _patcher(sandbox).has_actions()


@requires_patch
def test_patchsets_layer_in_collection_order(sandbox: Sandbox) -> None:
    _add_target(sandbox)
    sandbox.add_patchset("test/zeta", {"test/package-a": [{"filename": "layered.diff"}]}, {"layered.diff": LAYERED_PATCH})
    sandbox.add_patchset("test/alpha", {"test/package-a": [{"filename": "echo.diff"}]}, {"echo.diff": ECHO_PATCH})
    executor = CountingExecutor()

    summary = _patcher(sandbox, executor).patch()

    assert summary.applied == 2
    assert [command[3] for command in executor.commands] == [
        f"--input={sandbox.root / 'vendor/test/alpha/echo.diff'}",
        f"--input={sandbox.root / 'vendor/test/zeta/layered.diff'}",
    ]
    assert _source(sandbox) == LAYERED_SOURCE


@requires_patch
def test_failed_repatch_is_retried_from_pristine_sources(sandbox: Sandbox) -> None:
    _add_target(sandbox)
    sandbox.add_patchset("test/patchset", {"test/package-a": [{"filename": "echo.diff"}]}, {"echo.diff": ECHO_PATCH})
    _patcher(sandbox).patch()
    state_file = sandbox.root / "vendor/test/package-a" / STATE_FILENAME
    recorded = state_file.read_text(encoding="utf-8")

    declarations = {"test/package-a": [{"filename": "echo.diff"}, {"filename": "layered.diff"}]}
    sandbox.add_patchset("test/patchset", declarations, {"echo.diff": ECHO_PATCH, "layered.diff": BROKEN_PATCH})
    with pytest.raises(PatchApplicationFailed):
        _patcher(sandbox).patch()

    assert state_file.read_text(encoding="utf-8") == recorded

    sandbox.add_patchset("test/patchset", declarations, {"echo.diff": ECHO_PATCH, "layered.diff": LAYERED_PATCH})
    patcher = _patcher(sandbox)
    assert list(patcher.packages_to_reinstall) == ["test/package-a"]
    assert list(patcher.packages_to_patch) == ["test/package-a"]

    summary = patcher.patch()

    assert summary.reinstalled == ["test/package-a"]
    assert summary.applied == 2
    assert _source(sandbox) == LAYERED_SOURCE
    assert not _patcher(sandbox).has_actions()
