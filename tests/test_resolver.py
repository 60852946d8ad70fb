from __future__ import annotations

import hashlib

import pytest

from conftest import ECHO_PATCH, LAYERED_PATCH, ORIGINAL_SOURCE, Sandbox
from patchset._logging import NOTICE
from patchset.collector import PatchCollector
from patchset.errors import ConfigurationError, PatchIOError
from patchset.patch import Patch, compute_package_hash
from patchset.resolver import PatchApplicationResolver, hash_patch_file


def _resolve(sandbox: Sandbox):
    registry = sandbox.registry()
    patches = PatchCollector().collect(registry)
    return PatchApplicationResolver().resolve(patches, registry)


def test_hash_is_sha1_of_patch_bytes(tmp_path) -> None:
    patch_file = tmp_path / "fix.diff"
    patch_file.write_bytes(ECHO_PATCH.encode("utf-8"))

    assert hash_patch_file(patch_file) == hashlib.sha1(ECHO_PATCH.encode("utf-8")).hexdigest()


def test_missing_patch_file_raises_io_error(tmp_path) -> None:
    with pytest.raises(PatchIOError) as excinfo:
        hash_patch_file(tmp_path / "missing.diff")

    assert excinfo.value.operation == "read"
    assert excinfo.value.path == tmp_path / "missing.diff"


def test_groups_applications_per_target(sandbox: Sandbox) -> None:
    sandbox.add_package("test/package-a", "1.2.0", files={"src/test.php": ORIGINAL_SOURCE})
    sandbox.add_patchset(
        "test/patchset",
        {"test/package-a": [{"filename": "patches/echo.diff"}, {"filename": "patches/layered.diff"}]},
        {"patches/echo.diff": ECHO_PATCH, "patches/layered.diff": LAYERED_PATCH},
    )

    resolved = _resolve(sandbox)

    assert list(resolved) == ["test/package-a"]
    group = resolved["test/package-a"]
    assert [item.patch.filename for item in group.applications] == ["patches/echo.diff", "patches/layered.diff"]
    assert group.hashes == (
        hashlib.sha1(ECHO_PATCH.encode("utf-8")).hexdigest(),
        hashlib.sha1(LAYERED_PATCH.encode("utf-8")).hexdigest(),
    )
    expected = hashlib.sha1(("ref-test/package-a-1.2.0" + "-".join(group.hashes)).encode("utf-8")).hexdigest()
    assert group.hash == expected
    assert group.hash == compute_package_hash(group.target_package, group.applications)


@pytest.mark.parametrize(("installed", "applies"), [("1.2.0", True), ("2.0.0", False)])
def test_version_constraint_filters_patches(sandbox: Sandbox, installed: str, applies: bool) -> None:
    sandbox.add_package("test/package-a", installed)
    sandbox.add_patchset(
        "test/patchset",
        {"test/package-a": [{"filename": "fix.diff", "version-constraint": "^1.0"}]},
        {"fix.diff": ECHO_PATCH},
    )

    resolved = _resolve(sandbox)

    assert ("test/package-a" in resolved) is applies


def test_targets_that_are_not_installed_are_skipped(sandbox: Sandbox) -> None:
    sandbox.add_patchset(
        "test/patchset",
        {"test/missing": [{"filename": "fix.diff"}]},
        {"fix.diff": ECHO_PATCH},
    )

    assert _resolve(sandbox) == {}


def test_identical_patch_files_are_applied_once(sandbox: Sandbox, debug_logs: pytest.LogCaptureFixture) -> None:
    sandbox.add_package("test/package-a")
    sandbox.add_patchset(
        "test/patchset-one",
        {"test/package-a": [{"filename": "fix.diff", "description": "first copy"}]},
        {"fix.diff": ECHO_PATCH},
    )
    sandbox.add_patchset(
        "test/patchset-two",
        {"test/package-a": [{"filename": "same.diff", "description": "second copy"}]},
        {"same.diff": ECHO_PATCH},
    )

    group = _resolve(sandbox)["test/package-a"]

    assert len(group.applications) == 1
    assert group.applications[0].patch.source_package == "test/patchset-one"
    notices = [record.getMessage() for record in debug_logs.records if record.levelno == NOTICE]
    assert "Skipping patch second copy (test/patchset-two) as it was already added by package test/patchset-one" in notices


def test_result_does_not_depend_on_registry_order(sandbox: Sandbox) -> None:
    sandbox.add_patchset("test/zeta", {"test/package-a": [{"filename": "z.diff"}]}, {"z.diff": LAYERED_PATCH})
    sandbox.add_package("test/package-a")
    sandbox.add_patchset("test/alpha", {"test/package-a": [{"filename": "a.diff"}]}, {"a.diff": ECHO_PATCH})

    forward = _resolve(sandbox)
    sandbox.packages = dict(reversed(list(sandbox.packages.items())))
    backward = _resolve(sandbox)

    assert forward["test/package-a"].hash == backward["test/package-a"].hash
    assert [item.patch.source_package for item in backward["test/package-a"].applications] == [
        "test/alpha",
        "test/zeta",
    ]


def test_unreadable_patch_file_aborts_resolution(sandbox: Sandbox) -> None:
    sandbox.add_package("test/package-a")
    sandbox.add_patchset("test/patchset", {"test/package-a": [{"filename": "missing.diff"}]}, {})

    with pytest.raises(PatchIOError):
        _resolve(sandbox)


def test_patch_without_installed_source_is_an_error(sandbox: Sandbox) -> None:
    sandbox.add_package("test/package-a")
    orphan = Patch(source_package="test/gone", target_package="test/package-a", filename="fix.diff")

    with pytest.raises(PatchIOError):
        PatchApplicationResolver().resolve([orphan], sandbox.registry())


def test_groups_without_applicable_patches_are_omitted(sandbox: Sandbox) -> None:
    sandbox.add_package("test/package-a", "3.0.0")
    sandbox.add_patchset(
        "test/patchset",
        {"test/package-a": [{"filename": "old.diff", "version-constraint": "<2.0"}]},
        {"old.diff": ECHO_PATCH},
    )

    assert _resolve(sandbox) == {}


def test_unparsable_target_version_names_the_package(sandbox: Sandbox) -> None:
    sandbox.add_package("test/package-a", "1.2.3.4.5")
    sandbox.add_patchset(
        "test/patchset",
        {"test/package-a": [{"filename": "fix.diff", "version-constraint": "^1.0"}]},
        {"fix.diff": ECHO_PATCH},
    )

    with pytest.raises(ConfigurationError) as excinfo:
        _resolve(sandbox)

    assert excinfo.value.patchset == "test/patchset"
    assert excinfo.value.target == "test/package-a"
    assert "test/package-a (1.2.3.4.5)" in str(excinfo.value)


def test_unparsable_version_is_fine_without_constraint(sandbox: Sandbox) -> None:
    sandbox.add_package("test/package-a", "1.0.0+build.5")
    sandbox.add_patchset("test/patchset", {"test/package-a": [{"filename": "fix.diff"}]}, {"fix.diff": ECHO_PATCH})

    assert list(_resolve(sandbox)) == ["test/package-a"]
