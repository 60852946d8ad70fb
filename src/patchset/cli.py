"""Command line entry point for patch reconciliation."""

from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from ._logging import configure_logging
from .applicator import PatchApplicator
from .config import DEFAULT_CONFIG_NAME, Settings, load_settings
from .errors import ConfigurationError, PatchsetError
from .packages import PackageRegistry, Uninstall, load_manifest
from .paths import PathResolver
from .patcher import Patcher

APP_HELP = "Apply declared patch sets to installed packages and keep them reconciled."

app = typer.Typer(help=APP_HELP)

_CONFIG_OPTION = typer.Option(DEFAULT_CONFIG_NAME, "--config", "-c", help="Path to the patchset configuration file.")
_MANIFEST_OPTION = typer.Option(
    None,
    "--manifest",
    "-m",
    help="Package manifest to use instead of the one named in the configuration.",
)
_VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Log debug output.")


def _load(config: str, manifest: Optional[str], verbose: bool) -> tuple[Settings, PackageRegistry]:
    config_path = Path(config)
    settings = load_settings(config_path, required=manifest is None)
    configure_logging("DEBUG" if verbose else settings.logging.level)
    manifest_path = Path(manifest).resolve() if manifest else settings.manifest_path
    return settings, load_manifest(manifest_path)


def _build_patcher(settings: Settings, registry: PackageRegistry) -> Patcher:
    paths = PathResolver()
    return Patcher(
        registry,
        installer=settings.build_installer(),
        applicator=PatchApplicator(path_resolver=paths, working_directory=settings.project_root),
        path_resolver=paths,
    )


def _fail(error: PatchsetError) -> None:
    typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(code=2 if isinstance(error, ConfigurationError) else 1)


@app.command()
def apply(
    config: str = _CONFIG_OPTION,
    manifest: Optional[str] = _MANIFEST_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """Reinstall and patch packages whose declared patches changed."""

    try:
        settings, registry = _load(config, manifest, verbose)
        patcher = _build_patcher(settings, registry)
        summary = patcher.patch()
    except PatchsetError as error:
        _fail(error)
        return

    if not patcher.has_actions():
        typer.echo("No patches to apply or clean")
        return
    typer.echo(
        f"Reinstalled: {len(summary.reinstalled)} | Patched: {len(summary.patched)} "
        f"| Patches applied: {summary.applied}"
    )


@app.command()
def plan(
    config: str = _CONFIG_OPTION,
    manifest: Optional[str] = _MANIFEST_OPTION,
    verbose: bool = _VERBOSE_OPTION,
    remove: Optional[List[str]] = typer.Option(
        None,
        "--remove",
        help="Preview the plan as if this package were uninstalled (repeatable).",
    ),
) -> None:
    """Show what ``apply`` would do without touching any files."""

    try:
        settings, registry = _load(config, manifest, verbose)
        if remove:
            operations = []
            for name in remove:
                package = registry.find(name)
                if package is None:
                    typer.echo(f"Package not installed: {name}", err=True)
                    raise typer.Exit(code=2)
                operations.append(Uninstall(package))
            registry = registry.with_operations(operations)
        patcher = _build_patcher(settings, registry)
    except PatchsetError as error:
        _fail(error)
        return

    if not patcher.has_actions():
        typer.echo("No patches to apply or clean")
        return
    for name, package in patcher.packages_to_reinstall.items():
        typer.echo(f"reinstall {name} ({package.pretty_version})")
    for name, package in patcher.packages_to_patch.items():
        count = len(patcher.target_applications[name].applications)
        typer.echo(f"patch {name} ({package.pretty_version}): {count} patch(es)")


@app.command("list")
def list_patches(
    config: str = _CONFIG_OPTION,
    manifest: Optional[str] = _MANIFEST_OPTION,
    verbose: bool = _VERBOSE_OPTION,
) -> None:
    """List every declared patch and whether it applies to the installed target."""

    try:
        settings, registry = _load(config, manifest, verbose)
        patcher = _build_patcher(settings, registry)
    except PatchsetError as error:
        _fail(error)
        return

    if not patcher.patches:
        typer.echo("No patches declared.")
        return

    for patch in patcher.patches:
        scheduled = patcher.target_applications.get(patch.target_package)
        applies = scheduled is not None and any(item.patch == patch for item in scheduled.applications)
        typer.echo(
            f"{'*' if applies else '-'} {patch.source_package}:{patch.filename} -> {patch.target_package} "
            f"[{patch.version_constraint}] ({patch.method.value})"
            + (f" {patch.description}" if patch.description else "")
        )


if __name__ == "__main__":
    app()
