"""``artivault install|create|verify|remove|archive``: store operations."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from artivault.cli.commands._common import (
    console,
    parse_hash,
    parse_platform,
    reported_errors,
)
from artivault.config import VaultConfig


def install_cmd(
    manifest: Path = typer.Argument(..., help="Path to the Artifacts.toml file."),
    name: str = typer.Argument(None, help="Artifact to install; omit to install all."),
    platform: str = typer.Option(None, "--platform", "-p", help="Platform triplet (default: host)."),
    include_lazy: bool = typer.Option(False, "--include-lazy", help="Also install lazy artifacts."),
    pkg: str = typer.Option(None, "--pkg", help="Package context for name overrides."),
) -> None:
    """Make sure one artifact, or every non-lazy one, is installed."""
    target = parse_platform(platform)
    with VaultConfig().build_installer() as installer, reported_errors():
        if name:
            paths = {
                name: installer.ensure_installed(
                    name, manifest, platform=target, pkg_context=pkg
                )
            }
        else:
            paths = installer.ensure_all_installed(
                manifest, platform=target, include_lazy=include_lazy, pkg_context=pkg
            )

    table = Table(title="Installed Artifacts")
    table.add_column("Name", style="cyan")
    table.add_column("Path")
    for artifact_name, path in paths.items():
        table.add_row(artifact_name, str(path))
    console.print(table)


def create_cmd(
    source: Path = typer.Argument(..., help="Directory to copy into the store."),
) -> None:
    """Add a local directory to the store and print its tree hash."""
    store = VaultConfig().build_store()
    with reported_errors():
        tree_hash = store.create_from_directory(source)
    console.print(tree_hash.hex)


def verify_cmd(
    tree_hash: str = typer.Argument(..., help="40-hex git tree hash."),
    honor_overrides: bool = typer.Option(
        False, "--honor-overrides", help="Check overridden artifacts too."
    ),
) -> None:
    """Re-hash a stored artifact and compare it against its name."""
    store = VaultConfig().build_store()
    ok = store.verify(parse_hash(tree_hash), honor_overrides=honor_overrides)
    if ok:
        console.print(f"[green]OK[/green] {tree_hash}")
    else:
        console.print(f"[red]FAILED[/red] {tree_hash}")
        raise typer.Exit(code=1)


def remove_cmd(
    tree_hash: str = typer.Argument(..., help="40-hex git tree hash."),
) -> None:
    """Delete an artifact from every depot (overridden ones are kept)."""
    store = VaultConfig().build_store()
    store.remove(parse_hash(tree_hash))
    console.print(f"[green]Removed[/green] {tree_hash}")


def archive_cmd(
    tree_hash: str = typer.Argument(..., help="40-hex git tree hash."),
    tarball: Path = typer.Argument(..., help="Destination .tar.gz path."),
    honor_overrides: bool = typer.Option(
        False, "--honor-overrides", help="Archive the override target instead of failing."
    ),
) -> None:
    """Pack an artifact into a tarball and print the tarball's sha256."""
    store = VaultConfig().build_store()
    with reported_errors():
        digest = store.archive(parse_hash(tree_hash), tarball, honor_overrides=honor_overrides)
    console.print(digest)
