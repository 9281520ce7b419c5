"""``artivault bind|unbind|meta|hashes``: manifest editing and queries."""

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
from artivault.core.platforms import host_platform
from artivault.models.artifacts import DownloadSource


def bind_cmd(
    manifest: Path = typer.Argument(..., help="Path to the Artifacts.toml file."),
    name: str = typer.Argument(..., help="Name to bind."),
    tree_hash: str = typer.Argument(..., help="40-hex git tree hash."),
    platform: str = typer.Option(None, "--platform", "-p", help="Platform triplet, e.g. x86_64-linux-glibc."),
    download: list[str] = typer.Option(
        None, "--download", "-d", help="Download source as URL=SHA256; repeatable."
    ),
    lazy: bool = typer.Option(False, "--lazy", help="Only install on explicit request."),
    force: bool = typer.Option(False, "--force", "-f", help="Replace an existing mapping."),
) -> None:
    """Bind a name to a tree hash in a manifest."""
    sources = []
    for spec in download or []:
        url, sep, sha = spec.rpartition("=")
        if not sep or not url:
            raise typer.BadParameter(f"expected URL=SHA256, got {spec!r}")
        try:
            sources.append(DownloadSource(url=url, sha256=sha))
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc

    manifests = VaultConfig().build_manifests()
    with reported_errors():
        entry = manifests.bind(
            manifest,
            name,
            parse_hash(tree_hash),
            platform=parse_platform(platform),
            downloads=sources,
            lazy=lazy,
            force=force,
        )
    console.print(f"[green]Bound[/green] {name} -> {entry.hash}")


def unbind_cmd(
    manifest: Path = typer.Argument(..., help="Path to the Artifacts.toml file."),
    name: str = typer.Argument(..., help="Name to unbind."),
    platform: str = typer.Option(None, "--platform", "-p", help="Only unbind this platform."),
) -> None:
    """Remove a name (or one platform of it) from a manifest."""
    manifests = VaultConfig().build_manifests()
    with reported_errors():
        manifests.unbind(manifest, name, platform=parse_platform(platform))
    console.print(f"[green]Unbound[/green] {name}")


def meta_cmd(
    manifest: Path = typer.Argument(..., help="Path to the Artifacts.toml file."),
    name: str = typer.Argument(..., help="Name to resolve."),
    platform: str = typer.Option(None, "--platform", "-p", help="Platform triplet (default: host)."),
) -> None:
    """Show which entry a name resolves to."""
    manifests = VaultConfig().build_manifests()
    with reported_errors():
        entry = manifests.meta(name, manifest, platform=parse_platform(platform))
    if entry is None:
        console.print(f"[yellow]No entry for '{name}'.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title=name, show_header=False)
    table.add_row("git-tree-sha1", entry.hash.hex)
    table.add_row("lazy", "yes" if entry.lazy else "no")
    table.add_row("platform", entry.platform.triplet() if entry.platform else "any")
    for source in entry.downloads:
        table.add_row("download", f"{source.url}\n[dim]{source.sha256}[/dim]")
    console.print(table)


def hashes_cmd(
    manifest: Path = typer.Argument(..., help="Path to the Artifacts.toml file."),
    platform: str = typer.Option(None, "--platform", "-p", help="Platform triplet (default: host)."),
    include_lazy: bool = typer.Option(False, "--include-lazy", help="Include lazy artifacts."),
) -> None:
    """Print every tree hash a manifest resolves to, one per line."""
    manifests = VaultConfig().build_manifests()
    with reported_errors():
        hashes = manifests.extract_all_hashes(
            manifest,
            platform=parse_platform(platform) or host_platform(),
            include_lazy=include_lazy,
        )
    for tree_hash in hashes:
        console.print(tree_hash.hex)
