"""Main Typer application: imports and registers all CLI commands.

Entry point: ``artivault`` (configured via pyproject.toml console_scripts).
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from artivault.cli.commands.manifest_cmds import bind_cmd, hashes_cmd, meta_cmd, unbind_cmd
from artivault.cli.commands.store_cmds import (
    archive_cmd,
    create_cmd,
    install_cmd,
    remove_cmd,
    verify_cmd,
)
from artivault.config import VaultConfig

app = typer.Typer(
    name="artivault",
    help="artivault: content-addressed artifact store and installer.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def _configure(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    level = "DEBUG" if verbose else VaultConfig().log_level
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(show_path=False, rich_tracebacks=True)],
        force=True,
    )


# Register subcommands
app.command(name="bind", help="Bind a name to a tree hash in a manifest.")(bind_cmd)
app.command(name="unbind", help="Remove a binding from a manifest.")(unbind_cmd)
app.command(name="meta", help="Show the entry a name resolves to.")(meta_cmd)
app.command(name="hashes", help="List every tree hash in a manifest.")(hashes_cmd)
app.command(name="install", help="Ensure artifacts from a manifest are installed.")(install_cmd)
app.command(name="create", help="Add a local directory to the store.")(create_cmd)
app.command(name="verify", help="Verify a stored artifact's tree hash.")(verify_cmd)
app.command(name="remove", help="Remove an artifact from all depots.")(remove_cmd)
app.command(name="archive", help="Archive an artifact into a tarball.")(archive_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
