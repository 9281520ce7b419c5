"""Shared option parsing and error reporting for CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console

from artivault.core.errors import ArtivaultError
from artivault.core.platforms import parse_triplet
from artivault.models.artifacts import ArtifactHash
from artivault.models.platforms import Platform

console = Console()
err_console = Console(stderr=True)


def parse_hash(value: str) -> ArtifactHash:
    try:
        return ArtifactHash.model_validate(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def parse_platform(value: str | None) -> Platform | None:
    if not value:
        return None
    try:
        return parse_triplet(value)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@contextmanager
def reported_errors() -> Iterator[None]:
    """Print artivault failures in red and exit 1 instead of a traceback."""
    try:
        yield
    except ArtivaultError as exc:
        err_console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc
