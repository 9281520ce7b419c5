"""artivault CLI: Typer-based command-line interface.

Provides the ``artivault`` command with subcommands for binding names in
manifests, installing artifacts, and inspecting or pruning the store.

All output uses Rich for formatted terminal display.
"""
