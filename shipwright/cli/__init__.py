"""Shipwright CLI: Typer-based command-line interface.

Provides the ``shipwright`` command with subcommands for running the
build-and-publish pipeline, previewing tags, inspecting the cache stores
and auditing the run ledger.

All output uses Rich for formatted terminal display.
"""
