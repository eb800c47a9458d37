"""apprunner CLI: Typer-based command-line interface.

Provides the ``apprunner`` command with subcommands for running the
supervisor, checking a manifest against the trust pipeline, listing an
operator's trusted keys and producing signed manifest entries.

All output uses Rich for formatted terminal display.
"""
