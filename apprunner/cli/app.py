"""Main Typer application: imports and registers all CLI commands.

Entry point: ``apprunner`` (configured via pyproject.toml project.scripts).

Commands: run, verify, keys, entry, version.
"""

from __future__ import annotations

import typer

from apprunner import __version__
from apprunner.cli.commands.entry import entry_cmd
from apprunner.cli.commands.keys import keys_cmd
from apprunner.cli.commands.run import run_cmd
from apprunner.cli.commands.verify import verify_cmd

app = typer.Typer(
    name="apprunner",
    help="apprunner: self-updating supervisor for signed binary releases.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="run", help="Reconcile the manifest and supervise apps until interrupted.")(run_cmd)
app.command(name="verify", help="Check a manifest file against the trust pipeline.")(verify_cmd)
app.command(name="keys", help="List the trusted keys published for an identity.")(keys_cmd)
app.command(name="entry", help="Print a signed manifest entry for a binary.")(entry_cmd)


@app.command(name="version", help="Show the apprunner version.")
def version_cmd() -> None:
    """Print the installed apprunner version."""
    typer.echo(f"apprunner {__version__}")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
