"""``apprunner keys IDENTITY``: list the keys a node would trust."""

from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from apprunner.bridge.crypto_bridge import encode_ssh_public_key, key_fingerprint
from apprunner.config import RunnerConfig
from apprunner.core.context import RunnerContext
from apprunner.core.errors import AppRunnerError

console = Console()


def keys_cmd(
    identity: str = typer.Argument(..., help="Operator identity to look up."),
    api_base: str = typer.Option(
        None,
        "--api-base",
        help="Key-hosting API base URL (overrides APPRUNNER_KEY_API_BASE).",
    ),
) -> None:
    """Fetch IDENTITY's published keys and show the usable ones."""
    overrides = {"key_api_base": api_base} if api_base else {}
    with RunnerContext(RunnerConfig(**overrides)) as context:
        try:
            keys = context.keystore.load(identity)
        except AppRunnerError as exc:
            console.print(f"[bold red]Key fetch failed:[/bold red] {exc}")
            raise typer.Exit(code=1)

    if not keys:
        console.print(f"[yellow]No usable ssh-ed25519 keys for '{identity}'.[/yellow]")
        raise typer.Exit(code=1)

    table = Table(title=f"Trusted keys for {identity}")
    table.add_column("Fingerprint", style="cyan")
    table.add_column("Key")
    for raw in sorted(keys):
        table.add_row(key_fingerprint(raw), encode_ssh_public_key(raw))
    console.print(table)
