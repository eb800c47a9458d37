"""``apprunner verify MANIFEST``: run the trust pipeline over a manifest file.

Prints one row per application with every failed check, so an operator can
see why a node would refuse a release before publishing it.  Exits 1 if any
entry is rejected.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from apprunner.config import RunnerConfig
from apprunner.core.context import RunnerContext
from apprunner.core.errors import AppRunnerError
from apprunner.models.manifest import Manifest
from apprunner.trust.keystore import parse_authorized_key

console = Console()


def verify_cmd(
    manifest_path: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        help="Manifest JSON file to check.",
    ),
    github_user: str = typer.Option(
        None,
        "--github-user",
        "-u",
        help="Operator identity (overrides APPRUNNER_GITHUB_USER).",
    ),
    key: list[str] = typer.Option(
        None,
        "--key",
        "-k",
        help="Trusted 'ssh-ed25519 <blob>' key; repeatable.  Skips the key fetch.",
    ),
) -> None:
    """Check every manifest entry against the trust pipeline."""
    overrides = {"github_user": github_user} if github_user else {}
    config = RunnerConfig(**overrides)

    try:
        manifest = Manifest.from_payload(
            json.loads(manifest_path.read_text(encoding="utf-8"))
        )
    except (ValueError, AppRunnerError) as exc:
        console.print(f"[bold red]Cannot read manifest:[/bold red] {exc}")
        raise typer.Exit(code=1)

    with RunnerContext(config) as context:
        try:
            if key:
                for line in key:
                    context.keystore.add(parse_authorized_key(line))
            else:
                context.keystore.load(config.github_user)
        except AppRunnerError as exc:
            console.print(f"[bold red]Cannot load trusted keys:[/bold red] {exc}")
            raise typer.Exit(code=1)

        table = Table(title=f"Trust check: {manifest_path.name}")
        table.add_column("App", style="cyan")
        table.add_column("Version", style="green")
        table.add_column("Result", justify="center")
        table.add_column("Details")

        failures = 0
        for name, entry in sorted(manifest.apps.items()):
            violations = context.pipeline.check(entry)
            if violations:
                failures += 1
                details = "\n".join(f"{v.check}: {v}" for v in violations)
                table.add_row(name, entry.version, "[red]REJECTED[/red]", details)
            else:
                table.add_row(name, entry.version, "[green]trusted[/green]", "")
        for name, reason in sorted(manifest.rejected.items()):
            failures += 1
            table.add_row(name, "?", "[red]MALFORMED[/red]", reason)

        console.print(table)

    if failures:
        console.print(f"[bold red]{failures} entr{'y' if failures == 1 else 'ies'} rejected.[/bold red]")
        raise typer.Exit(code=1)
    console.print("[bold green]All entries trusted.[/bold green]")
