"""``apprunner run``: start the reconciler and supervise deployed apps.

Loads configuration, fetches the operator's trusted keys (startup aborts if
none can be obtained), then reconciles the manifest until SIGINT or SIGTERM.
On shutdown every supervised process is stopped gracefully before exit.
"""

from __future__ import annotations

import signal
import threading
from pathlib import Path

import typer
from rich.console import Console

from apprunner.cli._logging import configure_logging
from apprunner.config import RunnerConfig
from apprunner.core.context import RunnerContext
from apprunner.core.errors import AppRunnerError, ConfigError
from apprunner.core.reconciler import Reconciler

console = Console(stderr=True)


def _install_signal_handlers(stop: threading.Event) -> None:
    def _handle(signum: int, _frame: object) -> None:
        console.print(f"\r[bold yellow]got signal {signal.Signals(signum).name}, quitting[/bold yellow]")
        stop.set()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def run_cmd(
    config_url: str = typer.Option(
        None,
        "--config-url",
        help="Manifest URL (overrides APPRUNNER_CONFIG_URL).",
    ),
    github_user: str = typer.Option(
        None,
        "--github-user",
        "-u",
        help="Operator identity whose published keys sign releases.",
    ),
    env_file: Path = typer.Option(
        Path("app.env"),
        "--env-file",
        help="Settings file read in addition to APPRUNNER_* variables.",
    ),
) -> None:
    """Run the supervisor until interrupted."""
    overrides = {
        key: value
        for key, value in {"config_url": config_url, "github_user": github_user}.items()
        if value is not None
    }
    config = RunnerConfig(_env_file=env_file, **overrides)
    configure_logging(config.log_level)

    try:
        config.validate_for_run()
    except ConfigError as exc:
        console.print(f"[bold red]{exc}[/bold red]")
        raise typer.Exit(code=1)

    context = RunnerContext(config)
    try:
        try:
            context.keystore.load(config.github_user)
        except AppRunnerError as exc:
            console.print(f"[bold red]Error updating trusted keys:[/bold red] {exc}")
            raise typer.Exit(code=1)
        if len(context.keystore) == 0:
            console.print(
                f"[bold red]No usable ssh-ed25519 keys published for "
                f"'{config.github_user}'; refusing to start.[/bold red]"
            )
            raise typer.Exit(code=1)

        stop = threading.Event()
        _install_signal_handlers(stop)
        reconciler = Reconciler(context).start(stop)

        while not stop.wait(1.0):
            pass
        reconciler.join()
    finally:
        context.close()
    console.print("[dim]all applications stopped[/dim]")
