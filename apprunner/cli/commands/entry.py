"""``apprunner entry BINARY APP VERSION``: produce a signed manifest entry.

Computes the binary's SHA-256, signs the hex digest with an Ed25519 seed and
prints the manifest entry as JSON.  The default source follows the GitHub
release layout ``https://github.com/<user>/<app>/releases/download/<version>/<file>``.
Publishing the manifest is left to the operator's own tooling.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console

from apprunner.bridge.crypto_bridge import (
    encode_signature,
    key_fingerprint,
    public_key_for,
    sign_data,
)
from apprunner.config import RunnerConfig
from apprunner.core.errors import TrustError
from apprunner.core.hasher import sha256_hex
from apprunner.trust.pipeline import verify_checksum_format, verify_source, verify_version

console = Console(stderr=True)


def entry_cmd(
    binary: Path = typer.Argument(..., exists=True, dir_okay=False, help="Built binary."),
    app_name: str = typer.Argument(..., help="Application name (manifest key)."),
    version: str = typer.Argument(..., help="Release version, e.g. v1.2.0."),
    key: str = typer.Option(
        ...,
        "--key",
        envvar="APPRUNNER_SIGNING_KEY",
        help="Hex-encoded Ed25519 seed used to sign the checksum.",
    ),
    github_user: str = typer.Option(
        None,
        "--github-user",
        "-u",
        help="Release owner (overrides APPRUNNER_GITHUB_USER).",
    ),
    source: str = typer.Option(
        None,
        "--source",
        help="Artifact URL; defaults to the GitHub release download URL.",
    ),
    env: list[str] = typer.Option(
        None,
        "--env",
        "-e",
        help="KEY=VALUE passed to the app; repeatable.",
    ),
    target_os: str = typer.Option("", "--os", help="Target OS, e.g. linux."),
    target_arch: str = typer.Option("", "--arch", help="Target arch, e.g. amd64."),
) -> None:
    """Print a signed manifest entry for BINARY."""
    config = RunnerConfig(**({"github_user": github_user} if github_user else {}))
    if source is None:
        source = (
            f"https://{config.trusted_host}/{config.github_user}/{app_name}"
            f"/releases/download/{version}/{binary.name}"
        )

    checksum = sha256_hex(binary.read_bytes())
    try:
        signature = sign_data(checksum.encode("ascii"), key)
        fingerprint = key_fingerprint(public_key_for(key))
    except (ValueError, TypeError) as exc:
        console.print(f"[bold red]Invalid signing key:[/bold red] {exc}")
        raise typer.Exit(code=1)

    entry = {
        "app_name": app_name,
        "version": version,
        "source": source,
        "checksum_hex": checksum,
        "signatures": [encode_signature(signature)],
        "env": list(env or []),
        "os": target_os,
        "arch": target_arch,
    }

    for check in (
        lambda: verify_checksum_format(checksum),
        lambda: verify_source(source, config.github_user, config.trusted_host),
        lambda: verify_version(version),
    ):
        try:
            check()
        except TrustError as exc:
            console.print(f"[yellow]warning ({exc.check}):[/yellow] {exc}")

    console.print(f"[dim]signed with key {fingerprint}[/dim]")
    typer.echo(json.dumps(entry, indent=2))
