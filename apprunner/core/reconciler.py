"""Reconciler: converges supervisors on the remote deployment manifest.

Each tick:

1. Fetch the manifest (``Last-Modified`` becomes every entry's
   ``observed_at``).
2. For each entry: skip other platforms, run the trust pipeline, get or
   create the application's supervisor, hand it the entry, and make sure its
   lifecycle thread is running.

Failures are contained: a bad manifest waits for the next tick, a bad entry
never affects its siblings, and a failed download leaves the previous
version running.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from email.utils import parsedate_to_datetime

import httpx
from pydantic import BaseModel, ConfigDict, Field

from apprunner.core.context import RunnerContext
from apprunner.core.errors import (
    AppRunnerError,
    FormatError,
    NetworkError,
    RegistryClosed,
    TrustVerificationError,
)
from apprunner.models.manifest import Manifest, ManifestEntry, as_utc, host_platform

logger = logging.getLogger(__name__)


def parse_last_modified(value: str | None) -> datetime | None:
    """Parse an RFC 1123 ``Last-Modified`` header; ``None`` if absent or bad."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError) as exc:
        logger.debug("Could not parse Last-Modified %r: %s", value, exc)
        return None
    return as_utc(parsed)


class ReconcileReport(BaseModel):
    """Outcome of one reconciliation tick, by application name."""

    model_config = ConfigDict(frozen=True)

    deployed: list[str] = Field(default_factory=list)
    unchanged: list[str] = Field(default_factory=list)
    rejected: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)


class Reconciler:
    """Polls the manifest and drives one ``RunSupervisor`` per application.

    Parameters
    ----------
    context:
        Shared objects (HTTP client, trust pipeline, registry).
    platform:
        ``(os, arch)`` of this node; defaults to ``host_platform()``.
    """

    def __init__(
        self,
        context: RunnerContext,
        *,
        platform: tuple[str, str] | None = None,
    ) -> None:
        self._context = context
        self._config_url = context.config.config_url
        self._interval = context.config.reload_interval
        self._platform = platform or host_platform()

    @property
    def context(self) -> RunnerContext:
        return self._context

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def fetch_manifest(self) -> Manifest:
        """GET the manifest and decode it.

        Raises
        ------
        NetworkError
            Transport failure or non-200 status.
        FormatError
            Body is not JSON or has no ``apps`` mapping.
        """
        try:
            resp = self._context.client.get(self._config_url)
        except httpx.HTTPError as exc:
            raise NetworkError(f"manifest fetch failed: {exc}") from exc
        if resp.status_code != 200:
            raise NetworkError(f"manifest fetch returned status {resp.status_code}")
        try:
            payload = resp.json()
        except ValueError as exc:
            raise FormatError(f"manifest is not JSON: {exc}") from exc

        observed_at = parse_last_modified(resp.headers.get("last-modified"))
        manifest = Manifest.from_payload(payload, observed_at=observed_at)
        logger.info(
            "Fetched manifest: %d app(s), %d rejected, last modified %s",
            len(manifest.apps),
            len(manifest.rejected),
            observed_at.isoformat() if observed_at else "unknown",
        )
        return manifest

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile_entry(self, entry: ManifestEntry) -> str:
        """Apply one entry; returns ``deployed|unchanged|rejected|failed|skipped``."""
        if not entry.matches_platform(*self._platform):
            logger.debug(
                "Skipping %s: built for %s/%s",
                entry.app_name,
                entry.os or "*",
                entry.arch or "*",
            )
            return "skipped"

        try:
            self._context.pipeline.verify(entry)
        except TrustVerificationError as exc:
            logger.error(
                "Rejected %s %s (failed checks: %s): %s",
                entry.app_name,
                entry.version,
                ", ".join(exc.failed_checks),
                exc,
            )
            return "rejected"

        try:
            supervisor = self._context.registry.get_or_create(entry.app_name)
        except RegistryClosed:
            logger.info("Shutting down; not deploying %s", entry.app_name)
            return "skipped"
        try:
            changed = supervisor.set_desired_version(entry)
        except AppRunnerError as exc:
            logger.error(
                "Failed to deploy %s %s: %s (%s)",
                entry.app_name,
                entry.version,
                exc,
                type(exc).__name__,
            )
            outcome = "failed"
        else:
            outcome = "deployed" if changed else "unchanged"
        finally:
            supervisor.ensure_running()
        return outcome

    def reconcile_once(self) -> ReconcileReport:
        """Fetch the manifest and reconcile every entry.

        Raises
        ------
        NetworkError, FormatError
            If the manifest itself cannot be fetched or decoded.
        """
        manifest = self.fetch_manifest()
        outcomes: dict[str, list[str]] = {
            "deployed": [],
            "unchanged": [],
            "rejected": list(manifest.rejected),
            "failed": [],
            "skipped": [],
        }
        for name, entry in sorted(manifest.apps.items()):
            try:
                outcome = self.reconcile_entry(entry)
            except Exception:
                logger.exception("Unexpected failure reconciling %s", name)
                outcome = "failed"
            outcomes[outcome].append(name)
        return ReconcileReport(**outcomes)

    def run_forever(self, stop_event: threading.Event) -> None:
        """Reconcile every ``reload_interval`` seconds until *stop_event* is set."""
        logger.info(
            "Reconciling %s every %.1fs", self._config_url, self._interval
        )
        while not stop_event.is_set():
            try:
                self.reconcile_once()
            except AppRunnerError as exc:
                logger.error("Failure to fetch deploy config: %s", exc)
            except Exception:
                logger.exception("Reconciliation tick failed")
            stop_event.wait(self._interval)
        logger.info("Reconciler stopped")

    def start(self, stop_event: threading.Event) -> threading.Thread:
        """Run ``run_forever`` on a daemon thread and return it."""
        thread = threading.Thread(
            target=self.run_forever,
            args=(stop_event,),
            name="apprunner-reconciler",
            daemon=True,
        )
        thread.start()
        return thread
