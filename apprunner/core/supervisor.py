"""Per-application run supervisor: deploy state plus process lifecycle.

One ``RunSupervisor`` exists per application name.  Two parties touch it:

- the reconciler thread, which calls ``set_desired_version`` with trusted
  manifest entries;
- the supervisor's own lifecycle thread, which reacts to reload requests and
  periodic health checks by stopping and (re)starting the child process.

The two meet at a ``ReloadSignal``: a capacity-1 slot where a post made while
a request is already pending is dropped, so any number of redeploys between
two loop iterations collapse into a single reload.

Lifecycle::

    idle -> starting -> running -> stopping -> idle
              |
              +-> idle   (start failure; retried on the next health tick)

Lock discipline: ``_lock`` guards every shared field and is only held to read
or swap them, never across a download, a process spawn or a wait.
``_deploy_lock`` serializes ``set_desired_version`` so concurrent calls for
the same application cannot download twice.
"""

from __future__ import annotations

import logging
import os
import queue
import subprocess
import sys
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, TextIO

from apprunner.core.downloader import Downloader
from apprunner.core.errors import ProcessError
from apprunner.models.manifest import ManifestEntry
from apprunner.models.supervisor import RunSnapshot, RunState

logger = logging.getLogger(__name__)

DEFAULT_HEALTH_CHECK_INTERVAL = 10.0
DEFAULT_GRACE_PERIOD = 5.0


# ---------------------------------------------------------------------------
# Coalescing reload signal
# ---------------------------------------------------------------------------


class ReloadSignal:
    """Capacity-1 signal: try-enqueue, drop-if-full.

    At most one reload request is ever pending; posting while one is
    pending is a no-op that reports ``False``.
    """

    def __init__(self) -> None:
        self._slot: queue.Queue[None] = queue.Queue(maxsize=1)

    def post(self) -> bool:
        """Request a reload.  Returns ``False`` if one was already pending."""
        try:
            self._slot.put_nowait(None)
        except queue.Full:
            return False
        return True

    def wait(self, timeout: float | None = None) -> bool:
        """Consume a pending request, blocking up to *timeout* seconds."""
        try:
            self._slot.get(timeout=timeout)
        except queue.Empty:
            return False
        return True

    @property
    def pending(self) -> bool:
        return not self._slot.empty()


# ---------------------------------------------------------------------------
# Process helpers
# ---------------------------------------------------------------------------


def parse_env(lines: list[str]) -> dict[str, str]:
    """Turn ``KEY=VALUE`` strings into a mapping; later keys win."""
    env: dict[str, str] = {}
    for line in lines:
        key, sep, value = line.partition("=")
        if not sep or not key:
            logger.warning("Ignoring malformed env entry %r", line)
            continue
        env[key] = value
    return env


def terminate_process(process: subprocess.Popen, grace_period: float) -> int:
    """Stop *process*: terminate, wait up to *grace_period*, then kill.

    Returns the exit code.  Already-exited processes are reaped and their
    code returned without signalling.

    Raises
    ------
    ProcessError
        If the process cannot be signalled or waited on.
    """
    if process.poll() is not None:
        return process.returncode

    logger.info("Sending termination signal to pid %d", process.pid)
    try:
        process.terminate()
        return process.wait(timeout=grace_period)
    except subprocess.TimeoutExpired:
        logger.warning(
            "pid %d still alive after %.1fs grace period, killing",
            process.pid,
            grace_period,
        )
    except OSError as exc:
        raise ProcessError(f"cannot terminate pid {process.pid}: {exc}") from exc

    try:
        process.kill()
        return process.wait()
    except OSError as exc:
        raise ProcessError(f"cannot kill pid {process.pid}: {exc}") from exc


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class RunSupervisor:
    """Deploy state and process lifecycle for one application.

    Parameters
    ----------
    app_name:
        The application this supervisor owns.
    downloader:
        Installs artifacts for ``set_desired_version``.
    health_check_interval:
        Seconds between liveness checks of the child process.
    grace_period:
        Seconds to wait after a termination signal before killing.
    output:
        Stream that receives the child's prefixed stdout/stderr lines.
        Defaults to ``sys.stdout`` at write time.
    """

    def __init__(
        self,
        app_name: str,
        downloader: Downloader,
        *,
        health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        output: TextIO | None = None,
    ) -> None:
        self.app_name = app_name
        self._downloader = downloader
        self._health_check_interval = health_check_interval
        self._grace_period = grace_period
        self._output = output
        self._output_lock = threading.Lock()

        self._lock = threading.Lock()
        self._deploy_lock = threading.Lock()

        # Desired state, written by the reconciler
        self._version = ""
        self._location: Path | None = None
        self._env: list[str] = []
        self._run_initialized_at: datetime | None = None

        # Actual state, written by the lifecycle thread
        self._process: subprocess.Popen | None = None
        self._pipes: list[threading.Thread] = []
        self._state = RunState.IDLE
        self._start_failed = False
        self._starts = 0

        self._running = False
        self._closed = threading.Event()
        self._thread: threading.Thread | None = None

        self.reload = ReloadSignal()

    def __repr__(self) -> str:
        return f"<RunSupervisor {self.app_name} {self._version or '-'} {self._state.value}>"

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def version(self) -> str:
        with self._lock:
            return self._version

    @property
    def location(self) -> Path | None:
        with self._lock:
            return self._location

    @property
    def env(self) -> list[str]:
        with self._lock:
            return list(self._env)

    @property
    def run_initialized_at(self) -> datetime | None:
        with self._lock:
            return self._run_initialized_at

    @property
    def state(self) -> RunState:
        with self._lock:
            return self._state

    @property
    def pid(self) -> int | None:
        with self._lock:
            return self._process.pid if self._process is not None else None

    @property
    def lifecycle_running(self) -> bool:
        with self._lock:
            return self._running

    def snapshot(self) -> RunSnapshot:
        """Consistent, immutable view of the supervisor's state."""
        with self._lock:
            return RunSnapshot(
                app_name=self.app_name,
                state=self._state,
                version=self._version,
                location=str(self._location) if self._location else "",
                env=list(self._env),
                run_initialized_at=self._run_initialized_at,
                pid=self._process.pid if self._process is not None else None,
                lifecycle_running=self._running,
                starts=self._starts,
            )

    # ------------------------------------------------------------------
    # Desired state
    # ------------------------------------------------------------------

    def needs_redeploy(self, entry: ManifestEntry) -> bool:
        """Whether *entry* differs from what is deployed.

        A different version always redeploys.  The same version redeploys
        when the manifest was re-published (``observed_at``) after the last
        successful swap, which lets operators force a reinstall.
        """
        with self._lock:
            current_version = self._version
            initialized_at = self._run_initialized_at
        if entry.version != current_version:
            return True
        if entry.observed_at is None:
            return False
        return initialized_at is None or entry.observed_at > initialized_at

    def set_desired_version(self, entry: ManifestEntry) -> bool:
        """Install *entry* and request a reload if it is new.

        Returns ``True`` if a new artifact was installed and swapped in,
        ``False`` if the entry was already deployed.

        Raises
        ------
        NetworkError, ChecksumMismatch, InstallError
            From the download; no state is changed in that case and the
            previous version keeps running.
        """
        with self._deploy_lock:
            if not self.needs_redeploy(entry):
                logger.debug("%s %s already deployed", self.app_name, entry.version)
                return False

            previous = self.version
            logger.info(
                "Deploying %s %s (previous: %s)",
                self.app_name,
                entry.version,
                previous or "none",
            )
            location = self._downloader.fetch(entry)

            with self._lock:
                self._version = entry.version
                self._location = location
                self._env = list(entry.env)
                self._run_initialized_at = datetime.now(timezone.utc)

        if not self.reload.post():
            logger.debug("Reload already pending for %s", self.app_name)
        return True

    # ------------------------------------------------------------------
    # Lifecycle loop
    # ------------------------------------------------------------------

    def ensure_running(self) -> bool:
        """Start the lifecycle thread unless it is already running.

        Returns ``True`` if a new thread was started.
        """
        with self._lock:
            if self._running or self._closed.is_set():
                return False
            self._running = True
        thread = threading.Thread(
            target=self._lifecycle,
            name=f"apprunner-{self.app_name}",
            daemon=True,
        )
        self._thread = thread
        thread.start()
        logger.debug("Lifecycle thread started for %s", self.app_name)
        return True

    def _lifecycle(self) -> None:
        next_check = time.monotonic() + self._health_check_interval
        try:
            while not self._closed.is_set():
                timeout = max(0.0, next_check - time.monotonic())
                try:
                    if self.reload.wait(timeout):
                        if self._closed.is_set():
                            break
                        self.reload_now()
                        continue
                    next_check = time.monotonic() + self._health_check_interval
                    self.check_health()
                except Exception:
                    logger.exception("Lifecycle iteration failed for %s", self.app_name)
        finally:
            with self._lock:
                self._running = False
            logger.debug("Lifecycle thread exited for %s", self.app_name)

    def post_reload(self) -> bool:
        """Request a reload; coalesces with any pending request."""
        return self.reload.post()

    def reload_now(self) -> bool:
        """Bring the process in line with the desired state.

        Stops any tracked process, then starts ``location`` with the ambient
        environment plus the manifest's ``env`` entries.  Returns ``True`` if
        a new process is running.
        """
        logger.info("Reload requested for %s", self.app_name)
        self.stop()

        with self._lock:
            location = self._location
            env = list(self._env)
            version = self._version
            if location is None:
                logger.warning("No version of %s deployed yet, nothing to start", self.app_name)
                return False
            self._state = RunState.STARTING

        try:
            process, pipes = self._spawn(location, env)
        except ProcessError as exc:
            logger.error("Startup failure for %s %s: %s", self.app_name, version, exc)
            with self._lock:
                self._state = RunState.IDLE
                self._start_failed = True
            return False

        with self._lock:
            if not self._closed.is_set():
                self._process = process
                self._pipes = pipes
                self._state = RunState.RUNNING
                self._start_failed = False
                self._starts += 1
                orphan = False
            else:
                self._state = RunState.IDLE
                orphan = True

        if orphan:
            logger.info("Supervisor for %s closed during start, stopping pid %d", self.app_name, process.pid)
            terminate_process(process, self._grace_period)
            return False

        logger.info("Started %s %s, pid=%d", self.app_name, version, process.pid)
        return True

    def _spawn(
        self, location: Path, env: list[str]
    ) -> tuple[subprocess.Popen, list[threading.Thread]]:
        environ = dict(os.environ)
        environ.update(parse_env(env))
        try:
            process = subprocess.Popen(
                [str(location)],
                env=environ,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except (OSError, ValueError) as exc:
            raise ProcessError(f"cannot start {location}: {exc}") from exc

        pipes: list[threading.Thread] = []
        try:
            for stream in (process.stdout, process.stderr):
                pump = threading.Thread(
                    target=self._pump,
                    args=(stream,),
                    name=f"apprunner-{self.app_name}-pipe",
                    daemon=True,
                )
                pump.start()
                pipes.append(pump)
        except RuntimeError as exc:
            terminate_process(process, self._grace_period)
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    stream.close()
            raise ProcessError(f"cannot forward output of {location}: {exc}") from exc
        return process, pipes

    def _pump(self, stream: IO[bytes]) -> None:
        try:
            for raw in iter(stream.readline, b""):
                self._emit(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
        except (OSError, ValueError) as exc:
            logger.debug("Output pipe for %s closed: %s", self.app_name, exc)
        finally:
            stream.close()

    def _emit(self, line: str) -> None:
        out = self._output or sys.stdout
        with self._output_lock:
            out.write(f"{self.app_name:<17} | {line}\n")
            out.flush()

    def check_health(self) -> bool:
        """Liveness check; posts a reload if the process died or never started.

        Returns ``True`` if no action was needed.
        """
        with self._lock:
            process = self._process
            retry_start = self._start_failed and self._location is not None

        if process is not None:
            code = process.poll()
            if code is None:
                logger.debug("%s healthy (pid %d)", self.app_name, process.pid)
                return True
            logger.warning(
                "%s exited unexpectedly with code %s, requesting restart",
                self.app_name,
                code,
            )
            self.reload.post()
            return False

        if retry_start:
            logger.info("Retrying failed start of %s", self.app_name)
            self.reload.post()
            return False
        return True

    # ------------------------------------------------------------------
    # Stop / shutdown
    # ------------------------------------------------------------------

    def stop(self) -> int | None:
        """Gracefully stop the tracked process, if any.

        Returns its exit code, or ``None`` if nothing was running.
        """
        with self._lock:
            process = self._process
            pipes = self._pipes
            if process is None:
                return None
            self._process = None
            self._pipes = []
            self._state = RunState.STOPPING

        logger.info("Stopping %s (pid %d)", self.app_name, process.pid)
        try:
            code = terminate_process(process, self._grace_period)
        finally:
            for pump in pipes:
                pump.join(timeout=self._grace_period)
            with self._lock:
                if self._state is RunState.STOPPING:
                    self._state = RunState.IDLE
        logger.info("Stopped %s, exit code %s", self.app_name, code)
        return code

    def shutdown(self) -> None:
        """Stop the lifecycle thread and the tracked process.

        Bounded by the grace period; safe to call more than once.
        """
        self._closed.set()
        self.reload.post()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self._grace_period * 2 + 1.0)
            if thread.is_alive():
                logger.warning("Lifecycle thread for %s did not exit in time", self.app_name)
        self.stop()
