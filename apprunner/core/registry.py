"""Application -> supervisor registry.

Append-only: a supervisor is created the first time its application name is
seen and lives until process exit.  Applications that disappear from the
manifest simply stop receiving updates.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

from apprunner.core.errors import RegistryClosed
from apprunner.core.supervisor import RunSupervisor
from apprunner.models.supervisor import RunSnapshot

logger = logging.getLogger(__name__)

SupervisorFactory = Callable[[str], RunSupervisor]


class SupervisorRegistry:
    """Owns every ``RunSupervisor``; creation is atomic per name.

    Parameters
    ----------
    factory:
        Builds a new supervisor for an application name.
    """

    def __init__(self, factory: SupervisorFactory) -> None:
        self._factory = factory
        self._supervisors: dict[str, RunSupervisor] = {}
        self._lock = threading.Lock()
        self._closed = False

    def get_or_create(self, app_name: str) -> RunSupervisor:
        """Return the supervisor for *app_name*, creating it exactly once.

        Raises ``RegistryClosed`` once ``shutdown_all`` has run.
        """
        with self._lock:
            if self._closed:
                raise RegistryClosed(f"registry closed, not creating '{app_name}'")
            supervisor = self._supervisors.get(app_name)
            if supervisor is None:
                logger.info("Creating supervisor for app '%s'", app_name)
                supervisor = self._factory(app_name)
                self._supervisors[app_name] = supervisor
            return supervisor

    def get(self, app_name: str) -> RunSupervisor | None:
        with self._lock:
            return self._supervisors.get(app_name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._supervisors)

    def __len__(self) -> int:
        with self._lock:
            return len(self._supervisors)

    def __contains__(self, app_name: object) -> bool:
        with self._lock:
            return app_name in self._supervisors

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    def snapshots(self) -> list[RunSnapshot]:
        """Snapshot every supervisor, sorted by application name."""
        with self._lock:
            supervisors = sorted(self._supervisors.items())
        return [s.snapshot() for _, s in supervisors]

    def shutdown_all(self) -> None:
        """Stop every supervisor and its child process.

        Supervisors are stopped in parallel so the total wait is bounded by
        one grace period rather than one per application.  No supervisor
        can be created afterwards.
        """
        with self._lock:
            self._closed = True
            supervisors = list(self._supervisors.values())

        def _shutdown(supervisor: RunSupervisor) -> None:
            try:
                supervisor.shutdown()
            except Exception:
                logger.exception("Shutdown of %s failed", supervisor.app_name)

        threads = [
            threading.Thread(target=_shutdown, args=(s,), name=f"shutdown-{s.app_name}")
            for s in supervisors
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        logger.info("All %d supervisor(s) stopped", len(supervisors))
