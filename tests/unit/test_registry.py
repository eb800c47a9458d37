"""Unit tests for SupervisorRegistry: one supervisor per application."""

from __future__ import annotations

import threading

import pytest

from apprunner.core.errors import RegistryClosed
from apprunner.core.registry import SupervisorRegistry
from apprunner.core.supervisor import RunSupervisor
from apprunner.models.supervisor import RunState


class _CountingFactory:
    def __init__(self) -> None:
        self.created: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, app_name: str) -> RunSupervisor:
        with self._lock:
            self.created.append(app_name)
        return RunSupervisor(app_name, downloader=None)


class TestRegistry:
    def test_get_or_create_returns_same_instance(self):
        factory = _CountingFactory()
        registry = SupervisorRegistry(factory)

        first = registry.get_or_create("svc")
        second = registry.get_or_create("svc")

        assert first is second
        assert factory.created == ["svc"]

    def test_concurrent_creation_happens_once(self):
        factory = _CountingFactory()
        registry = SupervisorRegistry(factory)
        barrier = threading.Barrier(16)
        seen: list[RunSupervisor] = []

        def _worker():
            barrier.wait()
            seen.append(registry.get_or_create("svc"))

        threads = [threading.Thread(target=_worker) for _ in range(16)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert factory.created == ["svc"]
        assert len({id(s) for s in seen}) == 1

    def test_lookup_helpers(self):
        registry = SupervisorRegistry(_CountingFactory())
        registry.get_or_create("web")
        registry.get_or_create("api")

        assert registry.names() == ["api", "web"]
        assert len(registry) == 2
        assert "web" in registry
        assert "db" not in registry
        assert registry.get("db") is None
        assert registry.get("api").app_name == "api"

    def test_snapshots_sorted_by_name(self):
        registry = SupervisorRegistry(_CountingFactory())
        registry.get_or_create("web")
        registry.get_or_create("api")

        snaps = registry.snapshots()

        assert [s.app_name for s in snaps] == ["api", "web"]
        assert all(s.state is RunState.IDLE for s in snaps)

    def test_shutdown_all(self):
        registry = SupervisorRegistry(_CountingFactory())
        web = registry.get_or_create("web")
        web.ensure_running()

        registry.shutdown_all()

        assert not web.lifecycle_running
        assert web.ensure_running() is False

    def test_shutdown_all_continues_past_failures(self):
        class _Broken(RunSupervisor):
            def shutdown(self) -> None:
                raise RuntimeError("boom")

        registry = SupervisorRegistry(
            lambda name: _Broken(name, None) if name == "bad" else RunSupervisor(name, None)
        )
        registry.get_or_create("bad")
        good = registry.get_or_create("good")
        good.ensure_running()

        registry.shutdown_all()

        assert not good.lifecycle_running

    def test_no_creation_after_shutdown(self):
        """A tick racing shutdown must not get a fresh, unowned supervisor."""
        factory = _CountingFactory()
        registry = SupervisorRegistry(factory)
        registry.get_or_create("web")
        assert not registry.closed

        registry.shutdown_all()

        assert registry.closed
        with pytest.raises(RegistryClosed, match="api"):
            registry.get_or_create("api")
        with pytest.raises(RegistryClosed):
            registry.get_or_create("web")
        assert factory.created == ["web"]
        assert "api" not in registry
