"""Shared test fixtures for apprunner."""

from __future__ import annotations

import os
import sys
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import httpx
import pytest

from apprunner.bridge.crypto_bridge import (
    encode_signature,
    encode_ssh_public_key,
    generate_keypair,
    sign_data,
)
from apprunner.config import RunnerConfig
from apprunner.core.hasher import sha256_hex
from apprunner.core.supervisor import RunSupervisor
from apprunner.models.manifest import ManifestEntry
from apprunner.trust.keystore import KeyStore

IDENTITY = "op"
MANIFEST_URL = "https://deploy.example.com/manifest.json"
KEYS_URL = f"https://api.github.com/users/{IDENTITY}/keys"

# Child program used as the default artifact: announces itself, then idles.
SLEEPER = "import time\nprint('ready', flush=True)\ntime.sleep(60)\n"


# ---------------------------------------------------------------------------
# Isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep stray APPRUNNER_* variables and app.env files out of every test."""
    for name in list(os.environ):
        if name.startswith("APPRUNNER_"):
            monkeypatch.delenv(name)
    monkeypatch.chdir(tmp_path)


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def byte_response(
    status: int, content: bytes = b"", headers: dict[str, str] | None = None
) -> httpx.Response:
    """Build an unread response with a Content-Length, as a real transport does.

    ``httpx.Response(content=...)`` reads its body eagerly, which leaves
    ``iter_raw`` with a consumed stream.  Caller headers override the length.
    """
    merged = httpx.Headers({"content-length": str(len(content))})
    merged.update(headers or {})
    return httpx.Response(status, stream=httpx.ByteStream(content), headers=merged)


class FakeHTTP:
    """Routes requests by exact URL to canned responses and records them."""

    def __init__(self) -> None:
        self.routes: dict[str, Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        content: bytes = b"",
        status: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.routes[url] = lambda request: byte_response(status, content, headers)

    def add_json(
        self,
        url: str,
        payload: Any,
        status: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.routes[url] = lambda request: httpx.Response(
            status, json=payload, headers=headers
        )

    def add_handler(
        self, url: str, handler: Callable[[httpx.Request], httpx.Response]
    ) -> None:
        self.routes[url] = handler

    def hits(self, url: str) -> int:
        return sum(1 for r in self.requests if str(r.url) == url)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get(str(request.url))
        if handler is None:
            return httpx.Response(404)
        return handler(request)

    def client(self) -> httpx.Client:
        return httpx.Client(
            transport=httpx.MockTransport(self.handle), follow_redirects=True
        )


@pytest.fixture
def fake_http() -> FakeHTTP:
    """Provide an empty URL router for ``httpx.MockTransport``."""
    return FakeHTTP()


@pytest.fixture
def http_client(fake_http: FakeHTTP) -> Iterator[httpx.Client]:
    """Provide an httpx client served by ``fake_http``."""
    client = fake_http.client()
    yield client
    client.close()


# ---------------------------------------------------------------------------
# Keys and signatures
# ---------------------------------------------------------------------------


@pytest.fixture
def signing_key() -> tuple[str, bytes]:
    """Provide a fresh ``(seed_hex, raw_public_key)`` pair."""
    return generate_keypair()


@pytest.fixture
def authorized_key(signing_key: tuple[str, bytes]) -> str:
    """The public half of ``signing_key`` as an ``ssh-ed25519`` line."""
    return encode_ssh_public_key(signing_key[1])


@pytest.fixture
def keystore(signing_key: tuple[str, bytes]) -> KeyStore:
    """Provide a KeyStore that trusts ``signing_key``."""
    store = KeyStore()
    store.add(signing_key[1])
    return store


@pytest.fixture
def sign(signing_key: tuple[str, bytes]) -> Callable[[str], str]:
    """Sign a checksum string with ``signing_key``; returns the wire form."""

    def _sign(checksum: str) -> str:
        return encode_signature(sign_data(checksum.encode("ascii"), signing_key[0]))

    return _sign


# ---------------------------------------------------------------------------
# Artifacts and entries
# ---------------------------------------------------------------------------


@pytest.fixture
def make_script() -> Callable[[str], bytes]:
    """Factory fixture: a Python program runnable as an executable file."""

    def _factory(body: str = SLEEPER) -> bytes:
        return f"#!{sys.executable}\n{body}".encode()

    return _factory


@pytest.fixture
def make_entry(
    sign: Callable[[str], str], make_script: Callable[[str], bytes]
) -> Callable[..., ManifestEntry]:
    """Factory fixture: a correctly signed entry for *content*.

    The default source is ``https://github.com/op/<app>/releases/download/<version>/<app>``.
    """

    def _factory(
        content: bytes | None = None,
        app_name: str = "svc",
        version: str = "v1.2.0",
        **overrides: Any,
    ) -> ManifestEntry:
        body = make_script() if content is None else content
        checksum = sha256_hex(body)
        fields: dict[str, Any] = {
            "app_name": app_name,
            "version": version,
            "source": (
                f"https://github.com/{IDENTITY}/{app_name}"
                f"/releases/download/{version}/{app_name}"
            ),
            "checksum_hex": checksum,
            "signatures": [sign(checksum)],
            "env": [],
        }
        fields.update(overrides)
        return ManifestEntry(**fields)

    return _factory


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., RunnerConfig]:
    """Factory fixture: a runnable config with short timings and a temp staging dir."""

    def _factory(**overrides: Any) -> RunnerConfig:
        fields: dict[str, Any] = {
            "config_url": MANIFEST_URL,
            "github_user": IDENTITY,
            "staging_dir": tmp_path / "staging",
            "reload_interval": 0.2,
            "health_check_interval": 0.2,
            "grace_period": 2.0,
        }
        fields.update(overrides)
        return RunnerConfig(**fields)

    return _factory


@pytest.fixture
def supervisors() -> Iterator[list[RunSupervisor]]:
    """Collects supervisors created by a test and shuts them down afterwards."""
    created: list[RunSupervisor] = []
    yield created
    for supervisor in created:
        supervisor.shutdown()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Poll a predicate until it holds or *timeout* seconds pass."""

    def _wait(predicate: Callable[[], bool], timeout: float = 10.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.02)
        return predicate()

    return _wait
