"""Artifact downloader and private staging area.

Storage layout: ``{staging_dir}/app<random>`` (``.exe`` suffix on Windows).
The staging directory is created owner-only (0700); every installed file is
owner read/write/execute only.  Each successful fetch produces a new file;
nothing in the staging area is overwritten or reused.
"""

from __future__ import annotations

import hashlib
import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import BinaryIO

import httpx

from apprunner.core.errors import ChecksumMismatch, InstallError, NetworkError
from apprunner.core.hasher import digests_match
from apprunner.models.manifest import ManifestEntry

logger = logging.getLogger(__name__)

DEFAULT_STAGING_DIR = Path(tempfile.gettempdir()) / "apprunner"

_CHUNK_SIZE = 64 * 1024


class Downloader:
    """Fetches, verifies and installs artifacts named by manifest entries.

    Parameters
    ----------
    client:
        HTTP client used for artifact fetches; owned by the caller.  It should
        follow redirects, since release hosts usually redirect to a CDN.
    staging_dir:
        Private directory that receives installed artifacts.
    """

    def __init__(
        self,
        client: httpx.Client,
        staging_dir: Path = DEFAULT_STAGING_DIR,
    ) -> None:
        self._client = client
        self._staging_dir = Path(staging_dir)

    @property
    def staging_dir(self) -> Path:
        return self._staging_dir

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def _ensure_staging_dir(self) -> None:
        try:
            self._staging_dir.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise InstallError(
                f"cannot create staging dir {self._staging_dir}: {exc}"
            ) from exc

    def _open_artifact(self) -> tuple[int, Path]:
        suffix = ".exe" if sys.platform.startswith("win") else ""
        try:
            fd, name = tempfile.mkstemp(prefix="app", suffix=suffix, dir=self._staging_dir)
        except OSError as exc:
            raise InstallError(f"cannot create artifact file: {exc}") from exc
        return fd, Path(name)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, entry: ManifestEntry) -> Path:
        """Download ``entry.source`` and install it if the checksum matches.

        Returns
        -------
        Path
            The freshly installed, executable artifact.

        Raises
        ------
        NetworkError
            Transport failure, non-200 status, missing or invalid
            ``Content-Length``, or a body shorter/longer than announced.
        ChecksumMismatch
            The body does not hash to ``entry.checksum_hex``.
        InstallError
            Staging directory or file operation failed.
        """
        logger.info("Downloading %s %s from %s", entry.app_name, entry.version, entry.source)
        self._ensure_staging_dir()
        fd, path = self._open_artifact()
        installed = False
        try:
            with os.fdopen(fd, "wb") as fh:
                actual, size = self._stream_into(entry.source, fh)
                if not digests_match(actual, entry.checksum_hex):
                    raise ChecksumMismatch(
                        f"downloaded '{actual}' but expected '{entry.checksum_hex}'"
                    )
                try:
                    os.chmod(path, 0o700)
                    fh.flush()
                    os.fsync(fh.fileno())
                except OSError as exc:
                    raise InstallError(f"cannot finalize {path}: {exc}") from exc
            installed = True
        except OSError as exc:
            raise InstallError(f"cannot write {path}: {exc}") from exc
        finally:
            if not installed:
                path.unlink(missing_ok=True)

        logger.info(
            "Installed %s %s (%d bytes) at %s", entry.app_name, entry.version, size, path
        )
        return path

    def _stream_into(self, url: str, fh: BinaryIO) -> tuple[str, int]:
        digest = hashlib.sha256()
        received = 0
        try:
            with self._client.stream("GET", url) as resp:
                if resp.status_code != 200:
                    raise NetworkError(f"artifact fetch returned status {resp.status_code}")
                expected = _content_length(resp)
                logger.debug("Artifact size: %d bytes", expected)
                for chunk in resp.iter_raw(_CHUNK_SIZE):
                    received += len(chunk)
                    if received > expected:
                        raise NetworkError(
                            f"body exceeds announced Content-Length {expected}"
                        )
                    digest.update(chunk)
                    fh.write(chunk)
        except httpx.HTTPError as exc:
            raise NetworkError(f"artifact fetch failed: {exc}") from exc
        if received != expected:
            raise NetworkError(
                f"truncated body: received {received} of {expected} bytes"
            )
        return digest.hexdigest(), received


def _content_length(resp: httpx.Response) -> int:
    raw = resp.headers.get("content-length")
    if raw is None:
        raise NetworkError("artifact response has no Content-Length")
    try:
        length = int(raw)
    except ValueError:
        raise NetworkError(f"invalid Content-Length {raw!r}") from None
    if length < 0:
        raise NetworkError(f"invalid Content-Length {length}")
    return length
