"""Trusted key store: operator public keys fetched from a key-hosting API.

The store holds a flat, append-only set of raw Ed25519 public keys.  Keys are
fetched per operator identity from ``<api_base>/users/<identity>/keys``,
which returns a JSON array of records shaped like::

    [{"id": 1, "key": "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAI..."}]

Only ``ssh-ed25519`` keys are accepted.  A record with a foreign algorithm or
a blob that does not match the SSH wire encoding exactly is skipped; it never
fails the whole load.
"""

from __future__ import annotations

import base64
import binascii
import logging
import threading
from urllib.parse import quote

import httpx

from apprunner.bridge.crypto_bridge import (
    SSH_KEY_BLOB_LENGTH,
    SSH_KEY_PREFIX,
    SUPPORTED_KEY_TYPE,
    key_fingerprint,
)
from apprunner.core.errors import FormatError, NetworkError

logger = logging.getLogger(__name__)


def parse_authorized_key(line: str) -> bytes:
    """Extract the raw 32-byte Ed25519 key from an ``authorized_keys`` line.

    Parameters
    ----------
    line:
        ``"<algorithm> <base64 blob> [comment]"``.

    Raises
    ------
    FormatError
        If the algorithm is not ``ssh-ed25519`` or the blob is not exactly
        ``4+11+4+32`` bytes with the expected length-prefixed fields.
    """
    parts = line.split()
    if len(parts) not in (2, 3):
        raise FormatError(f"expected '<type> <blob> [comment]', got {len(parts)} fields")
    if parts[0] != SUPPORTED_KEY_TYPE:
        raise FormatError(f"unsupported key type '{parts[0]}'")
    try:
        blob = base64.b64decode(parts[1], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FormatError(f"key blob is not base64: {exc}") from exc
    if len(blob) != SSH_KEY_BLOB_LENGTH:
        raise FormatError(
            f"expect {SSH_KEY_BLOB_LENGTH} byte key blob, got {len(blob)}"
        )
    if not blob.startswith(SSH_KEY_PREFIX):
        raise FormatError(f"invalid key blob prefix: {blob[:len(SSH_KEY_PREFIX)].hex()}")
    return blob[len(SSH_KEY_PREFIX):]


class KeyStore:
    """Process-wide, append-only set of trusted Ed25519 public keys.

    Parameters
    ----------
    client:
        HTTP client used for key fetches; owned by the caller.
    api_base:
        Base URL of the key-hosting API.
    """

    def __init__(
        self,
        client: httpx.Client | None = None,
        api_base: str = "https://api.github.com",
    ) -> None:
        self._client = client
        self._api_base = api_base.rstrip("/")
        self._keys: set[bytes] = set()
        self._lock = threading.Lock()

    @property
    def keys(self) -> frozenset[bytes]:
        """Snapshot of every trusted key loaded so far."""
        with self._lock:
            return frozenset(self._keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)

    def add(self, public_key: bytes) -> bool:
        """Add a raw public key.  Returns ``True`` if it was not already known."""
        with self._lock:
            if public_key in self._keys:
                return False
            self._keys.add(public_key)
        logger.info("Trusted key added: %s", key_fingerprint(public_key))
        return True

    def keys_url(self, identity: str) -> str:
        return f"{self._api_base}/users/{quote(identity, safe='')}/keys"

    def load(self, identity: str) -> frozenset[bytes]:
        """Fetch *identity*'s published keys and add the valid ones.

        Returns
        -------
        frozenset[bytes]
            The keys accepted from this fetch (possibly already known).

        Raises
        ------
        NetworkError
            Transport failure or non-200 response.
        FormatError
            Body is not a JSON array.
        """
        if self._client is None:
            raise NetworkError("KeyStore has no HTTP client configured")
        url = self.keys_url(identity)
        try:
            resp = self._client.get(url)
        except httpx.HTTPError as exc:
            raise NetworkError(f"key fetch for '{identity}' failed: {exc}") from exc
        if resp.status_code != 200:
            raise NetworkError(
                f"key fetch for '{identity}' returned status {resp.status_code}"
            )
        try:
            records = resp.json()
        except ValueError as exc:
            raise FormatError(f"key list for '{identity}' is not JSON: {exc}") from exc
        if not isinstance(records, list):
            raise FormatError(f"key list for '{identity}' is not a JSON array")

        accepted: set[bytes] = set()
        for record in records:
            line = record.get("key") if isinstance(record, dict) else None
            if not isinstance(line, str):
                logger.warning("Skipping key record without 'key' field: %r", record)
                continue
            try:
                raw = parse_authorized_key(line)
            except FormatError as exc:
                logger.info("Skipping key for '%s': %s", identity, exc)
                continue
            accepted.add(raw)
            self.add(raw)

        logger.info(
            "Loaded %d trusted key(s) for '%s' (%d total)",
            len(accepted),
            identity,
            len(self),
        )
        return frozenset(accepted)
