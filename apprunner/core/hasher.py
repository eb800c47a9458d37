"""Hashing helpers for artifact integrity checks.

SHA-256 is the only digest the manifest format supports; the expected hex
length is derived from the algorithm rather than hard-coded.
"""

from __future__ import annotations

import hashlib
import hmac

#: Number of hex characters in a SHA-256 digest (32 bytes * 2).
SHA256_HEX_LENGTH: int = hashlib.sha256().digest_size * 2


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def digests_match(actual_hex: str, expected_hex: str) -> bool:
    """Constant-time comparison of two hex digests."""
    return hmac.compare_digest(
        actual_hex.encode("utf-8"), expected_hex.encode("utf-8")
    )
