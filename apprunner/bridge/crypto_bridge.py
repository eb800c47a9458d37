"""Crypto bridge: Ed25519 signing and verification via PyNaCl.

Bridge boundary
---------------
All Ed25519 operations in apprunner go through this module so the trust
pipeline never touches ``nacl`` directly.  Keys cross the boundary as raw
32-byte strings (verify side) or hex-encoded seeds (sign side); signatures
cross it as raw 64-byte strings and are encoded on the wire as URL-safe
base64 without padding, the format operators' signing tools emit.

Verification is fail-closed: malformed keys, malformed signatures and
cryptographic mismatches all return ``False`` rather than raising.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import string
import struct

import nacl.signing
from nacl.exceptions import BadSignatureError, CryptoError

logger = logging.getLogger(__name__)

#: Algorithm tag of the only supported public key type.
SUPPORTED_KEY_TYPE = "ssh-ed25519"

#: Raw Ed25519 public key length in bytes.
ED25519_KEY_LENGTH = 32

# SSH wire format: 4 B len + 11 B "ssh-ed25519" + 4 B len + 32 B key
SSH_KEY_PREFIX = (
    struct.pack(">I", len(SUPPORTED_KEY_TYPE))
    + SUPPORTED_KEY_TYPE.encode("ascii")
    + struct.pack(">I", ED25519_KEY_LENGTH)
)
SSH_KEY_BLOB_LENGTH = len(SSH_KEY_PREFIX) + ED25519_KEY_LENGTH

_URLSAFE_ALPHABET = frozenset(string.ascii_letters + string.digits + "-_")


# ---------------------------------------------------------------------------
# Key material
# ---------------------------------------------------------------------------


def generate_keypair() -> tuple[str, bytes]:
    """Generate an Ed25519 signing key-pair.

    Returns
    -------
    tuple[str, bytes]
        ``(private_seed_hex, raw_public_key)``.  The seed is hex so it can be
        passed around on a command line; the public key is raw so it can go
        straight into a ``KeyStore``.
    """
    sk = nacl.signing.SigningKey.generate()
    return sk.encode().hex(), sk.verify_key.encode()


def public_key_for(private_key: str) -> bytes:
    """Return the raw public key for a hex-encoded Ed25519 seed."""
    return nacl.signing.SigningKey(bytes.fromhex(private_key)).verify_key.encode()


def encode_ssh_public_key(public_key: bytes) -> str:
    """Render a raw public key as an ``authorized_keys`` style line."""
    blob = SSH_KEY_PREFIX + public_key
    return f"{SUPPORTED_KEY_TYPE} {base64.b64encode(blob).decode('ascii')}"


def key_fingerprint(public_key: bytes) -> str:
    """Short fingerprint of a raw public key: first 16 hex chars of SHA-256.

    Used in logs and CLI output so full keys never need to be printed.
    """
    if not public_key:
        return ""
    return hashlib.sha256(public_key).hexdigest()[:16]


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


def encode_signature(signature: bytes) -> str:
    """Encode a raw signature as URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(signature).decode("ascii").rstrip("=")


def decode_signature(text: str) -> bytes:
    """Decode a URL-safe base64 signature; padding is optional.

    Raises
    ------
    ValueError
        If *text* is not valid URL-safe base64.
    """
    if not _URLSAFE_ALPHABET.issuperset(text.rstrip("=")):
        raise ValueError("signature is not url-safe base64: unexpected character")
    padded = text + "=" * (-len(text) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"signature is not url-safe base64: {exc}") from exc


def sign_data(data: bytes, private_key: str) -> bytes:
    """Sign *data* with a hex-encoded Ed25519 seed; returns the raw signature."""
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    return sk.sign(data).signature


def verify_data(data: bytes, signature: bytes, public_key: bytes) -> bool:
    """Return ``True`` iff *signature* is a valid Ed25519 signature of *data*.

    Fail-closed: a wrong-length key or signature returns ``False``.
    """
    if len(public_key) != ED25519_KEY_LENGTH or not signature:
        return False
    try:
        nacl.signing.VerifyKey(public_key).verify(data, signature)
        return True
    except (BadSignatureError, CryptoError, ValueError, TypeError):
        # BadSignatureError: cryptographic mismatch
        # ValueError/TypeError/CryptoError: malformed signature bytes
        return False
