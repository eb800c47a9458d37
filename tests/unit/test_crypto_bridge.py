"""Unit tests for the crypto bridge: real Ed25519 via PyNaCl.

These tests exercise the public API of crypto_bridge.py: key generation,
the SSH wire encoding of public keys, the signature wire format, and
fail-closed verification.
"""

from __future__ import annotations

import base64

import pytest

from apprunner.bridge.crypto_bridge import (
    ED25519_KEY_LENGTH,
    SSH_KEY_BLOB_LENGTH,
    SSH_KEY_PREFIX,
    decode_signature,
    encode_signature,
    encode_ssh_public_key,
    generate_keypair,
    key_fingerprint,
    public_key_for,
    sign_data,
    verify_data,
)


# ---------------------------------------------------------------------------
# Test: Key material
# ---------------------------------------------------------------------------


class TestGenerateKeypair:
    """Ed25519 key generation returns a hex seed and a raw public key."""

    def test_shapes(self):
        """Seed is 64 hex chars (32 bytes); public key is 32 raw bytes."""
        seed, pub = generate_keypair()
        assert len(seed) == 64
        bytes.fromhex(seed)
        assert isinstance(pub, bytes)
        assert len(pub) == ED25519_KEY_LENGTH

    def test_unique_pairs(self):
        """Each call must produce a different key pair."""
        seed1, pub1 = generate_keypair()
        seed2, pub2 = generate_keypair()
        assert seed1 != seed2
        assert pub1 != pub2

    def test_public_key_for_matches_generated(self):
        """The public key is derivable from the seed alone."""
        seed, pub = generate_keypair()
        assert public_key_for(seed) == pub


class TestSshEncoding:
    """Public keys render as 'ssh-ed25519 <base64 blob>' lines."""

    def test_blob_layout(self):
        """The blob is 4+11+4+32 bytes with length-prefixed fields."""
        _, pub = generate_keypair()
        line = encode_ssh_public_key(pub)
        kind, blob_b64 = line.split()
        blob = base64.b64decode(blob_b64)

        assert kind == "ssh-ed25519"
        assert len(blob) == SSH_KEY_BLOB_LENGTH == 51
        assert blob[:4] == b"\x00\x00\x00\x0b"
        assert blob[4:15] == b"ssh-ed25519"
        assert blob[15:19] == b"\x00\x00\x00\x20"
        assert blob[len(SSH_KEY_PREFIX):] == pub

    def test_fingerprint_is_short_and_stable(self):
        """Fingerprints are 16 hex chars and deterministic."""
        _, pub = generate_keypair()
        fp = key_fingerprint(pub)
        assert len(fp) == 16
        assert fp == key_fingerprint(pub)

    def test_fingerprint_of_empty_key(self):
        assert key_fingerprint(b"") == ""


# ---------------------------------------------------------------------------
# Test: Signature wire format
# ---------------------------------------------------------------------------


class TestSignatureEncoding:
    """Signatures travel as URL-safe base64 without padding."""

    def test_encoding_has_no_padding(self):
        """A 64-byte signature encodes to 86 chars with no '='."""
        seed, _ = generate_keypair()
        text = encode_signature(sign_data(b"payload", seed))
        assert len(text) == 86
        assert "=" not in text
        assert "+" not in text and "/" not in text

    def test_decode_accepts_padded_and_unpadded(self):
        seed, _ = generate_keypair()
        raw = sign_data(b"payload", seed)
        text = encode_signature(raw)
        assert decode_signature(text) == raw
        assert decode_signature(text + "==") == raw

    def test_decode_rejects_standard_alphabet(self):
        """'+' and '/' belong to the standard alphabet, not the URL-safe one."""
        with pytest.raises(ValueError):
            decode_signature("ab+/cd")

    def test_decode_rejects_garbage(self):
        with pytest.raises(ValueError):
            decode_signature("not base64 at all!")


# ---------------------------------------------------------------------------
# Test: Sign / verify
# ---------------------------------------------------------------------------


class TestSignVerify:
    """Ed25519 sign/verify round trip and fail-closed verification."""

    def test_valid_signature_verifies(self):
        seed, pub = generate_keypair()
        sig = sign_data(b"abc123", seed)
        assert len(sig) == 64
        assert verify_data(b"abc123", sig, pub) is True

    def test_tampered_data_fails(self):
        seed, pub = generate_keypair()
        sig = sign_data(b"abc123", seed)
        assert verify_data(b"abc124", sig, pub) is False

    def test_wrong_key_fails(self):
        seed, _ = generate_keypair()
        _, other_pub = generate_keypair()
        sig = sign_data(b"abc123", seed)
        assert verify_data(b"abc123", sig, other_pub) is False

    def test_flipped_signature_bit_fails(self):
        seed, pub = generate_keypair()
        sig = bytearray(sign_data(b"abc123", seed))
        sig[0] ^= 0x01
        assert verify_data(b"abc123", bytes(sig), pub) is False

    @pytest.mark.parametrize("key", [b"", b"\x00" * 31, b"\x00" * 33])
    def test_wrong_length_key_fails_closed(self, key):
        seed, _ = generate_keypair()
        sig = sign_data(b"abc123", seed)
        assert verify_data(b"abc123", sig, key) is False

    @pytest.mark.parametrize("sig", [b"", b"\x00" * 10, b"\x00" * 65])
    def test_malformed_signature_fails_closed(self, sig):
        _, pub = generate_keypair()
        assert verify_data(b"abc123", sig, pub) is False

    def test_deterministic_signatures(self):
        """Ed25519 signatures are deterministic for the same key and data."""
        seed, _ = generate_keypair()
        assert sign_data(b"same", seed) == sign_data(b"same", seed)
