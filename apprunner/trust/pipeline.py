"""Trust pipeline: the checks a manifest entry must pass before it is acted on.

Four independent checks, each usable on its own:

1. ``verify_checksum_format``: SHA-256 hex digest shape.
2. ``verify_source``: artifact URL is on the trusted host under
   ``/<identity>/``.
3. ``verify_version``: semantic version with a ``v`` prefix.
4. ``verify_signature``: at least one signature over the checksum string
   verifies against at least one trusted key.

``TrustPipeline`` runs all four and aggregates failures so an operator sees
every violation at once.
"""

from __future__ import annotations

import logging
import re
import string
from collections.abc import Iterable
from urllib.parse import unquote, urlsplit

from apprunner.bridge.crypto_bridge import decode_signature, verify_data
from apprunner.core.errors import (
    InvalidChecksumFormat,
    InvalidVersion,
    SignatureVerificationFailed,
    TrustError,
    TrustVerificationError,
    UntrustedOrigin,
)
from apprunner.core.hasher import SHA256_HEX_LENGTH
from apprunner.models.manifest import ManifestEntry
from apprunner.trust.keystore import KeyStore

logger = logging.getLogger(__name__)

_HEX_DIGITS = frozenset(string.hexdigits)

# vMAJOR[.MINOR[.PATCH[-PRERELEASE][+BUILD]]]; pre-release and build metadata
# are only allowed on the full three-part form.
_NUMBER = r"(?:0|[1-9][0-9]*)"
_PRERELEASE_ID = r"(?:0|[1-9][0-9]*|[0-9]*[A-Za-z-][0-9A-Za-z-]*)"
_BUILD_ID = r"[0-9A-Za-z-]+"
_SEMVER_RE = re.compile(
    rf"^v{_NUMBER}"
    rf"(?:\.{_NUMBER}"
    rf"(?:\.{_NUMBER}"
    rf"(?:-{_PRERELEASE_ID}(?:\.{_PRERELEASE_ID})*)?"
    rf"(?:\+{_BUILD_ID}(?:\.{_BUILD_ID})*)?"
    r")?)?$"
)


def verify_checksum_format(checksum: str) -> None:
    """Require exactly ``2 * sha256.digest_size`` hex characters."""
    if len(checksum) != SHA256_HEX_LENGTH:
        raise InvalidChecksumFormat(
            f"invalid checksum length {len(checksum)}, expected {SHA256_HEX_LENGTH}"
        )
    if not _HEX_DIGITS.issuperset(checksum):
        raise InvalidChecksumFormat("checksum contains non-hex characters")


def verify_source(source: str, identity: str, trusted_host: str = "github.com") -> None:
    """Require *source* to live on *trusted_host* under ``/<identity>/``."""
    try:
        parsed = urlsplit(source)
        hostname = parsed.hostname
    except ValueError as exc:
        raise UntrustedOrigin(f"unparseable source url: {exc}") from exc

    segments = unquote(parsed.path).split("/")
    if "." in segments or ".." in segments:
        raise UntrustedOrigin("source path must not contain dot segments")

    if parsed.scheme != "https":
        raise UntrustedOrigin(f"source scheme must be https, got {parsed.scheme!r}")
    prefix = f"/{identity}/"
    if not identity or not parsed.path.startswith(prefix):
        raise UntrustedOrigin(f"invalid source, path must start with '{prefix}'")
    if hostname != trusted_host.lower():
        raise UntrustedOrigin(
            f"hostname in source must be {trusted_host}, got {hostname!r}"
        )


def verify_version(version: str) -> None:
    """Require a ``v``-prefixed semantic version, e.g. ``v1.2.0``."""
    if not _SEMVER_RE.match(version):
        raise InvalidVersion(f"version must be semver, got {version!r}")


def verify_signature(
    checksum: str, signatures: Iterable[str], keys: Iterable[bytes]
) -> bytes:
    """Verify that some signature over *checksum* matches some trusted key.

    The signed message is the checksum string's ASCII bytes, exactly as it
    appears in the manifest.  Undecodable signatures are skipped.

    Returns
    -------
    bytes
        The trusted key that produced the first matching signature.

    Raises
    ------
    InvalidChecksumFormat
        If *checksum* is malformed (checked first).
    SignatureVerificationFailed
        If no (signature, key) pair verifies.
    """
    verify_checksum_format(checksum)
    message = checksum.encode("ascii")
    key_list = list(keys)

    tried = 0
    for text in signatures:
        try:
            signature = decode_signature(text)
        except ValueError as exc:
            logger.debug("Skipping undecodable signature: %s", exc)
            continue
        tried += 1
        for key in key_list:
            if verify_data(message, signature, key):
                return key

    raise SignatureVerificationFailed(
        f"signature verification failed ({tried} signature(s), "
        f"{len(key_list)} trusted key(s))"
    )


class TrustPipeline:
    """Runs every trust check over a manifest entry.

    Parameters
    ----------
    keystore:
        Source of trusted public keys for the signature check.
    identity:
        Operator identity; artifact paths must start with ``/<identity>/``.
    trusted_host:
        The only host artifacts may be fetched from.
    """

    def __init__(
        self,
        keystore: KeyStore,
        identity: str,
        trusted_host: str = "github.com",
    ) -> None:
        self._keystore = keystore
        self._identity = identity
        self._trusted_host = trusted_host

    @property
    def identity(self) -> str:
        return self._identity

    def check(self, entry: ManifestEntry) -> list[TrustError]:
        """Return every failed check for *entry*; empty means trusted."""
        violations: list[TrustError] = []
        checks = (
            lambda: verify_checksum_format(entry.checksum_hex),
            lambda: verify_source(entry.source, self._identity, self._trusted_host),
            lambda: verify_version(entry.version),
            lambda: self._check_signature(entry),
        )
        for run_check in checks:
            try:
                run_check()
            except TrustError as exc:
                violations.append(exc)
        return violations

    def _check_signature(self, entry: ManifestEntry) -> None:
        try:
            verify_signature(entry.checksum_hex, entry.signatures, self._keystore.keys)
        except InvalidChecksumFormat as exc:
            raise SignatureVerificationFailed(
                f"cannot verify signatures over malformed checksum: {exc}"
            ) from exc

    def verify(self, entry: ManifestEntry) -> None:
        """Raise ``TrustVerificationError`` listing every failed check."""
        violations = self.check(entry)
        if violations:
            raise TrustVerificationError(entry.app_name, violations)
        logger.debug(
            "Entry %s %s trusted (%d key(s) available)",
            entry.app_name,
            entry.version,
            len(self._keystore),
        )
