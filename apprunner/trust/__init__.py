"""Trust establishment: trusted key store and the manifest trust pipeline."""

from apprunner.trust.keystore import KeyStore, parse_authorized_key
from apprunner.trust.pipeline import (
    TrustPipeline,
    verify_checksum_format,
    verify_signature,
    verify_source,
    verify_version,
)

__all__ = [
    "KeyStore",
    "TrustPipeline",
    "parse_authorized_key",
    "verify_checksum_format",
    "verify_signature",
    "verify_source",
    "verify_version",
]
