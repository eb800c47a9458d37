"""Error taxonomy for the reconciliation and supervision engine.

Every failure the runner reports derives from ``AppRunnerError`` so callers
at the loop boundary can log-and-continue with a single ``except`` clause
while still inspecting the precise subclass.
"""

from __future__ import annotations


class AppRunnerError(RuntimeError):
    """Base class for all apprunner failures."""


class NetworkError(AppRunnerError):
    """Transport failure, non-2xx status, timeout, or truncated body."""


class FormatError(AppRunnerError):
    """Undecodable JSON, malformed manifest entry, or malformed key blob."""


class ConfigError(AppRunnerError):
    """Configuration is missing or inconsistent for the requested command."""


# ---------------------------------------------------------------------------
# Trust pipeline
# ---------------------------------------------------------------------------


class TrustError(AppRunnerError):
    """Base class for a single failed trust check."""

    check: str = "trust"


class InvalidChecksumFormat(TrustError):
    """Checksum string is not a SHA-256 hex digest."""

    check = "checksum"


class UntrustedOrigin(TrustError):
    """Artifact source URL is outside the trusted host or path prefix."""

    check = "origin"


class InvalidVersion(TrustError):
    """Version string is not a valid semantic version."""

    check = "version"


class SignatureVerificationFailed(TrustError):
    """No signature verified against any trusted key."""

    check = "signature"


class TrustVerificationError(AppRunnerError):
    """Composite of every trust check that failed for one manifest entry.

    Parameters
    ----------
    app_name:
        The application the entry describes.
    errors:
        All individual ``TrustError`` instances, in check order.
    """

    def __init__(self, app_name: str, errors: list[TrustError]) -> None:
        self.app_name = app_name
        self.errors = list(errors)
        detail = "; ".join(f"{e.check}: {e}" for e in self.errors)
        super().__init__(f"untrusted entry for '{app_name}': {detail}")

    @property
    def failed_checks(self) -> list[str]:
        """Names of the checks that failed, e.g. ``["origin", "signature"]``."""
        return [e.check for e in self.errors]


# ---------------------------------------------------------------------------
# Download, install, process
# ---------------------------------------------------------------------------


class ChecksumMismatch(AppRunnerError):
    """Downloaded bytes do not hash to the manifest checksum."""


class InstallError(AppRunnerError):
    """Staging directory or artifact file operation failed."""


class ProcessError(AppRunnerError):
    """Child process could not be started, waited on, or killed."""


class RegistryClosed(AppRunnerError):
    """A supervisor was requested after the registry was shut down."""
