"""Deployment manifest models.

The manifest is a JSON document mapping application name to a deploy entry::

    {
      "apps": {
        "svc": {
          "version": "v1.2.0",
          "source": "https://github.com/op/svc/releases/download/v1.2.0/svc",
          "checksum_hex": "<64 hex chars>",
          "signatures": ["<url-safe base64>"],
          "env": ["PORT=8080"]
        }
      }
    }

Field names written by older signing tools (``Apps``, ``SHA256Sum``,
``Goos`` ...) are accepted as aliases.
"""

from __future__ import annotations

import logging
import platform
import sys
from datetime import datetime, timezone
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from apprunner.core.errors import FormatError

logger = logging.getLogger(__name__)

_MACHINE_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
}


def host_platform() -> tuple[str, str]:
    """Return ``(os, arch)`` for this node in manifest vocabulary.

    Examples: ``("linux", "amd64")``, ``("darwin", "arm64")``,
    ``("windows", "386")``.
    """
    os_name = "windows" if sys.platform.startswith("win") else sys.platform
    if os_name.startswith("linux"):
        os_name = "linux"
    machine = platform.machine().lower()
    return os_name, _MACHINE_ALIASES.get(machine, machine)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat a naive timestamp as UTC so it orders against aware ones."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ManifestEntry(BaseModel):
    """One application's desired deployment, as announced by the manifest.

    An entry is inert data until it passes the trust pipeline; nothing in
    this model asserts that it is safe to act on.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    app_name: str = Field(
        default="", validation_alias=AliasChoices("app_name", "appName", "AppName")
    )
    version: str = Field(validation_alias=AliasChoices("version", "Version"))
    source: str = Field(validation_alias=AliasChoices("source", "Source"))
    checksum_hex: str = Field(
        validation_alias=AliasChoices(
            "checksum_hex", "checksumHex", "SHA256Sum", "sha256sum"
        )
    )
    signatures: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("signatures", "Signatures"),
    )
    env: list[str] = Field(
        default_factory=list, validation_alias=AliasChoices("env", "Env")
    )
    os: str = Field(default="", validation_alias=AliasChoices("os", "Goos", "goos"))
    arch: str = Field(
        default="", validation_alias=AliasChoices("arch", "Goarch", "goarch")
    )
    observed_at: datetime | None = None

    @field_validator("observed_at")
    @classmethod
    def observed_at_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    def matches_platform(self, os_name: str, arch: str) -> bool:
        """Whether this entry targets the given platform (blank matches all)."""
        return self.os in ("", os_name) and self.arch in ("", arch)

    def __str__(self) -> str:
        return f"{self.app_name} {self.version} from {self.source}"


class Manifest(BaseModel):
    """A decoded manifest: valid entries plus the names of rejected ones.

    Entries are decoded one by one so a single malformed entry does not
    take its siblings down with it; the decode error is kept in
    ``rejected`` for reporting.
    """

    model_config = ConfigDict(frozen=True)

    apps: dict[str, ManifestEntry] = Field(default_factory=dict)
    rejected: dict[str, str] = Field(default_factory=dict)
    observed_at: datetime | None = None

    @field_validator("observed_at")
    @classmethod
    def observed_at_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value)

    @classmethod
    def from_payload(
        cls, payload: Any, observed_at: datetime | None = None
    ) -> Manifest:
        """Decode a JSON payload into a ``Manifest``.

        The mapping key is authoritative for ``app_name``; every entry is
        stamped with *observed_at*.

        Raises
        ------
        FormatError
            If the payload is not an object with an ``apps`` mapping.
        """
        if not isinstance(payload, dict):
            raise FormatError("manifest must be a JSON object")
        raw_apps = payload.get("apps", payload.get("Apps"))
        if not isinstance(raw_apps, dict):
            raise FormatError("manifest has no 'apps' mapping")
        observed_at = as_utc(observed_at)

        apps: dict[str, ManifestEntry] = {}
        rejected: dict[str, str] = {}
        for name, raw in raw_apps.items():
            if not isinstance(raw, dict):
                rejected[name] = "entry is not a JSON object"
                continue
            try:
                entry = ManifestEntry.model_validate(raw)
            except ValidationError as exc:
                rejected[name] = f"{exc.error_count()} invalid field(s): " + ", ".join(
                    ".".join(str(p) for p in err["loc"]) for err in exc.errors()
                )
                continue
            apps[name] = entry.model_copy(
                update={"app_name": name, "observed_at": observed_at}
            )

        for name, reason in rejected.items():
            logger.warning("Manifest entry '%s' rejected: %s", name, reason)

        return cls(apps=apps, rejected=rejected, observed_at=observed_at)
