"""apprunner data models: all Pydantic v2, all frozen (immutable)."""

from apprunner.models.manifest import Manifest, ManifestEntry, as_utc, host_platform
from apprunner.models.supervisor import RunSnapshot, RunState

__all__ = [
    # manifest
    "Manifest",
    "ManifestEntry",
    "as_utc",
    "host_platform",
    # supervisor
    "RunState",
    "RunSnapshot",
]
