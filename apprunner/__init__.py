"""apprunner: self-updating supervisor for operator-signed binary releases.

Polls a deployment manifest, verifies each announced release (checksum
format, origin, semantic version, Ed25519 signatures against the operator's
published keys), installs it into a private staging area and supervises it
as a child process with health checks and coalesced reloads.
"""

__version__ = "0.3.0"
__description__ = "Self-updating application supervisor for signed binary releases"

from apprunner.core.context import RunnerContext
from apprunner.core.reconciler import Reconciler
from apprunner.core.supervisor import RunSupervisor

__all__ = ["Reconciler", "RunSupervisor", "RunnerContext", "__version__"]
