"""Run supervisor state models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class RunState(str, Enum):
    """Lifecycle state of a supervised application process.

    ``idle`` -> ``starting`` -> ``running`` -> ``stopping`` -> ``idle``.
    A failed start drops straight back to ``idle``.
    """

    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class RunSnapshot(BaseModel):
    """Point-in-time, read-only view of one supervisor's state."""

    model_config = ConfigDict(frozen=True)

    app_name: str
    state: RunState
    version: str = ""
    location: str = ""
    env: list[str] = []
    run_initialized_at: datetime | None = None
    pid: int | None = None
    lifecycle_running: bool = False
    starts: int = 0
