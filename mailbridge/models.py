"""Runtime status models for the bridge service."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class BridgeStatus(str, Enum):
    """Runtime status of a bridge instance."""

    STARTING = "starting"
    RUNNING = "running"
    DEGRADED = "degraded"
    STOPPING = "stopping"
    STOPPED = "stopped"


class CycleSummary(BaseModel):
    """The most recent intake cycle, as reported on /health."""

    started_at: datetime
    finished_at: datetime | None = None
    found: int = Field(default=0, description="Unseen messages in the lookback window")
    outcomes: dict[str, int] = Field(
        default_factory=dict,
        description="Message count per outcome (delivered, rejected, ...)",
    )
    aborted: str | None = Field(default=None, description="Why the cycle stopped early")


class HealthStatus(BaseModel):
    """Response model for the /health endpoint."""

    name: str = Field(description="Name of the bridge instance")
    status: BridgeStatus = Field(description="Current bridge status")
    uptime_seconds: float = Field(description="Seconds since the bridge started")
    chat_id: str = Field(description="Telegram chat receiving documents")
    watcher_state: str = Field(description="Mailbox watcher connection state")
    reconnect_attempts: int = Field(description="Consecutive reconnects since the last success")
    active_cycles: int = Field(description="Intake cycles currently running")
    topics_supported: bool | None = Field(
        default=None,
        description="Whether the chat has forum topics; None until checked",
    )
    last_cycle: CycleSummary | None = None


class CheckAccepted(BaseModel):
    """Response model for POST /check."""

    accepted: bool
    active_cycles: int
