from typing import Any, Literal

from pydantic import BaseModel, Field

from neighborsync.enums.events import ExecutionOutcome

SyncTypeName = Literal["sequential_flow", "simultaneous", "pattern_match", "color_harmony"]


class SyncCommandPayload(BaseModel):
    """Raised when a member's agent receives or schedules a group command."""

    schema_version: int = Field(default=1)

    group_id: str
    member_id: str
    origin_timestamp: int
    sync_type: SyncTypeName
    pattern_name: str | None = None
    schedule_id: str | None = None
    delay_ms: float | None = Field(None, ge=0.0)
    fire_at_ms: int | None = None
    timestamp: str | None = None


class SyncExecutionPayload(BaseModel):
    """Outcome of one local controller trigger (never leaves the device)."""

    group_id: str
    member_id: str
    origin_timestamp: int
    outcome: ExecutionOutcome
    controller_host: str | None = None
    error: str | None = None
    late_by_ms: float | None = None
    timestamp: str | None = None


class StaleCommandPayload(BaseModel):
    group_id: str
    received_version: int
    latest_version: int
    timestamp: str | None = None


class ScheduleFiredPayload(BaseModel):
    """A schedule window was consumed on this client."""

    schedule_id: str
    group_id: str
    window_date: str
    sunset_based: bool = False
    triggered: bool = True
    reason: str | None = None
    timestamp: str | None = None
    metadata: dict[str, Any] | None = None


class BrokerConnectivityPayload(BaseModel):
    status: Literal["connected", "disconnected", "error"]
    endpoint: str
    reason: str | None = None
    timestamp: str | None = None
