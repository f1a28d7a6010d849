from enum import Enum


class SyncEvent(str, Enum):
    """Local event bus topics raised on a member's own device."""

    COMMAND_RECEIVED = "sync_command_received"
    COMMAND_SCHEDULED = "sync_command_scheduled"
    COMMAND_EXECUTED = "sync_command_executed"
    COMMAND_FAILED = "sync_command_failed"
    COMMAND_CANCELLED = "sync_command_cancelled"
    COMMAND_MISSED = "sync_command_missed"
    STALE_COMMAND_IGNORED = "stale_command_ignored"
    SCHEDULE_FIRED = "schedule_fired"
    BROKER_CONNECTIVITY_CHANGED = "broker_connectivity_changed"


class ExecutionOutcome(str, Enum):
    SCHEDULED = "scheduled"
    EXECUTED = "executed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    MISSED = "missed"
    SKIPPED = "skipped"
    IGNORED = "ignored"
