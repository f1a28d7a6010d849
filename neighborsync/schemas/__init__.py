"""
Schemas Module
==============

Pydantic payloads published on the local event bus.
"""

from neighborsync.schemas.events import (
    BrokerConnectivityPayload,
    ScheduleFiredPayload,
    StaleCommandPayload,
    SyncCommandPayload,
    SyncExecutionPayload,
)

__all__ = [
    "BrokerConnectivityPayload",
    "ScheduleFiredPayload",
    "StaleCommandPayload",
    "SyncCommandPayload",
    "SyncExecutionPayload",
]
