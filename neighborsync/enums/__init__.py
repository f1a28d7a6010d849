"""
Enums Module
============

Enumeration types shared by the neighborhood sync engine.
"""

from neighborsync.enums.events import ExecutionOutcome, SyncEvent
from neighborsync.enums.sync import ParticipationStatus, RooflineDirection, SyncType

__all__ = [
    "ExecutionOutcome",
    "ParticipationStatus",
    "RooflineDirection",
    "SyncEvent",
    "SyncType",
]
