"""
neighborsync
============

Synchronized holiday-light shows across the homes of a neighborhood group.

One member starts a show; every member's own client receives the group
command through a shared store and triggers its local controller at its
own offset, so a wave travels down the street.
"""

from neighborsync.domain import (
    GroupRecord,
    NeighborhoodGroup,
    NeighborhoodMember,
    SyncCommand,
    SyncSchedule,
    SyncTimingConfig,
    TimingPlan,
    compute_timing,
)
from neighborsync.domain.exceptions import NeighborSyncError
from neighborsync.enums import ParticipationStatus, RooflineDirection, SyncType

__version__ = "1.0.0"

__all__ = [
    "GroupRecord",
    "NeighborSyncError",
    "NeighborhoodGroup",
    "NeighborhoodMember",
    "ParticipationStatus",
    "RooflineDirection",
    "SyncCommand",
    "SyncSchedule",
    "SyncTimingConfig",
    "SyncType",
    "TimingPlan",
    "__version__",
    "compute_timing",
]
