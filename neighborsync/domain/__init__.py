"""
Domain Package
==============
Entities, value objects and pure rules of the neighborhood sync engine.

Nothing in here performs I/O or reads the clock, except default factories
for timestamps.
"""

from .colors import BLACK, Color, parse_color, parse_colors, to_hex
from .commands import GroupRecord, SyncCommand
from .neighborhood import Coordinates, NeighborhoodGroup, NeighborhoodMember, SyncTimingConfig
from .participation import eligible_members, is_eligible, is_eligible_for_command
from .schedules import ScheduleWindow, SyncSchedule
from .timing import TimingPlan, compute_timing

__all__ = [
    # Colours
    "BLACK",
    "Color",
    "parse_color",
    "parse_colors",
    "to_hex",
    # Commands
    "GroupRecord",
    "SyncCommand",
    # Neighborhood
    "Coordinates",
    "NeighborhoodGroup",
    "NeighborhoodMember",
    "SyncTimingConfig",
    # Participation
    "eligible_members",
    "is_eligible",
    "is_eligible_for_command",
    # Schedules
    "ScheduleWindow",
    "SyncSchedule",
    # Timing
    "TimingPlan",
    "compute_timing",
]
