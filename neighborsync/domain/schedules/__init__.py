"""
Schedule Domain Module
======================

Recurring group sync schedules.

This module provides:
- SyncSchedule: Schedule entity (date range, weekdays, daily / sunset window)
- ScheduleWindow: One concrete daily occurrence
- ScheduleRepository: Protocol for schedule persistence
"""
from neighborsync.domain.schedules.schedule_entity import (
    ALL_DAYS,
    ScheduleWindow,
    SyncSchedule,
    parse_time,
)
from neighborsync.domain.schedules.repository import ScheduleRepository

__all__ = [
    "ALL_DAYS",
    "ScheduleRepository",
    "ScheduleWindow",
    "SyncSchedule",
    "parse_time",
]
