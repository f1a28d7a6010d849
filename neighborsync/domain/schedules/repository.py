"""
Schedule Repository Protocol
=============================

Defines the interface for reading and replacing a group's schedule list.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Protocol

from neighborsync.domain.schedules.schedule_entity import SyncSchedule


class ScheduleRepository(Protocol):
    """Protocol for schedule persistence operations."""

    @abstractmethod
    def list_for_group(self, group_id: str) -> list[SyncSchedule]:
        """
        Get all schedules for a group.

        Args:
            group_id: Group identifier

        Returns:
            Schedules in creation order
        """
        ...

    @abstractmethod
    def replace_for_group(self, group_id: str, schedules: list[SyncSchedule]) -> None:
        """
        Replace the whole schedule list of a group.

        Args:
            group_id: Group identifier
            schedules: New list (may be empty)
        """
        ...
