"""
Schedule Repository
====================

Concrete implementation of the ScheduleRepository protocol on top of a
``DocumentStore``. A group's schedules are one document, so every change
replaces the whole list.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from neighborsync.domain.schedules import SyncSchedule

if TYPE_CHECKING:
    from neighborsync.services.protocols import DocumentStore


class DocumentScheduleRepository:
    """Schedule list access through the shared store."""

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store

    def list_for_group(self, group_id: str) -> list[SyncSchedule]:
        return self._store.read_schedule_list(group_id)

    def replace_for_group(self, group_id: str, schedules: list[SyncSchedule]) -> None:
        self._store.write_schedule_list(group_id, list(schedules))

    def get(self, group_id: str, schedule_id: str) -> SyncSchedule | None:
        for schedule in self.list_for_group(group_id):
            if schedule.schedule_id == schedule_id:
                return schedule
        return None
