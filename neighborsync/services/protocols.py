"""
Service Protocols
=================

Interfaces the sync services consume. Concrete implementations live in
``neighborsync.infrastructure`` (shared store), ``neighborsync.hardware``
(controller, notifier) and ``neighborsync.services.utilities`` (sunset).
"""

from __future__ import annotations

import datetime
from abc import abstractmethod
from typing import Any, Callable, Protocol

from neighborsync.domain.commands import GroupRecord
from neighborsync.domain.neighborhood import Coordinates, NeighborhoodMember
from neighborsync.domain.schedules import SyncSchedule

GroupRecordListener = Callable[[GroupRecord], None]
MembersListener = Callable[[list[NeighborhoodMember]], None]
SchedulesListener = Callable[[list[SyncSchedule]], None]
Unsubscribe = Callable[[], None]


class DocumentStore(Protocol):
    """Shared, push-capable document store visible to every member's client.

    Listeners may be invoked from a transport thread. Each ``subscribe_*``
    call immediately delivers the current value when one exists and returns
    a function removing the subscription.
    """

    @abstractmethod
    def write_group_record(self, record: GroupRecord) -> None: ...

    @abstractmethod
    def read_group_record(self, group_id: str) -> GroupRecord | None: ...

    @abstractmethod
    def subscribe_group_record(self, group_id: str, listener: GroupRecordListener) -> Unsubscribe: ...

    @abstractmethod
    def write_member_record(self, member: NeighborhoodMember) -> None: ...

    @abstractmethod
    def delete_member_record(self, group_id: str, member_id: str) -> None: ...

    @abstractmethod
    def read_member_records(self, group_id: str) -> list[NeighborhoodMember]: ...

    @abstractmethod
    def subscribe_member_records(self, group_id: str, listener: MembersListener) -> Unsubscribe: ...

    @abstractmethod
    def write_schedule_list(self, group_id: str, schedules: list[SyncSchedule]) -> None: ...

    @abstractmethod
    def read_schedule_list(self, group_id: str) -> list[SyncSchedule]: ...

    @abstractmethod
    def subscribe_schedule_list(self, group_id: str, listener: SchedulesListener) -> Unsubscribe: ...


class ControllerClient(Protocol):
    """The member's own lighting controller on its local network."""

    host: str

    @abstractmethod
    def apply_state(self, payload: dict[str, Any]) -> dict[str, Any] | None:
        """Send one state payload; raise ``ControllerUnreachableError`` on failure."""
        ...


class SunsetProvider(Protocol):
    @abstractmethod
    def sunset_time(self, target_date: datetime.date, coordinates: Coordinates) -> datetime.time | None:
        """Local sunset time for ``target_date`` at ``coordinates`` (None if unknown)."""
        ...


class Notifier(Protocol):
    @abstractmethod
    def notify(self, group_id: str, message: str) -> None:
        """Fire-and-forget group notification."""
        ...
