"""
In-process DocumentStore.

Used by tests and single-process setups where every "client" shares one
Python process. Writes fan out synchronously to listeners; a failing
listener is logged and never prevents delivery to the others.

``set_online(False)`` keeps accepting writes but stops pushing them, which
models a client that missed updates while its network was down.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Any, Callable

from neighborsync.domain.commands import GroupRecord
from neighborsync.domain.neighborhood import NeighborhoodMember
from neighborsync.domain.schedules import SyncSchedule
from neighborsync.services.protocols import (
    GroupRecordListener,
    MembersListener,
    SchedulesListener,
    Unsubscribe,
)
from neighborsync.utils.concurrency import synchronized

logger = logging.getLogger(__name__)


class InMemoryDocumentStore:
    """Thread-safe dictionaries plus per-group listener lists."""

    def __init__(self):
        self._lock = threading.RLock()
        self._online = True
        self._records: dict[str, GroupRecord] = {}
        self._members: dict[str, dict[str, NeighborhoodMember]] = defaultdict(dict)
        self._schedules: dict[str, list[SyncSchedule]] = {}
        self._record_listeners: dict[str, list[GroupRecordListener]] = defaultdict(list)
        self._member_listeners: dict[str, list[MembersListener]] = defaultdict(list)
        self._schedule_listeners: dict[str, list[SchedulesListener]] = defaultdict(list)

    # ------------------------------------------------------------------ helpers

    def set_online(self, online: bool) -> None:
        self._online = bool(online)
        logger.info("In-memory store push delivery %s", "enabled" if online else "suspended")

    def _fan_out(self, listeners: list[Callable[[Any], None]], value: Any, what: str) -> None:
        if not self._online:
            return
        for listener in listeners:
            try:
                listener(value)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", what, exc, exc_info=True)

    @synchronized
    def _add_listener(self, registry: dict, key: str, listener) -> Unsubscribe:
        registry[key].append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    registry[key].remove(listener)
                except ValueError:
                    return

        return unsubscribe

    # ------------------------------------------------------------- group record

    def write_group_record(self, record: GroupRecord) -> None:
        with self._lock:
            current = self._records.get(record.group_id)
            if current is not None and record.version < current.version:
                logger.warning(
                    "Dropping write of group %s record v%s older than stored v%s",
                    record.group_id,
                    record.version,
                    current.version,
                )
                return
            self._records[record.group_id] = record
            listeners = list(self._record_listeners[record.group_id])
        self._fan_out(listeners, record, f"group record {record.group_id}")

    @synchronized
    def read_group_record(self, group_id: str) -> GroupRecord | None:
        return self._records.get(group_id)

    def subscribe_group_record(self, group_id: str, listener: GroupRecordListener) -> Unsubscribe:
        unsubscribe = self._add_listener(self._record_listeners, group_id, listener)
        current = self.read_group_record(group_id)
        if current is not None:
            self._fan_out([listener], current, f"group record {group_id}")
        return unsubscribe

    # ------------------------------------------------------------------ members

    def write_member_record(self, member: NeighborhoodMember) -> None:
        with self._lock:
            self._members[member.group_id][member.member_id] = member
            members = list(self._members[member.group_id].values())
            listeners = list(self._member_listeners[member.group_id])
        self._fan_out(listeners, members, f"members of {member.group_id}")

    def delete_member_record(self, group_id: str, member_id: str) -> None:
        with self._lock:
            if self._members[group_id].pop(member_id, None) is None:
                return
            members = list(self._members[group_id].values())
            listeners = list(self._member_listeners[group_id])
        self._fan_out(listeners, members, f"members of {group_id}")

    @synchronized
    def read_member_records(self, group_id: str) -> list[NeighborhoodMember]:
        return list(self._members[group_id].values())

    def subscribe_member_records(self, group_id: str, listener: MembersListener) -> Unsubscribe:
        unsubscribe = self._add_listener(self._member_listeners, group_id, listener)
        self._fan_out([listener], self.read_member_records(group_id), f"members of {group_id}")
        return unsubscribe

    # ---------------------------------------------------------------- schedules

    def write_schedule_list(self, group_id: str, schedules: list[SyncSchedule]) -> None:
        with self._lock:
            self._schedules[group_id] = list(schedules)
            listeners = list(self._schedule_listeners[group_id])
        self._fan_out(listeners, list(schedules), f"schedules of {group_id}")

    @synchronized
    def read_schedule_list(self, group_id: str) -> list[SyncSchedule]:
        return list(self._schedules.get(group_id, []))

    def subscribe_schedule_list(self, group_id: str, listener: SchedulesListener) -> Unsubscribe:
        unsubscribe = self._add_listener(self._schedule_listeners, group_id, listener)
        self._fan_out([listener], self.read_schedule_list(group_id), f"schedules of {group_id}")
        return unsubscribe
