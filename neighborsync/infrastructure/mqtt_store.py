"""
MQTT-backed DocumentStore.

Every shared document is a retained QoS-1 JSON message:

    {prefix}/groups/{group_id}/record                  GroupRecord
    {prefix}/groups/{group_id}/members/{member_id}     NeighborhoodMember
    {prefix}/groups/{group_id}/schedules               list[SyncSchedule]

Deleting a document publishes an empty retained payload. The broker
replays retained messages on every (re)subscribe, so a client coming back
online receives the latest state without polling.

Reads are served from a local cache filled by those messages; a group is
tracked (subscribed) the first time any of its documents is read, written or
subscribed to.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import defaultdict
from typing import Any, Callable

from neighborsync.domain.commands import GroupRecord
from neighborsync.domain.exceptions import ValidationError
from neighborsync.domain.neighborhood import NeighborhoodMember
from neighborsync.domain.schedules import SyncSchedule
from neighborsync.services.protocols import (
    GroupRecordListener,
    MembersListener,
    SchedulesListener,
    Unsubscribe,
)

logger = logging.getLogger(__name__)

_FORBIDDEN_ID_CHARS = ("/", "+", "#")


def _check_id(kind: str, value: str) -> str:
    if not value or any(ch in value for ch in _FORBIDDEN_ID_CHARS):
        raise ValidationError(f"Invalid {kind} for MQTT topic: {value!r}")
    return value


class MQTTDocumentStore:
    """DocumentStore over an ``MQTTClientWrapper``."""

    def __init__(self, mqtt_client, topic_prefix: str = "neighborsync", qos: int = 1):
        self.mqtt_client = mqtt_client
        self.topic_prefix = topic_prefix.rstrip("/")
        self.qos = qos

        self._lock = threading.RLock()
        self._tracked: set[str] = set()
        self._records: dict[str, GroupRecord] = {}
        self._members: dict[str, dict[str, NeighborhoodMember]] = defaultdict(dict)
        self._schedules: dict[str, list[SyncSchedule]] = {}
        self._record_listeners: dict[str, list[GroupRecordListener]] = defaultdict(list)
        self._member_listeners: dict[str, list[MembersListener]] = defaultdict(list)
        self._schedule_listeners: dict[str, list[SchedulesListener]] = defaultdict(list)

    # ------------------------------------------------------------------ topics

    def group_topic(self, group_id: str, *parts: str) -> str:
        return "/".join([self.topic_prefix, "groups", _check_id("group_id", group_id), *parts])

    def record_topic(self, group_id: str) -> str:
        return self.group_topic(group_id, "record")

    def member_topic(self, group_id: str, member_id: str) -> str:
        return self.group_topic(group_id, "members", _check_id("member_id", member_id))

    def schedules_topic(self, group_id: str) -> str:
        return self.group_topic(group_id, "schedules")

    def _split_topic(self, topic: str) -> list[str]:
        """``prefix/groups/{gid}/...`` -> ``[gid, ...]``."""
        head = f"{self.topic_prefix}/groups/"
        if not topic.startswith(head):
            return []
        return topic[len(head):].split("/")

    def track_group(self, group_id: str) -> None:
        """Subscribe to every document of ``group_id`` (idempotent)."""
        record_topic = self.record_topic(group_id)
        with self._lock:
            if group_id in self._tracked:
                return
            self._tracked.add(group_id)
        self.mqtt_client.subscribe(record_topic, self._on_record_message, self.qos)
        self.mqtt_client.subscribe(self.group_topic(group_id, "members", "+"), self._on_member_message, self.qos)
        self.mqtt_client.subscribe(self.schedules_topic(group_id), self._on_schedules_message, self.qos)
        logger.info("Tracking group %s on MQTT", group_id)

    def _publish(self, topic: str, data: Any) -> None:
        payload = "" if data is None else json.dumps(data, sort_keys=True)
        if not self.mqtt_client.publish(topic, payload, qos=self.qos, retain=True):
            logger.warning("Publish to %s was not accepted; it will not reach other members", topic)

    @staticmethod
    def _notify(listeners: list[Callable[[Any], None]], value: Any, what: str) -> None:
        for listener in listeners:
            try:
                listener(value)
            except Exception as exc:
                logger.error("Listener for %s failed: %s", what, exc, exc_info=True)

    def _add_listener(self, registry: dict, key: str, listener) -> Unsubscribe:
        with self._lock:
            registry[key].append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    registry[key].remove(listener)
                except ValueError:
                    return

        return unsubscribe

    @staticmethod
    def _decode(msg) -> Any:
        if not msg.payload:
            return None
        return json.loads(msg.payload.decode("utf-8") if isinstance(msg.payload, bytes) else msg.payload)

    # ---------------------------------------------------------- inbound messages

    def _on_record_message(self, _client, _userdata, msg) -> None:
        parts = self._split_topic(msg.topic)
        if len(parts) != 2:
            return
        group_id = parts[0]
        try:
            data = self._decode(msg)
            if data is None:
                return
            record = GroupRecord.from_dict(data)
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring malformed group record on %s: %s", msg.topic, exc)
            return

        with self._lock:
            if record.is_newer_than(self._records.get(group_id)):
                self._records[group_id] = record
            listeners = list(self._record_listeners[group_id])
        self._notify(listeners, record, f"group record {group_id}")

    def _on_member_message(self, _client, _userdata, msg) -> None:
        parts = self._split_topic(msg.topic)
        if len(parts) != 3:
            return
        group_id, _, member_id = parts
        try:
            data = self._decode(msg)
            member = NeighborhoodMember.from_dict(data) if data is not None else None
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring malformed member record on %s: %s", msg.topic, exc)
            return

        with self._lock:
            if member is None:
                self._members[group_id].pop(member_id, None)
            else:
                self._members[group_id][member_id] = member
            members = list(self._members[group_id].values())
            listeners = list(self._member_listeners[group_id])
        self._notify(listeners, members, f"members of {group_id}")

    def _on_schedules_message(self, _client, _userdata, msg) -> None:
        parts = self._split_topic(msg.topic)
        if len(parts) != 2:
            return
        group_id = parts[0]
        try:
            data = self._decode(msg) or []
            schedules = [SyncSchedule.from_dict(item) for item in data]
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Ignoring malformed schedule list on %s: %s", msg.topic, exc)
            return

        with self._lock:
            self._schedules[group_id] = schedules
            listeners = list(self._schedule_listeners[group_id])
        self._notify(listeners, list(schedules), f"schedules of {group_id}")

    # ------------------------------------------------------------- group record

    def write_group_record(self, record: GroupRecord) -> None:
        self.track_group(record.group_id)
        with self._lock:
            if record.is_newer_than(self._records.get(record.group_id)):
                self._records[record.group_id] = record
        self._publish(self.record_topic(record.group_id), record.to_dict())

    def read_group_record(self, group_id: str) -> GroupRecord | None:
        self.track_group(group_id)
        with self._lock:
            return self._records.get(group_id)

    def subscribe_group_record(self, group_id: str, listener: GroupRecordListener) -> Unsubscribe:
        self.track_group(group_id)
        unsubscribe = self._add_listener(self._record_listeners, group_id, listener)
        current = self.read_group_record(group_id)
        if current is not None:
            self._notify([listener], current, f"group record {group_id}")
        return unsubscribe

    # ------------------------------------------------------------------ members

    def write_member_record(self, member: NeighborhoodMember) -> None:
        self.track_group(member.group_id)
        self._publish(self.member_topic(member.group_id, member.member_id), member.to_dict())

    def delete_member_record(self, group_id: str, member_id: str) -> None:
        self.track_group(group_id)
        self._publish(self.member_topic(group_id, member_id), None)

    def read_member_records(self, group_id: str) -> list[NeighborhoodMember]:
        self.track_group(group_id)
        with self._lock:
            return list(self._members[group_id].values())

    def subscribe_member_records(self, group_id: str, listener: MembersListener) -> Unsubscribe:
        self.track_group(group_id)
        unsubscribe = self._add_listener(self._member_listeners, group_id, listener)
        self._notify([listener], self.read_member_records(group_id), f"members of {group_id}")
        return unsubscribe

    # ---------------------------------------------------------------- schedules

    def write_schedule_list(self, group_id: str, schedules: list[SyncSchedule]) -> None:
        self.track_group(group_id)
        self._publish(self.schedules_topic(group_id), [s.to_dict() for s in schedules])

    def read_schedule_list(self, group_id: str) -> list[SyncSchedule]:
        self.track_group(group_id)
        with self._lock:
            return list(self._schedules.get(group_id, []))

    def subscribe_schedule_list(self, group_id: str, listener: SchedulesListener) -> Unsubscribe:
        self.track_group(group_id)
        unsubscribe = self._add_listener(self._schedule_listeners, group_id, listener)
        self._notify([listener], self.read_schedule_list(group_id), f"schedules of {group_id}")
        return unsubscribe
