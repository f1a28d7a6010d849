"""
Broadcast Distributor
=====================

Pushes versioned ``GroupRecord`` documents through the shared store and hands
them to local subscribers.

Delivery is at-least-once: the store may replay a record (MQTT retained
messages after a reconnect, the immediate delivery on subscribe). A
``Subscription`` therefore only filters out records *older* than the newest
one it has delivered; equal versions are passed through and the execution
agent deduplicates them by command key.

There are no acknowledgements and no failure aggregation.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from neighborsync.domain.commands import GroupRecord, SyncCommand
from neighborsync.domain.exceptions import StaleCommandIgnoredError
from neighborsync.enums.events import SyncEvent
from neighborsync.schemas.events import StaleCommandPayload
from neighborsync.services.protocols import GroupRecordListener
from neighborsync.utils.time import iso_now

if TYPE_CHECKING:
    from neighborsync.services.protocols import DocumentStore
    from neighborsync.utils.event_bus import EventBus

logger = logging.getLogger(__name__)


class Subscription:
    """One listener on one group's record, filtering out stale versions."""

    def __init__(
        self,
        store: "DocumentStore",
        group_id: str,
        listener: GroupRecordListener,
        *,
        event_bus: "EventBus" | None = None,
    ):
        self.group_id = group_id
        self._store = store
        self._listener = listener
        self._event_bus = event_bus
        self._lock = threading.Lock()
        self._latest_version: int | None = None
        self._closed = False
        # The store delivers the current record from inside this call.
        self._unsubscribe = store.subscribe_group_record(group_id, self._on_record)

    @property
    def latest_version(self) -> int | None:
        return self._latest_version

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, record: GroupRecord) -> bool:
        """
        Pass ``record`` to the listener unless it is stale.

        Returns:
            False when the subscription is closed

        Raises:
            StaleCommandIgnoredError: ``record.version`` is older than the
                newest version already delivered
        """
        with self._lock:
            if self._closed:
                return False
            latest = self._latest_version
            if latest is not None and record.version < latest:
                raise StaleCommandIgnoredError(
                    f"Ignoring group {record.group_id} record v{record.version}; v{latest} already delivered",
                    detail={
                        "group_id": record.group_id,
                        "received_version": record.version,
                        "latest_version": latest,
                    },
                )
            self._latest_version = record.version
        self._listener(record)
        return True

    def _on_record(self, record: GroupRecord) -> None:
        try:
            self.deliver(record)
        except StaleCommandIgnoredError as exc:
            logger.info("%s", exc)
            if self._event_bus is not None:
                self._event_bus.publish(
                    SyncEvent.STALE_COMMAND_IGNORED,
                    StaleCommandPayload(
                        group_id=record.group_id,
                        received_version=exc.detail["received_version"],
                        latest_version=exc.detail["latest_version"],
                        timestamp=iso_now(),
                    ),
                )

    def refresh(self) -> GroupRecord | None:
        """Re-read the current record (after a reconnect) and deliver it."""
        record = self._store.read_group_record(self.group_id)
        if record is not None:
            self._on_record(record)
        return record

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._unsubscribe()
        logger.debug("Closed subscription on group %s", self.group_id)


class BroadcastDistributor:
    """Publishes group records and creates stale-filtering subscriptions."""

    def __init__(self, store: "DocumentStore", *, event_bus: "EventBus" | None = None):
        self.store = store
        self.event_bus = event_bus

    def publish(self, record: GroupRecord) -> GroupRecord:
        self.store.write_group_record(record)
        logger.info(
            "Published group %s record v%s (active=%s, pattern=%s)",
            record.group_id,
            record.version,
            record.is_active,
            record.active_pattern_name,
        )
        return record

    def publish_status(
        self,
        group_id: str,
        *,
        is_active: bool,
        version: int,
        command: SyncCommand | None = None,
        active_pattern_name: str | None = None,
    ) -> GroupRecord:
        """Build and publish a whole record; an inactive record never carries a command."""
        if not is_active:
            command = None
            active_pattern_name = None
        elif command is not None and active_pattern_name is None:
            active_pattern_name = command.pattern_name
        record = GroupRecord(
            group_id=group_id,
            is_active=is_active,
            version=version,
            active_pattern_name=active_pattern_name,
            command=command,
        )
        return self.publish(record)

    def current(self, group_id: str) -> GroupRecord | None:
        return self.store.read_group_record(group_id)

    def subscribe(self, group_id: str, listener: GroupRecordListener) -> Subscription:
        return Subscription(self.store, group_id, listener, event_bus=self.event_bus)
