"""
Local Execution Agent
=====================

Runs on every member's own device. It receives group records from the
distributor, works out *locally* when this member has to fire, and drives the
member's own lighting controller at that moment.

Rules:
- A command is identified by ``(group_id, origin_timestamp)``. A key that was
  already scheduled or executed is ignored, so replays are harmless.
- A newer command for the group cancels every pending trigger of older ones.
- An inactive record (stop) cancels every pending trigger of the group.
- Timing is recomputed from this device's member snapshot plus the command.
  Pending triggers are not recomputed when membership changes later.
- A trigger later than ``late_grace_ms`` is reported as missed, never fired.
- Controller failures stay on this device: logged and published on the local
  event bus, never retried and never raised.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable

from neighborsync.config import load_config
from neighborsync.domain.colors import Color
from neighborsync.domain.commands import GroupRecord, SyncCommand
from neighborsync.domain.exceptions import ControllerUnreachableError
from neighborsync.domain.neighborhood import NeighborhoodMember
from neighborsync.domain.participation import is_eligible_for_command
from neighborsync.domain.timing import compute_timing
from neighborsync.enums.events import ExecutionOutcome, SyncEvent
from neighborsync.hardware.controllers.wled_client import build_state_payload
from neighborsync.schemas.events import SyncCommandPayload, SyncExecutionPayload
from neighborsync.utils.event_bus import EventBus
from neighborsync.utils.time import iso_now, now_ms

if TYPE_CHECKING:
    from neighborsync.services.broadcast_distributor import BroadcastDistributor, Subscription
    from neighborsync.services.protocols import ControllerClient
    from neighborsync.workers.unified_scheduler import UnifiedScheduler

logger = logging.getLogger(__name__)

CommandKey = tuple[str, int]
MembersSource = Callable[[str], Iterable[NeighborhoodMember]]

TRIGGER_TASK_NAME = "sync.trigger"
TRIGGER_NAMESPACE = "sync"
# Remembered command keys per agent; older keys are far behind any live record.
MAX_SEEN_KEYS = 256


class LocalExecutionAgent:
    """Schedules and performs this member's controller calls."""

    def __init__(
        self,
        member_id: str,
        controller: "ControllerClient",
        *,
        scheduler: "UnifiedScheduler",
        members_source: MembersSource,
        event_bus: EventBus | None = None,
        clock: Callable[[], int] | None = None,
        late_grace_ms: int | None = None,
        leds_per_meter: float | None = None,
    ):
        if late_grace_ms is None or leds_per_meter is None:
            config = load_config()
            late_grace_ms = config.late_grace_ms if late_grace_ms is None else late_grace_ms
            leds_per_meter = config.leds_per_meter if leds_per_meter is None else leds_per_meter

        self.member_id = member_id
        self.controller = controller
        self.scheduler = scheduler
        self.members_source = members_source
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.late_grace_ms = int(late_grace_ms)
        self.leds_per_meter = float(leds_per_meter)
        self._clock = clock or now_ms

        self._lock = threading.RLock()
        self._pending: dict[CommandKey, str] = {}
        self._seen: OrderedDict[CommandKey, ExecutionOutcome] = OrderedDict()
        self._group_versions: dict[str, int] = {}
        self._subscriptions: list["Subscription"] = []

    # ── Wiring ────────────────────────────────────────────────────

    def attach(self, distributor: "BroadcastDistributor", group_id: str) -> "Subscription":
        subscription = distributor.subscribe(group_id, self.handle_record)
        with self._lock:
            self._subscriptions.append(subscription)
        logger.info("Agent for %s attached to group %s", self.member_id, group_id)
        return subscription

    def detach(self) -> None:
        """Close every subscription and cancel all pending triggers."""
        with self._lock:
            subscriptions, self._subscriptions = self._subscriptions, []
            groups = {key[0] for key in self._pending}
        for subscription in subscriptions:
            subscription.close()
        for group_id in groups:
            self.cancel_group(group_id)

    def refresh(self) -> None:
        """Re-fetch every followed group's record (after a reconnect)."""
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.refresh()

    # ── Introspection ─────────────────────────────────────────────

    def pending_keys(self) -> list[CommandKey]:
        with self._lock:
            return list(self._pending)

    def outcome_for(self, key: CommandKey) -> ExecutionOutcome | None:
        with self._lock:
            return self._seen.get(key)

    # ── Record handling ───────────────────────────────────────────

    def handle_record(self, record: GroupRecord) -> ExecutionOutcome:
        """Apply one group record delivered by the distributor."""
        group_id = record.group_id
        with self._lock:
            latest = self._group_versions.get(group_id)
            if latest is not None and record.version < latest:
                logger.debug(
                    "Agent %s ignoring group %s record v%s < v%s", self.member_id, group_id, record.version, latest
                )
                return ExecutionOutcome.IGNORED
            self._group_versions[group_id] = record.version

            if not record.is_active or record.command is None:
                cancelled = self.cancel_group(group_id)
                logger.info("Group %s stopped; cancelled %d pending trigger(s)", group_id, cancelled)
                return ExecutionOutcome.CANCELLED

            command = record.command
            if command.key in self._seen:
                logger.debug("Duplicate delivery of command %s ignored", command.key)
                return ExecutionOutcome.IGNORED
            self._remember(command.key, ExecutionOutcome.SCHEDULED)
            self.cancel_group(group_id, keep=command.key)

        self._publish_command(SyncEvent.COMMAND_RECEIVED, command)
        try:
            return self._schedule(command)
        except Exception:
            # Forget the key so a redelivery can plan it again
            with self._lock:
                if self._seen.get(command.key) == ExecutionOutcome.SCHEDULED and command.key not in self._pending:
                    del self._seen[command.key]
            logger.error("Could not plan command %s for %s", command.key, self.member_id, exc_info=True)
            raise

    def _schedule(self, command: SyncCommand) -> ExecutionOutcome:
        members = list(self.members_source(command.group_id))
        eligible = [m for m in members if is_eligible_for_command(m, command)]
        plan = compute_timing(
            eligible,
            command.timing_config,
            command.sync_type,
            command.colors,
            member_color_overrides=command.member_color_overrides,
            leds_per_meter=self.leds_per_meter,
        )
        if self.member_id not in plan:
            logger.info(
                "Member %s not part of command %s (paused, opted out or unknown); skipping",
                self.member_id,
                command.key,
            )
            self._finish(command, ExecutionOutcome.SKIPPED)
            return ExecutionOutcome.SKIPPED

        delay_ms = plan.delay_for(self.member_id) or 0.0
        fire_at_ms = int(round(command.start_timestamp + delay_ms))
        now = int(self._clock())
        late_by = now - fire_at_ms
        if late_by > self.late_grace_ms:
            logger.warning(
                "Command %s for %s is %d ms late (grace %d ms); not firing",
                command.key,
                self.member_id,
                late_by,
                self.late_grace_ms,
            )
            self._finish(command, ExecutionOutcome.MISSED, late_by_ms=late_by)
            return ExecutionOutcome.MISSED

        job_id = self._job_id(command)
        colors = plan.colors_for(self.member_id)
        run_at = datetime.fromtimestamp(max(fire_at_ms, now) / 1000.0)
        with self._lock:
            if self._seen.get(command.key) != ExecutionOutcome.SCHEDULED:
                # Superseded or stopped while the plan was being computed
                return self._seen.get(command.key, ExecutionOutcome.CANCELLED)
            self._pending[command.key] = job_id
        self.scheduler.schedule_once(
            TRIGGER_TASK_NAME,
            run_at,
            job_id=job_id,
            namespace=TRIGGER_NAMESPACE,
            func=self._fire,
            args=(command, colors, job_id, fire_at_ms),
        )
        logger.info(
            "Scheduled %s for %s at +%.0f ms (fire_at=%s)",
            command.key,
            self.member_id,
            delay_ms,
            fire_at_ms,
        )
        self._publish_command(SyncEvent.COMMAND_SCHEDULED, command, delay_ms=delay_ms, fire_at_ms=fire_at_ms)
        return ExecutionOutcome.SCHEDULED

    def _job_id(self, command: SyncCommand) -> str:
        return f"{TRIGGER_NAMESPACE}:{command.group_id}:{command.origin_timestamp}:{self.member_id}"

    def _remember(self, key: CommandKey, outcome: ExecutionOutcome) -> None:
        self._seen[key] = outcome
        self._seen.move_to_end(key)
        while len(self._seen) > MAX_SEEN_KEYS:
            self._seen.popitem(last=False)

    # ── Cancellation ──────────────────────────────────────────────

    def cancel_group(self, group_id: str, *, keep: CommandKey | None = None) -> int:
        """Cancel pending (and still-planning) triggers of ``group_id`` except ``keep``."""
        with self._lock:
            in_flight = {
                key
                for key, outcome in self._seen.items()
                if key[0] == group_id and outcome == ExecutionOutcome.SCHEDULED
            }
            keys = (in_flight | {key for key in self._pending if key[0] == group_id}) - {keep}
            jobs = [(key, self._pending.pop(key, None)) for key in sorted(keys)]
            for key in keys:
                self._remember(key, ExecutionOutcome.CANCELLED)
        for key, job_id in jobs:
            if job_id is not None:
                self.scheduler.remove_job(job_id)
            logger.info("Cancelled pending trigger %s for %s", key, self.member_id)
            self._publish_execution(key, ExecutionOutcome.CANCELLED)
        return len(jobs)

    # ── Firing ────────────────────────────────────────────────────

    def _fire(
        self,
        command: SyncCommand,
        colors: tuple[Color, ...],
        job_id: str,
        fire_at_ms: int,
    ) -> ExecutionOutcome:
        with self._lock:
            if self._pending.get(command.key) != job_id:
                logger.debug("Trigger %s no longer pending; not firing", command.key)
                return ExecutionOutcome.CANCELLED
            del self._pending[command.key]

        late_by = max(0, int(self._clock()) - fire_at_ms)
        payload = build_state_payload(command, colors)
        try:
            self.controller.apply_state(payload)
        except ControllerUnreachableError as exc:
            logger.error("Controller %s unreachable for command %s: %s", self.controller.host, command.key, exc)
            self._finish(command, ExecutionOutcome.FAILED, error=str(exc))
            return ExecutionOutcome.FAILED

        logger.info("Fired %s on controller %s", command.key, self.controller.host)
        self._finish(command, ExecutionOutcome.EXECUTED, late_by_ms=late_by)
        return ExecutionOutcome.EXECUTED

    # ── Events ────────────────────────────────────────────────────

    def _finish(
        self,
        command: SyncCommand,
        outcome: ExecutionOutcome,
        *,
        error: str | None = None,
        late_by_ms: float | None = None,
    ) -> None:
        with self._lock:
            self._remember(command.key, outcome)
        self._publish_execution(command.key, outcome, error=error, late_by_ms=late_by_ms)

    def _publish_execution(
        self,
        key: CommandKey,
        outcome: ExecutionOutcome,
        *,
        error: str | None = None,
        late_by_ms: float | None = None,
    ) -> None:
        event = {
            ExecutionOutcome.EXECUTED: SyncEvent.COMMAND_EXECUTED,
            ExecutionOutcome.FAILED: SyncEvent.COMMAND_FAILED,
            ExecutionOutcome.CANCELLED: SyncEvent.COMMAND_CANCELLED,
            ExecutionOutcome.MISSED: SyncEvent.COMMAND_MISSED,
        }.get(outcome)
        if event is None:
            return
        self.event_bus.publish(
            event,
            SyncExecutionPayload(
                group_id=key[0],
                member_id=self.member_id,
                origin_timestamp=key[1],
                outcome=outcome,
                controller_host=getattr(self.controller, "host", None),
                error=error,
                late_by_ms=late_by_ms,
                timestamp=iso_now(),
            ),
        )

    def _publish_command(
        self,
        event: SyncEvent,
        command: SyncCommand,
        *,
        delay_ms: float | None = None,
        fire_at_ms: int | None = None,
    ) -> None:
        self.event_bus.publish(
            event,
            SyncCommandPayload(
                group_id=command.group_id,
                member_id=self.member_id,
                origin_timestamp=command.origin_timestamp,
                sync_type=command.sync_type.value,
                pattern_name=command.pattern_name,
                schedule_id=command.schedule_id,
                delay_ms=delay_ms,
                fire_at_ms=fire_at_ms,
                timestamp=iso_now(),
            ),
        )
