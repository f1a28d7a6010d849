"""
Schedule Evaluator
==================

Periodically checks the group's schedules on this client and triggers a
group start when a daily window opens.

A schedule is due when:
- it is enabled,
- the window's start date is inside ``[start_date, end_date]`` and its ISO
  weekday is listed in ``days_of_week``,
- local time is inside ``[window_start, daily_end_time]``.

``window_start`` is ``daily_start_time`` or, with ``use_sunset``, the sunset
at the schedule's location shifted by ``sunset_offset_minutes``. A
``daily_end_time`` earlier than ``daily_start_time`` spans midnight and the
window belongs to the day it started, so just after midnight yesterday's window
is checked too. A sunset start that lands after a same-day end leaves no
window that day.

Each ``(schedule_id, window_date)`` fires at most once per client. The
marker is persisted *before* the trigger runs; a crash mid-trigger loses that
window rather than firing it twice. A trigger that returns ``None`` deferred to
a show already started elsewhere: nothing is counted and no notification is
sent from this client.
"""

from __future__ import annotations

import datetime
import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Iterable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from neighborsync.domain.exceptions import ConfigurationError, NeighborSyncError, NoEligibleMembersError
from neighborsync.domain.neighborhood import Coordinates
from neighborsync.domain.schedules import ScheduleWindow, SyncSchedule
from neighborsync.enums.events import SyncEvent
from neighborsync.schemas.events import ScheduleFiredPayload
from neighborsync.utils.persistent_store import load_json, save_json
from neighborsync.utils.time import iso_now

if TYPE_CHECKING:
    from neighborsync.services.protocols import Notifier, SunsetProvider
    from neighborsync.utils.event_bus import EventBus
    from neighborsync.workers.unified_scheduler import UnifiedScheduler

logger = logging.getLogger(__name__)

ScheduleTrigger = Callable[[SyncSchedule], Any]
LocationProvider = Callable[[SyncSchedule], "Coordinates | None"]

TICK_JOB_ID = "schedule_evaluator.tick"
STARTED_ELSEWHERE = "started by another member"


class FireMarkerStore:
    """Durable ``(schedule_id, window_date)`` markers kept in a small JSON file."""

    DEFAULT_NAME = "schedule_fire_markers.json"

    def __init__(self, name: str = DEFAULT_NAME, state_dir: str | None = None):
        self.name = name
        self.state_dir = state_dir
        self._lock = threading.Lock()
        self._markers: dict[str, str] = dict(load_json(name, state_dir))

    @staticmethod
    def key(schedule_id: str, window_date: datetime.date) -> str:
        return f"{schedule_id}:{window_date.isoformat()}"

    def has_fired(self, schedule_id: str, window_date: datetime.date) -> bool:
        with self._lock:
            return self.key(schedule_id, window_date) in self._markers

    def mark_fired(self, schedule_id: str, window_date: datetime.date) -> bool:
        """
        Record the window as consumed and persist it.

        Returns:
            False when the window was already marked

        Raises:
            OSError / TimeoutError: The marker could not be persisted (the
                in-memory marker is rolled back)
        """
        key = self.key(schedule_id, window_date)
        with self._lock:
            if key in self._markers:
                return False
            self._markers[key] = iso_now()
            try:
                save_json(self.name, self._markers, self.state_dir)
            except (OSError, TimeoutError):
                del self._markers[key]
                raise
        return True

    def prune(self, before: datetime.date) -> int:
        """Drop markers whose window started before ``before``."""
        with self._lock:
            stale = []
            for key in self._markers:
                _, _, day = key.rpartition(":")
                try:
                    if datetime.date.fromisoformat(day) < before:
                        stale.append(key)
                except ValueError:
                    stale.append(key)
            if not stale:
                return 0
            for key in stale:
                del self._markers[key]
            try:
                save_json(self.name, self._markers, self.state_dir)
            except (OSError, TimeoutError) as exc:
                logger.warning("Failed to persist pruned fire markers: %s", exc)
        logger.debug("Pruned %d fire marker(s) before %s", len(stale), before)
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._markers)


@dataclass(frozen=True)
class FiredSchedule:
    """Outcome of one consumed schedule window."""

    schedule: SyncSchedule
    window: ScheduleWindow
    triggered: bool
    result: Any = None
    reason: str | None = None


def _resolve_timezone(timezone: str | datetime.tzinfo | None) -> datetime.tzinfo | None:
    if timezone is None or isinstance(timezone, datetime.tzinfo):
        return timezone
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigurationError(f"Unknown timezone {timezone!r}") from exc


class ScheduleEvaluator:
    """Fires due schedules through ``trigger`` (usually a start-from-schedule call)."""

    def __init__(
        self,
        trigger: ScheduleTrigger,
        *,
        fire_markers: FireMarkerStore,
        sunset_provider: "SunsetProvider" | None = None,
        location_provider: LocationProvider | None = None,
        notifier: "Notifier" | None = None,
        timezone: str | datetime.tzinfo | None = None,
        clock: Callable[[], datetime.datetime] | None = None,
        event_bus: "EventBus" | None = None,
    ):
        self.trigger = trigger
        self.fire_markers = fire_markers
        self.sunset_provider = sunset_provider
        self.location_provider = location_provider
        self.notifier = notifier
        self.tz = _resolve_timezone(timezone)
        self.event_bus = event_bus
        self._clock = clock
        self._tick_lock = threading.Lock()

    # ── Time ──────────────────────────────────────────────────────

    def _localize(self, now: datetime.datetime | None) -> datetime.datetime:
        """Local wall-clock time, aware when a timezone is configured, naive otherwise."""
        if now is None:
            now = self._clock() if self._clock else datetime.datetime.now(self.tz)
        if self.tz is not None:
            return now.replace(tzinfo=self.tz) if now.tzinfo is None else now.astimezone(self.tz)
        if now.tzinfo is not None:
            return now.astimezone().replace(tzinfo=None)
        return now

    # ── Windows ───────────────────────────────────────────────────

    def _sunset_start(self, schedule: SyncSchedule, day: datetime.date) -> datetime.time | None:
        if self.sunset_provider is None:
            logger.warning("Schedule %s uses sunset but no sunset provider is configured", schedule.schedule_id)
            return None
        coordinates = self.location_provider(schedule) if self.location_provider else None
        if coordinates is None:
            logger.warning("Schedule %s uses sunset but has no location", schedule.schedule_id)
            return None
        return self.sunset_provider.sunset_time(day, coordinates)

    def build_window(self, schedule: SyncSchedule, day: datetime.date) -> ScheduleWindow:
        """The window ``schedule`` opens on ``day``."""
        if schedule.use_sunset:
            sunset = self._sunset_start(schedule, day)
            if sunset is not None:
                return schedule.window_on(
                    day,
                    sunset,
                    tzinfo=self.tz,
                    sunset_based=True,
                    offset_minutes=schedule.sunset_offset_minutes,
                )
            logger.warning(
                "No sunset for schedule %s on %s; falling back to %s",
                schedule.schedule_id,
                day,
                schedule.daily_start_time,
            )
        return schedule.window_on(day, tzinfo=self.tz)

    def window_for(self, schedule: SyncSchedule, now: datetime.datetime | None = None) -> ScheduleWindow | None:
        """The window of ``schedule`` that is open at ``now``, if any."""
        if not schedule.enabled:
            return None
        now = self._localize(now)
        today = now.date()
        for day in (today, today - datetime.timedelta(days=1)):
            if not schedule.covers_date(day):
                continue
            window = self.build_window(schedule, day)
            if window.is_empty:
                logger.debug(
                    "Schedule %s has no window on %s (start %s is not before end %s)",
                    schedule.schedule_id,
                    day,
                    window.start.time(),
                    window.end.time(),
                )
                continue
            if window.contains(now):
                return window
        return None

    # ── Tick ──────────────────────────────────────────────────────

    def tick(
        self,
        schedules: Iterable[SyncSchedule],
        now: datetime.datetime | None = None,
    ) -> list[FiredSchedule]:
        """Fire every due schedule whose current window has not fired yet."""
        now = self._localize(now)
        fired: list[FiredSchedule] = []
        with self._tick_lock:
            # Yesterday's markers guard windows that are still open past midnight
            self.fire_markers.prune(now.date() - datetime.timedelta(days=1))
            for schedule in schedules:
                try:
                    window = self.window_for(schedule, now)
                except NeighborSyncError as exc:
                    logger.error("Cannot evaluate schedule %s: %s", schedule.schedule_id, exc)
                    continue
                if window is None:
                    continue
                try:
                    if not self.fire_markers.mark_fired(schedule.schedule_id, window.window_date):
                        continue
                except (OSError, TimeoutError) as exc:
                    logger.error(
                        "Could not persist fire marker for %s; not firing: %s",
                        window.marker_key,
                        exc,
                    )
                    continue
                fired.append(self._fire(schedule, window))
        return fired

    def _fire(self, schedule: SyncSchedule, window: ScheduleWindow) -> FiredSchedule:
        logger.info(
            "Schedule %s due for group %s (window %s, sunset=%s)",
            schedule.schedule_id,
            schedule.group_id,
            window.window_date,
            window.sunset_based,
        )
        try:
            result = self.trigger(schedule)
        except NoEligibleMembersError as exc:
            logger.info("Schedule %s consumed without a sync: %s", schedule.schedule_id, exc)
            outcome = FiredSchedule(schedule, window, triggered=False, reason=str(exc))
        except NeighborSyncError as exc:
            logger.error("Schedule %s failed to start: %s", schedule.schedule_id, exc)
            outcome = FiredSchedule(schedule, window, triggered=False, reason=str(exc))
        else:
            if result is None:
                logger.info("Schedule %s already running; started by another member", schedule.schedule_id)
                outcome = FiredSchedule(schedule, window, triggered=False, reason=STARTED_ELSEWHERE)
            else:
                outcome = FiredSchedule(schedule, window, triggered=True, result=result)
                if schedule.notification_message:
                    self._notify(schedule)

        self._publish(outcome)
        return outcome

    def _notify(self, schedule: SyncSchedule) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.notify(schedule.group_id, schedule.notification_message)
        except Exception as exc:
            logger.warning("Notification for schedule %s failed: %s", schedule.schedule_id, exc)

    def _publish(self, outcome: FiredSchedule) -> None:
        if self.event_bus is None:
            return
        self.event_bus.publish(
            SyncEvent.SCHEDULE_FIRED,
            ScheduleFiredPayload(
                schedule_id=outcome.schedule.schedule_id,
                group_id=outcome.schedule.group_id,
                window_date=outcome.window.window_date.isoformat(),
                sunset_based=outcome.window.sunset_based,
                triggered=outcome.triggered,
                reason=outcome.reason,
                timestamp=iso_now(),
                metadata={"pattern_name": outcome.schedule.pattern_name},
            ),
        )

    # ── Scheduler wiring ──────────────────────────────────────────

    def attach(
        self,
        scheduler: "UnifiedScheduler",
        interval_seconds: float,
        schedules_source: Callable[[], Iterable[SyncSchedule]],
    ) -> str:
        """Register the periodic tick on ``scheduler``; returns the job id."""

        def run_tick() -> list[FiredSchedule]:
            return self.tick(list(schedules_source()))

        scheduler.schedule_interval(
            "schedule.tick",
            interval_seconds,
            job_id=TICK_JOB_ID,
            namespace="schedule",
            func=run_tick,
            start_immediately=True,
        )
        logger.info("Schedule evaluator ticking every %ss", interval_seconds)
        return TICK_JOB_ID
