import datetime
from unittest.mock import Mock, patch

import pytest

from neighborsync.domain.exceptions import ConfigurationError, InvalidCommandError, NoEligibleMembersError
from neighborsync.domain.neighborhood import Coordinates
from neighborsync.domain.schedules import SyncSchedule
from neighborsync.services import FireMarkerStore, ScheduleEvaluator
from neighborsync.services.schedule_evaluator import STARTED_ELSEWHERE, TICK_JOB_ID

XMAS_EVE = datetime.date(2026, 12, 24)


def at(day: int, hour: int, minute: int = 0) -> datetime.datetime:
    return datetime.datetime(2026, 12, day, hour, minute)


def _schedule(**overrides):
    fields = dict(
        schedule_id="xmas",
        group_id="maple-street",
        pattern_name="Candy Cane",
        effect_id=9,
        colors=("#FF0000",),
        start_date=datetime.date(2026, 12, 1),
        end_date=datetime.date(2026, 12, 31),
        daily_start_time="17:00",
        daily_end_time="23:00",
    )
    fields.update(overrides)
    return SyncSchedule(**fields)


@pytest.fixture()
def markers(tmp_path):
    return FireMarkerStore("markers.json", str(tmp_path))


@pytest.fixture()
def trigger():
    return Mock(return_value="started")


@pytest.fixture()
def evaluator(trigger, markers, event_bus):
    return ScheduleEvaluator(trigger, fire_markers=markers, event_bus=event_bus)


def test_fires_once_per_window(evaluator, trigger):
    schedule = _schedule()

    [fired] = evaluator.tick([schedule], at(24, 18))
    assert fired.triggered and fired.result == "started"
    assert fired.window.window_date == XMAS_EVE

    assert evaluator.tick([schedule], at(24, 19)) == []
    assert evaluator.tick([schedule], at(24, 22, 59)) == []
    trigger.assert_called_once_with(schedule)


def test_fires_again_next_day(evaluator, trigger):
    schedule = _schedule()

    evaluator.tick([schedule], at(24, 18))
    evaluator.tick([schedule], at(25, 18))

    assert trigger.call_count == 2


def test_nothing_due_outside_window_or_range(evaluator, trigger):
    assert evaluator.tick([_schedule()], at(24, 16, 59)) == []
    assert evaluator.tick([_schedule()], at(24, 23, 1)) == []
    assert evaluator.tick([_schedule(enabled=False)], at(24, 18)) == []
    assert evaluator.tick([_schedule(days_of_week=(1, 2))], at(24, 18)) == []
    assert evaluator.tick([_schedule(end_date=datetime.date(2026, 12, 20))], at(24, 18)) == []
    trigger.assert_not_called()


def test_window_spanning_midnight(evaluator, trigger, markers):
    schedule = _schedule(daily_start_time="22:00", daily_end_time="01:00")

    [fired] = evaluator.tick([schedule], at(24, 22, 30))
    assert fired.window.window_date == XMAS_EVE

    # after midnight the same window is still open and must not re-fire
    assert evaluator.tick([schedule], at(25, 0, 30)) == []
    assert markers.has_fired("xmas", XMAS_EVE)
    trigger.assert_called_once()


def test_window_spanning_midnight_caught_after_midnight(evaluator):
    schedule = _schedule(daily_start_time="22:00", daily_end_time="01:00")

    [fired] = evaluator.tick([schedule], at(25, 0, 30))

    assert fired.window.window_date == XMAS_EVE


def test_sunset_start_with_offset(trigger, markers):
    sunset = Mock()
    sunset.sunset_time.return_value = datetime.time(16, 40)
    evaluator = ScheduleEvaluator(
        trigger,
        fire_markers=markers,
        sunset_provider=sunset,
        location_provider=lambda _s: Coordinates(40.0, -75.0),
    )
    schedule = _schedule(use_sunset=True, sunset_offset_minutes=-10)

    assert evaluator.tick([schedule], at(24, 16, 29)) == []
    [fired] = evaluator.tick([schedule], at(24, 16, 35))

    assert fired.window.sunset_based is True
    assert fired.window.start == at(24, 16, 30)
    sunset.sunset_time.assert_called_with(XMAS_EVE, Coordinates(40.0, -75.0))


def test_sunset_unavailable_falls_back_to_daily_start(trigger, markers):
    sunset = Mock()
    sunset.sunset_time.return_value = None
    evaluator = ScheduleEvaluator(
        trigger,
        fire_markers=markers,
        sunset_provider=sunset,
        location_provider=lambda _s: Coordinates(40.0, -75.0),
    )
    schedule = _schedule(use_sunset=True)

    assert evaluator.tick([schedule], at(24, 16, 45)) == []
    [fired] = evaluator.tick([schedule], at(24, 17, 5))
    assert fired.window.sunset_based is False


def test_sunset_without_location_falls_back(trigger, markers):
    sunset = Mock()
    evaluator = ScheduleEvaluator(trigger, fire_markers=markers, sunset_provider=sunset)

    [fired] = evaluator.tick([_schedule(use_sunset=True)], at(24, 17, 5))

    assert fired.triggered
    sunset.sunset_time.assert_not_called()


def test_sunset_after_daily_end_leaves_no_window(trigger, markers):
    sunset = Mock()
    sunset.sunset_time.return_value = datetime.time(20, 45)
    evaluator = ScheduleEvaluator(
        trigger,
        fire_markers=markers,
        sunset_provider=sunset,
        location_provider=lambda _s: Coordinates(40.0, -75.0),
    )
    schedule = _schedule(
        use_sunset=True,
        daily_end_time="20:00",
        start_date=datetime.date(2026, 6, 1),
        end_date=datetime.date(2026, 6, 30),
    )

    assert evaluator.window_for(schedule, datetime.datetime(2026, 6, 15, 20, 50)) is None
    assert evaluator.tick([schedule], datetime.datetime(2026, 6, 15, 20, 50)) == []
    # a client that was off overnight must not pick up yesterday's evening
    assert evaluator.window_for(schedule, datetime.datetime(2026, 6, 16, 9, 0)) is None
    assert evaluator.tick([schedule], datetime.datetime(2026, 6, 16, 9, 0)) == []
    trigger.assert_not_called()


def test_equal_start_and_end_never_due(evaluator, trigger):
    schedule = _schedule(daily_start_time="18:00", daily_end_time="18:00")

    for moment in (at(24, 18), at(24, 23), at(25, 9)):
        assert evaluator.tick([schedule], moment) == []
    trigger.assert_not_called()


def test_show_started_elsewhere_is_not_notified(trigger, markers, event_bus):
    trigger.return_value = None
    notifier = Mock()
    evaluator = ScheduleEvaluator(trigger, fire_markers=markers, notifier=notifier, event_bus=event_bus)

    [fired] = evaluator.tick([_schedule(notification_message="Lights on!")], at(24, 18))

    assert fired.triggered is False
    assert fired.reason == STARTED_ELSEWHERE
    notifier.notify.assert_not_called()
    assert event_bus.events[-1][1]["triggered"] is False
    assert markers.has_fired("xmas", XMAS_EVE)


def test_no_eligible_members_still_consumes_window(evaluator, trigger, event_bus):
    trigger.side_effect = NoEligibleMembersError("everyone paused")
    schedule = _schedule()

    [fired] = evaluator.tick([schedule], at(24, 18))
    assert fired.triggered is False
    assert fired.reason == "everyone paused"

    assert evaluator.tick([schedule], at(24, 18, 30)) == []
    trigger.assert_called_once()
    assert event_bus.events[-1][1]["triggered"] is False


def test_failed_start_is_logged_and_other_schedules_continue(evaluator, trigger):
    trigger.side_effect = [InvalidCommandError("bad effect"), "started"]
    broken = _schedule(schedule_id="broken")
    fine = _schedule(schedule_id="fine")

    fired = evaluator.tick([broken, fine], at(24, 18))

    assert [(f.schedule.schedule_id, f.triggered) for f in fired] == [("broken", False), ("fine", True)]


def test_marker_persist_failure_prevents_fire(evaluator, trigger, markers):
    schedule = _schedule()
    with patch("neighborsync.services.schedule_evaluator.save_json", side_effect=OSError("disk full")):
        assert evaluator.tick([schedule], at(24, 18)) == []

    trigger.assert_not_called()
    assert not markers.has_fired("xmas", XMAS_EVE)

    assert len(evaluator.tick([schedule], at(24, 18, 1))) == 1


def test_markers_survive_restart(tmp_path, trigger):
    schedule = _schedule()
    first = ScheduleEvaluator(trigger, fire_markers=FireMarkerStore("m.json", str(tmp_path)))
    first.tick([schedule], at(24, 18))

    second = ScheduleEvaluator(trigger, fire_markers=FireMarkerStore("m.json", str(tmp_path)))
    assert second.tick([schedule], at(24, 19)) == []
    trigger.assert_called_once()


def test_prune_drops_old_markers(markers):
    markers.mark_fired("a", datetime.date(2026, 12, 20))
    markers.mark_fired("b", datetime.date(2026, 12, 23))
    markers.mark_fired("c", XMAS_EVE)

    assert markers.prune(datetime.date(2026, 12, 23)) == 1
    assert len(markers) == 2
    assert not markers.has_fired("a", datetime.date(2026, 12, 20))
    assert markers.mark_fired("c", XMAS_EVE) is False


def test_notification_sent_and_failures_swallowed(trigger, markers):
    notifier = Mock()
    notifier.notify.side_effect = RuntimeError("push service down")
    evaluator = ScheduleEvaluator(trigger, fire_markers=markers, notifier=notifier)

    [fired] = evaluator.tick([_schedule(notification_message="Lights on!")], at(24, 18))

    assert fired.triggered
    notifier.notify.assert_called_once_with("maple-street", "Lights on!")


def test_schedule_fired_event(evaluator, event_bus):
    evaluator.tick([_schedule()], at(24, 18))

    name, payload = event_bus.events[-1]
    assert name == "schedule_fired"
    assert payload["schedule_id"] == "xmas"
    assert payload["window_date"] == "2026-12-24"
    assert payload["metadata"] == {"pattern_name": "Candy Cane"}


def test_timezone_localizes_aware_now(trigger, markers):
    eastern = datetime.timezone(datetime.timedelta(hours=-5))
    evaluator = ScheduleEvaluator(trigger, fire_markers=markers, timezone=eastern)

    # 23:00 UTC is 18:00 at UTC-5
    now = datetime.datetime(2026, 12, 24, 23, 0, tzinfo=datetime.timezone.utc)
    [fired] = evaluator.tick([_schedule()], now)

    assert fired.window.start.tzinfo is eastern


def test_unknown_timezone_rejected(trigger, markers):
    with pytest.raises(ConfigurationError):
        ScheduleEvaluator(trigger, fire_markers=markers, timezone="Nowhere/Special")


def test_attach_registers_periodic_tick(evaluator, scheduler, trigger):
    schedules = Mock(return_value=[])

    job_id = evaluator.attach(scheduler, 30, schedules)

    job = scheduler.jobs[job_id]
    assert job_id == TICK_JOB_ID
    assert job.interval_seconds == 30
    assert job.options["start_immediately"] is True
    job.func()
    schedules.assert_called_once_with()
