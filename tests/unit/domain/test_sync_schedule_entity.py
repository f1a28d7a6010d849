import datetime

import pytest

from neighborsync.domain.exceptions import InvalidCommandError
from neighborsync.domain.schedules import SyncSchedule
from neighborsync.domain.schedules.schedule_entity import parse_time
from neighborsync.enums import SyncType

# 2026-12-24 is a Thursday (ISO weekday 4)
XMAS_EVE = datetime.date(2026, 12, 24)


def _schedule(**overrides):
    fields = dict(
        schedule_id="xmas",
        group_id="maple-street",
        pattern_name="Candy Cane",
        effect_id=9,
        colors=("#FF0000", "#FFFFFF"),
        start_date=datetime.date(2026, 12, 1),
        end_date=datetime.date(2026, 12, 31),
        daily_start_time="17:00",
        daily_end_time="23:00",
    )
    fields.update(overrides)
    return SyncSchedule(**fields)


def test_parse_time_validates():
    assert parse_time("06:05") == datetime.time(6, 5)
    for bad in ("24:00", "12:60", "noon", "1:2:3"):
        with pytest.raises(ValueError):
            parse_time(bad)


def test_covers_date_range_and_weekdays():
    schedule = _schedule(days_of_week=(4, 5))

    assert schedule.covers_date(XMAS_EVE)
    assert schedule.covers_date(datetime.date(2026, 12, 25))
    assert not schedule.covers_date(datetime.date(2026, 12, 26))
    assert not schedule.covers_date(datetime.date(2027, 1, 1))
    assert not schedule.covers_date(datetime.date(2026, 11, 26))


def test_window_same_day():
    window = _schedule().window_on(XMAS_EVE)

    assert window.start == datetime.datetime(2026, 12, 24, 17, 0)
    assert window.end == datetime.datetime(2026, 12, 24, 23, 0)
    assert window.contains(datetime.datetime(2026, 12, 24, 20, 0))
    assert not window.contains(datetime.datetime(2026, 12, 24, 16, 59))
    assert window.marker_key == "xmas:2026-12-24"


def test_window_spanning_midnight_belongs_to_start_day():
    window = _schedule(daily_start_time="22:00", daily_end_time="01:00").window_on(XMAS_EVE)

    assert window.window_date == XMAS_EVE
    assert window.end == datetime.datetime(2026, 12, 25, 1, 0)
    assert window.contains(datetime.datetime(2026, 12, 25, 0, 30))


def test_sunset_window_applies_offset():
    window = _schedule().window_on(
        XMAS_EVE,
        datetime.time(16, 40),
        sunset_based=True,
        offset_minutes=-30,
    )

    assert window.start == datetime.datetime(2026, 12, 24, 16, 10)
    assert window.sunset_based is True


def test_late_sunset_gives_empty_window_instead_of_rolling_over():
    window = _schedule(daily_end_time="20:00").window_on(
        datetime.date(2026, 6, 15),
        datetime.time(20, 45),
        sunset_based=True,
    )

    assert window.end == datetime.datetime(2026, 6, 15, 20, 0)
    assert window.is_empty
    assert not window.contains(datetime.datetime(2026, 6, 15, 20, 50))
    assert not window.contains(datetime.datetime(2026, 6, 16, 9, 0))


def test_sunset_start_keeps_configured_midnight_span():
    window = _schedule(daily_start_time="22:00", daily_end_time="01:00").window_on(
        XMAS_EVE,
        datetime.time(16, 40),
        sunset_based=True,
    )

    assert window.start == datetime.datetime(2026, 12, 24, 16, 40)
    assert window.end == datetime.datetime(2026, 12, 25, 1, 0)
    assert not window.is_empty


def test_equal_daily_times_are_empty_and_rejected():
    schedule = _schedule(daily_start_time="18:00", daily_end_time="18:00")

    assert schedule.window_on(XMAS_EVE).is_empty
    with pytest.raises(InvalidCommandError):
        schedule.validate()


def test_validate_rejects_bad_schedules():
    with pytest.raises(InvalidCommandError):
        _schedule(effect_id=999).validate()
    with pytest.raises(InvalidCommandError):
        _schedule(daily_start_time="25:00").validate()
    with pytest.raises(InvalidCommandError):
        _schedule(days_of_week=(0, 8)).validate()
    with pytest.raises(InvalidCommandError):
        _schedule(end_date=datetime.date(2026, 11, 1)).validate()
    with pytest.raises(InvalidCommandError):
        _schedule(group_id="").validate()
    with pytest.raises(InvalidCommandError):
        _schedule(colors=()).validate()


def test_validate_honours_custom_effect_limit():
    _schedule(effect_id=9).validate(max_effect_id=10)
    with pytest.raises(InvalidCommandError):
        _schedule(effect_id=11).validate(max_effect_id=10)


def test_dict_round_trip_keeps_fields():
    schedule = _schedule(
        sync_type="color_harmony",
        use_sunset=True,
        sunset_offset_minutes=15,
        opted_out_member_ids=["m2"],
        notification_message="Lights on!",
    )

    restored = SyncSchedule.from_dict(schedule.to_dict())

    assert restored.sync_type == SyncType.COLOR_HARMONY
    assert restored.colors == ((255, 0, 0), (255, 255, 255))
    assert restored.start_date == schedule.start_date
    assert restored.opted_out_member_ids == frozenset({"m2"})
    assert restored.use_sunset and restored.sunset_offset_minutes == 15
    assert restored.notification_message == "Lights on!"
