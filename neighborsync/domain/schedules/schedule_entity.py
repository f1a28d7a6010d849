"""
Sync Schedule Entity
====================

Recurring, group-wide sync trigger.

Supports:
- Date range (inclusive) with ISO weekday filtering (1=Monday, 7=Sunday)
- Fixed daily start or a sunset-relative start with an offset
- Daily windows that span midnight (they belong to the day they start)
- Per-schedule member opt-outs
- Enable/disable without deletion
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any

from neighborsync.domain.colors import Color, parse_colors
from neighborsync.domain.commands import validate_effect_id, validate_level
from neighborsync.domain.exceptions import InvalidCommandError
from neighborsync.domain.neighborhood import SyncTimingConfig
from neighborsync.enums import SyncType

logger = logging.getLogger(__name__)

ALL_DAYS = (1, 2, 3, 4, 5, 6, 7)


def parse_time(time_str: str) -> datetime.time:
    """Parse HH:MM string to time object."""
    parts = str(time_str).split(":")
    if len(parts) != 2:
        raise ValueError("time must be in HH:MM format")
    h, m = int(parts[0]), int(parts[1])
    if not (0 <= h <= 23):
        raise ValueError("hour must be between 0 and 23")
    if not (0 <= m <= 59):
        raise ValueError("minute must be between 0 and 59")
    return datetime.time(hour=h, minute=m)


def _coerce_date(value: Any, default: datetime.date) -> datetime.date:
    if value is None:
        return default
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


@dataclass(frozen=True)
class ScheduleWindow:
    """One concrete occurrence of a schedule's daily window.

    Attributes:
        schedule_id: Owning schedule
        window_date: Local date the window started on (marker key)
        start: Window start (local, tz-aware when a timezone is configured)
        end: Window end, on the following day when the window spans midnight;
            at or before ``start`` when the window is empty
        sunset_based: Start was derived from a sunset lookup
    """

    schedule_id: str
    window_date: datetime.date
    start: datetime.datetime
    end: datetime.datetime
    sunset_based: bool = False

    @property
    def is_empty(self) -> bool:
        return self.end <= self.start

    def contains(self, moment: datetime.datetime) -> bool:
        return not self.is_empty and self.start <= moment <= self.end

    @property
    def marker_key(self) -> str:
        return f"{self.schedule_id}:{self.window_date.isoformat()}"


@dataclass
class SyncSchedule:
    """
    Recurring group sync.

    Attributes:
        schedule_id: Unique identifier
        group_id: Group the schedule belongs to
        pattern_name: Display name of the show
        effect_id / colors / speed / intensity / brightness / palette_id:
            Controller parameters copied into the command
        sync_type: Timing variant
        timing_config: Wave timing parameters
        start_date / end_date: Inclusive active date range (local dates)
        daily_start_time / daily_end_time: HH:MM local window
        use_sunset: Start at sunset (+ ``sunset_offset_minutes``) instead of
            ``daily_start_time``
        days_of_week: ISO weekdays the schedule runs on
        opted_out_member_ids: Members excluded from this schedule
        notification_message: Sent to the group when the schedule fires
        enabled: Evaluated at all
        created_by: Member who created it
    """

    schedule_id: str
    group_id: str = ""
    pattern_name: str = ""
    effect_id: int = 0
    colors: tuple[Color, ...] = ((255, 255, 255),)
    speed: int = 128
    intensity: int = 128
    brightness: int = 200
    sync_type: SyncType = SyncType.SEQUENTIAL_FLOW
    timing_config: SyncTimingConfig = field(default_factory=SyncTimingConfig)
    palette_id: int = 0

    start_date: datetime.date = field(default_factory=datetime.date.today)
    end_date: datetime.date = field(
        default_factory=lambda: datetime.date.today() + datetime.timedelta(days=7)
    )
    daily_start_time: str = "17:00"
    daily_end_time: str = "23:00"
    use_sunset: bool = False
    sunset_offset_minutes: int = 0
    days_of_week: tuple[int, ...] = ALL_DAYS

    opted_out_member_ids: frozenset[str] = field(default_factory=frozenset)
    notification_message: str | None = None
    enabled: bool = True
    created_by: str | None = None
    created_at: datetime.datetime = field(default_factory=datetime.datetime.now)

    def __post_init__(self):
        """Ensure enums and collections are proper types after initialization."""
        if isinstance(self.sync_type, str):
            self.sync_type = SyncType(self.sync_type)
        self.colors = parse_colors(self.colors)
        self.days_of_week = tuple(int(d) for d in self.days_of_week)
        if not isinstance(self.opted_out_member_ids, frozenset):
            self.opted_out_member_ids = frozenset(self.opted_out_member_ids or ())

    def validate(self, max_effect_id: int | None = None) -> None:
        """Raise ``InvalidCommandError`` if the schedule could never produce a command."""
        if not self.group_id:
            raise InvalidCommandError("Schedule needs a group_id", detail={"schedule_id": self.schedule_id})
        if not self.colors:
            raise InvalidCommandError("Schedule needs at least one colour")
        if max_effect_id is None:
            validate_effect_id(self.effect_id)
        else:
            validate_effect_id(self.effect_id, max_effect_id)
        for name in ("speed", "intensity", "brightness", "palette_id"):
            validate_level(name, getattr(self, name))
        try:
            daily_start = parse_time(self.daily_start_time)
            daily_end = parse_time(self.daily_end_time)
        except ValueError as exc:
            raise InvalidCommandError(f"Invalid daily window: {exc}") from exc
        if daily_start == daily_end:
            raise InvalidCommandError(
                "daily_start_time and daily_end_time must differ",
                detail={"daily_start_time": self.daily_start_time},
            )
        if not self.days_of_week or any(d not in ALL_DAYS for d in self.days_of_week):
            raise InvalidCommandError(
                "days_of_week must use ISO weekdays 1-7",
                detail={"days_of_week": list(self.days_of_week)},
            )
        if self.end_date < self.start_date:
            raise InvalidCommandError("end_date is before start_date")

    def covers_date(self, day: datetime.date) -> bool:
        """Date range and weekday check for a window starting on ``day``."""
        if not self.start_date <= day <= self.end_date:
            return False
        return day.isoweekday() in self.days_of_week

    def window_on(
        self,
        day: datetime.date,
        start_time: datetime.time | None = None,
        *,
        tzinfo: datetime.tzinfo | None = None,
        sunset_based: bool = False,
        offset_minutes: int = 0,
    ) -> ScheduleWindow:
        """
        Build the window that starts on ``day``.

        Args:
            day: Local date the window starts on
            start_time: Resolved start (sunset time); defaults to daily_start_time
            tzinfo: Timezone for the resulting datetimes
            sunset_based: Mark the window as sunset-derived
            offset_minutes: Shift applied to the start (may cross midnight)

        Returns:
            ScheduleWindow. Only a daily_end_time earlier than daily_start_time
            rolls over to ``day + 1``; a resolved start past the end (a late
            sunset) gives an empty window.
        """
        configured_start = parse_time(self.daily_start_time)
        start_t = start_time or configured_start
        end_t = parse_time(self.daily_end_time)
        start = datetime.datetime.combine(day, start_t, tzinfo=tzinfo)
        start += datetime.timedelta(minutes=offset_minutes)
        end = datetime.datetime.combine(day, end_t, tzinfo=tzinfo)
        if end_t < configured_start:
            end += datetime.timedelta(days=1)  # Cross-midnight
        return ScheduleWindow(
            schedule_id=self.schedule_id,
            window_date=day,
            start=start,
            end=end,
            sunset_based=sunset_based,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert schedule to dictionary for serialization."""
        return {
            "schedule_id": self.schedule_id,
            "group_id": self.group_id,
            "pattern_name": self.pattern_name,
            "effect_id": self.effect_id,
            "colors": [list(c) for c in self.colors],
            "speed": self.speed,
            "intensity": self.intensity,
            "brightness": self.brightness,
            "sync_type": self.sync_type.value,
            "timing_config": self.timing_config.to_dict(),
            "palette_id": self.palette_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "daily_start_time": self.daily_start_time,
            "daily_end_time": self.daily_end_time,
            "use_sunset": self.use_sunset,
            "sunset_offset_minutes": self.sunset_offset_minutes,
            "days_of_week": list(self.days_of_week),
            "opted_out_member_ids": sorted(self.opted_out_member_ids),
            "notification_message": self.notification_message,
            "enabled": self.enabled,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SyncSchedule":
        """Create SyncSchedule from dictionary."""
        today = datetime.date.today()
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.datetime.fromisoformat(created_at)
        elif created_at is None:
            created_at = datetime.datetime.now()

        return SyncSchedule(
            schedule_id=data["schedule_id"],
            group_id=data.get("group_id", ""),
            pattern_name=data.get("pattern_name", ""),
            effect_id=data.get("effect_id", 0),
            colors=tuple(data.get("colors") or ((255, 255, 255),)),
            speed=data.get("speed", 128),
            intensity=data.get("intensity", 128),
            brightness=data.get("brightness", 200),
            sync_type=SyncType(data.get("sync_type", SyncType.SEQUENTIAL_FLOW.value)),
            timing_config=SyncTimingConfig.from_dict(data.get("timing_config")),
            palette_id=data.get("palette_id", 0),
            start_date=_coerce_date(data.get("start_date"), today),
            end_date=_coerce_date(data.get("end_date"), today + datetime.timedelta(days=7)),
            daily_start_time=data.get("daily_start_time", "17:00"),
            daily_end_time=data.get("daily_end_time", "23:00"),
            use_sunset=bool(data.get("use_sunset", False)),
            sunset_offset_minutes=int(data.get("sunset_offset_minutes", 0)),
            days_of_week=tuple(data.get("days_of_week") or ALL_DAYS),
            opted_out_member_ids=frozenset(data.get("opted_out_member_ids") or ()),
            notification_message=data.get("notification_message"),
            enabled=bool(data.get("enabled", True)),
            created_by=data.get("created_by"),
            created_at=created_at,
        )
