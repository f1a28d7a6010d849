"""
Neighborhood Domain Entities
============================

Groups, members and the timing configuration shared by every sync.

A member record is self-describing: it is written by that member's own
client (position, light run, participation) and read by everyone else.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any

from neighborsync.domain.exceptions import InvalidCommandError
from neighborsync.enums import ParticipationStatus, RooflineDirection
from neighborsync.utils.time import coerce_datetime, utc_now

logger = logging.getLogger(__name__)

DEFAULT_PIXELS_PER_SECOND = 50.0
DEFAULT_LED_COUNT = 300


@dataclass(frozen=True)
class Coordinates:
    """Geographic location used for sunset lookups."""

    latitude: float
    longitude: float

    def to_dict(self) -> dict[str, float]:
        return {"latitude": self.latitude, "longitude": self.longitude}

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "Coordinates" | None:
        if not data or data.get("latitude") is None or data.get("longitude") is None:
            return None
        return Coordinates(latitude=float(data["latitude"]), longitude=float(data["longitude"]))


@dataclass(frozen=True)
class SyncTimingConfig:
    """Timing configuration embedded in a command or schedule.

    Attributes:
        pixels_per_second: Propagation speed of a sequential wave
        gap_delay_ms: Fixed extra delay inserted between consecutive members
        reverse_direction: Traverse the street order backwards
    """

    pixels_per_second: float = DEFAULT_PIXELS_PER_SECOND
    gap_delay_ms: float = 0.0
    reverse_direction: bool = False

    def __post_init__(self):
        if self.pixels_per_second is None or self.pixels_per_second <= 0:
            raise InvalidCommandError(
                "pixels_per_second must be positive",
                detail={"pixels_per_second": self.pixels_per_second},
            )
        if self.gap_delay_ms is None or self.gap_delay_ms < 0:
            raise InvalidCommandError(
                "gap_delay_ms must not be negative",
                detail={"gap_delay_ms": self.gap_delay_ms},
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pixels_per_second": self.pixels_per_second,
            "gap_delay_ms": self.gap_delay_ms,
            "reverse_direction": self.reverse_direction,
        }

    @staticmethod
    def from_dict(data: dict[str, Any] | None) -> "SyncTimingConfig":
        if not data:
            return SyncTimingConfig()
        return SyncTimingConfig(
            pixels_per_second=float(data.get("pixels_per_second", DEFAULT_PIXELS_PER_SECOND)),
            gap_delay_ms=float(data.get("gap_delay_ms", 0.0)),
            reverse_direction=bool(data.get("reverse_direction", False)),
        )


@dataclass
class NeighborhoodGroup:
    """
    A neighborhood sync group.

    ``is_active`` and ``active_pattern_name`` mirror the group's shared
    record and only change through the command synthesizer's start/stop.
    """

    group_id: str
    name: str = ""
    description: str | None = None
    is_active: bool = False
    active_pattern_name: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    created_by: str | None = None

    @property
    def coordinates(self) -> Coordinates | None:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinates(self.latitude, self.longitude)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
            "active_pattern_name": self.active_pattern_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "created_by": self.created_by,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "NeighborhoodGroup":
        return NeighborhoodGroup(
            group_id=data["group_id"],
            name=data.get("name", ""),
            description=data.get("description"),
            is_active=bool(data.get("is_active", False)),
            active_pattern_name=data.get("active_pattern_name"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            created_by=data.get("created_by"),
        )


@dataclass
class NeighborhoodMember:
    """
    One home participating in a neighborhood group.

    Attributes:
        member_id: Unique member identifier (the owner's user id)
        group_id: Group this member belongs to
        display_name: Human-readable name for the home
        position_index: Left-to-right street order (ties keep insertion order)
        led_count: Number of pixels on the home's run
        roofline_meters: Physical length of the run (None/0 = unknown)
        roofline_direction: How the home's own LEDs are wired
        participation_status: Active or Paused (self-service only)
        is_online: Last known controller reachability (advisory)
        controller_host: Local controller address on the owner's network
        last_seen: Last presence update
        opted_out_schedule_ids: Schedules this member skips
    """

    member_id: str
    group_id: str = ""
    display_name: str = "My Home"
    position_index: int = 0
    led_count: int = DEFAULT_LED_COUNT
    roofline_meters: float | None = None
    roofline_direction: RooflineDirection = RooflineDirection.LEFT_TO_RIGHT
    participation_status: ParticipationStatus = ParticipationStatus.ACTIVE
    is_online: bool = False
    controller_host: str | None = None
    last_seen: datetime.datetime = field(default_factory=utc_now)
    opted_out_schedule_ids: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self):
        """Ensure enums and sets are proper types after initialization."""
        if isinstance(self.roofline_direction, str):
            self.roofline_direction = RooflineDirection(self.roofline_direction)
        if isinstance(self.participation_status, str):
            self.participation_status = ParticipationStatus(self.participation_status)
        if not isinstance(self.opted_out_schedule_ids, frozenset):
            self.opted_out_schedule_ids = frozenset(self.opted_out_schedule_ids or ())

    @property
    def is_paused(self) -> bool:
        return self.participation_status == ParticipationStatus.PAUSED

    def is_opted_out_of(self, schedule_id: str | None) -> bool:
        return schedule_id is not None and schedule_id in self.opted_out_schedule_ids

    def run_length(self, leds_per_meter: float) -> float:
        """Distance this home contributes to a sequential wave.

        Uses ``roofline_meters`` when set; otherwise derives a length from
        ``led_count`` at the given strip density.
        """
        if self.roofline_meters is not None and self.roofline_meters > 0:
            return float(self.roofline_meters)
        if self.led_count and self.led_count > 0 and leds_per_meter > 0:
            return self.led_count / leds_per_meter
        return 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "member_id": self.member_id,
            "group_id": self.group_id,
            "display_name": self.display_name,
            "position_index": self.position_index,
            "led_count": self.led_count,
            "roofline_meters": self.roofline_meters,
            "roofline_direction": self.roofline_direction.value,
            "participation_status": self.participation_status.value,
            "is_online": self.is_online,
            "controller_host": self.controller_host,
            "last_seen": self.last_seen.isoformat() if self.last_seen else None,
            "opted_out_schedule_ids": sorted(self.opted_out_schedule_ids),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "NeighborhoodMember":
        return NeighborhoodMember(
            member_id=data["member_id"],
            group_id=data.get("group_id", ""),
            display_name=data.get("display_name", "My Home"),
            position_index=int(data.get("position_index", 0)),
            led_count=int(data.get("led_count", DEFAULT_LED_COUNT)),
            roofline_meters=data.get("roofline_meters"),
            roofline_direction=RooflineDirection(data.get("roofline_direction", "left_to_right")),
            participation_status=ParticipationStatus(data.get("participation_status", "active")),
            is_online=bool(data.get("is_online", False)),
            controller_host=data.get("controller_host"),
            last_seen=coerce_datetime(data.get("last_seen")) or utc_now(),
            opted_out_schedule_ids=frozenset(data.get("opted_out_schedule_ids") or ()),
        )
