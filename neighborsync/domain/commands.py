"""
Sync Commands and Group Records
===============================

``SyncCommand`` is the immutable, group-wide instruction every member's
client turns into its own locally timed controller call. It deliberately
carries no per-member delays: each client recomputes its own offset from the
command and its own view of the member list.

``GroupRecord`` is the single versioned document per group held by the
shared store. It is replaced as a whole on every start/stop and ordered by
``version`` (epoch ms), last write wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from neighborsync.domain.colors import Color, parse_color, parse_colors
from neighborsync.domain.exceptions import InvalidCommandError
from neighborsync.domain.neighborhood import SyncTimingConfig
from neighborsync.enums import SyncType

logger = logging.getLogger(__name__)

# Highest effect index understood by the stock controller firmware.
MAX_EFFECT_ID = 186
LEVEL_MIN = 0
LEVEL_MAX = 255


def validate_effect_id(effect_id: Any, max_effect_id: int = MAX_EFFECT_ID) -> int:
    """Return ``effect_id`` as an int or raise ``InvalidCommandError``."""
    if isinstance(effect_id, bool) or not isinstance(effect_id, int):
        raise InvalidCommandError(f"effect_id must be an integer: {effect_id!r}")
    if not 0 <= effect_id <= max_effect_id:
        raise InvalidCommandError(
            f"Unknown effect id {effect_id}",
            detail={"effect_id": effect_id, "max_effect_id": max_effect_id},
        )
    return effect_id


def validate_level(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not LEVEL_MIN <= value <= LEVEL_MAX:
        raise InvalidCommandError(f"{name} must be an integer in 0-255: {value!r}")
    return value


@dataclass(frozen=True)
class SyncCommand:
    """
    Immutable group-wide sync instruction.

    Attributes:
        group_id: Target group
        origin_timestamp: Epoch ms when the command was synthesized; the shared
            epoch every member offsets from and the record's LWW version
        sync_type: Timing variant
        effect_id: Controller effect index
        colors: Ordered colour list (RGB/RGBW tuples, at least one)
        speed: Effect speed (0-255)
        intensity: Effect intensity (0-255)
        brightness: Master brightness (0-255)
        timing_config: Wave timing parameters
        pattern_name: Display name of the show
        palette_id: Controller palette index
        schedule_id: Schedule that triggered this command, if any
        excluded_member_ids: Schedule opt-out set captured at trigger time
        member_color_overrides: Per-member colour lists (colour harmony themes)
        lead_time_ms: Start buffer added to every member's trigger time
    """

    group_id: str
    origin_timestamp: int
    sync_type: SyncType
    effect_id: int
    colors: tuple[Color, ...]
    speed: int = 128
    intensity: int = 128
    brightness: int = 200
    timing_config: SyncTimingConfig = field(default_factory=SyncTimingConfig)
    pattern_name: str | None = None
    palette_id: int = 0
    schedule_id: str | None = None
    excluded_member_ids: frozenset[str] = field(default_factory=frozenset)
    member_color_overrides: Mapping[str, tuple[Color, ...]] = field(default_factory=dict)
    lead_time_ms: int = 0

    def __post_init__(self):
        if not self.group_id:
            raise InvalidCommandError("group_id is required")
        if isinstance(self.sync_type, str):
            object.__setattr__(self, "sync_type", SyncType(self.sync_type))

        colors = parse_colors(self.colors)
        if not colors:
            raise InvalidCommandError("colors must contain at least one colour")
        object.__setattr__(self, "colors", colors)

        if isinstance(self.effect_id, bool) or not isinstance(self.effect_id, int) or self.effect_id < 0:
            raise InvalidCommandError(f"Unknown effect id {self.effect_id!r}")
        validate_level("speed", self.speed)
        validate_level("intensity", self.intensity)
        validate_level("brightness", self.brightness)
        validate_level("palette_id", self.palette_id)
        if self.lead_time_ms < 0:
            raise InvalidCommandError("lead_time_ms must not be negative")

        object.__setattr__(self, "excluded_member_ids", frozenset(self.excluded_member_ids or ()))
        overrides = {
            member_id: tuple(parse_color(c) for c in member_colors)
            for member_id, member_colors in (self.member_color_overrides or {}).items()
        }
        object.__setattr__(self, "member_color_overrides", overrides)

    @property
    def key(self) -> tuple[str, int]:
        """Identity of this command for idempotent execution."""
        return (self.group_id, self.origin_timestamp)

    @property
    def start_timestamp(self) -> int:
        """Epoch ms at which the first member in traversal order fires."""
        return self.origin_timestamp + self.lead_time_ms

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "origin_timestamp": self.origin_timestamp,
            "sync_type": self.sync_type.value,
            "effect_id": self.effect_id,
            "colors": [list(c) for c in self.colors],
            "speed": self.speed,
            "intensity": self.intensity,
            "brightness": self.brightness,
            "timing_config": self.timing_config.to_dict(),
            "pattern_name": self.pattern_name,
            "palette_id": self.palette_id,
            "schedule_id": self.schedule_id,
            "excluded_member_ids": sorted(self.excluded_member_ids),
            "member_color_overrides": {
                member_id: [list(c) for c in member_colors]
                for member_id, member_colors in self.member_color_overrides.items()
            },
            "lead_time_ms": self.lead_time_ms,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "SyncCommand":
        return SyncCommand(
            group_id=data.get("group_id", ""),
            origin_timestamp=int(data["origin_timestamp"]),
            sync_type=SyncType(data.get("sync_type", SyncType.SEQUENTIAL_FLOW.value)),
            effect_id=data.get("effect_id", 0),
            colors=tuple(data.get("colors") or ()),
            speed=data.get("speed", 128),
            intensity=data.get("intensity", 128),
            brightness=data.get("brightness", 200),
            timing_config=SyncTimingConfig.from_dict(data.get("timing_config")),
            pattern_name=data.get("pattern_name"),
            palette_id=data.get("palette_id", 0),
            schedule_id=data.get("schedule_id"),
            excluded_member_ids=frozenset(data.get("excluded_member_ids") or ()),
            member_color_overrides=data.get("member_color_overrides") or {},
            lead_time_ms=int(data.get("lead_time_ms", 0)),
        )


@dataclass(frozen=True)
class GroupRecord:
    """
    Versioned shared state of one group.

    Attributes:
        group_id: Group identifier
        is_active: A sync is running group-wide
        active_pattern_name: Name of the running show
        version: Epoch ms of the write; newer wins
        command: Current command (None once stopped)
    """

    group_id: str
    is_active: bool
    version: int
    active_pattern_name: str | None = None
    command: SyncCommand | None = None

    @staticmethod
    def started(command: SyncCommand) -> "GroupRecord":
        return GroupRecord(
            group_id=command.group_id,
            is_active=True,
            version=command.origin_timestamp,
            active_pattern_name=command.pattern_name,
            command=command,
        )

    @staticmethod
    def stopped(group_id: str, version: int) -> "GroupRecord":
        return GroupRecord(group_id=group_id, is_active=False, version=version)

    def is_newer_than(self, other: "GroupRecord" | None) -> bool:
        return other is None or self.version > other.version

    def with_version(self, version: int) -> "GroupRecord":
        return replace(self, version=version)

    def to_dict(self) -> dict[str, Any]:
        return {
            "group_id": self.group_id,
            "is_active": self.is_active,
            "version": self.version,
            "active_pattern_name": self.active_pattern_name,
            "command": self.command.to_dict() if self.command else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "GroupRecord":
        command_data = data.get("command")
        return GroupRecord(
            group_id=data["group_id"],
            is_active=bool(data.get("is_active", False)),
            version=int(data.get("version", 0)),
            active_pattern_name=data.get("active_pattern_name"),
            command=SyncCommand.from_dict(command_data) if command_data else None,
        )
