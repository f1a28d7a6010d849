"""
Timing Model
============

Pure functions turning an ordered set of participating members plus a
``SyncTimingConfig`` into per-member delay offsets (milliseconds, relative to
the command's origin).

Members are ordered by ``position_index`` ascending with ties kept in
insertion order; ``reverse_direction`` traverses that order backwards so a
wave can travel either way without renumbering anyone.

Each ``SyncType`` has exactly one handler in ``_HANDLERS``.

For a sequential flow, member *k* in traversal order fires at::

    (distance_before_k / pixels_per_second) * 1000 + gap_delay_ms * k

where ``distance_before_k`` sums the run length of every earlier member
(``roofline_meters``, or ``led_count / leds_per_meter`` when unset).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Sequence

from neighborsync.domain.colors import Color
from neighborsync.domain.neighborhood import NeighborhoodMember, SyncTimingConfig
from neighborsync.enums import SyncType

logger = logging.getLogger(__name__)

DEFAULT_LEDS_PER_METER = 30.0


@dataclass(frozen=True)
class TimingPlan:
    """Result of the timing model for one trigger.

    Attributes:
        sync_type: Variant the plan was computed for
        order: Member ids in traversal order
        delays_ms: Member id -> delay after the command start (ms, >= 0)
        member_colors: Member id -> colours that member should show
    """

    sync_type: SyncType
    order: tuple[str, ...] = ()
    delays_ms: dict[str, float] = field(default_factory=dict)
    member_colors: dict[str, tuple[Color, ...]] = field(default_factory=dict)

    def __contains__(self, member_id: object) -> bool:
        return member_id in self.delays_ms

    def __len__(self) -> int:
        return len(self.order)

    def delay_for(self, member_id: str) -> float | None:
        return self.delays_ms.get(member_id)

    def colors_for(self, member_id: str) -> tuple[Color, ...]:
        return self.member_colors.get(member_id, ())


def traversal_order(
    members: Iterable[NeighborhoodMember],
    timing_config: SyncTimingConfig,
) -> list[NeighborhoodMember]:
    """Members sorted by street position, reversed when configured."""
    ordered = sorted(members, key=lambda m: m.position_index)  # stable
    if timing_config.reverse_direction:
        ordered.reverse()
    return ordered


def _zero_delays(ordered: Sequence[NeighborhoodMember], **_kwargs) -> dict[str, float]:
    return {m.member_id: 0.0 for m in ordered}


def _sequential_delays(
    ordered: Sequence[NeighborhoodMember],
    *,
    timing_config: SyncTimingConfig,
    leds_per_meter: float,
) -> dict[str, float]:
    delays: dict[str, float] = {}
    cumulative_distance = 0.0
    for k, member in enumerate(ordered):
        travel_ms = (cumulative_distance / timing_config.pixels_per_second) * 1000.0
        delays[member.member_id] = travel_ms + timing_config.gap_delay_ms * k
        cumulative_distance += member.run_length(leds_per_meter)
    return delays


_HANDLERS: dict[SyncType, Callable[..., dict[str, float]]] = {
    SyncType.SEQUENTIAL_FLOW: _sequential_delays,
    SyncType.SIMULTANEOUS: _zero_delays,
    SyncType.PATTERN_MATCH: _zero_delays,
    SyncType.COLOR_HARMONY: _zero_delays,
}


def assign_colors(
    ordered: Sequence[NeighborhoodMember],
    colors: Sequence[Color],
    sync_type: SyncType,
    member_color_overrides: Mapping[str, Sequence[Color]] | None = None,
) -> dict[str, tuple[Color, ...]]:
    """Colours per member.

    Colour harmony hands each member one colour by traversal index, cycling
    when there are more members than colours. Every other variant shows the
    full list everywhere. An explicit override always wins.
    """
    overrides = member_color_overrides or {}
    palette = tuple(colors)
    assigned: dict[str, tuple[Color, ...]] = {}
    for index, member in enumerate(ordered):
        if member.member_id in overrides and overrides[member.member_id]:
            assigned[member.member_id] = tuple(overrides[member.member_id])
        elif sync_type == SyncType.COLOR_HARMONY and palette:
            assigned[member.member_id] = (palette[index % len(palette)],)
        else:
            assigned[member.member_id] = palette
    return assigned


def compute_timing(
    members: Iterable[NeighborhoodMember],
    timing_config: SyncTimingConfig,
    sync_type: SyncType,
    colors: Sequence[Color] = (),
    *,
    member_color_overrides: Mapping[str, Sequence[Color]] | None = None,
    leds_per_meter: float = DEFAULT_LEDS_PER_METER,
) -> TimingPlan:
    """
    Compute delays (and colour slots) for already-eligible members.

    Args:
        members: Participating members; callers filter paused / opted-out first
        timing_config: Wave speed, gap and direction
        sync_type: Timing variant
        colors: Command colours
        member_color_overrides: Explicit per-member colours
        leds_per_meter: Strip density used when a member has no roofline length

    Returns:
        TimingPlan with one entry per member
    """
    ordered = traversal_order(members, timing_config)
    handler = _HANDLERS[SyncType(sync_type)]
    delays = handler(ordered, timing_config=timing_config, leds_per_meter=leds_per_meter)

    plan = TimingPlan(
        sync_type=SyncType(sync_type),
        order=tuple(m.member_id for m in ordered),
        delays_ms=delays,
        member_colors=assign_colors(ordered, colors, SyncType(sync_type), member_color_overrides),
    )
    logger.debug("Timing plan (%s) for %d members: %s", plan.sync_type.value, len(plan), plan.delays_ms)
    return plan
