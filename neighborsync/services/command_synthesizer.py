"""
Command Synthesizer
===================

Turns a start request (manual or from a schedule) into one immutable
``SyncCommand`` and publishes it as the group's new ``GroupRecord``.

The command's ``origin_timestamp`` is the shared epoch every member offsets
from and also the record's last-write-wins version, so it is kept strictly
increasing per group: never below the wall clock, never at or below anything
already issued here or already stored for the group.

Errors raised here (``InvalidCommandError``, ``NoEligibleMembersError``)
reach the caller and nothing is published.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

from neighborsync.config import load_config
from neighborsync.domain.commands import GroupRecord, SyncCommand, validate_effect_id
from neighborsync.domain.exceptions import NoEligibleMembersError
from neighborsync.domain.neighborhood import NeighborhoodGroup, NeighborhoodMember, SyncTimingConfig
from neighborsync.domain.participation import eligible_members, is_eligible
from neighborsync.domain.timing import TimingPlan, compute_timing
from neighborsync.enums import SyncType
from neighborsync.utils.time import now_ms

if TYPE_CHECKING:
    from neighborsync.domain.schedules import SyncSchedule
    from neighborsync.services.broadcast_distributor import BroadcastDistributor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartResult:
    """What the initiator gets back right after a successful start."""

    command: SyncCommand
    plan: TimingPlan
    group: NeighborhoodGroup
    record: GroupRecord

    @property
    def origin_timestamp(self) -> int:
        return self.command.origin_timestamp


class CommandSynthesizer:
    """Builds, stamps and publishes group commands."""

    def __init__(
        self,
        distributor: "BroadcastDistributor",
        *,
        clock: Callable[[], int] | None = None,
        lead_time_ms: int | None = None,
        leds_per_meter: float | None = None,
        max_effect_id: int | None = None,
    ):
        if None in (lead_time_ms, leds_per_meter, max_effect_id):
            config = load_config()
            lead_time_ms = config.command_lead_time_ms if lead_time_ms is None else lead_time_ms
            leds_per_meter = config.leds_per_meter if leds_per_meter is None else leds_per_meter
            max_effect_id = config.max_effect_id if max_effect_id is None else max_effect_id

        self.distributor = distributor
        self.lead_time_ms = int(lead_time_ms)
        self.leds_per_meter = float(leds_per_meter)
        self.max_effect_id = int(max_effect_id)
        self._clock = clock or now_ms
        self._lock = threading.Lock()
        self._last_origin: dict[str, int] = {}

    # ── Versioning ────────────────────────────────────────────────

    def _next_version(self, group_id: str) -> int:
        """Caller holds ``self._lock``."""
        candidate = int(self._clock())
        floor = self._last_origin.get(group_id)
        current = self.distributor.current(group_id)
        if current is not None and (floor is None or current.version > floor):
            floor = current.version
        if floor is not None and candidate <= floor:
            candidate = floor + 1
        return candidate

    # ── Start / stop ──────────────────────────────────────────────

    def start(
        self,
        group: NeighborhoodGroup,
        members: Iterable[NeighborhoodMember],
        *,
        sync_type: SyncType | str,
        effect_id: int,
        colors: Sequence[Any],
        speed: int = 128,
        intensity: int = 128,
        brightness: int = 200,
        timing_config: SyncTimingConfig | None = None,
        pattern_name: str | None = None,
        palette_id: int = 0,
        schedule: "SyncSchedule" | None = None,
        member_color_overrides: Mapping[str, Sequence[Any]] | None = None,
    ) -> StartResult:
        """
        Start a synchronized show for ``group``.

        Args:
            group: Target group (returned updated, never mutated)
            members: Current member snapshot of the group
            schedule: Triggering schedule; its opt-outs are applied and
                captured in the command

        Returns:
            StartResult with the published command and the initiator's view
            of the timing plan

        Raises:
            InvalidCommandError: Empty colours, unknown effect id, bad levels
            NoEligibleMembersError: Everyone is paused or opted out
        """
        members = list(members)
        validate_effect_id(effect_id, self.max_effect_id)
        timing_config = timing_config or SyncTimingConfig()
        excluded = frozenset(
            m.member_id for m in members if not m.is_paused and not is_eligible(m, schedule)
        )

        with self._lock:
            origin = self._next_version(group.group_id)
            command = SyncCommand(
                group_id=group.group_id,
                origin_timestamp=origin,
                sync_type=sync_type,
                effect_id=effect_id,
                colors=tuple(colors or ()),
                speed=speed,
                intensity=intensity,
                brightness=brightness,
                timing_config=timing_config,
                pattern_name=pattern_name,
                palette_id=palette_id,
                schedule_id=schedule.schedule_id if schedule is not None else None,
                excluded_member_ids=excluded,
                member_color_overrides=member_color_overrides or {},
                lead_time_ms=self.lead_time_ms,
            )

            eligible = eligible_members(members, schedule)
            if not eligible:
                raise NoEligibleMembersError(
                    f"No eligible members in group {group.group_id}",
                    detail={
                        "group_id": group.group_id,
                        "member_count": len(members),
                        "schedule_id": command.schedule_id,
                    },
                )

            plan = compute_timing(
                eligible,
                command.timing_config,
                command.sync_type,
                command.colors,
                member_color_overrides=command.member_color_overrides,
                leds_per_meter=self.leds_per_meter,
            )
            record = self.distributor.publish(GroupRecord.started(command))
            self._last_origin[group.group_id] = origin

        logger.info(
            "Started %s '%s' on group %s (origin=%s, %d/%d members, schedule=%s)",
            command.sync_type.value,
            pattern_name,
            group.group_id,
            origin,
            len(plan),
            len(members),
            command.schedule_id,
        )
        updated = replace(group, is_active=True, active_pattern_name=pattern_name)
        return StartResult(command=command, plan=plan, group=updated, record=record)

    def start_from_schedule(
        self,
        group: NeighborhoodGroup,
        members: Iterable[NeighborhoodMember],
        schedule: "SyncSchedule",
    ) -> StartResult:
        return self.start(
            group,
            members,
            sync_type=schedule.sync_type,
            effect_id=schedule.effect_id,
            colors=schedule.colors,
            speed=schedule.speed,
            intensity=schedule.intensity,
            brightness=schedule.brightness,
            timing_config=schedule.timing_config,
            pattern_name=schedule.pattern_name,
            palette_id=schedule.palette_id,
            schedule=schedule,
        )

    def stop(self, group: NeighborhoodGroup) -> NeighborhoodGroup:
        """Publish an inactive record that supersedes any running command."""
        with self._lock:
            version = self._next_version(group.group_id)
            self.distributor.publish_status(group.group_id, is_active=False, version=version)
            self._last_origin[group.group_id] = version
        logger.info("Stopped sync on group %s (version=%s)", group.group_id, version)
        return replace(group, is_active=False, active_pattern_name=None)
