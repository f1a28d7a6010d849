"""
Participation State
===================

Per-member opt-in / opt-out / pause rules.

- Active <-> Paused transitions are self-service: only the member itself can
  change its own state. There is no remote override by another member.
- Schedule opt-out is independent of the global state. Paused always wins
  and excludes the member from every command, scheduled or manual.
- ``is_online`` is advisory and never excludes anyone.

Transitions return updated copies; callers persist them through the store.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Iterable

from neighborsync.domain.exceptions import ParticipationPermissionError
from neighborsync.domain.neighborhood import NeighborhoodMember
from neighborsync.enums import ParticipationStatus

if TYPE_CHECKING:
    from neighborsync.domain.commands import SyncCommand
    from neighborsync.domain.schedules import SyncSchedule

logger = logging.getLogger(__name__)


def _require_self(member: NeighborhoodMember, actor_id: str) -> None:
    if actor_id != member.member_id:
        raise ParticipationPermissionError(
            "Members can only change their own participation",
            detail={"member_id": member.member_id, "actor_id": actor_id},
        )


def pause(member: NeighborhoodMember, *, actor_id: str) -> NeighborhoodMember:
    _require_self(member, actor_id)
    if member.is_paused:
        return member
    logger.info("Member %s paused sync participation", member.member_id)
    return replace(member, participation_status=ParticipationStatus.PAUSED)


def resume(member: NeighborhoodMember, *, actor_id: str) -> NeighborhoodMember:
    _require_self(member, actor_id)
    if not member.is_paused:
        return member
    logger.info("Member %s resumed sync participation", member.member_id)
    return replace(member, participation_status=ParticipationStatus.ACTIVE)


def opt_out_of_schedule(member: NeighborhoodMember, schedule_id: str, *, actor_id: str) -> NeighborhoodMember:
    _require_self(member, actor_id)
    if schedule_id in member.opted_out_schedule_ids:
        return member
    logger.info("Member %s opted out of schedule %s", member.member_id, schedule_id)
    return replace(member, opted_out_schedule_ids=member.opted_out_schedule_ids | {schedule_id})


def opt_in_to_schedule(member: NeighborhoodMember, schedule_id: str, *, actor_id: str) -> NeighborhoodMember:
    _require_self(member, actor_id)
    if schedule_id not in member.opted_out_schedule_ids:
        return member
    logger.info("Member %s opted back in to schedule %s", member.member_id, schedule_id)
    return replace(member, opted_out_schedule_ids=member.opted_out_schedule_ids - {schedule_id})


def is_eligible(member: NeighborhoodMember, schedule: "SyncSchedule" | None = None) -> bool:
    """Whether ``member`` takes part in a manual start (no schedule) or in ``schedule``."""
    if member.is_paused:
        return False
    if schedule is None:
        return True
    if member.is_opted_out_of(schedule.schedule_id):
        return False
    return member.member_id not in schedule.opted_out_member_ids


def is_eligible_for_command(member: NeighborhoodMember, command: "SyncCommand") -> bool:
    """Eligibility as reconstructed by a receiving client from the command alone."""
    if member.is_paused:
        return False
    if member.member_id in command.excluded_member_ids:
        return False
    return not member.is_opted_out_of(command.schedule_id)


def eligible_members(
    members: Iterable[NeighborhoodMember],
    schedule: "SyncSchedule" | None = None,
) -> list[NeighborhoodMember]:
    """Filter ``members`` keeping input order (insertion order breaks position ties)."""
    result = []
    for member in members:
        if is_eligible(member, schedule):
            result.append(member)
        else:
            logger.debug("Excluding %s from sync", member.member_id)
    return result
