"""
Neighborhood Service
====================

Application service for the surrounding app: group membership, the member's
own participation state and schedule management, all persisted through the
shared ``DocumentStore``.

Participation changes are self-service. The service acts on behalf of one
member (``member_id``) and refuses to change anybody else's state.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from typing import TYPE_CHECKING, Callable, Sequence

from neighborsync.domain import participation
from neighborsync.domain.exceptions import NotFoundError, ParticipationPermissionError, ValidationError
from neighborsync.domain.neighborhood import NeighborhoodMember
from neighborsync.domain.schedules import SyncSchedule
from neighborsync.infrastructure.schedule_repository import DocumentScheduleRepository
from neighborsync.utils.time import utc_now

if TYPE_CHECKING:
    from neighborsync.domain.schedules import ScheduleRepository
    from neighborsync.services.protocols import DocumentStore

logger = logging.getLogger(__name__)


class NeighborhoodService:
    """Membership, participation and schedule CRUD for one acting member."""

    def __init__(
        self,
        store: "DocumentStore",
        member_id: str,
        *,
        schedule_repo: "ScheduleRepository" | None = None,
        max_effect_id: int | None = None,
    ):
        if not member_id:
            raise ValidationError("member_id is required")
        self.store = store
        self.member_id = member_id
        self.schedule_repo = schedule_repo or DocumentScheduleRepository(store)
        self.max_effect_id = max_effect_id

    # ==================== Members ====================

    def list_members(self, group_id: str) -> list[NeighborhoodMember]:
        """Members ordered by position (ties keep store order)."""
        return sorted(self.store.read_member_records(group_id), key=lambda m: m.position_index)

    def get_member(self, group_id: str, member_id: str | None = None) -> NeighborhoodMember:
        member_id = member_id or self.member_id
        for member in self.store.read_member_records(group_id):
            if member.member_id == member_id:
                return member
        raise NotFoundError(
            f"Member {member_id} is not in group {group_id}",
            detail={"group_id": group_id, "member_id": member_id},
        )

    def join_group(
        self,
        group_id: str,
        *,
        display_name: str | None = None,
        led_count: int | None = None,
        roofline_meters: float | None = None,
        controller_host: str | None = None,
        position_index: int | None = None,
    ) -> NeighborhoodMember:
        """Add the acting member at the end of the street (or at ``position_index``)."""
        existing = self.store.read_member_records(group_id)
        for member in existing:
            if member.member_id == self.member_id:
                logger.info("Member %s already in group %s", self.member_id, group_id)
                return member

        if position_index is None:
            position_index = len(existing)
        member = NeighborhoodMember(
            member_id=self.member_id,
            group_id=group_id,
            display_name=display_name or f"Home #{position_index + 1}",
            position_index=position_index,
            roofline_meters=roofline_meters,
            controller_host=controller_host,
            is_online=True,
        )
        if led_count is not None:
            member.led_count = int(led_count)
        self.store.write_member_record(member)
        logger.info("Member %s joined group %s at position %s", self.member_id, group_id, position_index)
        return member

    def leave_group(self, group_id: str) -> None:
        self.get_member(group_id)
        self.store.delete_member_record(group_id, self.member_id)
        logger.info("Member %s left group %s", self.member_id, group_id)

    def update_member(self, member: NeighborhoodMember) -> NeighborhoodMember:
        """Replace the acting member's own record."""
        if member.member_id != self.member_id:
            raise ParticipationPermissionError(
                "Members can only update their own record",
                detail={"member_id": member.member_id, "actor_id": self.member_id},
            )
        self.get_member(member.group_id)
        self.store.write_member_record(member)
        return member

    def reorder_members(self, group_id: str, ordered_member_ids: Sequence[str]) -> list[NeighborhoodMember]:
        """Renumber positions 0..n-1 following ``ordered_member_ids`` (street order)."""
        members = {m.member_id: m for m in self.store.read_member_records(group_id)}
        unknown = [mid for mid in ordered_member_ids if mid not in members]
        if unknown:
            raise NotFoundError(
                f"Unknown member(s) in group {group_id}: {', '.join(unknown)}",
                detail={"group_id": group_id, "member_ids": unknown},
            )
        if len(set(ordered_member_ids)) != len(ordered_member_ids):
            raise ValidationError("ordered_member_ids contains duplicates")

        reordered = []
        for index, member_id in enumerate(ordered_member_ids):
            member = members[member_id]
            if member.position_index != index:
                member = replace(member, position_index=index)
                self.store.write_member_record(member)
            reordered.append(member)
        logger.info("Reordered %d member(s) in group %s", len(reordered), group_id)
        return reordered

    def update_presence(self, group_id: str, *, is_online: bool = True) -> NeighborhoodMember:
        member = replace(self.get_member(group_id), is_online=bool(is_online), last_seen=utc_now())
        self.store.write_member_record(member)
        return member

    # ==================== Participation ====================

    def _transition(
        self,
        group_id: str,
        member_id: str | None,
        change: Callable[[NeighborhoodMember], NeighborhoodMember],
    ) -> NeighborhoodMember:
        current = self.get_member(group_id, member_id)
        updated = change(current)
        if updated is not current:
            self.store.write_member_record(updated)
        return updated

    def pause(self, group_id: str, member_id: str | None = None) -> NeighborhoodMember:
        return self._transition(
            group_id, member_id, lambda m: participation.pause(m, actor_id=self.member_id)
        )

    def resume(self, group_id: str, member_id: str | None = None) -> NeighborhoodMember:
        return self._transition(
            group_id, member_id, lambda m: participation.resume(m, actor_id=self.member_id)
        )

    def opt_out_of_schedule(
        self, group_id: str, schedule_id: str, member_id: str | None = None
    ) -> NeighborhoodMember:
        return self._transition(
            group_id,
            member_id,
            lambda m: participation.opt_out_of_schedule(m, schedule_id, actor_id=self.member_id),
        )

    def opt_in_to_schedule(
        self, group_id: str, schedule_id: str, member_id: str | None = None
    ) -> NeighborhoodMember:
        return self._transition(
            group_id,
            member_id,
            lambda m: participation.opt_in_to_schedule(m, schedule_id, actor_id=self.member_id),
        )

    # ==================== Schedules ====================

    def list_schedules(self, group_id: str) -> list[SyncSchedule]:
        return sorted(self.schedule_repo.list_for_group(group_id), key=lambda s: s.start_date)

    def _find_schedule(self, schedules: list[SyncSchedule], group_id: str, schedule_id: str) -> int:
        for index, schedule in enumerate(schedules):
            if schedule.schedule_id == schedule_id:
                return index
        raise NotFoundError(
            f"Schedule {schedule_id} not found in group {group_id}",
            detail={"group_id": group_id, "schedule_id": schedule_id},
        )

    def create_schedule(self, schedule: SyncSchedule) -> SyncSchedule:
        """Validate and append ``schedule``; a missing id is generated."""
        schedule = replace(
            schedule,
            schedule_id=schedule.schedule_id or uuid.uuid4().hex,
            created_by=schedule.created_by or self.member_id,
        )
        schedule.validate(self.max_effect_id)
        schedules = self.schedule_repo.list_for_group(schedule.group_id)
        if any(s.schedule_id == schedule.schedule_id for s in schedules):
            raise ValidationError(f"Schedule {schedule.schedule_id} already exists")
        schedules.append(schedule)
        self.schedule_repo.replace_for_group(schedule.group_id, schedules)
        logger.info("Created schedule %s for group %s", schedule.schedule_id, schedule.group_id)
        return schedule

    def update_schedule(self, schedule: SyncSchedule) -> SyncSchedule:
        schedule.validate(self.max_effect_id)
        schedules = self.schedule_repo.list_for_group(schedule.group_id)
        index = self._find_schedule(schedules, schedule.group_id, schedule.schedule_id)
        schedules[index] = schedule
        self.schedule_repo.replace_for_group(schedule.group_id, schedules)
        logger.info("Updated schedule %s", schedule.schedule_id)
        return schedule

    def delete_schedule(self, group_id: str, schedule_id: str) -> None:
        schedules = self.schedule_repo.list_for_group(group_id)
        index = self._find_schedule(schedules, group_id, schedule_id)
        del schedules[index]
        self.schedule_repo.replace_for_group(group_id, schedules)
        logger.info("Deleted schedule %s from group %s", schedule_id, group_id)

    def set_schedule_enabled(self, group_id: str, schedule_id: str, enabled: bool) -> SyncSchedule:
        schedules = self.schedule_repo.list_for_group(group_id)
        index = self._find_schedule(schedules, group_id, schedule_id)
        schedules[index] = replace(schedules[index], enabled=bool(enabled))
        self.schedule_repo.replace_for_group(group_id, schedules)
        logger.info("Schedule %s %s", schedule_id, "enabled" if enabled else "disabled")
        return schedules[index]
