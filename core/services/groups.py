"""Group registry and group-scoped distribution."""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFound, RuleViolation, ValidationFailed
from core.models import Group, GroupEntitlementHistory, GroupMember, ParticipantGroup
from core.models.base import utcnow
from core.models.group import GROUP_TYPES
from core.services.bulk import FanOutResult, fan_out, resolve_entitlement_ref
from core.services.common import get_participant, positive_count
from core.services.distribution import apply_distribution, apply_undo, find_instance

logger = logging.getLogger("checkpoint.groups")


async def list_groups(session: AsyncSession) -> list[Group]:
    result = await session.execute(select(Group).where(Group.is_active.is_(True)).order_by(Group.name))
    return list(result.scalars().all())


async def get_group(session: AsyncSession, group_id: int) -> Group:
    group = await session.get(Group, group_id)
    if not group or not group.is_active:
        raise NotFound("Group not found", "GROUP_NOT_FOUND")
    return group


async def _name_taken(session: AsyncSession, name: str, exclude_id: int | None = None) -> bool:
    stmt = (
        select(Group.id)
        .where(func.lower(Group.name) == name.strip().lower())
        .where(Group.is_active.is_(True))
    )
    if exclude_id is not None:
        stmt = stmt.where(Group.id != exclude_id)
    result = await session.execute(stmt)
    return result.first() is not None


def _check_group_type(group_type: str) -> None:
    if group_type not in GROUP_TYPES:
        raise ValidationFailed(f"group_type must be one of: {', '.join(GROUP_TYPES)}", "INVALID_GROUP_TYPE")


async def create_group(session: AsyncSession, data: dict, actor_id: Optional[int]) -> Group:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationFailed("Group name is required", "VALIDATION_ERROR")
    if await _name_taken(session, name):
        raise RuleViolation("Group with this name already exists", "GROUP_EXISTS")
    group_type = data.get("group_type") or "custom"
    _check_group_type(group_type)
    group = Group(
        name=name,
        description=data.get("description"),
        color=data.get("color") or "#007AFF",
        group_type=group_type,
        is_active=True,
        created_by_id=actor_id,
        members=[],
    )
    session.add(group)
    await session.commit()
    await session.refresh(group)
    logger.info("Group created: %s (id=%d)", group.name, group.id)
    return group


async def update_group(session: AsyncSession, group_id: int, data: dict) -> Group:
    group = await get_group(session, group_id)
    name = (data.get("name") or "").strip()
    if name and name != group.name:
        if await _name_taken(session, name, exclude_id=group.id):
            raise RuleViolation("Group with this name already exists", "GROUP_EXISTS")
        group.name = name
        for backlink in (await session.execute(
            select(ParticipantGroup).where(ParticipantGroup.group_id == group.id)
        )).scalars():
            backlink.group_name = name
    if "description" in data and data["description"] is not None:
        group.description = data["description"]
    if data.get("color"):
        group.color = data["color"]
    if data.get("group_type"):
        _check_group_type(data["group_type"])
        group.group_type = data["group_type"]
    await session.commit()
    await session.refresh(group)
    return group


async def delete_group(session: AsyncSession, group_id: int) -> None:
    """Soft delete. Participant backlinks go, group distribution history stays."""
    group = await get_group(session, group_id)
    group.is_active = False
    await session.execute(delete(ParticipantGroup).where(ParticipantGroup.group_id == group.id))
    await session.commit()
    logger.info("Group deleted: %s (id=%d)", group.name, group.id)


async def add_members(
    session: AsyncSession, group_id: int, participant_ids, actor_id: Optional[int]
) -> FanOutResult:
    if not participant_ids or not isinstance(participant_ids, list):
        raise ValidationFailed("participant_ids array is required", "VALIDATION_ERROR")
    group = await get_group(session, group_id)
    gid, group_name = group.id, group.name
    out = FanOutResult()
    for pid in participant_ids:
        pid = str(pid).strip()
        participant = await get_participant(session, pid)
        if not participant:
            out.fail(pid, "Participant not found")
            continue
        if any(link.group_id == gid for link in participant.groups):
            out.fail(pid, "Already in group", participant.name)
            continue
        now = utcnow()
        group.members.append(GroupMember(participant=participant, added_by_id=actor_id, added_at=now))
        participant.groups.append(ParticipantGroup(group_id=gid, group_name=group_name, added_at=now))
        await session.commit()
        out.results.append({"participant_id": pid, "name": participant.name})
    logger.info("Added %d participants to group %s", len(out.results), group_name)
    return out


async def remove_member(session: AsyncSession, group_id: int, participant_id: str) -> None:
    group = await get_group(session, group_id)
    participant = await get_participant(session, participant_id)
    if participant:
        for member in list(group.members):
            if member.participant_id == participant.id:
                group.members.remove(member)
        for link in list(participant.groups):
            if link.group_id == group.id:
                participant.groups.remove(link)
    await session.commit()


def _member_ids(group: Group) -> list[str]:
    return [m.participant.participant_id for m in group.members if m.participant is not None]


async def group_distribute(
    session: AsyncSession,
    group_id: int,
    actor_id: Optional[int],
    entitlement: str | None = None,
    template_id: Any = None,
    count=1,
) -> FanOutResult:
    """Distribute to every member and record a group-scoped history entry for each success."""
    group = await get_group(session, group_id)
    gid, group_name = group.id, group.name
    ref = resolve_entitlement_ref(entitlement, template_id)
    count = positive_count(count)

    async def action(participant):
        instance, granted = await apply_distribution(
            session, participant, actor_id, ref.name, ref.template_id, count
        )
        participant.group_entitlement_history.append(GroupEntitlementHistory(
            group_id=gid,
            group_name=group_name,
            template_id=instance.template_id,
            entitlement_name=instance.name,
            entitlement_type=ref.entitlement_type,
            count=granted,
            distributed_by_id=actor_id,
            distributed_at=utcnow(),
        ))
        return {
            "participant_id": participant.participant_id,
            "name": participant.name,
            "entitlement": instance.name,
            "distributed": granted,
            "given": instance.given,
        }

    out = await fan_out(session, _member_ids(group), action)
    logger.info(
        "Group distribute %s to %s x%d: %d ok, %d failed",
        ref.label, group_name, count, len(out.results), len(out.errors),
    )
    return out


def latest_group_record(participant, group_id: int, entitlement_name: str) -> Optional[GroupEntitlementHistory]:
    """Most recent group distribution of this entitlement that has not been undone."""
    wanted = entitlement_name.lower()
    for record in reversed(participant.group_entitlement_history):
        if record.group_id == group_id and record.undone_at is None and record.entitlement_name.lower() == wanted:
            return record
    return None


async def group_undo(
    session: AsyncSession,
    group_id: int,
    actor_id: Optional[int],
    entitlement: str | None = None,
    template_id: Any = None,
    count=1,
) -> FanOutResult:
    """Reverse each member's latest group distribution, at most what that distribution granted."""
    group = await get_group(session, group_id)
    gid, group_name = group.id, group.name
    ref = resolve_entitlement_ref(entitlement, template_id)
    count = positive_count(count)

    async def action(participant):
        instance = find_instance(participant, ref.name, ref.template_id)
        record = latest_group_record(participant, gid, instance.name)
        if record is None:
            raise RuleViolation(f'No recent group distribution found for "{instance.name}"', "NOTHING_TO_UNDO")
        instance, undone = await apply_undo(
            session, participant, actor_id, ref.name, ref.template_id, min(count, record.count)
        )
        record.undone_at = utcnow()
        record.undone_by_id = actor_id
        return {
            "participant_id": participant.participant_id,
            "name": participant.name,
            "entitlement": instance.name,
            "undone": undone,
            "given": instance.given,
        }

    out = await fan_out(session, _member_ids(group), action)
    logger.info(
        "Group undo %s for %s: %d ok, %d failed", ref.label, group_name, len(out.results), len(out.errors)
    )
    return out
