"""Group API routes: group registry and group-wide distribution."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict

from core.models import Group, StaffUser
from core.models.base import async_session_factory
from core.services import groups
from web.api.schemas import EntitlementRequest
from web.auth import (
    require_distribution_user,
    require_settings_user,
    require_undo_user,
    require_user,
)

router = APIRouter(prefix="/api/groups", tags=["groups"])


class GroupCreate(BaseModel):
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    group_type: Optional[str] = None  # team, category, custom


class GroupUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    color: Optional[str] = None
    group_type: Optional[str] = None


class AddMembersRequest(BaseModel):
    participant_ids: list[str]


class MemberResponse(BaseModel):
    participant_id: str
    name: str
    email: str
    is_player: bool
    food_preference: str
    is_present: bool
    added_by_id: Optional[int]
    added_at: datetime


class GroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    color: str
    group_type: str
    is_active: bool
    created_by_id: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]
    members: list[MemberResponse] = []


def _group_response(group: Group) -> GroupResponse:
    members = [
        MemberResponse(
            participant_id=m.participant.participant_id,
            name=m.participant.name,
            email=m.participant.email,
            is_player=m.participant.is_player,
            food_preference=m.participant.food_preference,
            is_present=m.participant.is_present,
            added_by_id=m.added_by_id,
            added_at=m.added_at,
        )
        for m in group.members
        if m.participant is not None
    ]
    return GroupResponse(
        id=group.id,
        name=group.name,
        description=group.description,
        color=group.color,
        group_type=group.group_type,
        is_active=group.is_active,
        created_by_id=group.created_by_id,
        created_at=group.created_at,
        updated_at=group.updated_at,
        members=members,
    )


@router.get("", response_model=list[GroupResponse])
async def list_groups(user: StaffUser = Depends(require_user)):
    """Active groups with their members."""
    async with async_session_factory() as session:
        return [_group_response(g) for g in await groups.list_groups(session)]


@router.post("", response_model=GroupResponse, status_code=201)
async def create_group(body: GroupCreate, user: StaffUser = Depends(require_settings_user)):
    async with async_session_factory() as session:
        group = await groups.create_group(session, body.model_dump(), user.id)
        return _group_response(group)


@router.get("/{group_id}", response_model=GroupResponse)
async def get_group(group_id: int, user: StaffUser = Depends(require_user)):
    async with async_session_factory() as session:
        return _group_response(await groups.get_group(session, group_id))


@router.put("/{group_id}", response_model=GroupResponse)
async def update_group(group_id: int, body: GroupUpdate, user: StaffUser = Depends(require_settings_user)):
    async with async_session_factory() as session:
        group = await groups.update_group(session, group_id, body.model_dump(exclude_unset=True))
        return _group_response(group)


@router.delete("/{group_id}")
async def delete_group(group_id: int, user: StaffUser = Depends(require_settings_user)):
    """Soft delete. Group distribution history on participants is kept."""
    async with async_session_factory() as session:
        await groups.delete_group(session, group_id)
    return {"ok": True}


@router.post("/{group_id}/members")
async def add_members(group_id: int, body: AddMembersRequest, user: StaffUser = Depends(require_settings_user)):
    async with async_session_factory() as session:
        out = await groups.add_members(session, group_id, body.participant_ids, user.id)
    return out.as_dict(message=f"Added {len(out.results)} participants to group")


@router.delete("/{group_id}/members/{participant_id}")
async def remove_member(group_id: int, participant_id: str, user: StaffUser = Depends(require_settings_user)):
    async with async_session_factory() as session:
        await groups.remove_member(session, group_id, participant_id)
    return {"ok": True}


@router.post("/{group_id}/distribute")
async def group_distribute(group_id: int, body: EntitlementRequest, user: StaffUser = Depends(require_distribution_user)):
    """Distribute to every member. Absent or capped members are reported, the rest still get it."""
    async with async_session_factory() as session:
        out = await groups.group_distribute(
            session, group_id, user.id, body.entitlement, body.template_id, body.count
        )
    return out.as_dict(message=f"Group distribution completed. {len(out.results)} participants updated.")


@router.post("/{group_id}/undo")
async def group_undo(group_id: int, body: EntitlementRequest, user: StaffUser = Depends(require_undo_user)):
    """Undo each member's most recent group distribution of this entitlement."""
    async with async_session_factory() as session:
        out = await groups.group_undo(
            session, group_id, user.id, body.entitlement, body.template_id, body.count
        )
    return out.as_dict(message=f"Group undo completed. {len(out.results)} participants updated.")
