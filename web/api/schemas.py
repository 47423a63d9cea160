"""Response schemas shared by the participant, entitlement and group routes."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class EntitlementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    template_id: Optional[int]
    name: str
    description: Optional[str]
    category: str
    is_countable: bool
    max_count: int
    given: int
    given_at: list[str]
    given_by: list[Optional[int]]
    added_by_id: Optional[int]
    added_at: Optional[datetime]
    undone_by_id: Optional[int]
    undone_at: Optional[datetime]
    last_undone_count: int


class HistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entitlement_name: str
    template_id: Optional[int]
    action: str
    count: int
    performed_by_id: Optional[int]
    performed_at: datetime


class TypeChangeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    previous_type: bool
    new_type: bool
    changed_by_id: Optional[int]
    changed_at: datetime
    reason: Optional[str]


class ParticipantGroupResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    group_id: int
    group_name: str
    added_at: datetime


class GroupHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    group_id: int
    group_name: str
    template_id: Optional[int]
    entitlement_name: str
    entitlement_type: str
    count: int
    distributed_by_id: Optional[int]
    distributed_at: datetime
    undone_at: Optional[datetime]
    undone_by_id: Optional[int]


class ParticipantSummary(BaseModel):
    """List view: no QR image, no history."""

    model_config = ConfigDict(from_attributes=True)

    participant_id: str
    name: str
    email: str
    phone: Optional[str]
    is_player: bool
    food_preference: str
    is_present: bool
    attendance_time: Optional[datetime]
    attendance_marked_by_id: Optional[int]
    created_at: Optional[datetime]
    entitlements: list[EntitlementResponse] = []


class ParticipantDetail(ParticipantSummary):
    qr_code: Optional[str]
    entitlement_history: list[HistoryResponse] = []
    type_change_history: list[TypeChangeResponse] = []
    groups: list[ParticipantGroupResponse] = []
    group_entitlement_history: list[GroupHistoryResponse] = []


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str]
    category: str
    is_countable: bool
    max_count: int
    default_for_players: bool
    default_for_participants: bool
    is_active: bool
    created_by_id: Optional[int]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]


class EntitlementRequest(BaseModel):
    """Entitlement reference plus unit count, as sent by the counters."""

    entitlement: Optional[str] = None  # template name, or a legacy token on bulk/group paths
    template_id: Optional[int] = None
    count: Any = 1


class BulkEntitlementRequest(EntitlementRequest):
    participant_ids: list[str]
