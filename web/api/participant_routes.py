"""Participant API routes: registration, import/export, attendance, distribution."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from core.models import StaffUser
from core.models.base import async_session_factory
from core.services import caps, catalog, distribution, registry
from core.services.common import require_participant
from web.api.schemas import (
    EntitlementRequest,
    ParticipantDetail,
    ParticipantSummary,
)
from web.auth import (
    require_attendance_user,
    require_distribution_user,
    require_settings_user,
    require_undo_user,
    require_user,
    require_user_manager,
)

router = APIRouter(prefix="/api/participants", tags=["participants"])


class ParticipantCreate(BaseModel):
    name: str
    email: str
    phone: Optional[str] = None
    is_player: bool = False
    food_preference: str = "no-preference"
    send_email: bool = True


class TypeChangeRequest(BaseModel):
    is_player: bool
    reason: Optional[str] = None


class ParticipantTypeRequest(BaseModel):
    participant_type: str = "all"  # all, players, participants


class LimitUpdateRequest(ParticipantTypeRequest):
    entitlement_name: str = ""
    new_max_count: Optional[int] = None


@router.get("")
async def list_participants(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    is_present: Optional[bool] = None,
    is_player: Optional[bool] = None,
    food_preference: Optional[str] = None,
    user: StaffUser = Depends(require_user),
):
    """Paginated participant list, newest first."""
    async with async_session_factory() as session:
        data = await registry.list_participants(session, page, limit, is_present, is_player, food_preference)
        return {
            "participants": [ParticipantSummary.model_validate(p) for p in data["participants"]],
            "pagination": data["pagination"],
        }


@router.post("", status_code=201)
async def create_participant(body: ParticipantCreate, user: StaffUser = Depends(require_settings_user)):
    """Register a participant, attach its default entitlements and mail its QR code."""
    async with async_session_factory() as session:
        participant, email_sent = await registry.create_participant(
            session, body.model_dump(exclude={"send_email"}), user.id, send_email=body.send_email
        )
        return {
            "participant": ParticipantDetail.model_validate(participant),
            "email_sent": email_sent,
        }


@router.post("/import")
async def import_participants(file: UploadFile = File(...), user: StaffUser = Depends(require_user_manager)):
    """Bulk registration from a CSV upload (name, email, phone, isPlayer, foodPreference)."""
    content = await file.read()
    async with async_session_factory() as session:
        result = await registry.import_participants(session, content, user.id)
    return JSONResponse(status_code=201 if result["success"] else 400, content=result)


@router.get("/export")
async def export_participants(user: StaffUser = Depends(require_settings_user)):
    """Download all participants as CSV."""
    async with async_session_factory() as session:
        body = await registry.export_participants_csv(session)
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="participants.csv"'},
    )


@router.post("/auto-assign")
async def auto_assign(body: ParticipantTypeRequest, user: StaffUser = Depends(require_settings_user)):
    """Attach missing default entitlements to all, players or participants."""
    async with async_session_factory() as session:
        return await catalog.auto_assign_all(session, body.participant_type, user.id)


@router.post("/sync-entitlement-limits")
async def sync_entitlement_limits(body: ParticipantTypeRequest, user: StaffUser = Depends(require_settings_user)):
    """Copy limit settings (beerLimit, softDrinkLimit) onto stored entitlement caps."""
    async with async_session_factory() as session:
        return await caps.sync_entitlement_limits(session, body.participant_type)


@router.post("/bulk-update-entitlement-limits")
async def bulk_update_entitlement_limits(body: LimitUpdateRequest, user: StaffUser = Depends(require_settings_user)):
    async with async_session_factory() as session:
        return await caps.bulk_update_entitlement_limits(
            session, body.entitlement_name, body.new_max_count, body.participant_type
        )


@router.get("/{participant_id}", response_model=ParticipantDetail)
async def get_participant(participant_id: str, user: StaffUser = Depends(require_user)):
    """Participant with entitlements, history and groups. This is what a QR scan resolves to."""
    async with async_session_factory() as session:
        participant = await require_participant(session, participant_id)
        return ParticipantDetail.model_validate(participant)


@router.post("/{participant_id}/attendance", response_model=ParticipantDetail)
async def mark_attendance(participant_id: str, user: StaffUser = Depends(require_attendance_user)):
    async with async_session_factory() as session:
        participant = await registry.mark_attendance(session, participant_id, user.id)
        return ParticipantDetail.model_validate(participant)


@router.delete("/{participant_id}/attendance", response_model=ParticipantDetail)
async def undo_attendance(participant_id: str, user: StaffUser = Depends(require_undo_user)):
    """Clear presence. Entitlements already handed out are not taken back."""
    async with async_session_factory() as session:
        participant = await registry.undo_attendance(session, participant_id, user.id)
        return ParticipantDetail.model_validate(participant)


@router.post("/{participant_id}/entitlement")
async def distribute_entitlement(
    participant_id: str, body: EntitlementRequest, user: StaffUser = Depends(require_distribution_user)
):
    """Hand out ``count`` units of an entitlement. Participant must be present."""
    async with async_session_factory() as session:
        return await distribution.distribute(
            session, participant_id, user.id, body.entitlement, body.template_id, body.count
        )


@router.post("/{participant_id}/entitlement/undo")
async def undo_entitlement(participant_id: str, body: EntitlementRequest, user: StaffUser = Depends(require_undo_user)):
    """Take back the most recent ``count`` units."""
    async with async_session_factory() as session:
        return await distribution.undo(
            session, participant_id, user.id, body.entitlement, body.template_id, body.count
        )


@router.patch("/{participant_id}/type")
async def change_type(participant_id: str, body: TypeChangeRequest, user: StaffUser = Depends(require_settings_user)):
    """Switch between player and participant; new defaults are attached, nothing is removed."""
    async with async_session_factory() as session:
        participant, attached = await registry.change_participant_type(
            session, participant_id, body.is_player, user.id, body.reason
        )
        return {"participant": ParticipantDetail.model_validate(participant), "entitlements_added": attached}
