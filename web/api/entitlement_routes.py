"""Entitlement API routes: template catalog, per-participant instances, bulk fan-out."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from core.models import StaffUser
from core.models.base import async_session_factory
from core.services import bulk, catalog
from web.api.schemas import (
    BulkEntitlementRequest,
    EntitlementResponse,
    TemplateResponse,
)
from web.auth import (
    require_distribution_user,
    require_settings_user,
    require_undo_user,
    require_user,
)

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


class TemplateCreate(BaseModel):
    name: str
    description: Optional[str] = None
    category: str
    is_countable: bool = False
    max_count: int = 1
    default_for_players: bool = False
    default_for_participants: bool = False


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    is_countable: Optional[bool] = None
    max_count: Optional[int] = None
    default_for_players: Optional[bool] = None
    default_for_participants: Optional[bool] = None
    is_active: Optional[bool] = None


class AttachRequest(BaseModel):
    template_id: int
    custom_max_count: Optional[int] = None


class BulkAttachRequest(AttachRequest):
    participant_ids: list[str]


@router.get("/templates", response_model=list[TemplateResponse])
async def list_templates(user: StaffUser = Depends(require_user)):
    """Active templates, by category then name."""
    async with async_session_factory() as session:
        return [TemplateResponse.model_validate(t) for t in await catalog.list_templates(session)]


@router.post("/templates", response_model=TemplateResponse, status_code=201)
async def create_template(body: TemplateCreate, user: StaffUser = Depends(require_settings_user)):
    async with async_session_factory() as session:
        template = await catalog.create_template(session, body.model_dump(), user.id)
        return TemplateResponse.model_validate(template)


@router.put("/templates/{template_id}", response_model=TemplateResponse)
async def update_template(template_id: int, body: TemplateUpdate, user: StaffUser = Depends(require_settings_user)):
    """Partial update. Entitlements already attached to participants are not touched."""
    async with async_session_factory() as session:
        template = await catalog.update_template(session, template_id, body.model_dump(exclude_unset=True))
        return TemplateResponse.model_validate(template)


@router.delete("/templates/{template_id}")
async def deactivate_template(template_id: int, user: StaffUser = Depends(require_settings_user)):
    """Deactivate a template. Templates are never deleted."""
    async with async_session_factory() as session:
        template = await catalog.deactivate_template(session, template_id)
        return {"ok": True, "id": template.id, "is_active": template.is_active}


@router.get("/participant/{participant_id}", response_model=list[EntitlementResponse])
async def participant_entitlements(participant_id: str, user: StaffUser = Depends(require_user)):
    async with async_session_factory() as session:
        instances = await catalog.participant_entitlements(session, participant_id)
        return [EntitlementResponse.model_validate(i) for i in instances]


@router.post("/participant/{participant_id}", response_model=EntitlementResponse, status_code=201)
async def attach_template(participant_id: str, body: AttachRequest, user: StaffUser = Depends(require_settings_user)):
    """Attach a template to one participant. custom_max_count only applies to countable templates."""
    async with async_session_factory() as session:
        instance = await catalog.attach_template(
            session, participant_id, body.template_id, user.id, body.custom_max_count
        )
        return EntitlementResponse.model_validate(instance)


@router.delete("/participant/{participant_id}/{entitlement_name}")
async def remove_entitlement(
    participant_id: str, entitlement_name: str, user: StaffUser = Depends(require_settings_user)
):
    async with async_session_factory() as session:
        await catalog.remove_entitlement(session, participant_id, user.id, name=entitlement_name)
    return {"ok": True}


@router.post("/bulk/attach")
async def bulk_attach(body: BulkAttachRequest, user: StaffUser = Depends(require_settings_user)):
    async with async_session_factory() as session:
        out = await bulk.bulk_attach(
            session, body.participant_ids, body.template_id, user.id, body.custom_max_count
        )
    return out.as_dict(message=f"{len(out.results)} participants updated")


@router.post("/bulk/distribute")
async def bulk_distribute(body: BulkEntitlementRequest, user: StaffUser = Depends(require_distribution_user)):
    """Distribute to each listed participant. Failures are reported per participant."""
    async with async_session_factory() as session:
        out = await bulk.bulk_distribute(
            session, body.participant_ids, user.id, body.entitlement, body.template_id, body.count
        )
    return out.as_dict(message=f"Bulk distribution completed. {len(out.results)} participants updated.")


@router.post("/bulk/undo")
async def bulk_undo(body: BulkEntitlementRequest, user: StaffUser = Depends(require_undo_user)):
    async with async_session_factory() as session:
        out = await bulk.bulk_undo(
            session, body.participant_ids, user.id, body.entitlement, body.template_id, body.count
        )
    return out.as_dict(message=f"Bulk undo completed. {len(out.results)} participants updated.")
