"""Event settings API: cap overrides and event details (staff read, settings managers write)."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select

from core.models import EventSetting, StaffUser
from core.models.base import async_session_factory, utcnow
from web.auth import require_settings_user, require_user

logger = logging.getLogger("checkpoint.settings")

router = APIRouter(prefix="/api/settings", tags=["settings"])

DEFAULTS = {
    "beerLimit": (2, "Maximum beers per participant"),
    "eventName": ("Cricket Event", "Name of the event"),
    "eventDate": (None, "Date of the event"),
}


async def _get_setting(session, name: str) -> Optional[EventSetting]:
    result = await session.execute(select(EventSetting).where(EventSetting.name == name))
    return result.scalar_one_or_none()


async def _set_setting(session, name: str, value: Any, description: Optional[str], user_id: Optional[int]) -> EventSetting:
    row = await _get_setting(session, name)
    if row:
        row.value = value
        if description is not None:
            row.description = description
        row.updated_by_id = user_id
        row.updated_at = utcnow()
    else:
        row = EventSetting(name=name, value=value, description=description, updated_by_id=user_id, updated_at=utcnow())
        session.add(row)
    return row


class SettingResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    value: Any
    description: Optional[str]
    updated_by_id: Optional[int]
    updated_at: Optional[datetime]


class SettingUpdate(BaseModel):
    value: Any = None
    description: Optional[str] = None


class SettingsImport(BaseModel):
    settings: dict[str, Any]


@router.get("", response_model=list[SettingResponse])
async def list_settings(user: StaffUser = Depends(require_user)):
    async with async_session_factory() as session:
        result = await session.execute(select(EventSetting).order_by(EventSetting.name))
        return [SettingResponse.model_validate(row) for row in result.scalars().all()]


@router.get("/export")
async def export_settings(user: StaffUser = Depends(require_settings_user)):
    """Export all settings as JSON backup."""
    async with async_session_factory() as session:
        result = await session.execute(select(EventSetting))
        backup = {row.name: row.value for row in result.scalars().all()}
    return JSONResponse(content={"settings": backup})


@router.post("/import")
async def import_settings(body: SettingsImport, user: StaffUser = Depends(require_settings_user)):
    """Restore settings from a JSON backup. Overwrites existing names."""
    async with async_session_factory() as session:
        for name, value in body.settings.items():
            await _set_setting(session, name, value, None, user.id)
        await session.commit()
    logger.info("Settings restored by %s: %d entries", user.username, len(body.settings))
    return {"ok": True, "restored": len(body.settings)}


@router.post("/initialize")
async def initialize_settings(user: StaffUser = Depends(require_settings_user)):
    """Create default settings that do not exist yet. Existing values are left alone."""
    created = []
    async with async_session_factory() as session:
        for name, (value, description) in DEFAULTS.items():
            if await _get_setting(session, name):
                continue
            if name == "eventDate":
                value = utcnow().date().isoformat()
            session.add(EventSetting(
                name=name, value=value, description=description, updated_by_id=user.id, updated_at=utcnow()
            ))
            created.append(name)
        await session.commit()
    return {"ok": True, "created": created}


@router.get("/{name}", response_model=SettingResponse)
async def get_setting(name: str, user: StaffUser = Depends(require_user)):
    async with async_session_factory() as session:
        row = await _get_setting(session, name)
        if not row:
            raise HTTPException(404, "Setting not found")
        return SettingResponse.model_validate(row)


@router.put("/{name}", response_model=SettingResponse)
async def update_setting(name: str, body: SettingUpdate, user: StaffUser = Depends(require_settings_user)):
    """Create or overwrite a setting. beerLimit / softDrinkLimit take effect on the next distribution."""
    if body.value is None:
        raise HTTPException(400, "Setting value is required")
    async with async_session_factory() as session:
        row = await _set_setting(session, name, body.value, body.description, user.id)
        await session.commit()
        await session.refresh(row)
    logger.info("Setting %s = %r by %s", name, body.value, user.username)
    return SettingResponse.model_validate(row)
