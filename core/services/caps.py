"""Effective cap resolution and cap synchronisation.

The cap enforced at distribution time is the global setting mapped to the
entitlement's name when one exists, otherwise the ``max_count`` stored on the
participant's instance. It is resolved on every operation and never cached.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import ValidationFailed
from core.models import EntitlementInstance, EventSetting, Participant
from core.services.common import participant_type_clause

logger = logging.getLogger("checkpoint.caps")

# Entitlement name (lowercase) -> setting that overrides its cap
SETTING_KEYS = {
    "beer": "beerLimit",
    "soft drink": "softDrinkLimit",
    "soft drinks": "softDrinkLimit",
}


def setting_key_for(name: str) -> Optional[str]:
    return SETTING_KEYS.get((name or "").strip().lower())


def coerce_cap(value: Any) -> Optional[int]:
    """Setting values are free-form JSON; only non-negative integers count as caps."""
    if isinstance(value, bool):
        return None
    try:
        cap = int(value)
    except (TypeError, ValueError):
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    return cap if cap >= 0 else None


async def get_setting_value(session: AsyncSession, name: str) -> Any:
    result = await session.execute(select(EventSetting).where(EventSetting.name == name))
    row = result.scalar_one_or_none()
    return row.value if row else None


async def get_cap_override(session: AsyncSession, entitlement_name: str) -> Optional[int]:
    key = setting_key_for(entitlement_name)
    if not key:
        return None
    value = await get_setting_value(session, key)
    if value is None:
        return None
    cap = coerce_cap(value)
    if cap is None:
        logger.warning("Ignoring setting %s=%r: not a usable cap", key, value)
    return cap


async def resolve_cap(
    session: AsyncSession, entitlement_name: str, stored_cap: int, is_countable: bool = True
) -> int:
    """Effective cap for an entitlement name. Boolean entitlements always keep their stored cap."""
    if not is_countable:
        return stored_cap
    override = await get_cap_override(session, entitlement_name)
    return stored_cap if override is None else override


async def effective_cap(session: AsyncSession, instance: EntitlementInstance) -> int:
    return await resolve_cap(session, instance.name, instance.max_count, instance.is_countable)


async def _instances_named(session: AsyncSession, name: str, participant_type: str | None):
    stmt = (
        select(EntitlementInstance)
        .join(Participant, EntitlementInstance.participant_id == Participant.id)
        .where(func.lower(EntitlementInstance.name) == name.strip().lower())
        .where(EntitlementInstance.is_countable.is_(True))
    )
    clause = participant_type_clause(participant_type)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def bulk_update_entitlement_limits(
    session: AsyncSession,
    entitlement_name: str,
    new_max_count: Any,
    participant_type: str | None = None,
) -> dict:
    """Rewrite stored max_count of one countable entitlement across participants."""
    if not entitlement_name:
        raise ValidationFailed("entitlement_name is required", "ENTITLEMENT_NAME_REQUIRED")
    if new_max_count is None:
        raise ValidationFailed("new_max_count is required", "MAX_COUNT_REQUIRED")
    max_count = coerce_cap(new_max_count)
    if max_count is None:
        raise ValidationFailed("new_max_count must be a valid positive number", "INVALID_MAX_COUNT")
    instances = await _instances_named(session, entitlement_name, participant_type)
    modified = 0
    for inst in instances:
        if inst.max_count != max_count:
            inst.max_count = max_count
            modified += 1
    await session.commit()
    logger.info(
        "Entitlement limit update: %s -> %d (%s), matched=%d modified=%d",
        entitlement_name, max_count, participant_type or "all", len(instances), modified,
    )
    return {
        "entitlement_name": entitlement_name,
        "new_max_count": max_count,
        "participant_type": participant_type or "all",
        "matched_count": len(instances),
        "modified_count": modified,
    }


async def sync_entitlement_limits(session: AsyncSession, participant_type: str | None = None) -> dict:
    """Copy every known cap override onto the stored max_count of matching instances."""
    updates = []
    total_modified = 0
    for name, key in SETTING_KEYS.items():
        value = await get_setting_value(session, key)
        cap = coerce_cap(value) if value is not None else None
        if cap is None:
            continue
        instances = await _instances_named(session, name, participant_type)
        modified = 0
        for inst in instances:
            if inst.max_count != cap:
                inst.max_count = cap
                modified += 1
        total_modified += modified
        updates.append({
            "entitlement_name": name,
            "setting_key": key,
            "new_max_count": cap,
            "matched_count": len(instances),
            "modified_count": modified,
        })
    await session.commit()
    logger.info("Entitlement limit sync (%s): %d instances updated", participant_type or "all", total_modified)
    return {
        "participant_type": participant_type or "all",
        "total_modified": total_modified,
        "updates": updates,
    }
