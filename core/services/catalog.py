"""Entitlement template catalog, instance attachment and auto-assignment."""
from __future__ import annotations

import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFound, RuleViolation, ValidationFailed
from core.models import EntitlementInstance, EntitlementTemplate, Participant
from core.models.base import utcnow
from core.models.template import CATEGORIES
from core.services.caps import coerce_cap, resolve_cap
from core.services.common import participant_type_clause, require_participant
from core.services.distribution import find_instance, record_history

logger = logging.getLogger("checkpoint.catalog")


async def list_templates(session: AsyncSession, include_inactive: bool = False) -> list[EntitlementTemplate]:
    stmt = select(EntitlementTemplate)
    if not include_inactive:
        stmt = stmt.where(EntitlementTemplate.is_active.is_(True))
    stmt = stmt.order_by(EntitlementTemplate.category, EntitlementTemplate.name)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_template(session: AsyncSession, template_id: int) -> EntitlementTemplate:
    template = await session.get(EntitlementTemplate, template_id)
    if not template:
        raise NotFound("Entitlement template not found", "TEMPLATE_NOT_FOUND")
    return template


async def find_template_by_name(session: AsyncSession, name: str) -> Optional[EntitlementTemplate]:
    result = await session.execute(
        select(EntitlementTemplate)
        .where(func.lower(EntitlementTemplate.name) == name.strip().lower())
        .where(EntitlementTemplate.is_active.is_(True))
    )
    return result.scalars().first()


async def _name_taken(session: AsyncSession, name: str, exclude_id: int | None = None) -> bool:
    stmt = select(EntitlementTemplate.id).where(func.lower(EntitlementTemplate.name) == name.strip().lower())
    if exclude_id is not None:
        stmt = stmt.where(EntitlementTemplate.id != exclude_id)
    result = await session.execute(stmt)
    return result.first() is not None


def _check_category(category: str) -> None:
    if category not in CATEGORIES:
        raise ValidationFailed(f"category must be one of: {', '.join(CATEGORIES)}", "INVALID_CATEGORY")


def _check_max_count(value: Any) -> int:
    max_count = coerce_cap(value)
    if max_count is None or max_count < 1:
        raise ValidationFailed("max_count must be a positive integer", "INVALID_MAX_COUNT")
    return max_count


async def create_template(session: AsyncSession, data: dict, actor_id: Optional[int]) -> EntitlementTemplate:
    name = (data.get("name") or "").strip()
    category = data.get("category")
    if not name or not category:
        raise ValidationFailed("Name and category are required", "VALIDATION_ERROR")
    _check_category(category)
    if await _name_taken(session, name):
        raise RuleViolation("Entitlement template with this name already exists", "TEMPLATE_EXISTS")
    is_countable = bool(data.get("is_countable", False))
    template = EntitlementTemplate(
        name=name,
        description=data.get("description"),
        category=category,
        is_countable=is_countable,
        max_count=_check_max_count(data.get("max_count", 1)) if is_countable else 1,
        default_for_players=bool(data.get("default_for_players", False)),
        default_for_participants=bool(data.get("default_for_participants", False)),
        is_active=True,
        created_by_id=actor_id,
    )
    session.add(template)
    await session.commit()
    await session.refresh(template)
    logger.info("Template created: %s (id=%d)", template.name, template.id)
    return template


async def update_template(session: AsyncSession, template_id: int, data: dict) -> EntitlementTemplate:
    """Partial update. Instances already attached keep their copied fields."""
    template = await get_template(session, template_id)
    if "name" in data and data["name"] is not None:
        name = data["name"].strip()
        if not name:
            raise ValidationFailed("Name cannot be empty", "VALIDATION_ERROR")
        if name.lower() != template.name.lower() and await _name_taken(session, name, exclude_id=template.id):
            raise RuleViolation("Entitlement template with this name already exists", "TEMPLATE_EXISTS")
        template.name = name
    if data.get("category") is not None:
        _check_category(data["category"])
        template.category = data["category"]
    for field in ("description", "is_countable", "default_for_players", "default_for_participants", "is_active"):
        if field in data and data[field] is not None:
            setattr(template, field, data[field])
    if template.is_countable:
        if data.get("max_count") is not None:
            template.max_count = _check_max_count(data["max_count"])
    else:
        template.max_count = 1
    await session.commit()
    await session.refresh(template)
    return template


async def deactivate_template(session: AsyncSession, template_id: int) -> EntitlementTemplate:
    template = await get_template(session, template_id)
    template.is_active = False
    await session.commit()
    logger.info("Template deactivated: %s (id=%d)", template.name, template.id)
    return template


async def build_instance(
    session: AsyncSession,
    template: EntitlementTemplate,
    actor_id: Optional[int],
    custom_max_count: Any = None,
) -> EntitlementInstance:
    """New instance copying the template, with its cap resolved at attach time."""
    if template.is_countable:
        stored = _check_max_count(custom_max_count) if custom_max_count is not None else template.max_count
        cap = await resolve_cap(session, template.name, stored, True)
    else:
        cap = 1
    return EntitlementInstance(
        template_id=template.id,
        name=template.name,
        description=template.description,
        category=template.category,
        is_countable=template.is_countable,
        max_count=cap,
        given=0,
        given_at=[],
        given_by=[],
        added_by_id=actor_id,
        added_at=utcnow(),
        last_undone_count=0,
    )


async def attach_to_participant(
    session: AsyncSession,
    participant: Participant,
    template: EntitlementTemplate,
    actor_id: Optional[int],
    custom_max_count: Any = None,
) -> EntitlementInstance:
    """Attach one template to a loaded participant. Does not commit."""
    if not template.is_active:
        raise ValidationFailed("Entitlement template is not active", "TEMPLATE_INACTIVE")
    if participant.find_entitlement(name=template.name):
        raise RuleViolation("Participant already has this entitlement", "ENTITLEMENT_ALREADY_EXISTS")
    instance = await build_instance(session, template, actor_id, custom_max_count)
    participant.entitlements.append(instance)
    record_history(participant, instance, "added", 1, actor_id)
    return instance


async def attach_template(
    session: AsyncSession,
    participant_id: str,
    template_id: int,
    actor_id: Optional[int],
    custom_max_count: Any = None,
) -> EntitlementInstance:
    participant = await require_participant(session, participant_id)
    template = await get_template(session, template_id)
    instance = await attach_to_participant(session, participant, template, actor_id, custom_max_count)
    await session.commit()
    logger.info("Attached %s to %s by staff %s", template.name, participant_id, actor_id)
    return instance


async def remove_entitlement(
    session: AsyncSession,
    participant_id: str,
    actor_id: Optional[int],
    name: str | None = None,
    template_id: int | None = None,
) -> None:
    """Drop an instance, discarding its grant arrays. History keeps a 'removed' entry."""
    participant = await require_participant(session, participant_id)
    instance = find_instance(participant, name, template_id)
    record_history(participant, instance, "removed", 1, actor_id)
    participant.entitlements.remove(instance)
    await session.commit()
    logger.info("Removed %s from %s by staff %s", instance.name, participant_id, actor_id)


async def participant_entitlements(session: AsyncSession, participant_id: str) -> list[EntitlementInstance]:
    participant = await require_participant(session, participant_id)
    return list(participant.entitlements)


async def auto_assign(
    session: AsyncSession,
    participant: Participant,
    actor_id: Optional[int] = None,
    templates: list[EntitlementTemplate] | None = None,
) -> list[EntitlementInstance]:
    """Attach every active default template the participant is missing. Does not commit."""
    if templates is None:
        templates = await list_templates(session)
    attached = []
    for template in templates:
        if not template.is_active or not template.applies_to(participant.is_player):
            continue
        if participant.find_entitlement(name=template.name):
            continue
        instance = await build_instance(session, template, actor_id)
        participant.entitlements.append(instance)
        record_history(participant, instance, "added", 1, actor_id)
        attached.append(instance)
    return attached


async def auto_assign_all(
    session: AsyncSession, participant_type: str | None = None, actor_id: Optional[int] = None
) -> dict:
    """Run auto-assignment over all, players-only or participants-only."""
    stmt = select(Participant)
    clause = participant_type_clause(participant_type)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt.order_by(Participant.id))
    participants = list(result.scalars().all())
    templates = await list_templates(session)
    updated = 0
    assigned = 0
    for participant in participants:
        attached = await auto_assign(session, participant, actor_id, templates)
        if attached:
            updated += 1
            assigned += len(attached)
    await session.commit()
    logger.info(
        "Auto-assign (%s): %d participants checked, %d updated, %d entitlements attached",
        participant_type or "all", len(participants), updated, assigned,
    )
    return {
        "participant_type": participant_type or "all",
        "checked": len(participants),
        "updated": updated,
        "assigned": assigned,
    }
