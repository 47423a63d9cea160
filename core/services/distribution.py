"""Distribution and undo against a participant's entitlement instances."""
from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import NotFound, RuleViolation, ValidationFailed
from core.models import EntitlementHistory, EntitlementInstance, Participant
from core.models.base import utcnow
from core.services import ledger
from core.services.caps import effective_cap
from core.services.common import commit, positive_count, require_participant

logger = logging.getLogger("checkpoint.ledger")


def find_instance(
    participant: Participant, name: str | None = None, template_id: int | None = None
) -> EntitlementInstance:
    if not name and template_id is None:
        raise ValidationFailed("Entitlement name or template_id is required", "ENTITLEMENT_REQUIRED")
    instance = participant.find_entitlement(name=name, template_id=template_id)
    if not instance:
        raise NotFound("Entitlement not found for this participant", "ENTITLEMENT_NOT_FOUND")
    return instance


def record_history(
    participant: Participant,
    instance: EntitlementInstance,
    action: str,
    count: int,
    actor_id: Optional[int],
) -> EntitlementHistory:
    entry = EntitlementHistory(
        template_id=instance.template_id,
        entitlement_name=instance.name,
        action=action,
        count=count,
        performed_by_id=actor_id,
        performed_at=utcnow(),
    )
    participant.entitlement_history.append(entry)
    return entry


async def apply_distribution(
    session: AsyncSession,
    participant: Participant,
    actor_id: Optional[int],
    name: str | None = None,
    template_id: int | None = None,
    count=1,
) -> tuple[EntitlementInstance, int]:
    """Validate and grant on a loaded participant. Does not commit."""
    if not participant.is_present:
        raise RuleViolation("Participant must be marked present first", "PARTICIPANT_NOT_PRESENT")
    instance = find_instance(participant, name, template_id)
    count = positive_count(count)
    cap = await effective_cap(session, instance)
    granted = ledger.grant(instance, count, cap, actor_id)
    record_history(participant, instance, "distributed", granted, actor_id)
    return instance, granted


async def apply_undo(
    session: AsyncSession,
    participant: Participant,
    actor_id: Optional[int],
    name: str | None = None,
    template_id: int | None = None,
    count=1,
) -> tuple[EntitlementInstance, int]:
    """Reverse the latest grants on a loaded participant. Presence is not required."""
    instance = find_instance(participant, name, template_id)
    count = positive_count(count)
    undone = ledger.revoke(instance, count, actor_id)
    record_history(participant, instance, "undone", undone, actor_id)
    return instance, undone


def _summary(participant: Participant, instance: EntitlementInstance, cap: int, **extra) -> dict:
    data = {
        "participant_id": participant.participant_id,
        "name": participant.name,
        "entitlement": instance.name,
        "template_id": instance.template_id,
        "given": instance.given,
        "max_count": cap,
        "remaining": max(cap - instance.given, 0),
    }
    data.update(extra)
    return data


async def distribute(
    session: AsyncSession,
    participant_id: str,
    actor_id: Optional[int],
    name: str | None = None,
    template_id: int | None = None,
    count=1,
) -> dict:
    participant = await require_participant(session, participant_id)
    instance, granted = await apply_distribution(session, participant, actor_id, name, template_id, count)
    cap = await effective_cap(session, instance)
    await commit(session)
    logger.info(
        "Distributed %d x %s to %s (given %d/%d) by staff %s",
        granted, instance.name, participant.participant_id, instance.given, cap, actor_id,
    )
    return _summary(participant, instance, cap, distributed=granted)


async def undo(
    session: AsyncSession,
    participant_id: str,
    actor_id: Optional[int],
    name: str | None = None,
    template_id: int | None = None,
    count=1,
) -> dict:
    participant = await require_participant(session, participant_id)
    instance, undone = await apply_undo(session, participant, actor_id, name, template_id, count)
    cap = await effective_cap(session, instance)
    await commit(session)
    logger.info(
        "Undid %d x %s for %s (given %d/%d) by staff %s",
        undone, instance.name, participant.participant_id, instance.given, cap, actor_id,
    )
    return _summary(participant, instance, cap, undone=undone)
