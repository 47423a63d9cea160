"""Best-effort fan-out of distribution, undo and attachment over many participants.

Each target commits on its own. A failure on one target becomes an error string
in the result and processing moves on to the next one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import CheckpointError, ValidationFailed
from core.services.catalog import attach_to_participant, get_template
from core.services.common import commit, get_participant, positive_count
from core.services.distribution import apply_distribution, apply_undo

logger = logging.getLogger("checkpoint.bulk")

# Fixed entitlement keys from before templates existed
LEGACY_TOKENS = {
    "breakfast": "Breakfast",
    "lunch": "Lunch",
    "beer": "Beer",
    "eveningmeal": "Evening Meal",
    "specialbeverage": "Special Beverage",
    "specialmeal": "Special Meal",
}


@dataclass
class EntitlementRef:
    name: Optional[str]
    template_id: Optional[int]
    entitlement_type: str  # template | legacy

    @property
    def label(self) -> str:
        return self.name or f"template {self.template_id}"


@dataclass
class FanOutResult:
    results: list = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.results) or not self.errors

    def fail(self, participant_id: str, reason: str, name: str | None = None) -> None:
        who = f"{participant_id} ({name})" if name else participant_id
        self.errors.append(f"{who}: {reason}")

    def as_dict(self, **extra) -> dict:
        data = {"success": self.success, "results": self.results, "errors": self.errors}
        data.update(extra)
        return data


def resolve_entitlement_ref(entitlement: str | None = None, template_id: Any = None) -> EntitlementRef:
    """Translate what the caller sent into one reference. Legacy tokens map to template names."""
    if template_id not in (None, ""):
        try:
            return EntitlementRef(None, int(template_id), "template")
        except (TypeError, ValueError):
            raise ValidationFailed("template_id must be an integer", "VALIDATION_ERROR")
    if not entitlement or not str(entitlement).strip():
        raise ValidationFailed("Entitlement type or template_id is required", "ENTITLEMENT_REQUIRED")
    token = str(entitlement).strip()
    legacy = LEGACY_TOKENS.get(token.lower())
    if legacy and legacy != token:
        return EntitlementRef(legacy, None, "legacy")
    return EntitlementRef(token, None, "template")


def _check_ids(participant_ids) -> list[str]:
    if not participant_ids or not isinstance(participant_ids, list):
        raise ValidationFailed("participant_ids must be a non-empty list", "VALIDATION_ERROR")
    return [str(pid).strip() for pid in participant_ids]


async def fan_out(session: AsyncSession, participant_ids: list[str], action) -> FanOutResult:
    """Apply ``action`` to each participant, committing per target."""
    out = FanOutResult()
    for pid in participant_ids:
        participant = await get_participant(session, pid)
        if not participant:
            out.fail(pid, "Participant not found")
            continue
        name = participant.name
        try:
            item = await action(participant)
            await commit(session)
        except CheckpointError as e:
            await session.rollback()
            out.fail(pid, e.message, name)
            continue
        out.results.append(item)
    return out


async def bulk_distribute(
    session: AsyncSession,
    participant_ids,
    actor_id: Optional[int],
    entitlement: str | None = None,
    template_id: Any = None,
    count=1,
) -> FanOutResult:
    ref = resolve_entitlement_ref(entitlement, template_id)
    count = positive_count(count)

    async def action(participant):
        instance, granted = await apply_distribution(
            session, participant, actor_id, ref.name, ref.template_id, count
        )
        return {
            "participant_id": participant.participant_id,
            "name": participant.name,
            "entitlement": instance.name,
            "distributed": granted,
            "given": instance.given,
        }

    out = await fan_out(session, _check_ids(participant_ids), action)
    logger.info("Bulk distribute %s x%d: %d ok, %d failed", ref.label, count, len(out.results), len(out.errors))
    return out


async def bulk_undo(
    session: AsyncSession,
    participant_ids,
    actor_id: Optional[int],
    entitlement: str | None = None,
    template_id: Any = None,
    count=1,
) -> FanOutResult:
    ref = resolve_entitlement_ref(entitlement, template_id)
    count = positive_count(count)

    async def action(participant):
        instance, undone = await apply_undo(session, participant, actor_id, ref.name, ref.template_id, count)
        return {
            "participant_id": participant.participant_id,
            "name": participant.name,
            "entitlement": instance.name,
            "undone": undone,
            "given": instance.given,
        }

    out = await fan_out(session, _check_ids(participant_ids), action)
    logger.info("Bulk undo %s x%d: %d ok, %d failed", ref.label, count, len(out.results), len(out.errors))
    return out


async def bulk_attach(
    session: AsyncSession,
    participant_ids,
    template_id: int,
    actor_id: Optional[int],
    custom_max_count: Any = None,
) -> FanOutResult:
    template = await get_template(session, template_id)
    template_name = template.name

    async def action(participant):
        # re-fetch: a rollback on a previous target expires loaded rows
        tpl = await get_template(session, template_id)
        instance = await attach_to_participant(session, participant, tpl, actor_id, custom_max_count)
        return {
            "participant_id": participant.participant_id,
            "name": participant.name,
            "entitlement": instance.name,
            "max_count": instance.max_count,
        }

    out = await fan_out(session, _check_ids(participant_ids), action)
    logger.info("Bulk attach %s: %d ok, %d failed", template_name, len(out.results), len(out.errors))
    return out
