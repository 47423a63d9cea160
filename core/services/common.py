"""Lookups and persistence helpers shared by the check-in services."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from core.errors import ConcurrentUpdate, NotFound, ValidationFailed
from core.models import Participant

PARTICIPANT_TYPES = ("all", "players", "participants")


async def get_participant(session: AsyncSession, participant_id: str) -> Optional[Participant]:
    result = await session.execute(
        select(Participant).where(Participant.participant_id == participant_id)
    )
    return result.scalar_one_or_none()


async def require_participant(session: AsyncSession, participant_id: str) -> Participant:
    participant = await get_participant(session, participant_id)
    if not participant:
        raise NotFound("Participant not found", "PARTICIPANT_NOT_FOUND")
    return participant


def participant_type_clause(participant_type: str | None):
    """WHERE clause for 'players' / 'participants'; None for 'all'."""
    participant_type = participant_type or "all"
    if participant_type not in PARTICIPANT_TYPES:
        raise ValidationFailed(
            "participant_type must be one of: all, players, participants", "INVALID_PARTICIPANT_TYPE"
        )
    if participant_type == "players":
        return Participant.is_player.is_(True)
    if participant_type == "participants":
        return Participant.is_player.is_(False)
    return None


def positive_count(count) -> int:
    """Parse a unit count; must be a positive integer."""
    try:
        value = int(count)
    except (TypeError, ValueError):
        value = 0
    if isinstance(count, bool) or value < 1 or (isinstance(count, float) and not count.is_integer()):
        raise ValidationFailed("count must be a positive integer", "INVALID_COUNT")
    return value


async def commit(session: AsyncSession) -> None:
    """Commit, turning a lost optimistic-lock race into a retryable error."""
    try:
        await session.commit()
    except StaleDataError as e:
        await session.rollback()
        raise ConcurrentUpdate(
            "Entitlement was changed by another request. Please retry.", "CONCURRENT_UPDATE"
        ) from e
