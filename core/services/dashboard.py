"""Dashboard statistics over participants and entitlement instances."""
from __future__ import annotations

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.models import EntitlementHistory, EntitlementInstance, Participant
from core.models.base import utcnow
from core.services.catalog import list_templates


async def _count(session: AsyncSession, *filters) -> int:
    result = await session.execute(select(func.count(Participant.id)).where(*filters))
    return result.scalar_one()


async def entitlement_stats(session: AsyncSession, name: str, is_countable: bool) -> dict:
    """given / pending / eligible for one entitlement name. Pending means present with nothing given yet."""
    stmt = (
        select(
            func.count(EntitlementInstance.id),
            func.sum(case((EntitlementInstance.given > 0, 1), else_=0)),
            func.sum(case(((EntitlementInstance.given == 0) & Participant.is_present.is_(True), 1), else_=0)),
            func.sum(EntitlementInstance.given),
        )
        .join(Participant, EntitlementInstance.participant_id == Participant.id)
        .where(func.lower(EntitlementInstance.name) == name.lower())
    )
    eligible, given, pending, total_given = (await session.execute(stmt)).one()
    eligible, given, pending = eligible or 0, given or 0, pending or 0
    stats = {
        "given": given,
        "pending": pending,
        "total_eligible": eligible,
        "percentage": round(given / eligible * 100) if eligible else 0,
        "is_countable": is_countable,
    }
    if is_countable:
        stats["total_count_given"] = total_given or 0
    return stats


async def recent_attendance(session: AsyncSession, limit: int = 10) -> list[dict]:
    result = await session.execute(
        select(Participant)
        .where(Participant.is_present.is_(True))
        .order_by(Participant.attendance_time.desc())
        .limit(limit)
    )
    return [
        {
            "participant_id": p.participant_id,
            "name": p.name,
            "is_player": p.is_player,
            "attendance_time": p.attendance_time,
        }
        for p in result.scalars().all()
    ]


async def recent_distributions(session: AsyncSession, limit: int = 10) -> list[dict]:
    result = await session.execute(
        select(EntitlementHistory, Participant)
        .join(Participant, EntitlementHistory.participant_id == Participant.id)
        .where(EntitlementHistory.action == "distributed")
        .order_by(EntitlementHistory.id.desc())
        .limit(limit)
    )
    return [
        {
            "participant_id": p.participant_id,
            "name": p.name,
            "is_player": p.is_player,
            "entitlement_name": h.entitlement_name,
            "count": h.count,
            "performed_by_id": h.performed_by_id,
            "performed_at": h.performed_at,
        }
        for h, p in result.all()
    ]


async def dashboard_stats(session: AsyncSession) -> dict:
    templates = await list_templates(session)
    return {
        "total_participants": await _count(session),
        "present_participants": await _count(session, Participant.is_present.is_(True)),
        "total_players": await _count(session, Participant.is_player.is_(True)),
        "present_players": await _count(
            session, Participant.is_player.is_(True), Participant.is_present.is_(True)
        ),
        "entitlement_stats": {
            t.name: await entitlement_stats(session, t.name, t.is_countable) for t in templates
        },
        "recent_attendance": await recent_attendance(session),
        "recent_distributions": await recent_distributions(session),
        "last_updated": utcnow(),
    }
