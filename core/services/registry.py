"""Participant registry: registration, CSV import and export, attendance, type changes."""
from __future__ import annotations

import csv
import io
import logging
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from core.errors import CheckpointError, NotFound, PayloadTooLarge, RuleViolation, ValidationFailed
from core.models import Participant, TypeChangeHistory
from core.models.base import utcnow
from core.models.participant import FOOD_PREFERENCES
from core.services import mailer
from core.services.catalog import auto_assign
from core.services.common import get_participant, require_participant
from core.services.qr import generate_participant_code, render_qr_data_url

logger = logging.getLogger("checkpoint.registry")

CODE_ATTEMPTS = 5
EXPORT_COLUMNS = ("QR Code ID", "Name", "Email", "Phone Number", "Is Player")

_TRUE = {"true", "yes", "y", "1"}
_FALSE = {"false", "no", "n", "0"}


def to_bool(value: Any) -> bool:
    """Spreadsheet truthiness. Anything unrecognised is False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        s = value.strip().lower()
        if s in _TRUE:
            return True
        if s in _FALSE:
            return False
    return False


def normalize_food_pref(value: Any) -> str:
    s = str(value or "").strip().lower()
    return s if s in FOOD_PREFERENCES else "no-preference"


async def email_taken(session: AsyncSession, email: str) -> bool:
    result = await session.execute(
        select(Participant.id).where(func.lower(Participant.email) == email.strip().lower())
    )
    return result.first() is not None


async def unique_code(session: AsyncSession) -> str:
    for _ in range(CODE_ATTEMPTS):
        code = generate_participant_code()
        if not await get_participant(session, code):
            return code
    raise CheckpointError("Failed to generate a unique participant ID", "PARTICIPANT_ID_GENERATION_FAILED")


async def _register(
    session: AsyncSession,
    name: str,
    email: str,
    phone: Optional[str],
    is_player: bool,
    food_preference: str,
    actor_id: Optional[int],
) -> Participant:
    if await email_taken(session, email):
        raise RuleViolation("Participant with this email already exists", "PARTICIPANT_EXISTS")
    code = await unique_code(session)
    # rendered before anything is persisted
    qr_code = render_qr_data_url(code)
    participant = Participant(
        participant_id=code,
        name=name,
        email=email,
        phone=phone or None,
        is_player=is_player,
        food_preference=food_preference,
        qr_code=qr_code,
        is_present=False,
        created_at=utcnow(),
        entitlements=[],
        entitlement_history=[],
        type_change_history=[],
        groups=[],
        group_entitlement_history=[],
    )
    session.add(participant)
    await auto_assign(session, participant, actor_id)
    await session.commit()
    logger.info(
        "Registered %s (%s, %s) with %d entitlements",
        code, name, "player" if is_player else "participant", len(participant.entitlements),
    )
    return participant


async def create_participant(
    session: AsyncSession,
    data: dict,
    actor_id: Optional[int] = None,
    send_email: bool = True,
) -> tuple[Participant, bool]:
    """Register one participant. Returns the participant and whether the QR email went out."""
    name = (data.get("name") or "").strip()
    email = (data.get("email") or "").strip()
    if not name or not email:
        raise ValidationFailed("name and email are required", "PARTICIPANT_INVALID_INPUT")
    food_preference = data.get("food_preference") or "no-preference"
    if food_preference not in FOOD_PREFERENCES:
        raise ValidationFailed(
            f"food_preference must be one of: {', '.join(FOOD_PREFERENCES)}", "INVALID_FOOD_PREFERENCE"
        )
    participant = await _register(
        session, name, email, data.get("phone"), bool(data.get("is_player")), food_preference, actor_id
    )
    email_sent = False
    if send_email:
        email_sent = await mailer.send_qr_email(
            participant.participant_id, participant.name, participant.email,
            participant.is_player, participant.qr_code,
        )
    return participant, email_sent


def _row_key(key: Optional[str]) -> str:
    return (key or "").strip().lower().replace("_", "").replace(" ", "")


def parse_row(raw: dict) -> dict:
    """Normalise one CSV row. Header case, spaces and underscores are ignored."""
    row = {_row_key(k): v for k, v in raw.items() if k is not None}
    return {
        "name": str(row.get("name") or "").strip(),
        "email": str(row.get("email") or "").strip(),
        "phone": str(row.get("phone") or "").strip() or None,
        "is_player": to_bool(row.get("isplayer")),
        "food_preference": normalize_food_pref(row.get("foodpreference")),
    }


def read_csv_rows(content: bytes) -> list[dict]:
    text = content.decode("utf-8-sig", errors="replace")
    reader = csv.DictReader(io.StringIO(text))
    rows = []
    for row in reader:
        row = {k: v for k, v in row.items() if k is not None}
        if any((v or "").strip() for v in row.values()):
            rows.append(row)
    return rows


async def import_participants(session: AsyncSession, content: bytes, actor_id: Optional[int] = None) -> dict:
    """Register every valid row of a CSV upload.

    Failures are reported per row and collected in ``failed_imports`` of the
    returned result; nothing is kept between imports.
    """
    if not content:
        raise ValidationFailed("The uploaded file is empty", "UPLOAD_EMPTY")
    try:
        rows = read_csv_rows(content)
    except csv.Error as e:
        raise ValidationFailed(f"Could not parse CSV: {e}", "UPLOAD_INVALID") from e
    if not rows:
        raise ValidationFailed("The uploaded file contains no data rows", "UPLOAD_EMPTY")
    if len(rows) > config.IMPORT_MAX_ROWS:
        raise PayloadTooLarge(f"Max {config.IMPORT_MAX_ROWS} rows per upload", "UPLOAD_TOO_LARGE")

    results = []
    failed_imports = []
    for raw in rows:
        fields = parse_row(raw)
        if not fields["name"] or not fields["email"]:
            error = ValidationFailed("name and email are required", "PARTICIPANT_INVALID_INPUT")
        else:
            try:
                participant = await _register(
                    session, fields["name"], fields["email"], fields["phone"],
                    fields["is_player"], fields["food_preference"], actor_id,
                )
            except CheckpointError as e:
                await session.rollback()
                error = e
            else:
                sent = await mailer.send_qr_email(
                    participant.participant_id, participant.name, participant.email,
                    participant.is_player, participant.qr_code,
                )
                results.append({
                    "row": raw,
                    "success": True,
                    "data": {
                        "participant_id": participant.participant_id,
                        "name": participant.name,
                        "email": participant.email,
                        "is_player": participant.is_player,
                        "food_preference": participant.food_preference,
                    },
                    "email_warning": None if sent else "Email not sent",
                })
                continue
        results.append({"row": raw, "success": False, "code": error.code, "message": error.message})
        failed_imports.append({
            "row": raw,
            "error": error.message,
            "reason": error.code,
            "timestamp": utcnow().isoformat(),
        })

    created = sum(1 for r in results if r["success"])
    logger.info("Import finished: %d rows, %d created, %d failed", len(rows), created, len(rows) - created)
    return {
        "success": created > 0,
        "summary": {"processed": len(rows), "created": created, "failed": len(rows) - created},
        "results": results,
        "failed_imports": failed_imports,
    }


async def export_participants_csv(session: AsyncSession) -> str:
    result = await session.execute(select(Participant).order_by(Participant.id))
    participants = list(result.scalars().all())
    if not participants:
        raise NotFound("No participants found to export", "NO_PARTICIPANTS_FOUND")
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for p in participants:
        writer.writerow([p.participant_id, p.name, p.email, p.phone or "N/A", "Yes" if p.is_player else "No"])
    return buf.getvalue()


async def list_participants(
    session: AsyncSession,
    page: int = 1,
    limit: int = 50,
    is_present: Optional[bool] = None,
    is_player: Optional[bool] = None,
    food_preference: Optional[str] = None,
) -> dict:
    page = max(page, 1)
    limit = max(limit, 1)
    filters = []
    if is_present is not None:
        filters.append(Participant.is_present.is_(is_present))
    if is_player is not None:
        filters.append(Participant.is_player.is_(is_player))
    if food_preference:
        filters.append(Participant.food_preference == food_preference)
    total = (await session.execute(select(func.count(Participant.id)).where(*filters))).scalar_one()
    result = await session.execute(
        select(Participant)
        .where(*filters)
        .order_by(Participant.created_at.desc(), Participant.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "participants": list(result.scalars().all()),
        "pagination": {"page": page, "limit": limit, "total": total, "pages": -(-total // limit)},
    }


async def mark_attendance(session: AsyncSession, participant_id: str, actor_id: Optional[int]) -> Participant:
    participant = await require_participant(session, participant_id)
    if participant.is_present:
        raise RuleViolation("Attendance already marked", "ATTENDANCE_ALREADY_MARKED")
    participant.is_present = True
    participant.attendance_time = utcnow()
    participant.attendance_marked_by_id = actor_id
    await session.commit()
    logger.info("Attendance marked: %s by staff %s", participant_id, actor_id)
    return participant


async def undo_attendance(session: AsyncSession, participant_id: str, actor_id: Optional[int]) -> Participant:
    """Clear presence. Entitlements already granted stay granted."""
    participant = await require_participant(session, participant_id)
    if not participant.is_present:
        raise RuleViolation("Attendance not marked", "ATTENDANCE_NOT_MARKED")
    participant.is_present = False
    participant.attendance_time = None
    participant.attendance_marked_by_id = None
    await session.commit()
    logger.info("Attendance undone: %s by staff %s", participant_id, actor_id)
    return participant


async def change_participant_type(
    session: AsyncSession,
    participant_id: str,
    is_player: bool,
    actor_id: Optional[int],
    reason: Optional[str] = None,
) -> tuple[Participant, int]:
    """Switch player/participant, log it and attach any new defaults. Returns the number attached."""
    participant = await require_participant(session, participant_id)
    is_player = bool(is_player)
    if participant.is_player == is_player:
        raise RuleViolation(
            f"Participant is already a {'player' if is_player else 'participant'}", "TYPE_UNCHANGED"
        )
    participant.type_change_history.append(TypeChangeHistory(
        previous_type=participant.is_player,
        new_type=is_player,
        changed_by_id=actor_id,
        changed_at=utcnow(),
        reason=reason,
    ))
    participant.is_player = is_player
    attached = await auto_assign(session, participant, actor_id)
    await session.commit()
    logger.info(
        "Type change: %s -> %s (%d entitlements attached)",
        participant_id, "player" if is_player else "participant", len(attached),
    )
    return participant, len(attached)
