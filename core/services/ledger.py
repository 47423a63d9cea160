"""Grant and reversal bookkeeping on a single entitlement instance.

These functions only touch the instance they are given. Callers resolve the
effective cap, load the participant and persist the result.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from core.errors import RuleViolation
from core.models import EntitlementInstance
from core.models.base import utcnow


def _stamp(at: Optional[datetime]) -> str:
    return (at or utcnow()).isoformat()


def check_consistency(instance: EntitlementInstance) -> bool:
    """given matches both grant arrays and never goes negative."""
    given = instance.given or 0
    given_at = instance.given_at or []
    given_by = instance.given_by or []
    return given >= 0 and given == len(given_at) == len(given_by)


def grant(
    instance: EntitlementInstance,
    count: int,
    cap: int,
    actor_id: Optional[int],
    at: Optional[datetime] = None,
) -> int:
    """Grant units against ``cap``. Returns the number of units granted.

    Countable instances take ``count`` units, all stamped with the same time and
    actor. Boolean instances go straight to ``cap`` with exactly one stamp.
    """
    given = instance.given or 0
    given_at = list(instance.given_at or [])
    given_by = list(instance.given_by or [])
    stamp = _stamp(at)

    if instance.is_countable:
        if given + count > cap:
            raise RuleViolation(
                f"Limit exceeded. Current: {given}, Limit: {cap}, Requested: {count}",
                "ENTITLEMENT_LIMIT_EXCEEDED",
            )
        instance.given = given + count
        # JSON columns only notice reassignment
        instance.given_at = given_at + [stamp] * count
        instance.given_by = given_by + [actor_id] * count
        return count

    if given >= cap:
        raise RuleViolation("Entitlement already given", "ENTITLEMENT_ALREADY_GIVEN")
    instance.given = cap
    instance.given_at = given_at + [stamp]
    instance.given_by = given_by + [actor_id]
    return 1


def revoke(
    instance: EntitlementInstance,
    count: int,
    actor_id: Optional[int],
    at: Optional[datetime] = None,
) -> int:
    """Reverse the most recent grants. Returns the number of units undone."""
    given = instance.given or 0
    if given <= 0:
        raise RuleViolation("No distributions to undo for this entitlement", "NOTHING_TO_UNDO")

    undo_count = min(count, given)
    if instance.is_countable:
        instance.given = given - undo_count
        instance.given_at = list(instance.given_at or [])[: given - undo_count]
        instance.given_by = list(instance.given_by or [])[: given - undo_count]
    else:
        instance.given = 0
        instance.given_at = []
        instance.given_by = []

    instance.undone_by_id = actor_id
    instance.undone_at = at or utcnow()
    instance.last_undone_count = undo_count
    return undo_count
