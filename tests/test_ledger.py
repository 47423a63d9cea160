"""Tests for grant/revoke bookkeeping on a single entitlement instance."""
from datetime import datetime, timedelta, timezone

import pytest

from core.errors import RuleViolation
from core.models import EntitlementInstance
from core.services.ledger import check_consistency, grant, revoke

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _instance(name="Beer", countable=True, cap=2):
    return EntitlementInstance(
        name=name,
        category="beverage" if countable else "food",
        is_countable=countable,
        max_count=cap,
        given=0,
        given_at=[],
        given_by=[],
        last_undone_count=0,
    )


def test_countable_grant_appends_one_stamp_per_unit():
    inst = _instance(cap=3)
    assert grant(inst, 2, 3, actor_id=7, at=T0) == 2
    assert inst.given == 2
    assert inst.given_at == [T0.isoformat(), T0.isoformat()]
    assert inst.given_by == [7, 7]
    assert check_consistency(inst)


def test_countable_grant_over_cap_rejected_without_change():
    """Cap 2, one given, two more requested."""
    inst = _instance(cap=2)
    grant(inst, 1, 2, actor_id=1, at=T0)
    with pytest.raises(RuleViolation) as exc:
        grant(inst, 2, 2, actor_id=1, at=T0)
    assert exc.value.code == "ENTITLEMENT_LIMIT_EXCEEDED"
    assert "Current: 1, Limit: 2, Requested: 2" in exc.value.message
    assert inst.given == 1
    assert len(inst.given_at) == 1


def test_boolean_grant_goes_to_cap_once():
    """Second distribution of Lunch is rejected."""
    inst = _instance("Lunch", countable=False, cap=1)
    assert grant(inst, 1, 1, actor_id=3, at=T0) == 1
    assert inst.given == 1
    assert inst.given_by == [3]
    with pytest.raises(RuleViolation) as exc:
        grant(inst, 1, 1, actor_id=3, at=T0)
    assert exc.value.code == "ENTITLEMENT_ALREADY_GIVEN"
    assert inst.given == 1


def test_boolean_grant_ignores_requested_count():
    inst = _instance("Lunch", countable=False, cap=1)
    assert grant(inst, 5, 1, actor_id=3, at=T0) == 1
    assert inst.given == 1
    assert len(inst.given_at) == 1


def test_boolean_undo_resets_everything():
    inst = _instance("Lunch", countable=False, cap=1)
    grant(inst, 1, 1, actor_id=3, at=T0)
    assert revoke(inst, 1, actor_id=4, at=T0) == 1
    assert inst.given == 0
    assert inst.given_at == []
    assert inst.given_by == []
    assert inst.undone_by_id == 4
    assert inst.undone_at == T0
    assert inst.last_undone_count == 1


def test_countable_undo_removes_most_recent_pairs():
    inst = _instance(cap=5)
    stamps = [T0 + timedelta(minutes=i) for i in range(3)]
    grant(inst, 1, 5, actor_id=1, at=stamps[0])
    grant(inst, 1, 5, actor_id=2, at=stamps[1])
    grant(inst, 1, 5, actor_id=3, at=stamps[2])
    assert revoke(inst, 2, actor_id=9, at=T0) == 2
    assert inst.given == 1
    assert inst.given_at == [stamps[0].isoformat()]
    assert inst.given_by == [1]
    assert inst.last_undone_count == 2
    assert check_consistency(inst)


def test_undo_is_clamped_to_given():
    inst = _instance(cap=5)
    grant(inst, 2, 5, actor_id=1, at=T0)
    assert revoke(inst, 10, actor_id=1) == 2
    assert inst.given == 0
    assert inst.given_at == []


def test_distribute_then_undo_restores_previous_state():
    inst = _instance(cap=10)
    grant(inst, 3, 10, actor_id=1, at=T0)
    before = (inst.given, list(inst.given_at), list(inst.given_by))
    grant(inst, 4, 10, actor_id=2, at=T0 + timedelta(hours=1))
    revoke(inst, 4, actor_id=2)
    assert (inst.given, inst.given_at, inst.given_by) == before


def test_undo_with_nothing_given_rejected():
    inst = _instance()
    with pytest.raises(RuleViolation) as exc:
        revoke(inst, 1, actor_id=1)
    assert exc.value.code == "NOTHING_TO_UNDO"
    assert inst.undone_at is None
