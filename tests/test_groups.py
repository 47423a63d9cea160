"""Tests for group registry and group/bulk fan-out.

A failed target rolls the session back and expires loaded rows, so tests keep
plain ids around instead of reading attributes off earlier objects.
"""
import pytest

from core.errors import NotFound
from core.services import bulk, groups
from core.services.common import require_participant


async def _group_of(session, pids, name="Team A"):
    group = await groups.create_group(session, {"name": name, "group_type": "team"}, None)
    out = await groups.add_members(session, group.id, pids, None)
    assert out.errors == []
    return group.id


@pytest.mark.asyncio
async def test_group_distribute_skips_absent_member(session, make_template, make_participant):
    await make_template("Breakfast")
    present1 = (await make_participant("Ann", "ann@example.com", present=True)).participant_id
    present2 = (await make_participant("Ben", "ben@example.com", present=True)).participant_id
    absent = (await make_participant("Cat", "cat@example.com", present=False)).participant_id
    gid = await _group_of(session, [present1, absent, present2])

    out = await groups.group_distribute(session, gid, None, entitlement="breakfast")
    assert out.success is True
    assert [r["participant_id"] for r in out.results] == [present1, present2]
    assert len(out.errors) == 1
    assert out.errors[0].startswith(f"{absent} (Cat): ")
    assert "present" in out.errors[0]

    p = await require_participant(session, present1)
    record = p.group_entitlement_history[-1]
    assert (record.group_id, record.entitlement_name, record.entitlement_type, record.count) == (
        gid, "Breakfast", "legacy", 1,
    )
    absent_p = await require_participant(session, absent)
    assert absent_p.find_entitlement(name="Breakfast").given == 0
    assert absent_p.group_entitlement_history == []


@pytest.mark.asyncio
async def test_group_undo_uses_latest_open_record(session, make_template, make_participant):
    await make_template("Beer", category="beverage", is_countable=True, max_count=5)
    a = (await make_participant("Ann", "ann@example.com", present=True)).participant_id
    b = (await make_participant("Ben", "ben@example.com", present=True)).participant_id
    gid = await _group_of(session, [a, b])

    await groups.group_distribute(session, gid, None, entitlement="Beer", count=1)
    await groups.group_distribute(session, gid, None, entitlement="Beer", count=2)

    out = await groups.group_undo(session, gid, None, entitlement="Beer", count=5)
    assert [r["undone"] for r in out.results] == [2, 2]
    p = await require_participant(session, a)
    assert p.find_entitlement(name="Beer").given == 1
    assert [r.undone_at is not None for r in p.group_entitlement_history] == [False, True]

    await groups.group_undo(session, gid, None, entitlement="Beer", count=5)
    out = await groups.group_undo(session, gid, None, entitlement="Beer")
    assert out.results == []
    assert len(out.errors) == 2
    assert "No recent group distribution" in out.errors[0]
    assert out.success is False


@pytest.mark.asyncio
async def test_add_members_reports_duplicates_and_unknown(session, make_participant):
    a = (await make_participant("Ann", "ann@example.com")).participant_id
    gid = await _group_of(session, [a])
    out = await groups.add_members(session, gid, [a, "ZZZZZZZZ"], None)
    assert out.results == []
    assert out.errors == [f"{a} (Ann): Already in group", "ZZZZZZZZ: Participant not found"]


@pytest.mark.asyncio
async def test_delete_group_clears_backlinks_keeps_history(session, make_template, make_participant):
    await make_template("Lunch")
    a = (await make_participant("Ann", "ann@example.com", present=True)).participant_id
    gid = await _group_of(session, [a])
    await groups.group_distribute(session, gid, None, entitlement="Lunch")

    await groups.delete_group(session, gid)
    with pytest.raises(NotFound):
        await groups.get_group(session, gid)

    session.expire_all()
    p = await require_participant(session, a)
    assert p.groups == []
    assert len(p.group_entitlement_history) == 1


@pytest.mark.asyncio
async def test_remove_member(session, make_participant):
    a = (await make_participant("Ann", "ann@example.com")).participant_id
    b = (await make_participant("Ben", "ben@example.com")).participant_id
    gid = await _group_of(session, [a, b])
    await groups.remove_member(session, gid, a)
    group = await groups.get_group(session, gid)
    assert [m.participant.participant_id for m in group.members] == [b]
    assert (await require_participant(session, a)).groups == []


@pytest.mark.asyncio
async def test_bulk_distribute_collects_errors(session, make_template, make_participant):
    await make_template("Lunch")
    a = (await make_participant("Ann", "ann@example.com", present=True)).participant_id
    b = (await make_participant("Ben", "ben@example.com", present=False)).participant_id

    out = await bulk.bulk_distribute(session, [a, b, "MISSING1"], None, entitlement="lunch")
    assert len(out.results) == 1
    assert out.errors[1] == "MISSING1: Participant not found"
    assert out.as_dict()["success"] is True

    out = await bulk.bulk_distribute(session, [a], None, entitlement="Lunch")
    assert out.success is False
    assert "already given" in out.errors[0]

    out = await bulk.bulk_undo(session, [a, b], None, entitlement="Lunch")
    assert [r["participant_id"] for r in out.results] == [a]


@pytest.mark.asyncio
async def test_bulk_attach(session, make_template, make_participant):
    a = (await make_participant("Ann", "ann@example.com")).participant_id
    b = (await make_participant("Ben", "ben@example.com")).participant_id
    shirt = (await make_template("Shirt", category="merchandise", players=False, participants=False)).id
    await bulk.bulk_attach(session, [a], shirt, None)
    out = await bulk.bulk_attach(session, [a, b], shirt, None)
    assert [r["participant_id"] for r in out.results] == [b]
    assert len(out.errors) == 1


def test_legacy_tokens_translate_once():
    assert bulk.resolve_entitlement_ref("eveningMeal").name == "Evening Meal"
    assert bulk.resolve_entitlement_ref("eveningMeal").entitlement_type == "legacy"
    assert bulk.resolve_entitlement_ref("Evening Meal").entitlement_type == "template"
    assert bulk.resolve_entitlement_ref(None, template_id=4).template_id == 4
