"""
Tests for the SQL document store: batches, preconditions, queries and the
polling change feed
"""

import asyncio

import pytest

from app.core.errors import PreconditionFailed
from app.services.store import doc_path, matches

@pytest.mark.asyncio
async def test_set_get_and_merge(store):
    await store.set("events/e1", {"title": "Gala", "capacity": 5})
    await store.set("events/e1", {"capacity": 8}, merge=True)

    snapshot = await store.get("events/e1")
    assert snapshot.exists
    assert snapshot.id == "e1"
    assert snapshot.to_dict() == {"title": "Gala", "capacity": 8}

    await store.set("events/e1", {"capacity": 9})
    assert (await store.get("events/e1")).to_dict() == {"capacity": 9}

@pytest.mark.asyncio
async def test_missing_document(store):
    snapshot = await store.get("events/nope")
    assert not snapshot.exists
    assert snapshot.get("title", "fallback") == "fallback"

@pytest.mark.asyncio
async def test_update_and_increment_require_existing_document(store):
    with pytest.raises(PreconditionFailed):
        await store.update("events/ghost", {"title": "x"})

    await store.set("events/e1", {"waitlistCount": 1})
    await store.batch().increment("events/e1", "waitlistCount", 2).commit()
    assert (await store.get("events/e1")).get("waitlistCount") == 3

@pytest.mark.asyncio
async def test_failed_expectation_writes_nothing(store):
    await store.set("events/e1", {"selectionProcessed": True})

    batch = store.batch()
    batch.expect("events/e1", "selectionProcessed", False, default=False)
    batch.set("invitations/i1", {"uid": "u1"})
    batch.update("events/e1", {"selectionNotificationSent": True})

    with pytest.raises(PreconditionFailed) as exc_info:
        await batch.commit()

    assert exc_info.value.field == "selectionProcessed"
    assert not (await store.get("invitations/i1")).exists
    assert (await store.get("events/e1")).get("selectionNotificationSent") is None

@pytest.mark.asyncio
async def test_expectation_default_applies_to_missing_field(store):
    await store.set("events/e1", {"title": "Gala"})
    batch = store.batch()
    batch.expect("events/e1", "seatVersion", 0, default=0)
    batch.update("events/e1", {"seatVersion": 1})
    await batch.commit()
    assert (await store.get("events/e1")).get("seatVersion") == 1

@pytest.mark.asyncio
async def test_expect_exists(store):
    batch = store.batch().expect_exists("events/missing").set("events/other", {"a": 1})
    with pytest.raises(PreconditionFailed):
        await batch.commit()
    assert not (await store.get("events/other")).exists

@pytest.mark.asyncio
async def test_set_then_delete_in_one_batch(store):
    batch = store.batch()
    batch.set("events/e1/SelectedEntrants/u1", {"userId": "u1"})
    batch.delete("events/e1/SelectedEntrants/u1")
    await batch.commit()
    assert not (await store.get("events/e1/SelectedEntrants/u1")).exists

@pytest.mark.asyncio
async def test_query_filters_order_and_limit(store):
    for i, status in enumerate(["PENDING", "ACCEPTED", "PENDING", "PENDING"]):
        await store.set(f"invitations/i{i}", {"eventId": "e1", "status": status, "expiresAt": 100 - i * 10})
    await store.set("invitations/other", {"eventId": "e2", "status": "PENDING", "expiresAt": 1})

    pending = await store.query("invitations", [("eventId", "==", "e1"), ("status", "==", "PENDING")], order_by="expiresAt")
    assert [s.id for s in pending] == ["i3", "i2", "i0"]

    latest = await store.query("invitations", [("expiresAt", "<", 95)], order_by="expiresAt", descending=True, limit=2)
    assert [s.id for s in latest] == ["i1", "i2"]

    assert await store.count("invitations", [("eventId", "==", "e2")]) == 1

@pytest.mark.asyncio
async def test_subcollections_are_separate(store):
    await store.set(doc_path("events", "e1", "WaitlistedEntrants", "u1"), {"userId": "u1"})
    await store.set(doc_path("events", "e2", "WaitlistedEntrants", "u2"), {"userId": "u2"})
    docs = await store.query("events/e1/WaitlistedEntrants")
    assert [d.id for d in docs] == ["u1"]
    assert await store.query("events") == []

@pytest.mark.asyncio
async def test_add_assigns_id(store):
    doc_id = await store.add("notificationRequests", {"title": "Hi"})
    snapshot = await store.get(f"notificationRequests/{doc_id}")
    assert snapshot.get("id") == doc_id

def test_matches_treats_null_as_missing():
    assert matches({"a": 1}, [("a", "==", 1)])
    assert not matches({"a": None}, [("a", "==", None)])
    assert matches({"a": None}, [("a", "!=", 2)])
    assert not matches({"a": "x"}, [("a", "<", 3)])
    assert matches({"tags": ["x", "y"]}, [("tags", "array_contains", "y")])
    with pytest.raises(ValueError):
        matches({"a": 1}, [("a", "~", 1)])

@pytest.mark.asyncio
async def test_subscription_reports_changes_until_unsubscribed(store):
    await store.set("events/e1", {"title": "Gala"})
    received = []

    async def on_changes(changes):
        received.extend((c.type, c.document.id) for c in changes)

    subscription = store.subscribe("events", on_changes)
    await asyncio.sleep(0.2)
    assert ("ADDED", "e1") in received

    await store.update("events/e1", {"title": "Gala II"})
    await store.set("events/e2", {"title": "Other"})
    await asyncio.sleep(0.2)
    assert ("MODIFIED", "e1") in received
    assert ("ADDED", "e2") in received

    await store.delete("events/e2")
    await asyncio.sleep(0.2)
    assert ("REMOVED", "e2") in received

    subscription.unsubscribe()
    assert not subscription.active
    received.clear()
    await store.set("events/e3", {"title": "Late"})
    await asyncio.sleep(0.2)
    assert received == []
