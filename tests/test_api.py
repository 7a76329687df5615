"""
Tests for the HTTP API
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.config import settings
from app.services.engine import get_engine
from app.services.repositories import NON_SELECTED, SELECTED
from app.utils.security import rate_limiter
from main import app

ADMIN = {"Authorization": f"Bearer {settings.ADMIN_TOKEN}"}

def entrant(uid):
    return {"X-User-Id": uid}

@pytest_asyncio.fixture
async def api_client(lifecycle):
    app.dependency_overrides[get_engine] = lambda: lifecycle
    rate_limiter.clear()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
    app.dependency_overrides.clear()

@pytest.mark.asyncio
async def test_health(api_client):
    response = await api_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}

@pytest.mark.asyncio
async def test_public_event_details(api_client, seed):
    await seed.event()
    await seed.waitlist("evt1", ["u1", "u2"])

    response = await api_client.get("/events/evt1")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["title"] == "Spring Gala"
    assert data["registration_open"] is True
    assert data["waitlist_count"] == 2

@pytest.mark.asyncio
async def test_unknown_event_is_404(api_client):
    response = await api_client.get("/events/missing")
    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error_code"] == "event_not_found"

@pytest.mark.asyncio
async def test_join_status_and_leave(api_client, seed):
    await seed.event()

    joined = await api_client.post("/entrant/events/evt1/waitlist", headers=entrant("u1"))
    assert joined.status_code == 201
    assert joined.json()["data"]["uid"] == "u1"

    status = await api_client.get("/entrant/events/evt1/waitlist", headers=entrant("u1"))
    assert status.json()["data"] == {"event_id": "evt1", "joined": True, "waitlist_count": 1}

    left = await api_client.delete("/entrant/events/evt1/waitlist", headers=entrant("u1"))
    assert left.json()["data"] == {"removed": True}

@pytest.mark.asyncio
async def test_entrant_routes_need_a_user(api_client, seed):
    await seed.event()
    response = await api_client.post("/entrant/events/evt1/waitlist")
    assert response.status_code == 401

@pytest.mark.asyncio
async def test_join_after_registration_closed(api_client, seed, clock):
    event = await seed.event()
    clock.set(event.registration_end + 1)

    response = await api_client.post("/entrant/events/evt1/waitlist", headers=entrant("u1"))

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "registration_closed"
    assert "not open" in body["message"]

@pytest.mark.asyncio
async def test_full_waitlist(api_client, seed):
    await seed.event(capacity=1)
    await seed.waitlist("evt1", ["u1"])
    response = await api_client.post("/entrant/events/evt1/waitlist", headers=entrant("u2"))
    assert response.status_code == 409
    assert response.json()["error_code"] == "waitlist_full"

@pytest.mark.asyncio
async def test_rate_limit(api_client, seed, monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_PER_MINUTE", 2)
    await seed.event()
    for _ in range(2):
        assert (await api_client.get("/events/evt1")).status_code == 200
    assert (await api_client.get("/events/evt1")).status_code == 429

@pytest.mark.asyncio
async def test_admin_requires_token(api_client):
    assert (await api_client.get("/admin/events/evt1")).status_code in (401, 403)
    bad = await api_client.get("/admin/events/evt1", headers={"Authorization": "Bearer wrong"})
    assert bad.status_code == 401

@pytest.mark.asyncio
async def test_admin_create_and_summarize_event(api_client, clock):
    now = clock()
    payload = {
        "title": "Autumn Fair",
        "capacity": 10,
        "sample_size": 4,
        "registration_start": now - 1000,
        "registration_end": now + 1000,
        "deadline": now + 2000,
        "event_start": now + 3000,
    }

    created = await api_client.post("/admin/events", json=payload, headers=ADMIN)
    assert created.status_code == 201
    event_id = created.json()["data"]["id"]
    assert created.json()["data"]["created_at"] == now

    summary = await api_client.get(f"/admin/events/{event_id}", headers=ADMIN)
    data = summary.json()["data"]
    assert data["event"]["title"] == "Autumn Fair"
    assert data["waitlisted"] == 0
    assert data["pending_invitations"] == 0

@pytest.mark.asyncio
async def test_admin_rejects_out_of_order_stages(api_client, clock):
    now = clock()
    payload = {
        "title": "Backwards",
        "capacity": 10,
        "sample_size": 4,
        "registration_start": now,
        "registration_end": now + 5000,
        "deadline": now + 1000,
    }
    response = await api_client.post("/admin/events", json=payload, headers=ADMIN)
    assert response.status_code == 422

@pytest.mark.asyncio
async def test_selection_then_accept_and_decline(api_client, seed, clock):
    event = await seed.event(capacity=5, sample_size=2)
    await seed.waitlist("evt1", ["u1", "u2", "u3"])

    early = await api_client.post("/admin/events/evt1/selection", headers=ADMIN)
    assert early.status_code == 409
    assert early.json()["error_code"] == "invalid_window"

    clock.set(event.registration_end + 1)
    drawn = await api_client.post("/admin/events/evt1/selection", headers=ADMIN)
    assert drawn.status_code == 200
    selected = drawn.json()["data"]["selected"]
    assert len(selected) == 2

    again = await api_client.post("/admin/events/evt1/selection", headers=ADMIN)
    assert again.json()["data"]["already_processed"] is True

    winner, loser = selected
    [offer] = (await api_client.get("/entrant/invitations", headers=entrant(winner))).json()["data"]
    accepted = await api_client.post(f"/entrant/invitations/{offer['id']}/accept", params={"event_id": "evt1"}, headers=entrant(winner))
    assert accepted.status_code == 200
    assert accepted.json()["data"]["status"] == "ACCEPTED"

    [offer] = (await api_client.get("/entrant/invitations", headers=entrant(loser))).json()["data"]
    declined = await api_client.post(f"/entrant/invitations/{offer['id']}/decline", params={"event_id": "evt1"}, headers=entrant(loser))
    assert declined.json()["data"]["status"] == "DECLINED"

    conflict = await api_client.post(f"/entrant/invitations/{offer['id']}/accept", params={"event_id": "evt1"}, headers=entrant(loser))
    assert conflict.status_code == 409
    assert conflict.json()["error_code"] == "invalid_state"

    listed = await api_client.get("/admin/events/evt1/invitations", params={"status": "PENDING"}, headers=ADMIN)
    # the decline released a seat to the one remaining entrant
    assert [i["is_replacement"] for i in listed.json()["data"]] == [True]

@pytest.mark.asyncio
async def test_accept_someone_elses_invitation(api_client, seed, clock):
    event = await seed.event(sample_size=1)
    await seed.waitlist("evt1", ["u1"])
    clock.set(event.registration_end + 1)
    await api_client.post("/admin/events/evt1/selection", headers=ADMIN)
    [offer] = (await api_client.get("/admin/events/evt1/invitations", headers=ADMIN)).json()["data"]

    response = await api_client.post(f"/entrant/invitations/{offer['id']}/accept", params={"event_id": "evt1"}, headers=entrant("intruder"))

    assert response.status_code == 404
    assert response.json()["error_code"] == "invitation_not_found"

@pytest.mark.asyncio
async def test_admin_cancel_and_deadline(api_client, lifecycle, seed, clock, store):
    event = await seed.event(capacity=2, sample_size=2)
    await seed.waitlist("evt1", ["u1", "u2"])
    clock.set(event.registration_end + 1)
    await lifecycle.selection.check_and_process("evt1")

    removed = await api_client.post("/admin/events/evt1/entrants/u1/cancel", headers=ADMIN)
    assert removed.status_code == 200
    assert removed.json()["data"][0]["cancel_reason"] == "ORGANIZER_REMOVED"

    clock.set(event.deadline + 1)
    expired = await api_client.post("/admin/events/evt1/deadline", headers=ADMIN)
    assert expired.json()["data"] == {"event_id": "evt1", "cancelled": 1}

@pytest.mark.asyncio
async def test_admin_group_broadcast(api_client, seed):
    await seed.event()
    await seed.waitlist("evt1", ["n1", "n2"], group=NON_SELECTED)
    await seed.waitlist("evt1", ["s1"], group=SELECTED)

    response = await api_client.post(
        "/admin/events/evt1/notifications",
        json={"group_type": "nonSelected", "message": "Thanks for entering"},
        headers=ADMIN,
    )
    assert response.json()["data"]["recipients"] == 2

    unsupported = await api_client.post("/admin/events/evt1/notifications", json={"group_type": "sorry"}, headers=ADMIN)
    assert unsupported.status_code == 422
