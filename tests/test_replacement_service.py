"""
Tests for replacement draws
"""

import asyncio
import random

import pytest

from app.schemas.event import Event
from app.services.replacement_service import ReplacementService, replacement_count
from app.services.repositories import (
    CANCELLED,
    NON_SELECTED,
    NOTIFICATION_REQUESTS,
    SELECTED,
    WAITLISTED,
    EntrantRepo,
    EventRepo,
    InvitationRepo,
    admitted_path,
)
from app.services.store import MAX_BATCH_WRITES
from app.utils.clock import HOUR_MS

def test_replacement_count():
    # one released seat, four waiting, capacity five, five seats held before the release
    assert replacement_count(cancelled=1, current_selected=5, capacity=5, pool_size=4) == 1
    assert replacement_count(cancelled=3, current_selected=5, capacity=5, pool_size=1) == 1
    assert replacement_count(cancelled=2, current_selected=5, capacity=5, pool_size=0) == 0
    assert replacement_count(cancelled=2, current_selected=6, capacity=5, pool_size=9) == 1
    assert replacement_count(cancelled=3, current_selected=2, capacity=5, pool_size=9) == 2
    assert replacement_count(cancelled=0, current_selected=5, capacity=5, pool_size=9) == 0

@pytest.mark.asyncio
async def test_one_cancellation_four_waiting(store, lifecycle, seed):
    event = await seed.event(capacity=5)
    await seed.waitlist(event.id, ["s1", "s2", "s3", "s4"], group=SELECTED)
    await seed.waitlist(event.id, ["gone"], group=CANCELLED)
    await seed.waitlist(event.id, ["w1", "w2", "w3", "w4"], group=NON_SELECTED)

    issued = await lifecycle.replacements.replace(event.id, 1)

    assert len(issued) == 1
    [invitation] = issued
    assert invitation.is_replacement
    assert invitation.uid in ("w1", "w2", "w3", "w4")
    assert await EntrantRepo.exists(store, event.id, SELECTED, invitation.uid)
    assert not await EntrantRepo.exists(store, event.id, NON_SELECTED, invitation.uid)
    assert await EntrantRepo.count(store, event.id, NON_SELECTED) == 3

    [request] = await store.query(NOTIFICATION_REQUESTS)
    assert request.get("groupType") == "replacement"
    assert request.get("title") == "Replacement Invitation"
    assert request.get("userIds") == [invitation.uid]

@pytest.mark.asyncio
async def test_pool_excludes_cancelled_selected_and_admitted(store, lifecycle, seed):
    event = await seed.event(capacity=10)
    await seed.waitlist(event.id, ["a", "b", "c", "d"], group=NON_SELECTED)
    await seed.waitlist(event.id, ["e"], group=WAITLISTED)
    await seed.waitlist(event.id, ["a"], group=CANCELLED)
    await seed.waitlist(event.id, ["b"], group=SELECTED)
    await store.set(admitted_path(event.id, "c"), {"eventId": event.id, "uid": "c"})

    pool = await lifecycle.replacements.pool(event.id)

    assert sorted(pool) == ["d", "e"]

@pytest.mark.asyncio
async def test_exhausted_pool_issues_fewer(store, lifecycle, seed):
    event = await seed.event(capacity=5)
    await seed.waitlist(event.id, ["s1", "s2"], group=SELECTED)
    await seed.waitlist(event.id, ["w1"], group=NON_SELECTED)

    issued = await lifecycle.replacements.replace(event.id, 3)
    assert [i.uid for i in issued] == ["w1"]

    assert await lifecycle.replacements.replace(event.id, 1) == []

@pytest.mark.asyncio
async def test_large_refill_is_drawn_in_bounded_batches(store, lifecycle, seed, monkeypatch):
    event = await seed.event(capacity=300)
    await seed.waitlist(event.id, [f"w{i:03d}" for i in range(200)], group=NON_SELECTED)
    sizes = []
    commit_batch = store.commit_batch

    async def recording(batch):
        sizes.append(len(batch))
        await commit_batch(batch)

    monkeypatch.setattr(store, "commit_batch", recording)

    issued = await lifecycle.replacements.replace(event.id, 200)

    assert len(issued) == 200
    assert len({i.uid for i in issued}) == 200
    assert len(sizes) == 2
    assert max(sizes) <= MAX_BATCH_WRITES
    assert await EntrantRepo.count(store, event.id, SELECTED) == 200
    assert await store.count(NOTIFICATION_REQUESTS) == 2

@pytest.mark.asyncio
async def test_deadline_restarts_from_now(store, lifecycle, seed, clock):
    event = await seed.event(event_start=clock() + 30 * 24 * HOUR_MS)
    await seed.waitlist(event.id, ["w1"], group=NON_SELECTED)

    [invitation] = await lifecycle.replacements.replace(event.id, 1)

    assert invitation.deadline == clock() + 7 * 24 * HOUR_MS
    assert invitation.deadline != event.deadline
    assert invitation.issued_at == clock()

def test_deadline_capped_at_event_start_with_floor(lifecycle, clock):
    now = clock()
    service = lifecycle.replacements
    assert service.replacement_deadline(Event(id="e", event_start=now + 72 * HOUR_MS), now) == now + 72 * HOUR_MS
    assert service.replacement_deadline(Event(id="e", event_start=now + HOUR_MS), now) == now + 48 * HOUR_MS
    assert service.replacement_deadline(Event(id="e"), now) == now + 7 * 24 * HOUR_MS

@pytest.mark.asyncio
async def test_no_replacements_after_event_start(store, lifecycle, seed, clock):
    event = await seed.event()
    await seed.waitlist(event.id, ["w1"], group=NON_SELECTED)
    clock.set(event.event_start)
    assert await lifecycle.replacements.replace(event.id, 1) == []

@pytest.mark.asyncio
async def test_concurrent_draws_do_not_oversubscribe(store, lifecycle, seed, clock):
    event = await seed.event(capacity=3)
    await seed.waitlist(event.id, ["s1", "s2"], group=SELECTED)
    await seed.waitlist(event.id, [f"w{i}" for i in range(6)], group=NON_SELECTED)
    rival = ReplacementService(store, clock=clock, rng=random.Random(3))

    await asyncio.gather(
        lifecycle.replacements.replace(event.id, 1),
        rival.replace(event.id, 1),
    )

    assert await EntrantRepo.count(store, event.id, SELECTED) <= 3
    pending = await InvitationRepo.list_for_event(store, event.id)
    assert len({i.uid for i in pending}) == len(pending)
    assert (await EventRepo.get(store, event.id)).seat_version >= 1
