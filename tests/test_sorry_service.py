"""
Tests for the lottery-closed notification
"""

import pytest

from app.schemas.event import Event
from app.services.repositories import (
    NON_SELECTED,
    NOTIFICATION_REQUESTS,
    SELECTED,
    WAITLISTED,
    EventRepo,
    admitted_path,
)
from app.utils.clock import SECOND_MS

def test_window_boundaries(lifecycle, clock):
    start = clock() + 3600 * SECOND_MS
    event = Event(id="e", event_start=start)
    sorry = lifecycle.sorry

    assert sorry.in_window(event, start - 60 * SECOND_MS)
    assert sorry.in_window(event, start - 90 * SECOND_MS)
    assert sorry.in_window(event, start - 30 * SECOND_MS)
    assert not sorry.in_window(event, start - 91 * SECOND_MS)
    assert not sorry.in_window(event, start - 29 * SECOND_MS)
    assert not sorry.in_window(event, start)
    assert not sorry.in_window(Event(id="e"), start - 60 * SECOND_MS)

@pytest.mark.asyncio
async def test_recipients_are_never_selected_entrants(store, lifecycle, seed):
    event = await seed.event()
    await seed.waitlist(event.id, ["n1", "n2"], group=NON_SELECTED)
    await seed.waitlist(event.id, ["w1", "n1"], group=WAITLISTED)
    await seed.waitlist(event.id, ["s1"], group=SELECTED)

    assert await lifecycle.sorry.recipients(event.id) == ["n1", "n2", "w1"]

@pytest.mark.asyncio
async def test_sent_once_inside_window(store, lifecycle, seed, clock):
    event = await seed.event()
    await seed.waitlist(event.id, ["n1", "n2"], group=NON_SELECTED)
    clock.set(event.event_start - 60 * SECOND_MS)

    assert await lifecycle.sorry.check_event(event)

    [request] = await store.query(NOTIFICATION_REQUESTS)
    assert request.get("groupType") == "sorry"
    assert request.get("title") == "Lottery closed: Spring Gala"
    assert sorted(request.get("userIds")) == ["n1", "n2"]
    assert (await EventRepo.get(store, event.id)).sorry_notification_sent

    # a second observer holding the stale event loses on the latch
    clock.advance(5 * SECOND_MS)
    assert not await lifecycle.sorry.check_event(event)
    assert await store.count(NOTIFICATION_REQUESTS) == 1

@pytest.mark.asyncio
async def test_missed_window_is_not_retried(store, lifecycle, seed, clock):
    event = await seed.event()
    await seed.waitlist(event.id, ["n1"], group=NON_SELECTED)

    clock.set(event.event_start - 10 * SECOND_MS)
    assert not await lifecycle.sorry.check_event(event)
    clock.set(event.event_start + SECOND_MS)
    assert not await lifecycle.sorry.check_event(event)

    assert await store.count(NOTIFICATION_REQUESTS) == 0
    assert not (await EventRepo.get(store, event.id)).sorry_notification_sent

@pytest.mark.asyncio
async def test_latch_set_even_without_recipients(store, lifecycle, seed, clock):
    event = await seed.event()
    clock.set(event.event_start - 60 * SECOND_MS)

    assert await lifecycle.sorry.check_event(event)

    assert await store.count(NOTIFICATION_REQUESTS) == 0
    assert (await EventRepo.get(store, event.id)).sorry_notification_sent

@pytest.mark.asyncio
async def test_send_if_filled_waits_for_every_seat(store, lifecycle, seed):
    event = await seed.event(capacity=2)
    await seed.waitlist(event.id, ["n1"], group=NON_SELECTED)
    await store.set(admitted_path(event.id, "a1"), {"eventId": event.id, "uid": "a1"})

    assert not await lifecycle.sorry.send_if_filled(event.id)

    await store.set(admitted_path(event.id, "a2"), {"eventId": event.id, "uid": "a2"})
    assert await lifecycle.sorry.send_if_filled(event.id)
    assert not await lifecycle.sorry.send_if_filled(event.id)
    assert await store.count(NOTIFICATION_REQUESTS) == 1
