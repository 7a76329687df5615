"""
Waitlist manager: join/leave with registration-window and capacity gating.

Capacity is checked against the live ``WaitlistedEntrants`` set, never the
``waitlistCount`` display cache. The write that adds an entrant is conditional
on ``waitlistVersion`` being unchanged since the live count was read, so two
joins racing for the last spot cannot both commit.
"""

import logging
from typing import Optional

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import (
    AlreadyAdmitted,
    CapacityReached,
    PreconditionFailed,
    RegistrationClosed,
    TransientStoreError,
)
from app.schemas.entrant import Profile, WaitlistEntry
from app.schemas.notification import GroupType
from app.services.notification_service import NotificationService
from app.services.repositories import (
    NON_SELECTED,
    WAITLISTED,
    AdmittedRepo,
    EntrantRepo,
    EventRepo,
    ProfileRepo,
    entrant_path,
    event_path,
)
from app.services.store import DocumentStore
from app.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class WaitlistService:
    """Owns the waitlist of every event"""

    def __init__(
        self,
        store: DocumentStore,
        notifications: Optional[NotificationService] = None,
        clock: Clock = now_ms,
        max_attempts: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.notifications = notifications or NotificationService(store, clock=clock)
        self.max_attempts = max_attempts or settings.CAS_MAX_ATTEMPTS

    async def live_count(self, event_id: str) -> int:
        """Authoritative waitlist size"""
        return await EntrantRepo.count(self.store, event_id, WAITLISTED)

    async def is_joined(self, event_id: str, uid: str) -> bool:
        return await EntrantRepo.exists(self.store, event_id, WAITLISTED, uid)

    async def refresh_count(self, event_id: str) -> int:
        """Rewrite the display counter from the live set"""
        live = await self.live_count(event_id)
        await self.store.update(event_path(event_id), {"waitlistCount": live})
        return live

    async def _profile(self, uid: str) -> Optional[Profile]:
        try:
            return await ProfileRepo.get(self.store, uid)
        except ValidationError:
            logger.warning(f"Ignoring unreadable profile for {uid}")
            return None

    async def join(self, event_id: str, uid: str) -> WaitlistEntry:
        """Add ``uid`` to the waitlist; joining twice returns the existing entry"""
        for attempt in range(1, self.max_attempts + 1):
            event = await EventRepo.require(self.store, event_id)
            now = self.clock()

            if not event.registration_open(now):
                raise RegistrationClosed(
                    "Registration for this event is not open.",
                    event_id=event_id,
                    registration_start=event.registration_start,
                    registration_end=event.registration_end,
                )
            if await AdmittedRepo.exists(self.store, event_id, uid):
                raise AlreadyAdmitted(event_id=event_id)

            existing = await self.store.get(entrant_path(event_id, WAITLISTED, uid))
            if existing.exists:
                logger.info(f"User {uid} already on waitlist for event {event_id}")
                return WaitlistEntry.from_doc(existing, uid=uid)

            live = await self.live_count(event_id)
            if live >= event.capacity:
                raise CapacityReached(event_id=event_id, capacity=event.capacity)

            entry = WaitlistEntry.for_profile(uid, await self._profile(uid), joined_at=now)
            batch = self.store.batch()
            batch.expect(event_path(event_id), "waitlistVersion", event.waitlist_version, default=0)
            batch.set(entrant_path(event_id, WAITLISTED, uid), entry.to_doc())
            batch.update(event_path(event_id), {
                "waitlistCount": live + 1,
                "waitlistVersion": event.waitlist_version + 1,
            })
            try:
                await batch.commit()
            except PreconditionFailed:
                logger.warning(f"Waitlist for event {event_id} changed during join of {uid} (attempt {attempt})")
                continue

            logger.info(f"User {uid} joined waitlist for event {event_id} ({live + 1}/{event.capacity})")
            return entry

        raise TransientStoreError(f"Waitlist for event {event_id} is busy, join of {uid} not applied")

    async def leave(self, event_id: str, uid: str) -> bool:
        """Remove ``uid`` from the waitlist; False when it was not on it"""
        for attempt in range(1, self.max_attempts + 1):
            event = await EventRepo.require(self.store, event_id)
            waitlisted = await self.store.get(entrant_path(event_id, WAITLISTED, uid))
            pooled = await self.store.get(entrant_path(event_id, NON_SELECTED, uid))
            if not waitlisted.exists and not pooled.exists:
                return False

            before = await self.live_count(event_id)
            batch = self.store.batch()
            batch.expect(event_path(event_id), "waitlistVersion", event.waitlist_version, default=0)
            if waitlisted.exists:
                batch.delete(waitlisted.path)
            if pooled.exists:
                batch.delete(pooled.path)
            batch.update(event_path(event_id), {
                "waitlistCount": max(before - (1 if waitlisted.exists else 0), 0),
                "waitlistVersion": event.waitlist_version + 1,
            })
            try:
                await batch.commit()
            except PreconditionFailed:
                logger.warning(f"Waitlist for event {event_id} changed during leave of {uid} (attempt {attempt})")
                continue

            logger.info(f"User {uid} left waitlist for event {event_id}")
            if waitlisted.exists and event.capacity and before >= event.capacity:
                await self._announce_spot(event, uid)
            return True

        raise TransientStoreError(f"Waitlist for event {event_id} is busy, leave of {uid} not applied")

    async def _announce_spot(self, event, leaver: str) -> None:
        try:
            remaining = [u for u in await EntrantRepo.uids(self.store, event.id, WAITLISTED) if u != leaver]
            await self.notifications.send(
                event,
                remaining,
                GroupType.WAITLIST,
                f"A spot opened up: {event.title}",
                f"Someone left the waitlist for {event.title}. A spot is now available.",
            )
        except TransientStoreError as e:
            logger.warning(f"Spot-available notification for event {event.id} not sent: {e}")
