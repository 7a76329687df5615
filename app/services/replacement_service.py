"""
Replacement engine: refills seats vacated by expired, declined or removed
invitations with fresh draws from the never-selected pool.
"""

import logging
import random
from typing import Dict, List, Optional

from app.core.config import settings
from app.core.errors import PreconditionFailed, TransientStoreError
from app.schemas.event import Event
from app.schemas.invitation import Invitation
from app.schemas.notification import GroupType
from app.services.notification_service import NotificationService
from app.services.repositories import (
    CANCELLED,
    NON_SELECTED,
    SELECTED,
    WAITLISTED,
    AdmittedRepo,
    EntrantRepo,
    EventRepo,
    entrant_path,
    event_path,
    group_collection,
    invitation_path,
)
from app.services.store import MAX_BATCH_WRITES, DocumentSnapshot, DocumentStore, new_id
from app.utils.clock import Clock, HOUR_MS, format_ms, now_ms

logger = logging.getLogger(__name__)

REPLACEMENT_TITLE = "Replacement Invitation"

# three writes per replacement, plus the notification and the event update
REPLACEMENT_CHUNK_SIZE = (MAX_BATCH_WRITES - 2) // 3


def replacement_count(cancelled: int, current_selected: int, capacity: int, pool_size: int) -> int:
    """Seats to redraw.

    ``current_selected`` counts the seats held before the cancelled ones were
    released, so ``current_selected - cancelled`` is what is still held.
    """
    count = min(cancelled, current_selected)
    count = min(count, capacity - (current_selected - cancelled), pool_size)
    return max(count, 0)


class ReplacementService:
    """Issues replacement invitations for released seats"""

    def __init__(
        self,
        store: DocumentStore,
        notifications: Optional[NotificationService] = None,
        clock: Clock = now_ms,
        rng: Optional[random.Random] = None,
        max_attempts: Optional[int] = None,
    ):
        self.store = store
        self.clock = clock
        self.rng = rng or random.Random()
        self.notifications = notifications or NotificationService(store, clock=clock)
        self.max_attempts = max_attempts or settings.CAS_MAX_ATTEMPTS

    def replacement_deadline(self, event: Event, now: int) -> int:
        """Response window restarts now, ends no later than the event start but never sooner than the minimum window"""
        deadline = now + settings.DEFAULT_RESPONSE_WINDOW_HOURS * HOUR_MS
        if event.event_start:
            deadline = min(deadline, event.event_start)
        return max(deadline, now + settings.MIN_REPLACEMENT_WINDOW_HOURS * HOUR_MS)

    async def pool(self, event_id: str) -> Dict[str, DocumentSnapshot]:
        """Entrants eligible for a replacement draw, keyed by uid"""
        candidates: Dict[str, DocumentSnapshot] = {}
        for group in (WAITLISTED, NON_SELECTED):
            for snapshot in await self.store.query(group_collection(event_id, group)):
                candidates.setdefault(snapshot.id, snapshot)

        excluded = set(await EntrantRepo.uids(self.store, event_id, SELECTED))
        excluded.update(await EntrantRepo.uids(self.store, event_id, CANCELLED))
        excluded.update(await AdmittedRepo.uids(self.store, event_id))
        return {uid: s for uid, s in candidates.items() if uid not in excluded}

    async def replace(self, event_id: str, cancelled_count: int) -> List[Invitation]:
        """Draw up to ``cancelled_count`` replacements. An exhausted pool yields fewer, without error."""
        if cancelled_count <= 0:
            return []

        for attempt in range(1, self.max_attempts + 1):
            event = await EventRepo.require(self.store, event_id)
            now = self.clock()
            if event.has_started(now):
                logger.info(f"Event {event_id} has started, no replacements drawn")
                return []

            held = await EntrantRepo.count(self.store, event_id, SELECTED)
            pool = await self.pool(event_id)
            count = replacement_count(cancelled_count, held + cancelled_count, event.capacity, len(pool))
            if count == 0:
                logger.info(f"No replacements for event {event_id} (released={cancelled_count}, held={held}, pool={len(pool)})")
                return []

            chosen = self.rng.sample(sorted(pool), min(count, REPLACEMENT_CHUNK_SIZE))
            try:
                invitations = await self._commit(event, [pool[uid] for uid in chosen], now)
            except PreconditionFailed:
                logger.warning(f"Replacement draw for event {event_id} lost a race (attempt {attempt})")
                continue

            logger.info(f"Issued {len(invitations)} replacement invitation(s) for event {event_id}")
            if len(invitations) == REPLACEMENT_CHUNK_SIZE and cancelled_count > len(invitations):
                return invitations + await self.replace(event_id, cancelled_count - len(invitations))
            return invitations

        raise TransientStoreError(f"Replacement draw for event {event_id} could not be committed")

    async def _commit(self, event: Event, chosen: List[DocumentSnapshot], now: int) -> List[Invitation]:
        deadline = self.replacement_deadline(event, now)
        batch = self.store.batch()
        batch.expect(event_path(event.id), "seatVersion", event.seat_version, default=0)

        invitations = []
        for snapshot in chosen:
            uid = snapshot.id
            batch.delete(snapshot.path)
            batch.set(entrant_path(event.id, SELECTED, uid), {**snapshot.to_dict(), "userId": uid, "selectedAt": now})
            invitation = Invitation(id=new_id(), event_id=event.id, uid=uid, issued_at=now, deadline=deadline, is_replacement=True)
            batch.set(invitation_path(invitation.id), invitation.to_doc())
            invitations.append(invitation)

        request = await self.notifications.build_request(
            event,
            [i.uid for i in invitations],
            GroupType.REPLACEMENT,
            REPLACEMENT_TITLE,
            f"A spot opened up for {event.title}! You've been selected as a replacement. "
            f"Please respond by {format_ms(deadline)}.",
            is_invited_kind=True,
        )
        NotificationService.stage(batch, request)
        batch.update(event_path(event.id), {"seatVersion": event.seat_version + 1})
        await batch.commit()
        return invitations
