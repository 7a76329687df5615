"""
Selection engine: the one-time lottery that runs when registration closes.
"""

import logging
import random
from typing import List, Optional

from app.core.config import settings
from app.core.errors import PreconditionFailed, TransientStoreError
from app.schemas.event import Event, SelectionResult
from app.schemas.invitation import Invitation
from app.schemas.notification import GroupType
from app.services.notification_service import NotificationService
from app.services.repositories import (
    NON_SELECTED,
    SELECTED,
    WAITLISTED,
    EventRepo,
    entrant_path,
    event_path,
    group_collection,
    invitation_path,
)
from app.services.store import MAX_BATCH_WRITES, DocumentSnapshot, DocumentStore, chunked, new_id
from app.utils.clock import Clock, HOUR_MS, format_ms, now_ms

logger = logging.getLogger(__name__)

SELECTION_TITLE = "You've been selected! 🎉"

# three writes per drawn entrant; the last chunk also carries the notification and the event update
DRAW_CHUNK_SIZE = (MAX_BATCH_WRITES - 4) // 3


def draw_size(event: Event, waitlist_size: int) -> int:
    return max(min(event.sample_size, event.capacity, waitlist_size), 0)


def draw_invitation_id(draw_id: str, uid: str) -> str:
    return f"{draw_id}_{uid}"


class SelectionService:
    """Draws the initial invitees from the waitlist"""

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

    @staticmethod
    def is_due(event: Event, now: int) -> bool:
        """Registration has ended, the lottery has not run and the event has not started"""
        if event.selection_processed or not event.registration_end:
            return False
        return now >= event.registration_end and not event.has_started(now)

    async def check_and_process(self, event_id: str) -> Optional[SelectionResult]:
        """Run the lottery if it is due; None when it is not.

        The draw is recorded on the event first, guarded by no draw existing
        yet and the waitlist being unchanged. Invitations then go out in
        bounded batches, each conditional on that draw still being current and
        on the entrant not having an invitation from it. The last batch carries
        the selection notification and sets both latch flags, so an
        interrupted run is resumed from the recorded draw by the next
        observer. A duplicate observer that finds the latch set gets
        ``already_processed=True``.
        """
        for attempt in range(1, self.max_attempts + 1):
            event = await EventRepo.require(self.store, event_id)
            now = self.clock()
            if event.selection_processed:
                return SelectionResult(event_id=event_id, already_processed=True)
            if not self.is_due(event, now):
                return None

            try:
                if event.selection_draw_id is None:
                    event = await self._draw(event, now)
                else:
                    logger.info(f"Resuming selection draw {event.selection_draw_id} for event {event_id}")
                selected, invitation_ids = await self._issue(event)
            except PreconditionFailed:
                logger.warning(f"Selection for event {event_id} lost a race (attempt {attempt})")
                continue

            drawn = set(event.selection_draw)
            remaining = [s for s in await self.store.query(group_collection(event_id, WAITLISTED)) if s.id not in drawn]
            await self._tag_non_selected(event_id, remaining, now)
            logger.info(f"Selection for event {event_id}: {len(selected)} selected, {len(remaining)} not selected")
            return SelectionResult(
                event_id=event_id,
                selected=selected,
                non_selected=[s.id for s in remaining],
                invitation_ids=invitation_ids,
            )

        raise TransientStoreError(f"Selection for event {event_id} could not be committed")

    def invitation_deadline(self, event: Event, now: int) -> int:
        if event.deadline:
            return event.deadline
        return now + settings.DEFAULT_RESPONSE_WINDOW_HOURS * HOUR_MS

    async def _draw(self, event: Event, now: int) -> Event:
        uids = [s.id for s in await self.store.query(group_collection(event.id, WAITLISTED))]
        chosen = self.rng.sample(uids, draw_size(event, len(uids)))
        draw_id = new_id()

        batch = self.store.batch()
        batch.expect(event_path(event.id), "selectionProcessed", False, default=False)
        batch.expect(event_path(event.id), "selectionDrawId", None)
        batch.expect(event_path(event.id), "waitlistVersion", event.waitlist_version, default=0)
        batch.update(event_path(event.id), {
            "selectionDrawId": draw_id,
            "selectionDraw": chosen,
            "selectionDrawnAt": now,
        })
        await batch.commit()
        return event.model_copy(update={"selection_draw_id": draw_id, "selection_draw": chosen, "selection_drawn_at": now})

    async def _issue(self, event: Event):
        """Write the invitations of the recorded draw; returns (selected uids, invitation ids)"""
        draw_id = event.selection_draw_id
        drawn_at = event.selection_drawn_at or self.clock()
        deadline = self.invitation_deadline(event, drawn_at)
        entries = await self.store.get_all([entrant_path(event.id, WAITLISTED, uid) for uid in event.selection_draw])
        issued = await self.store.get_all([invitation_path(draw_invitation_id(draw_id, uid)) for uid in event.selection_draw])

        selected = [uid for uid, invitation in zip(event.selection_draw, issued) if invitation.exists]
        pending = []
        for uid, entry, invitation in zip(event.selection_draw, entries, issued):
            if invitation.exists:
                continue
            if not entry.exists:
                logger.info(f"Drawn entrant {uid} left the waitlist of event {event.id} before being invited")
                continue
            pending.append(entry)
        selected += [entry.id for entry in pending]

        parts = list(chunked(pending, DRAW_CHUNK_SIZE)) or [[]]
        for index, part in enumerate(parts):
            batch = self.store.batch()
            batch.expect(event_path(event.id), "selectionDrawId", draw_id)
            batch.expect(event_path(event.id), "selectionProcessed", False, default=False)
            for entry in part:
                uid = entry.id
                path = invitation_path(draw_invitation_id(draw_id, uid))
                batch.expect_exists(entry.path)
                batch.expect_missing(path)
                batch.delete(entry.path)
                batch.set(entrant_path(event.id, SELECTED, uid), {**entry.to_dict(), "userId": uid, "selectedAt": drawn_at})
                invitation = Invitation(id=draw_invitation_id(draw_id, uid), event_id=event.id, uid=uid, issued_at=drawn_at, deadline=deadline)
                batch.set(path, invitation.to_doc())
            if index == len(parts) - 1:
                await self._stage_completion(batch, event, selected, deadline)
            await batch.commit()

        return selected, [draw_invitation_id(draw_id, uid) for uid in selected]

    async def _stage_completion(self, batch, event: Event, selected: List[str], deadline: int) -> None:
        request = await self.notifications.build_request(
            event,
            selected,
            GroupType.SELECTION,
            SELECTION_TITLE,
            f"Congratulations! You've been selected for {event.title}. Please respond by {format_ms(deadline)}.",
            is_invited_kind=True,
        )
        NotificationService.stage(batch, request)
        batch.update(event_path(event.id), {
            "selectionProcessed": True,
            "selectionNotificationSent": True,
            "waitlistCount": 0,
        })
        batch.increment(event_path(event.id), "waitlistVersion", 1)
        batch.increment(event_path(event.id), "seatVersion", 1)

    async def _tag_non_selected(self, event_id: str, remaining: List[DocumentSnapshot], now: int) -> None:
        """Move the entrants the lottery skipped into NonSelectedEntrants.

        Runs after the latch commits, in bounded batches. Each move requires
        the waitlist entry to still exist, so an entrant who left meanwhile is
        not brought back. Anyone still left in WaitlistedEntrants is treated
        as non-selected by replacement draws and the sorry notification, so an
        interrupted move loses nothing.
        """
        for part in chunked(remaining, MAX_BATCH_WRITES // 2):
            part = list(part)
            for attempt in range(1, self.max_attempts + 1):
                batch = self.store.batch()
                for snapshot in part:
                    batch.expect_exists(snapshot.path)
                    batch.delete(snapshot.path)
                    batch.set(entrant_path(event_id, NON_SELECTED, snapshot.id), {**snapshot.to_dict(), "userId": snapshot.id, "taggedAt": now})
                try:
                    await batch.commit()
                    break
                except PreconditionFailed:
                    current = await self.store.get_all([s.path for s in part])
                    part = [s for s in current if s.exists]
                except TransientStoreError as e:
                    logger.warning(f"Non-selected tagging for event {event_id} incomplete: {e}")
                    return
