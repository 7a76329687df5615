"""
Deadline processor: expires PENDING invitations whose response window has
elapsed and hands the released seats to the replacement engine.

Expired invitations are committed in bounded batches, each conditional on
every invitation in it still being PENDING. Running it twice, or on two
workers at once, expires each invitation at most once; the loser finds
nothing left to do on its next pass.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import EventNotFound, PreconditionFailed, TransientStoreError
from app.schemas.entrant import CancelReason, CancelledEntrant
from app.schemas.event import Event
from app.schemas.invitation import Invitation, InvitationStatus
from app.schemas.notification import GroupType
from app.services.notification_service import NotificationService
from app.services.replacement_service import ReplacementService
from app.services.repositories import (
    CANCELLED,
    EVENTS,
    SELECTED,
    EventRepo,
    InvitationRepo,
    entrant_path,
    event_path,
    invitation_path,
)
from app.services.store import MAX_BATCH_WRITES, DocumentChange, DocumentStore, Subscription, chunked
from app.utils.clock import Clock, SECOND_MS, now_ms

logger = logging.getLogger(__name__)

# up to three writes per invitation, plus the notification and the latch update
EXPIRY_CHUNK_SIZE = (MAX_BATCH_WRITES - 2) // 3


class DeadlineService:
    def __init__(
        self,
        store: DocumentStore,
        notifications: Optional[NotificationService] = None,
        replacements: Optional[ReplacementService] = None,
        clock: Clock = now_ms,
    ):
        self.store = store
        self.clock = clock
        self.notifications = notifications or NotificationService(store, clock=clock)
        self.replacements = replacements or ReplacementService(store, self.notifications, clock=clock)

    async def process_event(self, event_id: str) -> int:
        """Expire overdue invitations of one event; returns how many were cancelled"""
        now = self.clock()
        expired = await InvitationRepo.list_expired(self.store, now, event_id)
        if not expired:
            return 0

        event = await EventRepo.get(self.store, event_id)
        if event is None:
            logger.warning(f"Skipping {len(expired)} expired invitations of missing event {event_id}")
            return 0

        announce_originals = not event.deadline_notification_sent
        latch = event.deadline_notification_sent
        committed = 0
        for part in chunked(expired, EXPIRY_CHUNK_SIZE):
            batch = self.store.batch()
            selected = await self.store.get_all([entrant_path(event_id, SELECTED, i.uid) for i in part])
            for invitation, seat in zip(part, selected):
                path = invitation_path(invitation.id)
                batch.expect(path, "status", InvitationStatus.PENDING.value)
                batch.update(path, {
                    "status": InvitationStatus.CANCELLED.value,
                    "cancelledAt": now,
                    "cancelReason": CancelReason.MISSED_DEADLINE.value,
                })
                cancelled = CancelledEntrant(
                    uid=invitation.uid,
                    reason=CancelReason.MISSED_DEADLINE,
                    cancelled_at=now,
                    invitation_id=invitation.id,
                    display_name=seat.get("displayName"),
                    email=seat.get("email"),
                )
                batch.set(entrant_path(event_id, CANCELLED, invitation.uid), cancelled.to_doc())
                if seat.exists:
                    batch.delete(seat.path)

            latch = await self._stage_notification(batch, event, part, latch, announce_originals)
            try:
                await batch.commit()
            except PreconditionFailed:
                logger.info(f"Expired invitations of event {event_id} already handled elsewhere")
                break
            committed += len(part)

        if not committed:
            return 0
        logger.info(f"Cancelled {committed} invitation(s) past their deadline for event {event_id}")
        if event.has_started(now):
            logger.info(f"Event {event_id} has started, released seats are not refilled")
        else:
            try:
                await self.replacements.replace(event_id, committed)
            except TransientStoreError as e:
                logger.error(f"Replacement draw after deadline failed for event {event_id}: {e}")
        return committed

    async def _stage_notification(self, batch, event: Event, expired: List[Invitation], latch: bool, announce_originals: bool) -> bool:
        """Missed-deadline notice for one batch; returns the latch value after it commits.

        Original invitations are announced only by the pass that finds
        ``deadlineNotificationSent`` unset. Replacement expiries are always
        announced.
        """
        recipients = [i.uid for i in expired if i.is_replacement]
        originals = [i.uid for i in expired if not i.is_replacement]
        batch.expect(event_path(event.id), "deadlineNotificationSent", latch, default=False)
        if originals and announce_originals:
            recipients += originals
            if not latch:
                batch.update(event_path(event.id), {"deadlineNotificationSent": True})
                latch = True

        request = await self.notifications.build_request(
            event,
            recipients,
            GroupType.DEADLINE,
            f"Response window closed: {event.title}",
            f"Sorry, you won't be in the criteria for {event.title} because the deadline to respond has passed.",
        )
        NotificationService.stage(batch, request)
        return latch

    async def scan(self) -> int:
        """Process every event with overdue invitations; a failing event does not stop the others"""
        expired = await InvitationRepo.list_expired(self.store, self.clock())
        event_ids = sorted({i.event_id for i in expired})
        total = 0
        for event_id in event_ids:
            try:
                total += await self.process_event(event_id)
            except TransientStoreError as e:
                logger.error(f"Deadline processing for event {event_id} deferred to next scan: {e}")
            except Exception:
                logger.exception(f"Unexpected error processing deadlines of event {event_id}")
        return total


class DeadlineWatcher:
    """Runs the deadline processor when an event document changes.

    During the first ``STARTUP_GRACE_SECONDS`` after subscribing, the initial
    flood of ADDED changes is filtered: an event is skipped when its deadline
    passed well before the watcher started and it was not created just now.
    This only limits start-up churn. The periodic scan still reaches those
    events and the status preconditions keep processing exactly-once.
    """

    def __init__(
        self,
        store: DocumentStore,
        deadlines: DeadlineService,
        clock: Clock = now_ms,
        grace_seconds: Optional[int] = None,
        stale_seconds: Optional[int] = None,
    ):
        self.store = store
        self.deadlines = deadlines
        self.clock = clock
        self.grace_ms = (settings.STARTUP_GRACE_SECONDS if grace_seconds is None else grace_seconds) * SECOND_MS
        self.stale_ms = (settings.STALE_DEADLINE_SECONDS if stale_seconds is None else stale_seconds) * SECOND_MS
        self.started_at = 0
        self.subscription: Optional[Subscription] = None
        self.skipped: Dict[str, int] = defaultdict(int)

    def start(self) -> Subscription:
        self.started_at = self.clock()
        self.subscription = self.store.subscribe(EVENTS, self.on_changes)
        return self.subscription

    def stop(self) -> None:
        if self.subscription is not None:
            self.subscription.unsubscribe()
            self.subscription = None

    def should_skip(self, event: Event, now: int) -> bool:
        if now - self.started_at > self.grace_ms:
            return False
        cutoff = self.started_at - self.stale_ms
        stale_deadline = bool(event.deadline) and event.deadline < cutoff
        old_event = not event.created_at or event.created_at < cutoff
        return stale_deadline and old_event

    async def on_changes(self, changes: List[DocumentChange]) -> None:
        now = self.clock()
        for change in changes:
            if change.type == "REMOVED" or not change.document.exists:
                continue
            try:
                event = Event.from_doc(change.document, id=change.document.id)
            except ValidationError:
                logger.warning(f"Ignoring malformed event document {change.document.path}")
                continue
            if not event.deadline_passed(now):
                continue
            if self.should_skip(event, now):
                self.skipped[event.id] += 1
                logger.debug(f"Startup grace: skipping stale deadline of event {event.id}")
                continue
            try:
                await self.deadlines.process_event(event.id)
            except (TransientStoreError, EventNotFound) as e:
                logger.error(f"Deadline processing for event {event.id} failed: {e}")
