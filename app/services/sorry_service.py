"""
Sorry notification: tells never-selected entrants the lottery is closed.
"""

import logging
from typing import List, Optional

from app.core.config import settings
from app.core.errors import PreconditionFailed
from app.schemas.event import Event
from app.schemas.invitation import InvitationStatus
from app.schemas.notification import GroupType
from app.services.notification_service import NotificationService
from app.services.repositories import (
    NON_SELECTED,
    WAITLISTED,
    AdmittedRepo,
    EntrantRepo,
    EventRepo,
    InvitationRepo,
    event_path,
)
from app.services.store import DocumentStore
from app.utils.clock import Clock, SECOND_MS, now_ms

logger = logging.getLogger(__name__)


class SorryNotificationService:
    def __init__(
        self,
        store: DocumentStore,
        notifications: Optional[NotificationService] = None,
        clock: Clock = now_ms,
    ):
        self.store = store
        self.clock = clock
        self.notifications = notifications or NotificationService(store, clock=clock)
        self.lead_ms = settings.SORRY_LEAD_SECONDS * SECOND_MS
        self.tolerance_ms = settings.SORRY_TOLERANCE_SECONDS * SECOND_MS

    def in_window(self, event: Event, now: int) -> bool:
        if not event.event_start or event.has_started(now):
            return False
        target = event.event_start - self.lead_ms
        return target - self.tolerance_ms <= now <= target + self.tolerance_ms

    async def recipients(self, event_id: str) -> List[str]:
        """Everyone who entered the lottery and never got a seat offer"""
        uids = await EntrantRepo.uids(self.store, event_id, NON_SELECTED)
        uids += await EntrantRepo.uids(self.store, event_id, WAITLISTED)
        return sorted(set(uids))

    async def check_event(self, event: Event) -> bool:
        """Send the sorry notification if the event is inside its window. A missed window is not retried."""
        if event.sorry_notification_sent or not self.in_window(event, self.clock()):
            return False
        return await self._send(event)

    async def send_if_filled(self, event_id: str) -> bool:
        """Send early once every seat is confirmed and no invitation is still open"""
        event = await EventRepo.require(self.store, event_id)
        if event.sorry_notification_sent or event.has_started(self.clock()) or not event.capacity:
            return False
        if len(await AdmittedRepo.uids(self.store, event_id)) < event.capacity:
            return False
        if await InvitationRepo.list_for_event(self.store, event_id, InvitationStatus.PENDING):
            return False
        return await self._send(event)

    async def _send(self, event: Event) -> bool:
        request = await self.notifications.build_request(
            event,
            await self.recipients(event.id),
            GroupType.SORRY,
            f"Lottery closed: {event.title}",
            f"Thank you for your interest in {event.title}. The lottery has closed and all spots have been filled. "
            "We hope to see you at a future event!",
        )
        batch = self.store.batch()
        batch.expect(event_path(event.id), "sorryNotificationSent", False, default=False)
        NotificationService.stage(batch, request)
        batch.update(event_path(event.id), {"sorryNotificationSent": True})
        try:
            await batch.commit()
        except PreconditionFailed:
            logger.info(f"Sorry notification for event {event.id} already sent")
            return False

        sent = len(request.user_ids) if request else 0
        logger.info(f"Sorry notification for event {event.id} recorded for {sent} users")
        return True
