"""
Notification request service.

Lifecycle components never talk to the push transport. They write
``notificationRequests`` documents, which the transport consumes once and
annotates with ``processed``/``sentCount``/``failureCount``. Every request
passes the preference filter and the duplicate check first.
"""

import logging
from typing import List, Optional

from app.core.errors import TransientStoreError
from app.schemas.event import Event
from app.schemas.invitation import InvitationStatus
from app.schemas.notification import DEDUP_EXEMPT_GROUPS, GroupType, NotificationRequest
from app.services.preference_filter import PreferenceFilter
from app.services.repositories import (
    CANCELLED,
    NON_SELECTED,
    SELECTED,
    WAITLISTED,
    EntrantRepo,
    InvitationRepo,
    notification_path,
)
from app.services.store import DocumentStore, WriteBatch, new_id
from app.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)

GROUP_COLLECTIONS = {
    GroupType.WAITLIST: WAITLISTED,
    GroupType.SELECTED: SELECTED,
    GroupType.NON_SELECTED: NON_SELECTED,
    GroupType.CANCELLED: CANCELLED,
}


def default_title(group_type: GroupType, event_title: Optional[str]) -> str:
    name = event_title or "Event"
    if group_type == GroupType.WAITLIST:
        return f"Waitlist update: {name}"
    if group_type in (GroupType.SELECTED, GroupType.SELECTION):
        return "You've been selected!"
    if group_type == GroupType.CANCELLED:
        return f"Registration update: {name}"
    if group_type == GroupType.NON_SELECTED:
        return f"Update: {name}"
    return "Event Update"


def default_message(group_type: GroupType, event_title: Optional[str]) -> str:
    name = event_title or "this event"
    if group_type == GroupType.WAITLIST:
        return f"You are on the waitlist for {name}. We'll notify you if a spot becomes available."
    if group_type in (GroupType.SELECTED, GroupType.SELECTION):
        return f"Congratulations! You've been selected for {name}. Please check your invitations."
    if group_type == GroupType.CANCELLED:
        return f"Your registration for {name} has been cancelled. Please contact the organizer if you have questions."
    if group_type == GroupType.NON_SELECTED:
        return (f"Thank you for your interest in {name}. Unfortunately, you were not selected this time. "
                "We appreciate your participation.")
    return f"You have an update regarding {name}."


class NotificationService:
    """Builds, filters and records notification requests"""

    def __init__(self, store: DocumentStore, preference_filter: Optional[PreferenceFilter] = None, clock: Clock = now_ms):
        self.store = store
        self.clock = clock
        self.preferences = preference_filter or PreferenceFilter(store, clock=clock)

    async def build_request(
        self,
        event: Event,
        user_ids: List[str],
        group_type: GroupType,
        title: str,
        message: str,
        is_invited_kind: bool = False,
    ) -> Optional[NotificationRequest]:
        """Apply duplicate suppression and preferences; None when there is nothing to send"""
        if not user_ids:
            return None
        if group_type not in DEDUP_EXEMPT_GROUPS and await self.preferences.is_duplicate(event.id, title):
            return None
        recipients = await self.preferences.filter(user_ids, group_type.value, is_invited_kind)
        if not recipients:
            logger.info(f"No recipients left for '{title}' on event {event.id}")
            return None
        return NotificationRequest(
            id=new_id(),
            event_id=event.id,
            event_title=event.title,
            organizer_id=event.organizer_id or "system",
            user_ids=recipients,
            group_type=group_type,
            title=title,
            message=message,
            created_at=self.clock(),
        )

    @staticmethod
    def stage(batch: WriteBatch, request: Optional[NotificationRequest]) -> None:
        """Add a built request to an atomic batch so it commits with the state change it reports"""
        if request is not None:
            batch.set(notification_path(request.id), request.to_doc())

    async def send(
        self,
        event: Event,
        user_ids: List[str],
        group_type: GroupType,
        title: str,
        message: str,
        is_invited_kind: bool = False,
        exclude_declined: bool = False,
    ) -> int:
        """Record a request for the filtered recipients; returns how many were addressed"""
        if exclude_declined:
            user_ids = await self.exclude_declined(event.id, user_ids)
        request = await self.build_request(event, user_ids, group_type, title, message, is_invited_kind)
        if request is None:
            return 0
        await self.store.set(notification_path(request.id), request.to_doc())
        logger.info(f"Notification request {request.id} ({group_type.value}) created for {len(request.user_ids)} users of event {event.id}")
        return len(request.user_ids)

    async def send_to_group(self, event: Event, group_type: GroupType, message: Optional[str] = None) -> int:
        """Organizer broadcast to every entrant currently in one group"""
        collection = GROUP_COLLECTIONS.get(group_type)
        if collection is None:
            raise ValueError(f"Cannot broadcast to group {group_type.value}")
        user_ids = await EntrantRepo.uids(self.store, event.id, collection)
        if not user_ids:
            return 0
        text = message if message and message.strip() else default_message(group_type, event.title)
        return await self.send(event, user_ids, group_type, default_title(group_type, event.title), text)

    async def exclude_declined(self, event_id: str, user_ids: List[str]) -> List[str]:
        """Drop users who declined or were cancelled; on lookup failure keep everyone"""
        try:
            excluded = set(await EntrantRepo.uids(self.store, event_id, CANCELLED))
            declined = await InvitationRepo.list_for_event(self.store, event_id, InvitationStatus.DECLINED)
        except TransientStoreError as e:
            logger.warning(f"Could not load declined entrants for event {event_id}: {e}")
            return list(user_ids)
        excluded.update(invitation.uid for invitation in declined)
        return [uid for uid in user_ids if uid not in excluded]
