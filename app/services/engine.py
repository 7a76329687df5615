"""
Wires the lifecycle components onto one document store.
"""

import logging
import random
from functools import lru_cache
from typing import Optional

from app.schemas.event import Event, EventCreate, EventSummary
from app.schemas.invitation import InvitationStatus
from app.services.deadline_service import DeadlineService
from app.services.invitation_service import InvitationService
from app.services.notification_service import NotificationService
from app.services.preference_filter import PreferenceFilter
from app.services.replacement_service import ReplacementService
from app.services.repositories import (
    CANCELLED,
    NON_SELECTED,
    SELECTED,
    WAITLISTED,
    AdmittedRepo,
    EntrantRepo,
    EventRepo,
    InvitationRepo,
    event_path,
    get_store,
)
from app.services.selection_service import SelectionService
from app.services.sorry_service import SorryNotificationService
from app.services.store import DocumentStore, new_id
from app.services.waitlist_service import WaitlistService
from app.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class AdmissionEngine:
    """All lifecycle services sharing a store, a clock and a random source"""

    def __init__(self, store: DocumentStore, clock: Clock = now_ms, rng: Optional[random.Random] = None):
        self.store = store
        self.clock = clock
        self.rng = rng or random.Random()

        self.preferences = PreferenceFilter(store, clock=clock)
        self.notifications = NotificationService(store, self.preferences, clock=clock)
        self.replacements = ReplacementService(store, self.notifications, clock=clock, rng=self.rng)
        self.sorry = SorryNotificationService(store, self.notifications, clock=clock)
        self.waitlist = WaitlistService(store, self.notifications, clock=clock)
        self.selection = SelectionService(store, self.notifications, clock=clock, rng=self.rng)
        self.invitations = InvitationService(store, self.replacements, self.sorry, clock=clock)
        self.deadlines = DeadlineService(store, self.notifications, self.replacements, clock=clock)

    async def create_event(self, payload: EventCreate) -> Event:
        event = Event(id=new_id(), created_at=self.clock(), **payload.model_dump())
        await self.store.set(event_path(event.id), event.to_doc())
        logger.info(f"Created event {event.id} '{event.title}' (capacity={event.capacity}, sample={event.sample_size})")
        return event

    async def summary(self, event_id: str) -> EventSummary:
        event = await EventRepo.require(self.store, event_id)
        pending = await InvitationRepo.list_for_event(self.store, event_id, InvitationStatus.PENDING)
        return EventSummary(
            event=event,
            waitlisted=await EntrantRepo.count(self.store, event_id, WAITLISTED),
            selected=await EntrantRepo.count(self.store, event_id, SELECTED),
            non_selected=await EntrantRepo.count(self.store, event_id, NON_SELECTED),
            cancelled=await EntrantRepo.count(self.store, event_id, CANCELLED),
            admitted=len(await AdmittedRepo.uids(self.store, event_id)),
            pending_invitations=len(pending),
        )


@lru_cache(maxsize=1)
def get_engine() -> AdmissionEngine:
    """FastAPI dependency: process-wide engine on the configured store"""
    return AdmissionEngine(get_store())
