"""
Repository layer: document paths and typed reads over the document store.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Dict, List, Optional

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import EventNotFound
from app.schemas.entrant import Profile
from app.schemas.event import Event
from app.schemas.invitation import Invitation, InvitationStatus
from app.services.store import DocumentStore, doc_path

logger = logging.getLogger(__name__)


def use_firestore() -> bool:
    return settings.USE_FIREBASE is True


@lru_cache(maxsize=1)
def get_store() -> DocumentStore:
    """Process-wide document store selected by USE_FIREBASE"""
    if use_firestore():
        from app.services.firestore_store import FirestoreDocumentStore
        return FirestoreDocumentStore()
    from app.services.sql_store import SqlDocumentStore
    return SqlDocumentStore()


# -------- layout --------

EVENTS = "events"
INVITATIONS = "invitations"
ADMITTED = "admitted"
NOTIFICATION_REQUESTS = "notificationRequests"
USERS = "users"

WAITLISTED = "WaitlistedEntrants"
SELECTED = "SelectedEntrants"
NON_SELECTED = "NonSelectedEntrants"
CANCELLED = "CancelledEntrants"


def event_path(event_id: str) -> str:
    return doc_path(EVENTS, event_id)


def group_collection(event_id: str, group: str) -> str:
    return doc_path(EVENTS, event_id, group)


def entrant_path(event_id: str, group: str, uid: str) -> str:
    return doc_path(EVENTS, event_id, group, uid)


def invitation_path(invitation_id: str) -> str:
    return doc_path(INVITATIONS, invitation_id)


def admitted_path(event_id: str, uid: str) -> str:
    return doc_path(ADMITTED, f"{event_id}_{uid}")


def user_path(uid: str) -> str:
    return doc_path(USERS, uid)


def notification_path(request_id: str) -> str:
    return doc_path(NOTIFICATION_REQUESTS, request_id)


# -------- Event repository --------

class EventRepo:
    @staticmethod
    async def get(store: DocumentStore, event_id: str) -> Optional[Event]:
        snapshot = await store.get(event_path(event_id))
        return Event.from_doc(snapshot, id=event_id) if snapshot.exists else None

    @staticmethod
    async def require(store: DocumentStore, event_id: str) -> Event:
        event = await EventRepo.get(store, event_id)
        if event is None:
            raise EventNotFound(event_id=event_id)
        return event

    @staticmethod
    async def list_all(store: DocumentStore) -> List[Event]:
        return [Event.from_doc(s, id=s.id) for s in await store.query(EVENTS)]


# -------- Entrant groups (waitlisted / selected / non-selected / cancelled) --------

class EntrantRepo:
    @staticmethod
    async def uids(store: DocumentStore, event_id: str, group: str) -> List[str]:
        return [s.id for s in await store.query(group_collection(event_id, group))]

    @staticmethod
    async def count(store: DocumentStore, event_id: str, group: str) -> int:
        return await store.count(group_collection(event_id, group))

    @staticmethod
    async def exists(store: DocumentStore, event_id: str, group: str, uid: str) -> bool:
        return (await store.get(entrant_path(event_id, group, uid))).exists


# -------- Invitation repository --------

class InvitationRepo:
    @staticmethod
    async def get(store: DocumentStore, invitation_id: str) -> Optional[Invitation]:
        snapshot = await store.get(invitation_path(invitation_id))
        return Invitation.from_doc(snapshot, id=invitation_id) if snapshot.exists else None

    @staticmethod
    async def list_for_event(store: DocumentStore, event_id: str, status: Optional[InvitationStatus] = None) -> List[Invitation]:
        filters = [("eventId", "==", event_id)]
        if status is not None:
            filters.append(("status", "==", status.value))
        return [Invitation.from_doc(s, id=s.id) for s in await store.query(INVITATIONS, filters)]

    @staticmethod
    async def list_for_user(store: DocumentStore, uid: str, status: Optional[InvitationStatus] = None) -> List[Invitation]:
        filters = [("uid", "==", uid)]
        if status is not None:
            filters.append(("status", "==", status.value))
        docs = await store.query(INVITATIONS, filters)
        return sorted((Invitation.from_doc(s, id=s.id) for s in docs), key=lambda i: i.issued_at, reverse=True)

    @staticmethod
    async def list_expired(store: DocumentStore, now: int, event_id: Optional[str] = None) -> List[Invitation]:
        """PENDING invitations whose response window ended before ``now``"""
        filters = [("status", "==", InvitationStatus.PENDING.value), ("expiresAt", "<", now)]
        if event_id is not None:
            filters.insert(0, ("eventId", "==", event_id))
        expired = []
        for snapshot in await store.query(INVITATIONS, filters):
            try:
                invitation = Invitation.from_doc(snapshot, id=snapshot.id)
            except ValidationError:
                logger.warning(f"Ignoring malformed invitation document {snapshot.path}")
                continue
            if invitation.is_expired(now):
                expired.append(invitation)
        return expired


# -------- Admitted repository --------

class AdmittedRepo:
    @staticmethod
    async def exists(store: DocumentStore, event_id: str, uid: str) -> bool:
        return (await store.get(admitted_path(event_id, uid))).exists

    @staticmethod
    async def uids(store: DocumentStore, event_id: str) -> List[str]:
        return [s.get("uid") for s in await store.query(ADMITTED, [("eventId", "==", event_id)])]


# -------- Profile repository --------

class ProfileRepo:
    @staticmethod
    async def get(store: DocumentStore, uid: str) -> Optional[Profile]:
        snapshot = await store.get(user_path(uid))
        return Profile.from_doc(snapshot, uid=uid) if snapshot.exists else None

    @staticmethod
    async def get_many(store: DocumentStore, uids: List[str]) -> Dict[str, Optional[Profile]]:
        snapshots = await store.get_all([user_path(uid) for uid in uids])
        return {
            uid: Profile.from_doc(snapshot, uid=uid) if snapshot.exists else None
            for uid, snapshot in zip(uids, snapshots)
        }
