"""
Invitation lifecycle: accept, decline and organizer removal.

PENDING is the only source state. Every transition is a batch conditional on
the invitation still being PENDING, so a response racing with the deadline
processor (or a second tab) cannot overwrite a terminal status.
"""

import logging
from typing import List, Optional

from app.core.errors import (
    InvalidState,
    InvitationExpired,
    InvitationNotFound,
    PreconditionFailed,
    TransientStoreError,
)
from app.schemas.entrant import CancelReason, CancelledEntrant
from app.schemas.invitation import AdmittedEntry, Invitation, InvitationStatus
from app.services.replacement_service import ReplacementService
from app.services.repositories import (
    CANCELLED,
    SELECTED,
    EventRepo,
    InvitationRepo,
    admitted_path,
    entrant_path,
    invitation_path,
)
from app.services.sorry_service import SorryNotificationService
from app.services.store import DocumentStore
from app.utils.clock import Clock, now_ms

logger = logging.getLogger(__name__)


class InvitationService:
    def __init__(
        self,
        store: DocumentStore,
        replacements: Optional[ReplacementService] = None,
        sorry: Optional[SorryNotificationService] = None,
        clock: Clock = now_ms,
    ):
        self.store = store
        self.clock = clock
        self.replacements = replacements or ReplacementService(store, clock=clock)
        self.sorry = sorry or SorryNotificationService(store, clock=clock)

    async def get(self, invitation_id: str) -> Invitation:
        invitation = await InvitationRepo.get(self.store, invitation_id)
        if invitation is None:
            raise InvitationNotFound(invitation_id=invitation_id)
        return invitation

    async def list_for_user(self, uid: str, status: Optional[InvitationStatus] = None) -> List[Invitation]:
        return await InvitationRepo.list_for_user(self.store, uid, status)

    async def list_for_event(self, event_id: str, status: Optional[InvitationStatus] = None) -> List[Invitation]:
        await EventRepo.require(self.store, event_id)
        return await InvitationRepo.list_for_event(self.store, event_id, status)

    async def _load(self, invitation_id: str, event_id: str, uid: str) -> Invitation:
        invitation = await InvitationRepo.get(self.store, invitation_id)
        if invitation is None or invitation.event_id != event_id or invitation.uid != uid:
            raise InvitationNotFound(invitation_id=invitation_id)
        return invitation

    def _require_pending(self, invitation: Invitation, now: int) -> None:
        if not invitation.is_pending:
            raise InvalidState(
                f"This invitation is already {invitation.status.value.lower()}.",
                invitation_id=invitation.id,
                status=invitation.status.value,
            )
        if invitation.is_expired(now):
            raise InvitationExpired(invitation_id=invitation.id, deadline=invitation.deadline)

    async def _settled(self, invitation_id: str, wanted: InvitationStatus) -> Invitation:
        """Resolve a lost race: fine if the winner made the same transition"""
        current = await self.get(invitation_id)
        if current.status != wanted:
            raise InvalidState(
                f"This invitation is already {current.status.value.lower()}.",
                invitation_id=invitation_id,
                status=current.status.value,
            )
        return current

    async def accept(self, invitation_id: str, event_id: str, uid: str) -> Invitation:
        """PENDING -> ACCEPTED plus the AdmittedEntry, atomically"""
        invitation = await self._load(invitation_id, event_id, uid)
        if invitation.status == InvitationStatus.ACCEPTED:
            return invitation
        now = self.clock()
        self._require_pending(invitation, now)

        admitted = AdmittedEntry(event_id=event_id, uid=uid, admitted_at=now, invitation_id=invitation_id)
        batch = self.store.batch()
        batch.expect(invitation_path(invitation_id), "status", InvitationStatus.PENDING.value)
        batch.update(invitation_path(invitation_id), {"status": InvitationStatus.ACCEPTED.value, "respondedAt": now})
        batch.set(admitted_path(event_id, uid), admitted.to_doc())
        try:
            await batch.commit()
        except PreconditionFailed:
            return await self._settled(invitation_id, InvitationStatus.ACCEPTED)

        logger.info(f"User {uid} accepted invitation {invitation_id} for event {event_id}")
        try:
            await self.sorry.send_if_filled(event_id)
        except TransientStoreError as e:
            logger.warning(f"Fill check after accept failed for event {event_id}: {e}")
        return invitation.model_copy(update={"status": InvitationStatus.ACCEPTED, "responded_at": now})

    async def decline(self, invitation_id: str, event_id: str, uid: str) -> Invitation:
        """PENDING -> DECLINED; the seat goes back to the replacement engine"""
        invitation = await self._load(invitation_id, event_id, uid)
        if invitation.status == InvitationStatus.DECLINED:
            return invitation
        now = self.clock()
        self._require_pending(invitation, now)

        batch = self.store.batch()
        batch.expect(invitation_path(invitation_id), "status", InvitationStatus.PENDING.value)
        batch.update(invitation_path(invitation_id), {"status": InvitationStatus.DECLINED.value, "respondedAt": now})
        await self._release_seat(batch, event_id, uid, CancelReason.DECLINED, invitation_id, now)
        try:
            await batch.commit()
        except PreconditionFailed:
            return await self._settled(invitation_id, InvitationStatus.DECLINED)

        logger.info(f"User {uid} declined invitation {invitation_id} for event {event_id}")
        await self._refill(event_id, 1)
        return invitation.model_copy(update={"status": InvitationStatus.DECLINED, "responded_at": now})

    async def cancel(self, event_id: str, uid: str, reason: CancelReason = CancelReason.ORGANIZER_REMOVED) -> List[Invitation]:
        """Organizer removal of an entrant who has not answered yet"""
        await EventRepo.require(self.store, event_id)
        pending = [
            i for i in await InvitationRepo.list_for_event(self.store, event_id, InvitationStatus.PENDING)
            if i.uid == uid
        ]
        if not pending:
            if (await self.store.get(entrant_path(event_id, CANCELLED, uid))).exists:
                return []
            raise InvalidState("This entrant has no open invitation to cancel.", event_id=event_id, uid=uid)

        now = self.clock()
        batch = self.store.batch()
        for invitation in pending:
            batch.expect(invitation_path(invitation.id), "status", InvitationStatus.PENDING.value)
            batch.update(invitation_path(invitation.id), {
                "status": InvitationStatus.CANCELLED.value,
                "cancelledAt": now,
                "cancelReason": reason.value,
            })
        await self._release_seat(batch, event_id, uid, reason, pending[0].id, now)
        try:
            await batch.commit()
        except PreconditionFailed:
            raise InvalidState("The invitation was answered before it could be cancelled.", event_id=event_id, uid=uid)

        logger.info(f"Organizer removed {uid} from event {event_id} ({reason.value})")
        await self._refill(event_id, 1)
        return [i.model_copy(update={"status": InvitationStatus.CANCELLED, "cancelled_at": now, "cancel_reason": reason.value}) for i in pending]

    async def _release_seat(self, batch, event_id: str, uid: str, reason: CancelReason, invitation_id: str, now: int) -> None:
        selected = await self.store.get(entrant_path(event_id, SELECTED, uid))
        cancelled = CancelledEntrant(
            uid=uid,
            reason=reason,
            cancelled_at=now,
            invitation_id=invitation_id,
            display_name=selected.get("displayName"),
            email=selected.get("email"),
        )
        batch.set(entrant_path(event_id, CANCELLED, uid), cancelled.to_doc())
        if selected.exists:
            batch.delete(selected.path)

    async def _refill(self, event_id: str, released: int) -> None:
        try:
            await self.replacements.replace(event_id, released)
        except TransientStoreError as e:
            logger.error(f"Replacement draw for event {event_id} failed: {e}")
