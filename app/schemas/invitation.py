"""
Invitation and admission schemas
"""

from enum import Enum
from typing import Optional
from pydantic import Field

from app.schemas.common import DocModel

class InvitationStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    DECLINED = "DECLINED"
    CANCELLED = "CANCELLED"

TERMINAL_STATUSES = frozenset({InvitationStatus.ACCEPTED, InvitationStatus.DECLINED, InvitationStatus.CANCELLED})

class Invitation(DocModel):
    """Time-boxed seat offer: ``invitations/{id}``"""
    id: str
    event_id: str = Field(..., alias="eventId")
    uid: str
    status: InvitationStatus = InvitationStatus.PENDING
    issued_at: int = Field(0, alias="issuedAt")
    deadline: int = Field(0, alias="expiresAt")
    is_replacement: bool = Field(False, alias="isReplacement")
    responded_at: int = Field(0, alias="respondedAt")
    cancelled_at: int = Field(0, alias="cancelledAt")
    cancel_reason: Optional[str] = Field(None, alias="cancelReason")

    @property
    def is_pending(self) -> bool:
        return self.status == InvitationStatus.PENDING

    def is_expired(self, now: int) -> bool:
        return self.is_pending and bool(self.deadline) and self.deadline < now

class AdmittedEntry(DocModel):
    """Confirmed seat: ``admitted/{eventId}_{uid}``"""
    event_id: str = Field(..., alias="eventId")
    uid: str
    admitted_at: int = Field(0, alias="admittedAt")
    invitation_id: Optional[str] = Field(None, alias="invitationId")
