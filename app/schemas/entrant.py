"""
Entrant-related Pydantic schemas: waitlist entries, cancellations and profiles
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field

from app.schemas.common import DocModel

class CancelReason(str, Enum):
    MISSED_DEADLINE = "MISSED_DEADLINE"
    ORGANIZER_REMOVED = "ORGANIZER_REMOVED"
    DECLINED = "DECLINED"

class Profile(DocModel):
    """User profile: ``users/{uid}``"""
    uid: str
    full_name: Optional[str] = Field(None, alias="fullName")
    name: Optional[str] = None
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")
    email: Optional[str] = None
    photo_url: Optional[str] = Field(None, alias="photoUrl")
    pref_invited: Optional[bool] = Field(None, alias="notificationPreferenceInvited")
    pref_not_invited: Optional[bool] = Field(None, alias="notificationPreferenceNotInvited")

    @property
    def display_name(self) -> Optional[str]:
        for candidate in (self.full_name, self.name):
            if candidate and candidate.strip():
                return candidate.strip()
        joined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return joined or None

    def wants(self, invited_kind: bool) -> bool:
        """Unset preferences count as opted in"""
        preference = self.pref_invited if invited_kind else self.pref_not_invited
        return preference is None or preference is True

class WaitlistEntry(DocModel):
    """``events/{eventId}/WaitlistedEntrants/{uid}`` (same shape in Selected/NonSelected)"""
    uid: str = Field(..., alias="userId")
    joined_at: int = Field(0, alias="joinedAt")
    display_name: Optional[str] = Field(None, alias="displayName")
    email: Optional[str] = None
    photo_url: Optional[str] = Field(None, alias="photoUrl")
    selected_at: int = Field(0, alias="selectedAt")
    tagged_at: int = Field(0, alias="taggedAt")

    @classmethod
    def for_profile(cls, uid: str, profile: Optional[Profile], joined_at: int) -> "WaitlistEntry":
        if profile is None:
            return cls(uid=uid, joined_at=joined_at)
        return cls(
            uid=uid,
            joined_at=joined_at,
            display_name=profile.display_name,
            email=profile.email,
            photo_url=profile.photo_url,
        )

class CancelledEntrant(DocModel):
    """``events/{eventId}/CancelledEntrants/{uid}``; excluded from later replacement draws"""
    uid: str = Field(..., alias="userId")
    reason: CancelReason
    cancelled_at: int = Field(0, alias="cancelledAt")
    invitation_id: Optional[str] = Field(None, alias="invitationId")
    display_name: Optional[str] = Field(None, alias="displayName")
    email: Optional[str] = None

class CancelEntrantRequest(BaseModel):
    """Organizer removal of an invited entrant"""
    reason: CancelReason = CancelReason.ORGANIZER_REMOVED
