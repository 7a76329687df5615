"""
Notification request schemas
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from app.schemas.common import DocModel

class GroupType(str, Enum):
    WAITLIST = "waitlist"
    SELECTED = "selected"
    SELECTION = "selection"
    NON_SELECTED = "nonSelected"
    CANCELLED = "cancelled"
    REPLACEMENT = "replacement"
    DEADLINE = "deadline"
    SORRY = "sorry"
    GENERAL = "general"

# routed through the "invited" preference
INVITED_GROUPS = frozenset({GroupType.SELECTED, GroupType.SELECTION})

# each request of these kinds is guarded by its own precondition and targets distinct users.
# Deadline notices share one title per event and go out once per expiry batch, so a
# title match within the dedup window is not a duplicate for them.
DEDUP_EXEMPT_GROUPS = frozenset({GroupType.SELECTION, GroupType.REPLACEMENT, GroupType.DEADLINE})

class NotificationRequest(DocModel):
    """``notificationRequests/{id}``, consumed once by the delivery transport"""
    id: str
    event_id: str = Field(..., alias="eventId")
    event_title: str = Field("Event", alias="eventTitle")
    organizer_id: Optional[str] = Field(None, alias="organizerId")
    user_ids: List[str] = Field(default_factory=list, alias="userIds")
    group_type: GroupType = Field(GroupType.GENERAL, alias="groupType")
    title: str
    message: str
    status: str = "PENDING"
    created_at: int = Field(0, alias="createdAt")
    processed: bool = False
    sent_count: int = Field(0, alias="sentCount")
    failure_count: int = Field(0, alias="failureCount")

class GroupMessage(BaseModel):
    """Organizer broadcast to one entrant group of an event"""
    group_type: GroupType
    message: Optional[str] = None
