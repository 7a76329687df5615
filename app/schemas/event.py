"""
Event-related Pydantic schemas
"""

from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from app.schemas.common import DocModel

class Event(DocModel):
    """Event document: ``events/{id}``. All times are epoch milliseconds, 0 = unset."""
    id: str
    title: str = "Event"
    organizer_id: Optional[str] = Field(None, alias="organizerId")
    capacity: int = 0
    sample_size: int = Field(0, alias="sampleSize")
    registration_start: int = Field(0, alias="registrationStart")
    registration_end: int = Field(0, alias="registrationEnd")
    deadline: int = Field(0, alias="deadlineEpochMs")
    event_start: int = Field(0, alias="startsAtEpochMs")
    created_at: int = Field(0, alias="createdAt")

    # display cache only; never used for capacity gating
    waitlist_count: int = Field(0, alias="waitlistCount")
    # compare-and-swap fields
    waitlist_version: int = Field(0, alias="waitlistVersion")
    seat_version: int = Field(0, alias="seatVersion")

    # one-way latches
    selection_processed: bool = Field(False, alias="selectionProcessed")
    selection_notification_sent: bool = Field(False, alias="selectionNotificationSent")
    deadline_notification_sent: bool = Field(False, alias="deadlineNotificationSent")
    sorry_notification_sent: bool = Field(False, alias="sorryNotificationSent")

    # lottery draw recorded before its invitations are written in chunks
    selection_draw_id: Optional[str] = Field(None, alias="selectionDrawId")
    selection_draw: List[str] = Field(default_factory=list, alias="selectionDraw")
    selection_drawn_at: int = Field(0, alias="selectionDrawnAt")

    def registration_open(self, now: int) -> bool:
        if self.registration_start and now < self.registration_start:
            return False
        if self.registration_end and now > self.registration_end:
            return False
        return True

    def has_started(self, now: int) -> bool:
        return bool(self.event_start) and now >= self.event_start

    def deadline_passed(self, now: int) -> bool:
        return bool(self.deadline) and now >= self.deadline

class EventCreate(BaseModel):
    """Schema for creating an event"""
    title: str
    organizer_id: Optional[str] = None
    capacity: int = Field(..., gt=0)
    sample_size: int = Field(..., ge=0)
    registration_start: int = 0
    registration_end: int = 0
    deadline: int = 0
    event_start: int = 0

    @model_validator(mode="after")
    def check_stage_order(self):
        """registrationStart < registrationEnd < deadline < eventStart, skipping unset stages"""
        stages = [
            ("registration_start", self.registration_start),
            ("registration_end", self.registration_end),
            ("deadline", self.deadline),
            ("event_start", self.event_start),
        ]
        configured = [(name, value) for name, value in stages if value]
        for (prev_name, prev), (name, value) in zip(configured, configured[1:]):
            if not prev < value:
                raise ValueError(f"{prev_name} must be before {name}")
        return self

class EventSummary(BaseModel):
    """Organizer view of an event's lifecycle state"""
    event: Event
    waitlisted: int
    selected: int
    non_selected: int
    cancelled: int
    admitted: int
    pending_invitations: int

class SelectionResult(BaseModel):
    """Outcome of a lottery draw"""
    event_id: str
    selected: List[str] = []
    non_selected: List[str] = []
    invitation_ids: List[str] = []
    already_processed: bool = False
