"""
Pydantic schemas package
"""

from .common import *
from .event import *
from .invitation import *
from .entrant import *
from .notification import *

__all__ = [
    "StandardResponse",
    "ErrorResponse",
    "DocModel",
    "Event",
    "EventCreate",
    "EventSummary",
    "SelectionResult",
    "Invitation",
    "InvitationStatus",
    "TERMINAL_STATUSES",
    "AdmittedEntry",
    "CancelReason",
    "Profile",
    "WaitlistEntry",
    "CancelledEntrant",
    "CancelEntrantRequest",
    "GroupType",
    "INVITED_GROUPS",
    "DEDUP_EXEMPT_GROUPS",
    "NotificationRequest",
    "GroupMessage",
]
