"""
Error taxonomy for the admission lifecycle.

Validation errors (``NotFound``, ``InvalidWindow``, ``CapacityExceeded`` and
friends) surface synchronously to the caller and are never retried.
``TransientStoreError`` is raised by the document store when the backend is
unreachable; background scans log it and try again on their next cycle.
"""

from typing import Optional


class AdmissionError(Exception):
    """Base class for errors reported to the caller"""

    error_code = "admission_error"
    status_code = 400
    default_message = "The request could not be completed."

    def __init__(self, message: Optional[str] = None, **details):
        self.message = message or self.default_message
        self.details = details or None
        super().__init__(self.message)


class NotFound(AdmissionError):
    error_code = "not_found"
    status_code = 404
    default_message = "Resource not found."


class EventNotFound(NotFound):
    error_code = "event_not_found"
    default_message = "This event does not exist or has been removed."


class InvitationNotFound(NotFound):
    error_code = "invitation_not_found"
    default_message = "Invitation not found. It may have been withdrawn."


class InvalidWindow(AdmissionError):
    error_code = "invalid_window"
    status_code = 409
    default_message = "This action is not available at the moment."


class RegistrationClosed(InvalidWindow):
    error_code = "registration_closed"
    default_message = "Registration for this event is not open."


class EventAlreadyStarted(InvalidWindow):
    error_code = "event_started"
    default_message = "This event has already started."


class InvitationExpired(InvalidWindow):
    error_code = "invitation_expired"
    default_message = "The deadline to respond to this invitation has passed."


class CapacityExceeded(AdmissionError):
    error_code = "capacity_exceeded"
    status_code = 409
    default_message = "No capacity left."


class CapacityReached(CapacityExceeded):
    error_code = "waitlist_full"
    default_message = "The waitlist is full. Please try again later."


class AlreadyAdmitted(AdmissionError):
    error_code = "already_admitted"
    status_code = 409
    default_message = "You already have a confirmed seat for this event."


class InvalidState(AdmissionError):
    error_code = "invalid_state"
    status_code = 409
    default_message = "This invitation has already been answered."


class AlreadyProcessed(AdmissionError):
    """Latch already set. Callers treat this as success."""

    error_code = "already_processed"
    status_code = 200
    default_message = "Already processed."


class StoreError(Exception):
    """Base class for document store failures"""


class TransientStoreError(StoreError):
    """Store unavailable or timed out; safe to retry"""


class PreconditionFailed(StoreError):
    """A conditional batch lost its compare-and-swap"""

    def __init__(self, path: str, field: Optional[str] = None, expected=None, actual=None):
        self.path = path
        self.field = field
        self.expected = expected
        self.actual = actual
        if field is None:
            message = f"Precondition failed on {path}: document missing"
        else:
            message = f"Precondition failed on {path}.{field}: expected {expected!r}, found {actual!r}"
        super().__init__(message)
