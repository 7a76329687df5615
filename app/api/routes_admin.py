"""
Admin API routes - requires authentication
"""

from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from app.core.errors import InvalidWindow
from app.schemas.entrant import CancelEntrantRequest
from app.schemas.event import EventCreate
from app.schemas.invitation import InvitationStatus
from app.schemas.notification import GroupMessage
from app.services.engine import AdmissionEngine, get_engine
from app.services.notification_service import GROUP_COLLECTIONS
from app.services.repositories import EventRepo
from app.utils.security import verify_admin_token
from app.utils.responses import success_response

router = APIRouter(dependencies=[Depends(verify_admin_token)])

@router.post("/events")
async def create_event(
    event_data: EventCreate,
    engine: AdmissionEngine = Depends(get_engine)
):
    """Create a new event"""
    event = await engine.create_event(event_data)
    return success_response(
        message="Event created successfully",
        data=event.model_dump(mode="json"),
        status_code=201
    )

@router.get("/events/{event_id}")
async def get_event_summary(
    event_id: str,
    engine: AdmissionEngine = Depends(get_engine)
):
    """Event with live group sizes"""
    summary = await engine.summary(event_id)
    return success_response(
        message="Event summary retrieved successfully",
        data=summary.model_dump(mode="json")
    )

@router.get("/events/{event_id}/invitations")
async def list_event_invitations(
    event_id: str,
    status: Optional[InvitationStatus] = None,
    engine: AdmissionEngine = Depends(get_engine)
):
    """All invitations issued for an event"""
    invitations = await engine.invitations.list_for_event(event_id, status)
    return success_response(
        message=f"Found {len(invitations)} invitation(s)",
        data=[i.model_dump(mode="json") for i in invitations]
    )

@router.post("/events/{event_id}/selection")
async def run_selection(
    event_id: str,
    engine: AdmissionEngine = Depends(get_engine)
):
    """Run the lottery now instead of waiting for the worker"""
    result = await engine.selection.check_and_process(event_id)
    if result is None:
        raise InvalidWindow("The lottery runs once registration has ended and before the event starts.", event_id=event_id)
    message = "Selection already processed" if result.already_processed else f"Selected {len(result.selected)} entrant(s)"
    return success_response(message=message, data=result.model_dump(mode="json"))

@router.post("/events/{event_id}/deadline")
async def process_deadline(
    event_id: str,
    engine: AdmissionEngine = Depends(get_engine)
):
    """Expire overdue invitations of an event now"""
    await EventRepo.require(engine.store, event_id)
    cancelled = await engine.deadlines.process_event(event_id)
    return success_response(
        message=f"Cancelled {cancelled} overdue invitation(s)",
        data={"event_id": event_id, "cancelled": cancelled}
    )

@router.post("/events/{event_id}/entrants/{uid}/cancel")
async def cancel_entrant(
    event_id: str,
    uid: str,
    request: Optional[CancelEntrantRequest] = None,
    engine: AdmissionEngine = Depends(get_engine)
):
    """Remove an invited entrant; the seat is redrawn"""
    reason = (request or CancelEntrantRequest()).reason
    cancelled = await engine.invitations.cancel(event_id, uid, reason)
    return success_response(
        message=f"Entrant {uid} removed",
        data=[i.model_dump(mode="json") for i in cancelled]
    )

@router.post("/events/{event_id}/notifications")
async def notify_group(
    event_id: str,
    payload: GroupMessage,
    engine: AdmissionEngine = Depends(get_engine)
):
    """Broadcast a message to one entrant group"""
    event = await EventRepo.require(engine.store, event_id)
    if payload.group_type not in GROUP_COLLECTIONS:
        raise HTTPException(status_code=422, detail=f"Cannot broadcast to group {payload.group_type.value}")
    sent = await engine.notifications.send_to_group(event, payload.group_type, payload.message)
    return success_response(
        message=f"Notification queued for {sent} entrant(s)",
        data={"event_id": event_id, "recipients": sent}
    )
