"""
Entrant-facing API routes: waitlist membership and invitation responses
"""

from typing import Optional
from fastapi import APIRouter, Depends

from app.schemas.invitation import InvitationStatus
from app.services.engine import AdmissionEngine, get_engine
from app.utils.security import enforce_rate_limit, get_current_uid
from app.utils.responses import success_response

router = APIRouter(dependencies=[Depends(enforce_rate_limit)])

@router.post("/events/{event_id}/waitlist")
async def join_waitlist(
    event_id: str,
    uid: str = Depends(get_current_uid),
    engine: AdmissionEngine = Depends(get_engine)
):
    """Join the waitlist of an event"""
    entry = await engine.waitlist.join(event_id, uid)
    return success_response(
        message="You're on the waitlist!",
        data=entry.model_dump(mode="json"),
        status_code=201
    )

@router.delete("/events/{event_id}/waitlist")
async def leave_waitlist(
    event_id: str,
    uid: str = Depends(get_current_uid),
    engine: AdmissionEngine = Depends(get_engine)
):
    """Leave the waitlist of an event"""
    removed = await engine.waitlist.leave(event_id, uid)
    message = "You left the waitlist." if removed else "You were not on the waitlist."
    return success_response(message=message, data={"removed": removed})

@router.get("/events/{event_id}/waitlist")
async def waitlist_status(
    event_id: str,
    uid: str = Depends(get_current_uid),
    engine: AdmissionEngine = Depends(get_engine)
):
    """Whether the caller is waitlisted, plus the live waitlist size"""
    return success_response(
        message="Waitlist status retrieved",
        data={
            "event_id": event_id,
            "joined": await engine.waitlist.is_joined(event_id, uid),
            "waitlist_count": await engine.waitlist.live_count(event_id),
        }
    )

@router.get("/invitations")
async def my_invitations(
    status: Optional[InvitationStatus] = None,
    uid: str = Depends(get_current_uid),
    engine: AdmissionEngine = Depends(get_engine)
):
    """Invitations addressed to the caller, newest first"""
    invitations = await engine.invitations.list_for_user(uid, status)
    return success_response(
        message=f"Found {len(invitations)} invitation(s)",
        data=[i.model_dump(mode="json") for i in invitations]
    )

@router.post("/invitations/{invitation_id}/accept")
async def accept_invitation(
    invitation_id: str,
    event_id: str,
    uid: str = Depends(get_current_uid),
    engine: AdmissionEngine = Depends(get_engine)
):
    """Accept a seat offer"""
    invitation = await engine.invitations.accept(invitation_id, event_id, uid)
    return success_response(
        message="Invitation accepted. Your seat is confirmed!",
        data=invitation.model_dump(mode="json")
    )

@router.post("/invitations/{invitation_id}/decline")
async def decline_invitation(
    invitation_id: str,
    event_id: str,
    uid: str = Depends(get_current_uid),
    engine: AdmissionEngine = Depends(get_engine)
):
    """Decline a seat offer"""
    invitation = await engine.invitations.decline(invitation_id, event_id, uid)
    return success_response(
        message="Invitation declined.",
        data=invitation.model_dump(mode="json")
    )
