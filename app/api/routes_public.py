"""
Public API routes - no authentication required
"""

from fastapi import APIRouter, Depends

from app.services.engine import AdmissionEngine, get_engine
from app.services.repositories import EventRepo
from app.utils.security import enforce_rate_limit
from app.utils.responses import success_response

router = APIRouter()

@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok"}

@router.get("/events/{event_id}", dependencies=[Depends(enforce_rate_limit)])
async def get_event(
    event_id: str,
    engine: AdmissionEngine = Depends(get_engine)
):
    """Public event details with the live waitlist size"""
    event = await EventRepo.require(engine.store, event_id)
    now = engine.clock()
    return success_response(
        message="Event retrieved successfully",
        data={
            "id": event.id,
            "title": event.title,
            "capacity": event.capacity,
            "registration_start": event.registration_start,
            "registration_end": event.registration_end,
            "deadline": event.deadline,
            "event_start": event.event_start,
            "registration_open": event.registration_open(now),
            "waitlist_count": await engine.waitlist.live_count(event_id),
        }
    )
