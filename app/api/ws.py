"""
WebSocket feed of invitation changes per event
"""

import json
import logging
from typing import Dict, List
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends

from app.services.engine import AdmissionEngine, get_engine
from app.services.repositories import INVITATIONS, EventRepo
from app.services.store import DocumentChange, DocumentStore, Subscription

logger = logging.getLogger(__name__)

class WebSocketManager:
    """Per-event rooms, each backed by one store subscription while it has listeners"""

    def __init__(self):
        # event_id -> list of websockets
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.subscriptions: Dict[str, Subscription] = {}

    async def connect(self, websocket: WebSocket, event_id: str, store: DocumentStore):
        """Accept WebSocket connection and add to event room"""
        await websocket.accept()

        if event_id not in self.active_connections:
            self.active_connections[event_id] = []
            self.subscriptions[event_id] = store.subscribe(INVITATIONS, self._forwarder(event_id))

        self.active_connections[event_id].append(websocket)
        logger.info(f"WebSocket connected to event {event_id}. Total connections: {len(self.active_connections[event_id])}")

    def disconnect(self, websocket: WebSocket, event_id: str):
        """Remove WebSocket connection; the last one out tears down the subscription"""
        connections = self.active_connections.get(event_id)
        if not connections or websocket not in connections:
            return
        connections.remove(websocket)
        logger.info(f"WebSocket disconnected from event {event_id}. Remaining connections: {len(connections)}")

        if not connections:
            del self.active_connections[event_id]
            subscription = self.subscriptions.pop(event_id, None)
            if subscription is not None:
                subscription.unsubscribe()

    def _forwarder(self, event_id: str):
        async def forward(changes: List[DocumentChange]):
            for change in changes:
                data = change.document.data or {}
                if data.get("eventId") != event_id:
                    continue
                await self.broadcast_to_event(event_id, {
                    "type": "invitation",
                    "change": change.type,
                    "invitation_id": change.document.id,
                    "uid": data.get("uid"),
                    "status": data.get("status"),
                })
        return forward

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        """Send message to specific WebSocket"""
        try:
            await websocket.send_text(json.dumps(message))
        except (RuntimeError, WebSocketDisconnect) as e:
            logger.error(f"Error sending personal message: {e}")

    async def broadcast_to_event(self, event_id: str, message: dict):
        """Broadcast message to all WebSockets connected to an event"""
        # Copy to avoid modification during iteration
        connections = list(self.active_connections.get(event_id, []))

        disconnected = []
        for websocket in connections:
            try:
                await websocket.send_text(json.dumps(message))
            except (RuntimeError, WebSocketDisconnect) as e:
                logger.error(f"Error broadcasting to websocket: {e}")
                disconnected.append(websocket)

        for websocket in disconnected:
            self.disconnect(websocket, event_id)

    def get_connection_count(self, event_id: str) -> int:
        return len(self.active_connections.get(event_id, []))

# Global WebSocket manager instance
websocket_manager = WebSocketManager()

router = APIRouter()

@router.websocket("/events/{event_id}")
async def websocket_endpoint(
    websocket: WebSocket,
    event_id: str,
    engine: AdmissionEngine = Depends(get_engine)
):
    """Stream invitation status changes of one event"""
    event = await EventRepo.get(engine.store, event_id)
    if event is None:
        await websocket.close(code=4004, reason="Event not found")
        return

    await websocket_manager.connect(websocket, event_id, engine.store)
    try:
        await websocket_manager.send_personal_message({
            "type": "connection",
            "message": f"Connected to event: {event.title}",
            "event_id": event_id,
            "connection_count": websocket_manager.get_connection_count(event_id)
        }, websocket)

        while True:
            data = await websocket.receive_text()
            try:
                client_message = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received from WebSocket: {data}")
                continue
            if isinstance(client_message, dict) and client_message.get("type") == "ping":
                await websocket_manager.send_personal_message({
                    "type": "pong",
                    "timestamp": client_message.get("timestamp")
                }, websocket)
    except WebSocketDisconnect:
        pass
    finally:
        websocket_manager.disconnect(websocket, event_id)
