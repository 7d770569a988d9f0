"""
WebSocket endpoint for live upload progress.

Clients connect with ?locationId= and/or ?jobId= and receive
{"event": "job-progress", "data": {...}} messages for their rooms.
"""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from contactsync.services.broadcaster import get_broadcaster

router = APIRouter()
logger = logging.getLogger("contactsync.api.ws")


class SocketSubscriber:
    """Hashable broadcaster subscriber wrapping a WebSocket."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send_json(self, data: Any) -> None:
        await self.websocket.send_json(data)


@router.websocket("/progress")
async def progress_socket(
    websocket: WebSocket,
    location_id: Optional[str] = Query(None, alias="locationId"),
    job_id: Optional[int] = Query(None, alias="jobId"),
):
    """Subscribe a connection to location and/or job progress rooms."""
    if not location_id and job_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    broadcaster = get_broadcaster()
    subscriber = SocketSubscriber(websocket)
    await broadcaster.connect(subscriber, location_id=location_id, job_id=job_id)

    try:
        # Inbound messages are ignored; reading detects the disconnect
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug(f"Progress socket closed for location {location_id}, job {job_id}")
    finally:
        await broadcaster.disconnect(subscriber)
