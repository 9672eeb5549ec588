from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from overlay_service.app.events.channel import ChannelEvent
from overlay_service.app.overlay.types import EventPayloadError

router = APIRouter(prefix="/events", tags=["events"])


class EventRequest(BaseModel):
    event: str
    payload: dict[str, Any] | None = None


@router.post("", status_code=202)
async def publish_event(request: Request, body: EventRequest) -> dict[str, Any]:
    event_channel = request.app.state.event_channel
    try:
        event = ChannelEvent.parse(body.event, body.payload)
    except EventPayloadError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    delivered = await event_channel.publish(event)
    return {"accepted": True, "event": event.kind, "subscribers": delivered}


@router.get("/status")
def get_event_channel_status(request: Request) -> dict[str, Any]:
    event_channel = request.app.state.event_channel
    return event_channel.snapshot()
