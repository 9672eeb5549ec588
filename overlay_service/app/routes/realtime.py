from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect

from overlay_service.app.events.channel import ChannelEvent
from overlay_service.app.health.poller import HealthPollerError
from overlay_service.app.overlay.controller import OverlayControllerError

router = APIRouter(tags=["realtime"])

CLIENT_COMMANDS = (
    "escape",
    "close",
    "copy",
    "health.retry",
    "health.dismiss",
    "health.copy",
)


@router.get("/realtime/status")
def get_realtime_status(request: Request) -> dict[str, Any]:
    realtime_manager = request.app.state.realtime_manager
    return realtime_manager.snapshot()


@router.get("/realtime/recent")
def get_recent_realtime_events(
    request: Request,
    limit: int = Query(default=20, ge=1, le=200),
) -> dict[str, Any]:
    realtime_manager = request.app.state.realtime_manager
    results = realtime_manager.recent_events(limit=limit)
    return {"results": results, "count": len(results)}


async def _dispatch_command(websocket: WebSocket, command: str, message: dict[str, Any]) -> None:
    state = websocket.app.state
    if command == "escape":
        await state.event_channel.publish(ChannelEvent.parse("escape"))
    elif command == "close":
        await state.overlay_controller.close(reason="user")
    elif command == "copy":
        await state.overlay_controller.copy()
    elif command == "health.retry":
        await state.health_poller.retry()
    elif command == "health.dismiss":
        await state.health_poller.dismiss()
    elif command == "health.copy":
        await state.health_poller.copy_command(str(message.get("key", "")))


@router.websocket("/ws/events")
async def events_websocket(websocket: WebSocket) -> None:
    realtime_manager = websocket.app.state.realtime_manager
    client_id = await realtime_manager.connect(websocket)
    if client_id is None:
        return

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await realtime_manager.send(
                    client_id, "command.rejected", {"reason": "invalid_json"}
                )
                continue

            command = message.get("command") if isinstance(message, dict) else None
            if command not in CLIENT_COMMANDS:
                await realtime_manager.send(
                    client_id,
                    "command.rejected",
                    {"reason": "unknown_command", "command": command},
                )
                continue

            await realtime_manager.record_command(command)
            try:
                await _dispatch_command(websocket, command, message)
            except (OverlayControllerError, HealthPollerError) as exc:
                await realtime_manager.send(
                    client_id,
                    "command.rejected",
                    {"reason": str(exc), "command": command},
                )
    except WebSocketDisconnect:
        pass
    finally:
        await realtime_manager.disconnect(client_id)
