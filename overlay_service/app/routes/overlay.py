from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from overlay_service.app.overlay.controller import OverlayControllerError

router = APIRouter(prefix="/overlay", tags=["overlay"])


@router.get("/state")
def get_overlay_state(request: Request) -> dict[str, Any]:
    overlay_controller = request.app.state.overlay_controller
    return overlay_controller.view()


@router.get("/status")
def get_overlay_status(request: Request) -> dict[str, Any]:
    overlay_controller = request.app.state.overlay_controller
    return overlay_controller.snapshot()


@router.post("/close")
async def close_overlay(request: Request) -> dict[str, Any]:
    overlay_controller = request.app.state.overlay_controller
    try:
        await overlay_controller.close(reason="user")
    except OverlayControllerError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    return overlay_controller.view()


@router.post("/copy")
async def copy_translation(request: Request) -> dict[str, Any]:
    overlay_controller = request.app.state.overlay_controller
    try:
        copied = await overlay_controller.copy()
    except OverlayControllerError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    view = overlay_controller.view()
    view["copy_succeeded"] = copied
    return view
