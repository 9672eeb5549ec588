from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from overlay_service.app.health.poller import HealthPollerError

router = APIRouter(prefix="/dependency", tags=["dependency"])


class CopyCommandRequest(BaseModel):
    key: str


@router.get("/status")
def get_dependency_status(request: Request) -> dict[str, Any]:
    health_poller = request.app.state.health_poller
    return health_poller.view()


@router.get("/poller")
def get_poller_status(request: Request) -> dict[str, Any]:
    health_poller = request.app.state.health_poller
    return health_poller.snapshot()


@router.post("/retry")
async def retry_dependency_check(request: Request) -> dict[str, Any]:
    health_poller = request.app.state.health_poller
    await health_poller.retry()
    return health_poller.view()


@router.post("/dismiss")
async def dismiss_dependency_notice(request: Request) -> dict[str, Any]:
    health_poller = request.app.state.health_poller
    await health_poller.dismiss()
    return health_poller.view()


@router.post("/copy")
async def copy_remediation_command(request: Request, body: CopyCommandRequest) -> dict[str, Any]:
    health_poller = request.app.state.health_poller
    try:
        copied = await health_poller.copy_command(body.key)
    except HealthPollerError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    view = health_poller.view()
    view["copy_succeeded"] = copied
    return view
