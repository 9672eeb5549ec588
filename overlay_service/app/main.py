from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from overlay_service.app.events.channel import LocalEventChannel
from overlay_service.app.health.poller import HealthPoller
from overlay_service.app.health.service import HealthCheckService, OllamaHealthCheckService
from overlay_service.app.logging_config import configure_logging
from overlay_service.app.overlay.clipboard import (
    ClipboardSink,
    MemoryClipboardSink,
    PyperclipClipboardSink,
)
from overlay_service.app.overlay.controller import OverlayController
from overlay_service.app.overlay.window import (
    HeadlessWindowHandle,
    RealtimeWindowHandle,
    WindowHandle,
)
from overlay_service.app.realtime.manager import RealtimeEventManager
from overlay_service.app.routes.dependency import router as dependency_router
from overlay_service.app.routes.events import router as events_router
from overlay_service.app.routes.health import router as health_router
from overlay_service.app.routes.overlay import router as overlay_router
from overlay_service.app.routes.realtime import router as realtime_router
from overlay_service.app.settings import Settings, build_settings


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _service_logger() -> logging.Logger:
    return logging.getLogger("translator_overlay.service")


def _build_window(settings: Settings, realtime_manager: RealtimeEventManager) -> WindowHandle:
    if settings.window_mode == "realtime" and settings.realtime_enabled:
        return RealtimeWindowHandle(realtime_manager)
    return HeadlessWindowHandle()


def _build_clipboard(settings: Settings) -> ClipboardSink:
    if settings.clipboard_mode == "memory":
        return MemoryClipboardSink()
    return PyperclipClipboardSink()


def _build_health_service(settings: Settings) -> HealthCheckService:
    return OllamaHealthCheckService(
        base_url=settings.ollama_base_url,
        model_name=settings.ollama_model,
        request_timeout_seconds=settings.health_request_timeout_seconds,
    )


def create_app(
    health_service_override: HealthCheckService | None = None,
    clipboard_override: ClipboardSink | None = None,
) -> FastAPI:
    settings = build_settings(_project_root())
    configure_logging(settings.log_level)
    logger = _service_logger()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        app.state.settings = settings
        app.state.started_at = datetime.now(timezone.utc)
        app.state.realtime_manager = RealtimeEventManager(settings=settings, logger=logger)
        app.state.event_channel = LocalEventChannel(logger=logger)
        app.state.window = _build_window(settings, app.state.realtime_manager)
        clipboard = clipboard_override or _build_clipboard(settings)
        app.state.overlay_controller = OverlayController(
            settings=settings,
            logger=logger,
            channel=app.state.event_channel,
            window=app.state.window,
            clipboard=clipboard,
        )
        app.state.health_poller = HealthPoller(
            settings=settings,
            logger=logger,
            service=health_service_override or _build_health_service(settings),
            clipboard=clipboard,
        )

        async def _publish_overlay_view(view: dict[str, Any]) -> None:
            await app.state.realtime_manager.publish(event_type="overlay.state", payload=view)

        async def _publish_health_view(view: dict[str, Any]) -> None:
            await app.state.realtime_manager.publish(event_type="health.status", payload=view)

        async def _greet_client(client_id: int) -> None:
            realtime_manager = app.state.realtime_manager
            await realtime_manager.send(
                client_id, "overlay.state", app.state.overlay_controller.view()
            )
            await realtime_manager.send(
                client_id, "health.status", app.state.health_poller.view()
            )
            if isinstance(app.state.window, RealtimeWindowHandle):
                event_type, payload = app.state.window.visibility_event()
                await realtime_manager.send(client_id, event_type, payload)

        def _system_metrics() -> dict[str, object]:
            return {
                "service": settings.service_name,
                "version": settings.service_version,
                "captured_at": datetime.now(timezone.utc).isoformat(),
                "overlay": app.state.overlay_controller.snapshot(),
                "health": app.state.health_poller.snapshot(),
                "events": app.state.event_channel.snapshot(),
                "realtime": app.state.realtime_manager.snapshot(),
            }

        app.state.overlay_controller.register_view_handler(_publish_overlay_view)
        app.state.health_poller.register_snapshot_handler(_publish_health_view)
        app.state.realtime_manager.register_connect_handler(_greet_client)
        app.state.realtime_manager.set_metrics_provider(_system_metrics)

        logger.info(
            "service_startup",
            extra={
                "event": "startup",
                "service_name": settings.service_name,
                "service_version": settings.service_version,
            },
        )
        logger.info(
            "service_config_loaded",
            extra={
                "event": "config_loaded",
                "service_name": settings.service_name,
                "service_version": settings.service_version,
                "config": settings.redacted(),
            },
        )
        await app.state.realtime_manager.start()
        await app.state.overlay_controller.start()
        await app.state.health_poller.start()
        yield
        await app.state.health_poller.stop()
        await app.state.overlay_controller.stop()
        await app.state.event_channel.close()
        await app.state.realtime_manager.stop()
        logger.info(
            "service_shutdown",
            extra={
                "event": "shutdown",
                "service_name": settings.service_name,
                "service_version": settings.service_version,
            },
        )

    app = FastAPI(
        title=settings.service_name,
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root() -> dict[str, str]:
        return {"message": "Translator overlay service is running."}

    app.include_router(health_router)
    app.include_router(overlay_router)
    app.include_router(dependency_router)
    app.include_router(events_router)
    app.include_router(realtime_router)
    return app


def run() -> None:
    settings = build_settings(_project_root())
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_config=None)


app = create_app()
