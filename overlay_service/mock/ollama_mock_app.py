from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field

from fastapi import FastAPI, Response


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    return float(raw)


def _env_models(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class MockState:
    request_count: int = 0
    outage_start_request: int = -1
    outage_span_requests: int = 0
    response_delay_seconds: float = 0.0
    models: list[str] = field(default_factory=list)

    def in_outage(self) -> bool:
        if self.outage_start_request < 0 or self.outage_span_requests <= 0:
            return False

        end = self.outage_start_request + self.outage_span_requests
        return self.outage_start_request <= self.request_count < end


def create_mock_app(models: list[str] | None = None) -> FastAPI:
    """Stand-in for a local Ollama daemon exposing ``/api/tags``."""

    app = FastAPI(title="Ollama Mock Daemon")

    state = MockState(
        outage_start_request=_env_int("OLLAMA_MOCK_OUTAGE_START_REQUEST", -1),
        outage_span_requests=_env_int("OLLAMA_MOCK_OUTAGE_SPAN_REQUESTS", 0),
        response_delay_seconds=_env_float("OLLAMA_MOCK_RESPONSE_DELAY_SECONDS", 0.0),
        models=list(models) if models is not None else _env_models(
            "OLLAMA_MOCK_MODELS", "qwen2.5:1.5b"
        ),
    )
    app.state.mock_state = state

    @app.get("/")
    async def root() -> Response:
        return Response(content=b"Ollama is running", media_type="text/plain")

    @app.get("/api/tags", response_model=None)
    async def tags() -> dict[str, object] | Response:
        state.request_count += 1

        if state.response_delay_seconds > 0:
            await asyncio.sleep(state.response_delay_seconds)

        if state.in_outage():
            return Response(status_code=503, content=b"daemon unavailable")

        return {
            "models": [
                {"name": name, "model": name, "size": 0, "digest": ""}
                for name in state.models
            ]
        }

    return app


app = create_mock_app()
