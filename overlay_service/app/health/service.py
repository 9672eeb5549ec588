from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx

from overlay_service.app.health.types import HealthSnapshot


class HealthCheckError(Exception):
    """Raised when the dependency status cannot be determined."""


class HealthCheckService(ABC):
    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def query_status(self) -> HealthSnapshot:
        raise NotImplementedError

    async def close(self) -> None:
        return None


def model_matches(installed_name: str, wanted: str) -> bool:
    if installed_name == wanted:
        return True
    if ":" not in wanted:
        return installed_name == f"{wanted}:latest"
    return False


class OllamaHealthCheckService(HealthCheckService):
    """Reads ``/api/tags`` from a local Ollama daemon.

    A refused connection is a valid reading (daemon not running). Timeouts,
    unexpected status codes and malformed bodies raise ``HealthCheckError``.
    """

    def __init__(
        self,
        base_url: str,
        model_name: str,
        request_timeout_seconds: float,
        client_factory: Callable[[], httpx.AsyncClient] | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model_name = model_name
        self._request_timeout_seconds = request_timeout_seconds
        self._client_factory = client_factory
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "ollama-health-check"

    @property
    def model_name(self) -> str:
        return self._model_name

    async def query_status(self) -> HealthSnapshot:
        client = self._ensure_client()
        try:
            response = await client.get("/api/tags")
        except httpx.ConnectError:
            return HealthSnapshot(
                daemon_running=False,
                model_installed=False,
                error_message=f"Ollama is not running at {self._base_url}",
            )
        except httpx.RequestError as exc:
            raise HealthCheckError(f"ollama_request_error:{exc}") from exc

        if response.status_code != 200:
            raise HealthCheckError(f"ollama_status_error:{response.status_code}")

        try:
            payload = response.json()
        except ValueError as exc:
            raise HealthCheckError("ollama_invalid_json") from exc

        installed = self._installed_models(payload)
        if any(model_matches(name, self._model_name) for name in installed):
            return HealthSnapshot(daemon_running=True, model_installed=True)

        return HealthSnapshot(
            daemon_running=True,
            model_installed=False,
            error_message=f"Model {self._model_name} is not installed",
        )

    async def close(self) -> None:
        if self._client is None:
            return

        await self._client.aclose()
        self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            if self._client_factory is not None:
                self._client = self._client_factory()
            else:
                self._client = httpx.AsyncClient(
                    base_url=self._base_url,
                    timeout=self._request_timeout_seconds,
                )
        return self._client

    @staticmethod
    def _installed_models(payload: Any) -> list[str]:
        if not isinstance(payload, dict):
            raise HealthCheckError("ollama_unexpected_payload")

        models = payload.get("models") or []
        if not isinstance(models, list):
            raise HealthCheckError("ollama_unexpected_payload")

        names: list[str] = []
        for item in models:
            if not isinstance(item, dict):
                continue
            for key in ("name", "model"):
                value = item.get(key)
                if isinstance(value, str) and value:
                    names.append(value)
        return names
