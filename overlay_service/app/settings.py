from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def load_env_file(env_path: Path) -> None:
    if not env_path.exists():
        return

    for raw_line in env_path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue

        if line.startswith("export "):
            line = line[len("export ") :]

        key, separator, value = line.partition("=")
        if not separator:
            continue

        env_key = key.strip()
        if not env_key:
            continue

        env_value = _strip_quotes(value.strip())
        os.environ.setdefault(env_key, env_value)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_mode(
    key: str,
    default: str,
    allowed: tuple[str, ...],
) -> str:
    value = os.getenv(key, default).strip().lower()
    if value not in allowed:
        allowed_csv = ", ".join(allowed)
        raise ValueError(f"{key} must be one of: {allowed_csv}")
    return value


def _env_seconds(key: str, default: str) -> float:
    value = float(os.getenv(key, default))
    if value <= 0:
        raise ValueError(f"{key} must be greater than zero")
    return value


@dataclass(frozen=True)
class Settings:
    service_name: str
    service_version: str
    environment: str
    log_level: str
    host: str
    port: int
    overlay_auto_hide_seconds: float = 10.0
    overlay_copy_feedback_seconds: float = 2.0
    overlay_event_queue_maxsize: int = 64
    window_mode: str = "realtime"
    clipboard_mode: str = "system"
    health_enabled: bool = True
    health_poll_interval_seconds: float = 5.0
    health_request_timeout_seconds: float = 2.0
    health_dismiss_policy: str = "rearm"
    ollama_base_url: str = "http://localhost:11434"
    ollama_model: str = "qwen2.5:1.5b"
    realtime_enabled: bool = True
    realtime_client_queue_maxsize: int = 128
    realtime_recent_events_limit: int = 200
    realtime_metrics_interval_seconds: float = 5.0

    def redacted(self) -> dict[str, str | int | float | bool | None]:
        return {
            "service_name": self.service_name,
            "service_version": self.service_version,
            "environment": self.environment,
            "log_level": self.log_level,
            "host": self.host,
            "port": self.port,
            "overlay_auto_hide_seconds": self.overlay_auto_hide_seconds,
            "overlay_copy_feedback_seconds": self.overlay_copy_feedback_seconds,
            "overlay_event_queue_maxsize": self.overlay_event_queue_maxsize,
            "window_mode": self.window_mode,
            "clipboard_mode": self.clipboard_mode,
            "health_enabled": self.health_enabled,
            "health_poll_interval_seconds": self.health_poll_interval_seconds,
            "health_request_timeout_seconds": self.health_request_timeout_seconds,
            "health_dismiss_policy": self.health_dismiss_policy,
            "ollama_base_url": self.ollama_base_url,
            "ollama_model": self.ollama_model,
            "realtime_enabled": self.realtime_enabled,
            "realtime_client_queue_maxsize": self.realtime_client_queue_maxsize,
            "realtime_recent_events_limit": self.realtime_recent_events_limit,
            "realtime_metrics_interval_seconds": self.realtime_metrics_interval_seconds,
        }


def build_settings(project_root: Path) -> Settings:
    load_env_file(project_root / ".env")

    return Settings(
        service_name=os.getenv("OVERLAY_SERVICE_NAME", "translator-overlay"),
        service_version=os.getenv("OVERLAY_SERVICE_VERSION", "0.1.0"),
        environment=os.getenv("OVERLAY_ENV", "development"),
        log_level=os.getenv("OVERLAY_LOG_LEVEL", "INFO").upper(),
        host=os.getenv("OVERLAY_HOST", "127.0.0.1"),
        port=int(os.getenv("OVERLAY_PORT", "8765")),
        overlay_auto_hide_seconds=_env_seconds("OVERLAY_AUTO_HIDE_SECONDS", "10.0"),
        overlay_copy_feedback_seconds=_env_seconds(
            "OVERLAY_COPY_FEEDBACK_SECONDS", "2.0"
        ),
        overlay_event_queue_maxsize=int(os.getenv("OVERLAY_EVENT_QUEUE_MAXSIZE", "64")),
        window_mode=_env_mode("WINDOW_MODE", "realtime", ("realtime", "headless")),
        clipboard_mode=_env_mode("CLIPBOARD_MODE", "system", ("system", "memory")),
        health_enabled=_env_bool("HEALTH_ENABLED", True),
        health_poll_interval_seconds=_env_seconds("HEALTH_POLL_INTERVAL_SECONDS", "5.0"),
        health_request_timeout_seconds=_env_seconds(
            "HEALTH_REQUEST_TIMEOUT_SECONDS", "2.0"
        ),
        health_dismiss_policy=_env_mode(
            "HEALTH_DISMISS_POLICY",
            "rearm",
            ("rearm", "sticky"),
        ),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434").strip()
        or "http://localhost:11434",
        ollama_model=os.getenv("OLLAMA_MODEL", "qwen2.5:1.5b").strip() or "qwen2.5:1.5b",
        realtime_enabled=_env_bool("REALTIME_ENABLED", True),
        realtime_client_queue_maxsize=int(
            os.getenv("REALTIME_CLIENT_QUEUE_MAXSIZE", "128")
        ),
        realtime_recent_events_limit=int(os.getenv("REALTIME_RECENT_EVENTS_LIMIT", "200")),
        realtime_metrics_interval_seconds=_env_seconds(
            "REALTIME_METRICS_INTERVAL_SECONDS", "5.0"
        ),
    )
