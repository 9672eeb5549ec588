from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from overlay_service.app.health.service import HealthCheckService
from overlay_service.app.health.types import HealthSnapshot, RemediationStep, remediation_steps
from overlay_service.app.overlay.clipboard import ClipboardError, ClipboardSink
from overlay_service.app.overlay.timers import (
    AfterCancelFn,
    AfterFn,
    GenerationTimer,
    loop_after,
    loop_after_cancel,
)
from overlay_service.app.settings import Settings


@dataclass
class PollerMetrics:
    check_service: str | None = None
    started_at: str | None = None
    running: bool = False
    polls: int = 0
    poll_failures: int = 0
    retries: int = 0
    dismissals: int = 0
    rearms: int = 0
    command_copies: int = 0
    command_copy_failures: int = 0
    last_poll_at: str | None = None
    last_error: str | None = None


class HealthPollerError(Exception):
    """Raised when a remediation command cannot be found for copying."""


SnapshotHandler = Callable[[dict[str, Any]], Awaitable[None]]


class HealthPoller:
    """Samples the dependency on start and then on a fixed cadence.

    ``retry`` takes one extra sample without moving the cadence: scheduled ticks
    are laid out against absolute deadlines on the loop clock. Dismissal only
    hides the remediation view; sampling continues so a later healthy to
    unhealthy transition can re-arm it under the ``rearm`` policy.
    """

    def __init__(
        self,
        settings: Settings,
        logger: logging.Logger,
        service: HealthCheckService,
        clipboard: ClipboardSink,
        after: AfterFn = loop_after,
        after_cancel: AfterCancelFn = loop_after_cancel,
    ) -> None:
        self._settings = settings
        self._logger = logger
        self._service = service
        self._clipboard = clipboard
        self._copy_feedback = GenerationTimer(
            "command-copy-feedback", after=after, after_cancel=after_cancel
        )
        self._copied_command: str | None = None
        self._feedback_tasks: set[asyncio.Task[None]] = set()
        self._interval = max(0.01, settings.health_poll_interval_seconds)
        self._metrics = PollerMetrics(check_service=service.name)
        self._snapshot: HealthSnapshot | None = None
        self._dismissed = False
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._lock = asyncio.Lock()
        self._snapshot_handlers: list[SnapshotHandler] = []

    def register_snapshot_handler(self, handler: SnapshotHandler) -> None:
        self._snapshot_handlers.append(handler)

    @property
    def current(self) -> HealthSnapshot | None:
        return self._snapshot

    @property
    def dismissed(self) -> bool:
        return self._dismissed

    @property
    def copied_command(self) -> str | None:
        return self._copied_command

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def should_display(self) -> bool:
        if self._snapshot is None or self._dismissed:
            return False
        return not self._snapshot.healthy

    async def start(self) -> None:
        if not self._settings.health_enabled:
            self._logger.info(
                "health_poller_disabled",
                extra={
                    "event": "health_disabled",
                    "service_name": self._settings.service_name,
                    "service_version": self._settings.service_version,
                },
            )
            return

        if self.running:
            return

        self._stopping = False
        self._metrics.running = True
        self._metrics.started_at = datetime.now(timezone.utc).isoformat()
        self._task = asyncio.create_task(self._run(), name="health-poller-loop")

        self._logger.info(
            "health_poller_started",
            extra={
                "event": "health_started",
                "service_name": self._settings.service_name,
                "service_version": self._settings.service_version,
                "check_service": self._service.name,
                "interval_seconds": self._interval,
            },
        )

    async def stop(self) -> None:
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            finally:
                self._task = None

        self._copy_feedback.cancel()
        for task in list(self._feedback_tasks):
            task.cancel()
        self._metrics.running = False
        await self._service.close()

    async def poll_once(self) -> HealthSnapshot:
        async with self._lock:
            try:
                snapshot = await self._service.query_status()
            except Exception as exc:
                snapshot = HealthSnapshot.check_failed()
                self._metrics.poll_failures += 1
                self._metrics.last_error = f"{type(exc).__name__}:{exc}"
                self._logger.warning(
                    "health_check_failed",
                    extra={
                        "event": "health_check_failed",
                        "service_name": self._settings.service_name,
                        "service_version": self._settings.service_version,
                        "reason": self._metrics.last_error,
                    },
                )

            self._store(snapshot)

        await self._notify()
        return snapshot

    async def retry(self) -> HealthSnapshot:
        self._metrics.retries += 1
        return await self.poll_once()

    async def dismiss(self) -> None:
        if not self._dismissed:
            self._dismissed = True
            self._metrics.dismissals += 1
        await self._notify()

    async def copy_command(self, key: str) -> bool:
        """Copy a remediation step's shell command; feedback clears on its own."""
        step = next((item for item in self._remediation() if item.key == key), None)
        if step is None or step.command is None:
            raise HealthPollerError(f"no remediation command for step: {key}")

        try:
            await self._clipboard.write_text(step.command)
        except ClipboardError as exc:
            self._copy_feedback.cancel()
            self._copied_command = None
            self._metrics.command_copy_failures += 1
            self._metrics.last_error = str(exc)
            self._logger.warning(
                "health_command_copy_failed",
                extra={
                    "event": "health_command_copy_failed",
                    "service_name": self._settings.service_name,
                    "service_version": self._settings.service_version,
                    "step": key,
                    "reason": str(exc),
                },
            )
            await self._notify()
            return False

        self._copied_command = key
        self._metrics.command_copies += 1
        self._copy_feedback.arm(
            self._settings.overlay_copy_feedback_seconds, self._expire_copy_feedback
        )
        await self._notify()
        return True

    def view(self) -> dict[str, Any]:
        snapshot = self._snapshot
        return {
            "visible": self.should_display,
            "dismissed": self._dismissed,
            "snapshot": snapshot.to_dict() if snapshot is not None else None,
            "remediation": [step.to_dict() for step in self._remediation()],
            "copied_command": self._copied_command,
        }

    def snapshot(self) -> dict[str, object]:
        payload = asdict(self._metrics)
        payload["health_enabled"] = self._settings.health_enabled
        payload["running"] = self.running
        payload["interval_seconds"] = self._interval
        payload["dismiss_policy"] = self._settings.health_dismiss_policy
        payload["dismissed"] = self._dismissed
        payload["copy_feedback_timer"] = self._copy_feedback.snapshot()
        payload["dependency_healthy"] = (
            self._snapshot.healthy if self._snapshot is not None else None
        )
        return payload

    def _remediation(self) -> list[RemediationStep]:
        snapshot = self._snapshot
        if snapshot is None or snapshot.healthy:
            return []
        return remediation_steps(snapshot, self._settings.ollama_model)

    def _expire_copy_feedback(self, generation: int) -> None:
        if self._stopping or not self._copy_feedback.is_current(generation):
            return

        self._copied_command = None
        task = asyncio.get_running_loop().create_task(self._notify())
        self._feedback_tasks.add(task)
        task.add_done_callback(self._feedback_tasks.discard)

    def _store(self, snapshot: HealthSnapshot) -> None:
        previous = self._snapshot
        if (
            self._dismissed
            and self._settings.health_dismiss_policy == "rearm"
            and previous is not None
            and previous.healthy
            and not snapshot.healthy
        ):
            self._dismissed = False
            self._metrics.rearms += 1
            self._logger.info(
                "health_dismissal_rearmed",
                extra={
                    "event": "health_dismissal_rearmed",
                    "service_name": self._settings.service_name,
                    "service_version": self._settings.service_version,
                },
            )

        if previous is None or previous.healthy != snapshot.healthy:
            self._logger.info(
                "health_status_changed",
                extra={
                    "event": "health_status_changed",
                    "service_name": self._settings.service_name,
                    "service_version": self._settings.service_version,
                    "daemon_running": snapshot.daemon_running,
                    "model_installed": snapshot.model_installed,
                    "healthy": snapshot.healthy,
                },
            )

        self._snapshot = snapshot
        self._metrics.polls += 1
        self._metrics.last_poll_at = snapshot.checked_at.isoformat()

    async def _notify(self) -> None:
        view = self.view()
        for handler in self._snapshot_handlers:
            try:
                await handler(view)
            except Exception as exc:  # pragma: no cover - safety net
                self._logger.error(
                    "health_snapshot_handler_error",
                    extra={
                        "event": "health_snapshot_handler_error",
                        "service_name": self._settings.service_name,
                        "service_version": self._settings.service_version,
                        "reason": f"{type(exc).__name__}:{exc}",
                    },
                )

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while not self._stopping:
            await self.poll_once()

            next_tick += self._interval
            delay = next_tick - loop.time()
            if delay < 0:
                skipped = int(-delay // self._interval) + 1
                next_tick += skipped * self._interval
                delay = next_tick - loop.time()

            await asyncio.sleep(delay)
