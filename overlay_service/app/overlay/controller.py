from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Literal

from overlay_service.app.events.channel import ChannelEvent, EventChannel, Subscription
from overlay_service.app.overlay.clipboard import ClipboardError, ClipboardSink
from overlay_service.app.overlay.timers import (
    AfterCancelFn,
    AfterFn,
    GenerationTimer,
    loop_after,
    loop_after_cancel,
)
from overlay_service.app.overlay.types import OverlayState, TranslationResult
from overlay_service.app.overlay.window import WindowError, WindowHandle
from overlay_service.app.settings import Settings

CommandKind = Literal[
    "loading-started",
    "translation-ready",
    "close",
    "copy",
    "feedback-expired",
]

COPY_FAILED_NOTICE = "Couldn't copy to the clipboard. Try again."


class OverlayControllerError(Exception):
    """Raised when a command is issued to a controller that is not running."""


@dataclass
class OverlayMetrics:
    started_at: str | None = None
    running: bool = False
    healthy: bool = False
    subscribed: bool = False
    events_received: int = 0
    events_superseded: int = 0
    loading_started: int = 0
    results_shown: int = 0
    closes: int = 0
    auto_hides: int = 0
    stale_timer_commands: int = 0
    copy_successes: int = 0
    copy_failures: int = 0
    window_errors: int = 0
    last_transition_at: str | None = None
    last_error: str | None = None


@dataclass(eq=False)
class _Command:
    kind: CommandKind
    result: TranslationResult | None = None
    reason: str = "user"
    generation: int | None = None
    done: asyncio.Future[bool] | None = None
    from_channel: bool = False
    superseded: bool = False


ViewHandler = Callable[[dict[str, Any]], Awaitable[None]]


class OverlayController:
    def __init__(
        self,
        settings: Settings,
        logger: logging.Logger,
        channel: EventChannel,
        window: WindowHandle,
        clipboard: ClipboardSink,
        after: AfterFn = loop_after,
        after_cancel: AfterCancelFn = loop_after_cancel,
    ) -> None:
        self._settings = settings
        self._logger = logger
        self._channel = channel
        self._window = window
        self._clipboard = clipboard
        self._auto_hide_seconds = settings.overlay_auto_hide_seconds
        self._copy_feedback_seconds = settings.overlay_copy_feedback_seconds
        self._queue_maxsize = max(1, settings.overlay_event_queue_maxsize)
        self._queue: asyncio.Queue[_Command] = asyncio.Queue()
        self._pending_channel: deque[_Command] = deque()
        self._auto_hide = GenerationTimer("auto-hide", after=after, after_cancel=after_cancel)
        self._copy_feedback = GenerationTimer(
            "copy-feedback", after=after, after_cancel=after_cancel
        )
        self._metrics = OverlayMetrics()
        self._state = OverlayState.idle()
        self._copied = False
        self._notice: str | None = None
        self._subscription: Subscription | None = None
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._view_handlers: list[ViewHandler] = []

    def register_view_handler(self, handler: ViewHandler) -> None:
        self._view_handlers.append(handler)

    @property
    def state(self) -> OverlayState:
        return self._state

    @property
    def copied(self) -> bool:
        return self._copied

    @property
    def notice(self) -> str | None:
        return self._notice

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            return

        self._stopping = False
        try:
            self._subscription = await self._channel.subscribe(self._on_channel_event)
        except Exception as exc:
            self._metrics.healthy = False
            self._metrics.last_error = f"subscription_failed:{exc}"
            self._logger.error(
                "overlay_subscription_failed",
                extra=self._extra("overlay_subscription_failed", reason=str(exc)),
            )
            raise

        self._metrics.subscribed = True
        self._metrics.running = True
        self._metrics.healthy = True
        self._metrics.started_at = datetime.now(timezone.utc).isoformat()
        self._metrics.last_error = None
        self._task = asyncio.create_task(self._run(), name="overlay-controller-loop")

        self._logger.info(
            "overlay_controller_started",
            extra=self._extra(
                "overlay_started",
                window=self._window.name,
                clipboard=self._clipboard.name,
            ),
        )

    async def stop(self) -> None:
        self._stopping = True

        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
            self._metrics.subscribed = False

        self._auto_hide.cancel()
        self._copy_feedback.cancel()

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            finally:
                self._task = None

        while not self._queue.empty():
            try:
                command = self._queue.get_nowait()
                self._queue.task_done()
            except asyncio.QueueEmpty:
                break
            if command.done is not None and not command.done.done():
                command.done.cancel()
        self._pending_channel.clear()

        self._metrics.running = False
        self._metrics.healthy = False

    async def close(self, reason: str = "user") -> bool:
        return await self._submit(_Command(kind="close", reason=reason))

    async def copy(self) -> bool:
        return await self._submit(_Command(kind="copy"))

    async def drain(self) -> None:
        """Wait until every queued command, timer firings included, is applied."""
        await self._queue.join()

    def view(self) -> dict[str, Any]:
        payload = self._state.to_dict()
        payload["copied"] = self._copied
        payload["notice"] = self._notice
        payload["visible"] = self._window.visible
        return payload

    def snapshot(self) -> dict[str, object]:
        payload = asdict(self._metrics)
        payload["running"] = self.running
        payload["state"] = self._state.phase
        payload["queue_size"] = self._queue.qsize()
        payload["window"] = self._window.name
        payload["clipboard"] = self._clipboard.name
        payload["auto_hide_timer"] = self._auto_hide.snapshot()
        payload["copy_feedback_timer"] = self._copy_feedback.snapshot()
        return payload

    async def _on_channel_event(self, event: ChannelEvent) -> None:
        if self._stopping:
            return

        self._metrics.events_received += 1
        if event.kind == "escape":
            command = _Command(kind="close", reason="escape", from_channel=True)
        else:
            command = _Command(kind=event.kind, result=event.result, from_channel=True)

        if len(self._pending_channel) >= self._queue_maxsize:
            self._supersede_oldest()

        self._pending_channel.append(command)
        self._queue.put_nowait(command)

    def _supersede_oldest(self) -> None:
        # The newest event and any pending escape always survive.
        for pending in self._pending_channel:
            if pending.kind == "close":
                continue
            pending.superseded = True
            self._pending_channel.remove(pending)
            self._metrics.events_superseded += 1
            self._logger.warning(
                "overlay_event_superseded",
                extra=self._extra("overlay_event_superseded", event_kind=pending.kind),
            )
            return

    async def _submit(self, command: _Command) -> bool:
        if not self.running or self._stopping:
            raise OverlayControllerError("overlay controller is not running")

        command.done = asyncio.get_running_loop().create_future()
        self._queue.put_nowait(command)
        return await command.done

    def _enqueue_from_timer(self, command: _Command) -> None:
        if self._stopping:
            return
        self._queue.put_nowait(command)

    async def _run(self) -> None:
        while not self._stopping:
            command = await self._queue.get()
            outcome = False
            try:
                if command.superseded:
                    continue
                if command.from_channel:
                    self._pending_channel.remove(command)
                outcome = await self._apply(command)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # pragma: no cover - safety net
                self._metrics.last_error = f"{type(exc).__name__}:{exc}"
                self._logger.error(
                    "overlay_command_error",
                    extra=self._extra(
                        "overlay_command_error",
                        command=command.kind,
                        reason=self._metrics.last_error,
                    ),
                )
            finally:
                if command.done is not None and not command.done.done():
                    command.done.set_result(outcome)
                self._queue.task_done()

    async def _apply(self, command: _Command) -> bool:
        if command.kind == "loading-started":
            return await self._enter_loading()
        if command.kind == "translation-ready":
            if command.result is None:
                raise ValueError("translation-ready command requires a translation result")
            return await self._enter_result(command.result)
        if command.kind == "close":
            return await self._close(command)
        if command.kind == "copy":
            return await self._copy()
        if command.kind == "feedback-expired":
            return await self._expire_feedback(command)
        raise ValueError(f"unsupported overlay command: {command.kind}")

    async def _enter_loading(self) -> bool:
        self._auto_hide.cancel()
        previous = self._state
        self._state = OverlayState.loading()
        self._notice = None
        self._metrics.loading_started += 1
        self._record_transition(previous, reason="loading-started")

        await self._window_call("show")
        await self._notify()
        return True

    async def _enter_result(self, result: TranslationResult) -> bool:
        self._auto_hide.cancel()
        self._copy_feedback.cancel()
        previous = self._state
        self._state = OverlayState.showing(result)
        self._copied = False
        self._notice = None
        self._metrics.results_shown += 1
        self._record_transition(previous, reason="translation-ready")

        await self._window_call("show")
        self._auto_hide.arm(
            self._auto_hide_seconds,
            lambda generation: self._enqueue_from_timer(
                _Command(kind="close", reason="auto-hide", generation=generation)
            ),
        )
        await self._notify()
        return True

    async def _close(self, command: _Command) -> bool:
        if command.generation is not None:
            if not self._auto_hide.is_current(command.generation):
                self._metrics.stale_timer_commands += 1
                return False
            self._metrics.auto_hides += 1

        self._auto_hide.cancel()
        previous = self._state
        self._state = OverlayState.idle()
        self._notice = None
        self._metrics.closes += 1
        if previous.phase != "idle":
            self._record_transition(previous, reason=command.reason)

        await self._window_call("hide")
        await self._notify()
        return True

    async def _copy(self) -> bool:
        result = self._state.result
        if result is None:
            return False

        try:
            await self._clipboard.write_text(result.translated)
        except ClipboardError as exc:
            self._copied = False
            self._notice = COPY_FAILED_NOTICE
            self._metrics.copy_failures += 1
            self._metrics.last_error = str(exc)
            self._logger.warning(
                "overlay_copy_failed",
                extra=self._extra("overlay_copy_failed", reason=str(exc)),
            )
        else:
            self._copied = True
            self._notice = None
            self._metrics.copy_successes += 1

        self._copy_feedback.arm(
            self._copy_feedback_seconds,
            lambda generation: self._enqueue_from_timer(
                _Command(kind="feedback-expired", generation=generation)
            ),
        )
        await self._notify()
        return self._copied

    async def _expire_feedback(self, command: _Command) -> bool:
        if command.generation is None or not self._copy_feedback.is_current(command.generation):
            self._metrics.stale_timer_commands += 1
            return False

        self._copied = False
        self._notice = None
        await self._notify()
        return True

    async def _window_call(self, operation: Literal["show", "hide"]) -> None:
        try:
            if operation == "show":
                await self._window.show()
            else:
                await self._window.hide()
        except WindowError as exc:
            self._metrics.window_errors += 1
            self._metrics.last_error = f"window_{operation}_failed:{exc}"
            self._logger.warning(
                "overlay_window_error",
                extra=self._extra("overlay_window_error", operation=operation, reason=str(exc)),
            )

    async def _notify(self) -> None:
        view = self.view()
        for handler in self._view_handlers:
            try:
                await handler(view)
            except Exception as exc:  # pragma: no cover - safety net
                self._logger.error(
                    "overlay_view_handler_error",
                    extra=self._extra(
                        "overlay_view_handler_error",
                        reason=f"{type(exc).__name__}:{exc}",
                    ),
                )

    def _record_transition(self, previous: OverlayState, reason: str) -> None:
        self._metrics.last_transition_at = datetime.now(timezone.utc).isoformat()
        self._logger.info(
            "overlay_transition",
            extra=self._extra(
                "overlay_transition",
                from_state=previous.phase,
                to_state=self._state.phase,
                reason=reason,
            ),
        )

    def _extra(self, event: str, **fields: object) -> dict[str, object]:
        return {
            "event": event,
            "service_name": self._settings.service_name,
            "service_version": self._settings.service_version,
            **fields,
        }
