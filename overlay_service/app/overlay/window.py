from __future__ import annotations

from abc import ABC, abstractmethod

from overlay_service.app.realtime.manager import RealtimeEventManager


class WindowError(Exception):
    """Raised when the native overlay window cannot be shown or hidden."""


class WindowHandle(ABC):
    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError

    @property
    @abstractmethod
    def visible(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def show(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def hide(self) -> None:
        raise NotImplementedError


class HeadlessWindowHandle(WindowHandle):
    """Tracks visibility without a rendering client attached."""

    def __init__(self) -> None:
        self._visible = False
        self.show_calls = 0
        self.hide_calls = 0

    @property
    def name(self) -> str:
        return "headless-window"

    @property
    def visible(self) -> bool:
        return self._visible

    async def show(self) -> None:
        self.show_calls += 1
        self._visible = True

    async def hide(self) -> None:
        self.hide_calls += 1
        self._visible = False


class RealtimeWindowHandle(WindowHandle):
    """Forwards visibility to rendering clients over the realtime websocket.

    The rendering client owns the native window; a client that connects later
    receives the current visibility from ``visibility_event``.
    """

    def __init__(self, realtime_manager: RealtimeEventManager) -> None:
        self._realtime_manager = realtime_manager
        self._visible = False

    @property
    def name(self) -> str:
        return "realtime-window"

    @property
    def visible(self) -> bool:
        return self._visible

    async def show(self) -> None:
        await self._apply(True)

    async def hide(self) -> None:
        await self._apply(False)

    def visibility_event(self) -> tuple[str, dict[str, object]]:
        event_type = "window.show" if self._visible else "window.hide"
        return event_type, {"visible": self._visible}

    async def _apply(self, visible: bool) -> None:
        if not self._realtime_manager.running:
            raise WindowError("realtime channel is not running")

        self._visible = visible
        event_type, payload = self.visibility_event()
        await self._realtime_manager.publish(event_type=event_type, payload=payload)
