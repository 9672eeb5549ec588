from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Literal

from overlay_service.app.overlay.types import EventPayloadError, TranslationResult

EventKind = Literal["loading-started", "translation-ready", "escape"]

EVENT_ALIASES: dict[str, EventKind] = {
    "loading-started": "loading-started",
    "translation-loading": "loading-started",
    "translation-ready": "translation-ready",
    "show-translation": "translation-ready",
    "escape": "escape",
}


class SubscriptionError(Exception):
    """Raised when a handler cannot be attached to an event channel."""


@dataclass(frozen=True)
class ChannelEvent:
    kind: EventKind
    result: TranslationResult | None = None

    @classmethod
    def parse(cls, name: str, payload: Any = None) -> ChannelEvent:
        kind = EVENT_ALIASES.get(name.strip().lower())
        if kind is None:
            raise EventPayloadError(f"unknown event: {name}")
        if kind == "translation-ready":
            return cls(kind=kind, result=TranslationResult.from_payload(payload))
        return cls(kind=kind)

    def to_dict(self) -> dict[str, object]:
        return {
            "event": self.kind,
            "payload": self.result.to_dict() if self.result is not None else None,
        }


EventHandler = Callable[[ChannelEvent], Awaitable[None]]


class Subscription(ABC):
    @abstractmethod
    async def unsubscribe(self) -> None:
        raise NotImplementedError


class EventChannel(ABC):
    @abstractmethod
    async def subscribe(self, handler: EventHandler) -> Subscription:
        raise NotImplementedError


class _LocalSubscription(Subscription):
    def __init__(self, channel: LocalEventChannel, subscription_id: int) -> None:
        self._channel = channel
        self._subscription_id = subscription_id

    async def unsubscribe(self) -> None:
        self._channel._detach(self._subscription_id)


class LocalEventChannel(EventChannel):
    """In-process fan-out used by the HTTP ingress and the websocket command path.

    Handlers are awaited in subscription order, so delivery is FIFO per publisher.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._handlers: dict[int, EventHandler] = {}
        self._subscription_counter = 0
        self._closed = False
        self._lock = asyncio.Lock()
        self.events_published = 0
        self.handler_errors = 0

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def subscribe(self, handler: EventHandler) -> Subscription:
        if self._closed:
            raise SubscriptionError("event channel is closed")

        self._subscription_counter += 1
        subscription_id = self._subscription_counter
        self._handlers[subscription_id] = handler
        return _LocalSubscription(self, subscription_id)

    async def publish(self, event: ChannelEvent) -> int:
        if self._closed:
            return 0

        async with self._lock:
            self.events_published += 1
            handlers = list(self._handlers.values())
            for handler in handlers:
                try:
                    await handler(event)
                except Exception as exc:
                    self.handler_errors += 1
                    self._logger.error(
                        "event_channel_handler_error",
                        extra={
                            "event": "event_channel_handler_error",
                            "event_kind": event.kind,
                            "reason": f"{type(exc).__name__}:{exc}",
                        },
                    )
        return len(handlers)

    async def close(self) -> None:
        self._closed = True
        self._handlers.clear()

    def snapshot(self) -> dict[str, object]:
        return {
            "closed": self._closed,
            "subscribers": len(self._handlers),
            "events_published": self.events_published,
            "handler_errors": self.handler_errors,
        }

    def _detach(self, subscription_id: int) -> None:
        self._handlers.pop(subscription_id, None)
