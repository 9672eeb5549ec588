from __future__ import annotations

import asyncio
from typing import Callable

AfterFn = Callable[[float, Callable[[], None]], object]
AfterCancelFn = Callable[[object], None]


def loop_after(delay_seconds: float, callback: Callable[[], None]) -> object:
    return asyncio.get_running_loop().call_later(delay_seconds, callback)


def loop_after_cancel(handle: object) -> None:
    if isinstance(handle, asyncio.TimerHandle):
        handle.cancel()


class GenerationTimer:
    """Single-slot timer whose firings are tagged with a generation id.

    Arming or cancelling bumps the generation, so a firing that was already in
    flight when the slot was superseded can be recognised as stale by the owner.
    At most one handle is outstanding per instance.
    """

    def __init__(
        self,
        name: str,
        *,
        after: AfterFn = loop_after,
        after_cancel: AfterCancelFn = loop_after_cancel,
    ) -> None:
        self.name = name
        self._after = after
        self._after_cancel = after_cancel
        self._handle: object | None = None
        self._generation = 0
        self.armed = 0
        self.cancelled = 0
        self.fired = 0
        self.stale = 0

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def is_current(self, generation: int) -> bool:
        return generation == self._generation

    def arm(self, delay_seconds: float, callback: Callable[[int], None]) -> int:
        self.cancel()
        generation = self._generation
        self._handle = self._after(
            max(0.0, delay_seconds),
            lambda: self._fire(generation, callback),
        )
        self.armed += 1
        return generation

    def cancel(self) -> bool:
        handle = self._handle
        self._handle = None
        self._generation += 1
        if handle is None:
            return False

        self._after_cancel(handle)
        self.cancelled += 1
        return True

    def snapshot(self) -> dict[str, object]:
        return {
            "pending": self.pending,
            "generation": self._generation,
            "armed": self.armed,
            "cancelled": self.cancelled,
            "fired": self.fired,
            "stale": self.stale,
        }

    def _fire(self, generation: int, callback: Callable[[int], None]) -> None:
        if generation != self._generation:
            self.stale += 1
            return

        self._handle = None
        self.fired += 1
        callback(generation)
