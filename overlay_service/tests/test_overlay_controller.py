from __future__ import annotations

import logging
import unittest
from typing import Any, Callable

from overlay_service.app.events.channel import ChannelEvent, LocalEventChannel, SubscriptionError
from overlay_service.app.overlay.clipboard import ClipboardError, ClipboardSink, MemoryClipboardSink
from overlay_service.app.overlay.controller import (
    COPY_FAILED_NOTICE,
    OverlayController,
    OverlayControllerError,
    _Command,
)
from overlay_service.app.overlay.types import TranslationResult
from overlay_service.app.overlay.window import HeadlessWindowHandle, WindowError, WindowHandle
from overlay_service.app.settings import Settings

HELLO = {
    "original": "hello",
    "translated": "こんにちは",
    "source_lang": "en",
    "target_lang": "ja",
}
GOODBYE = {
    "original": "goodbye",
    "translated": "さようなら",
    "source_lang": "en",
    "target_lang": "ja",
}


class _FakeTimer:
    def __init__(self, deadline: float, callback: Callable[[], None]) -> None:
        self.deadline = deadline
        self.callback = callback
        self.cancelled = False
        self.fired = False


class FakeClock:
    def __init__(self, honour_cancel: bool = True) -> None:
        self.now = 0.0
        self.timers: list[_FakeTimer] = []
        self._honour_cancel = honour_cancel

    def after(self, delay: float, callback: Callable[[], None]) -> _FakeTimer:
        timer = _FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def cancel(self, handle: object) -> None:
        if self._honour_cancel and isinstance(handle, _FakeTimer):
            handle.cancelled = True

    def outstanding(self) -> int:
        return sum(1 for timer in self.timers if not timer.cancelled and not timer.fired)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [
                timer
                for timer in self.timers
                if not timer.cancelled and not timer.fired and timer.deadline <= target
            ]
            if not due:
                break
            timer = min(due, key=lambda item: item.deadline)
            self.now = timer.deadline
            timer.fired = True
            timer.callback()
        self.now = target


class _FailingClipboard(ClipboardSink):
    @property
    def name(self) -> str:
        return "failing-clipboard"

    async def write_text(self, text: str) -> None:
        raise ClipboardError("access denied")


class _FailingWindow(WindowHandle):
    def __init__(self) -> None:
        self.attempts = 0

    @property
    def name(self) -> str:
        return "failing-window"

    @property
    def visible(self) -> bool:
        return False

    async def show(self) -> None:
        self.attempts += 1
        raise WindowError("no native window")

    async def hide(self) -> None:
        self.attempts += 1
        raise WindowError("no native window")


def _settings() -> Settings:
    return Settings(
        service_name="translator-overlay",
        service_version="0.1.0-test",
        environment="test",
        log_level="INFO",
        host="127.0.0.1",
        port=8765,
    )


class OverlayControllerTest(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.logger = logging.getLogger("translator_overlay.test.overlay")
        self.clock = FakeClock()
        self.channel = LocalEventChannel(logger=self.logger)
        self.window = HeadlessWindowHandle()
        self.clipboard = MemoryClipboardSink()
        self.controller = self._build_controller()

    async def asyncTearDown(self) -> None:
        await self.controller.stop()

    def _build_controller(
        self,
        window: WindowHandle | None = None,
        clipboard: ClipboardSink | None = None,
        clock: FakeClock | None = None,
    ) -> OverlayController:
        clock = clock or self.clock
        return OverlayController(
            settings=_settings(),
            logger=self.logger,
            channel=self.channel,
            window=window or self.window,
            clipboard=clipboard or self.clipboard,
            after=clock.after,
            after_cancel=clock.cancel,
        )

    async def _publish(self, name: str, payload: dict[str, Any] | None = None) -> None:
        await self.channel.publish(ChannelEvent.parse(name, payload))
        await self.controller.drain()

    async def _advance(self, seconds: float) -> None:
        self.clock.advance(seconds)
        await self.controller.drain()

    async def test_starts_idle_and_hidden(self) -> None:
        await self.controller.start()

        self.assertEqual(self.controller.state.phase, "idle")
        self.assertIsNone(self.controller.state.result)
        self.assertFalse(self.controller.copied)
        self.assertEqual(self.controller.view()["mascot_state"], "idle")
        self.assertFalse(self.window.visible)

    async def test_loading_then_result_auto_hides_after_ten_seconds(self) -> None:
        await self.controller.start()

        await self._publish("loading-started")
        self.assertEqual(self.controller.state.phase, "loading")
        self.assertEqual(self.controller.view()["mascot_state"], "loading")
        self.assertTrue(self.window.visible)

        await self._advance(0.8)
        await self._publish("translation-ready", HELLO)
        self.assertEqual(self.controller.state.phase, "result")
        self.assertEqual(self.controller.state.result, TranslationResult.from_payload(HELLO))
        self.assertEqual(self.controller.view()["mascot_state"], "success")

        await self._advance(9.999)
        self.assertEqual(self.controller.state.phase, "result")
        self.assertEqual(self.window.hide_calls, 0)

        await self._advance(0.002)
        self.assertEqual(self.controller.state.phase, "idle")
        self.assertIsNone(self.controller.state.result)
        self.assertEqual(self.window.hide_calls, 1)
        self.assertFalse(self.window.visible)
        self.assertEqual(self.controller.snapshot()["auto_hides"], 1)

    async def test_later_result_supersedes_earlier_timer(self) -> None:
        await self.controller.start()

        await self._publish("translation-ready", HELLO)
        await self._advance(3.0)
        await self._publish("translation-ready", GOODBYE)
        self.assertEqual(self.clock.outstanding(), 1)

        await self._advance(6.0)
        self.assertEqual(self.controller.state.phase, "result")
        self.assertEqual(self.controller.state.result, TranslationResult.from_payload(GOODBYE))

        await self._advance(3.999)
        self.assertEqual(self.controller.state.phase, "result")

        await self._advance(0.002)
        self.assertEqual(self.controller.state.phase, "idle")
        self.assertAlmostEqual(self.clock.now, 13.001, places=6)
        self.assertEqual(self.window.hide_calls, 1)

    async def test_never_more_than_one_auto_hide_timer(self) -> None:
        await self.controller.start()
        sequence = [
            ("loading-started", None),
            ("translation-ready", HELLO),
            ("translation-ready", GOODBYE),
            ("loading-started", None),
            ("translation-ready", HELLO),
            ("loading-started", None),
            ("loading-started", None),
            ("translation-ready", GOODBYE),
            ("translation-ready", HELLO),
        ]

        for name, payload in sequence:
            await self._publish(name, payload)
            await self._advance(1.5)
            self.assertLessEqual(self.clock.outstanding(), 1)
            if name == "loading-started":
                self.assertEqual(self.clock.outstanding(), 0)
                self.assertIsNone(self.controller.state.result)

        self.assertEqual(self.controller.state.result, TranslationResult.from_payload(HELLO))

    async def test_close_is_idempotent(self) -> None:
        await self.controller.start()
        await self._publish("translation-ready", HELLO)

        self.assertTrue(await self.controller.close())
        self.assertTrue(await self.controller.close())

        self.assertEqual(self.controller.state.phase, "idle")
        self.assertFalse(self.window.visible)
        self.assertEqual(self.clock.outstanding(), 0)
        self.assertEqual(self.controller.snapshot()["auto_hides"], 0)

    async def test_escape_event_closes_overlay(self) -> None:
        await self.controller.start()
        await self._publish("show-translation", HELLO)
        self.assertEqual(self.controller.state.phase, "result")

        await self._publish("escape")

        self.assertEqual(self.controller.state.phase, "idle")
        self.assertFalse(self.window.visible)
        self.assertEqual(self.clock.outstanding(), 0)

    async def test_copy_feedback_lasts_two_seconds(self) -> None:
        await self.controller.start()
        await self._publish("translation-ready", HELLO)

        self.assertTrue(await self.controller.copy())
        self.assertEqual(self.clipboard.text, "こんにちは")
        self.assertTrue(self.controller.copied)

        await self._advance(1.999)
        self.assertTrue(self.controller.copied)

        await self._advance(0.002)
        self.assertFalse(self.controller.copied)
        self.assertEqual(self.controller.state.phase, "result")

    async def test_failed_copy_keeps_overlay_open(self) -> None:
        self.controller = self._build_controller(clipboard=_FailingClipboard())
        await self.controller.start()
        await self._publish("translation-ready", HELLO)

        self.assertFalse(await self.controller.copy())
        self.assertFalse(self.controller.copied)
        self.assertEqual(self.controller.notice, COPY_FAILED_NOTICE)
        self.assertEqual(self.controller.state.phase, "result")
        self.assertTrue(self.window.visible)
        self.assertEqual(self.controller.snapshot()["copy_failures"], 1)

        await self._advance(2.001)
        self.assertIsNone(self.controller.notice)
        self.assertFalse(self.controller.copied)

    async def test_copy_outside_result_is_ignored(self) -> None:
        await self.controller.start()

        self.assertFalse(await self.controller.copy())
        await self._publish("loading-started")
        self.assertFalse(await self.controller.copy())

        self.assertEqual(self.clipboard.writes, 0)
        self.assertFalse(self.controller.copied)

    async def test_new_result_resets_copy_feedback(self) -> None:
        await self.controller.start()
        await self._publish("translation-ready", HELLO)
        await self.controller.copy()
        self.assertTrue(self.controller.copied)

        await self._advance(0.5)
        await self._publish("translation-ready", GOODBYE)
        self.assertFalse(self.controller.copied)

        await self.controller.copy()
        await self._advance(1.9)
        self.assertTrue(self.controller.copied)

    async def test_stale_timer_firing_is_ignored(self) -> None:
        leaky_clock = FakeClock(honour_cancel=False)
        self.clock = leaky_clock
        self.controller = self._build_controller(clock=leaky_clock)
        await self.controller.start()

        await self._publish("translation-ready", HELLO)
        await self._advance(3.0)
        await self._publish("translation-ready", GOODBYE)

        await self._advance(7.5)
        self.assertEqual(self.controller.state.phase, "result")
        self.assertEqual(self.controller.state.result, TranslationResult.from_payload(GOODBYE))
        self.assertGreaterEqual(self.controller.snapshot()["auto_hide_timer"]["stale"], 1)

        await self._advance(3.0)
        self.assertEqual(self.controller.state.phase, "idle")

    async def test_window_errors_do_not_block_transitions(self) -> None:
        failing_window = _FailingWindow()
        self.controller = self._build_controller(window=failing_window)
        await self.controller.start()

        await self._publish("loading-started")
        await self._publish("translation-ready", HELLO)
        self.assertEqual(self.controller.state.phase, "result")

        await self._advance(10.5)
        self.assertEqual(self.controller.state.phase, "idle")
        self.assertEqual(failing_window.attempts, 3)
        self.assertEqual(self.controller.snapshot()["window_errors"], 3)

    async def test_stop_releases_timers_and_subscription(self) -> None:
        await self.controller.start()
        await self._publish("translation-ready", HELLO)
        await self.controller.copy()
        self.assertEqual(self.channel.subscriber_count, 1)

        await self.controller.stop()

        self.assertEqual(self.channel.subscriber_count, 0)
        self.assertEqual(self.clock.outstanding(), 0)
        self.assertFalse(self.controller.running)

        await self.channel.publish(ChannelEvent.parse("loading-started"))
        self.clock.advance(30.0)
        self.assertEqual(self.controller.state.phase, "result")

    async def test_start_fails_when_channel_rejects_subscription(self) -> None:
        await self.channel.close()

        with self.assertRaises(SubscriptionError):
            await self.controller.start()

        self.assertFalse(self.controller.running)
        self.assertIn("subscription_failed", self.controller.snapshot()["last_error"])

    async def test_commands_require_running_controller(self) -> None:
        with self.assertRaises(OverlayControllerError):
            await self.controller.close()

    async def test_burst_beyond_queue_limit_keeps_latest_result_and_escape(self) -> None:
        shown: list[str] = []

        async def _capture(view: dict[str, Any]) -> None:
            if view["state"] == "result":
                shown.append(view["result"]["original"])

        self.controller.register_view_handler(_capture)
        await self.controller.start()

        burst = _settings().overlay_event_queue_maxsize + 6
        for index in range(burst):
            await self.channel.publish(
                ChannelEvent.parse("translation-ready", {**HELLO, "original": f"t{index}"})
            )
        await self.channel.publish(ChannelEvent.parse("escape"))
        await self.controller.drain()

        self.assertEqual(shown[-1], f"t{burst - 1}")
        self.assertEqual(self.controller.state.phase, "idle")
        self.assertFalse(self.window.visible)
        self.assertEqual(self.clock.outstanding(), 0)
        self.assertGreaterEqual(self.controller.snapshot()["events_superseded"], 1)

    async def test_result_command_without_payload_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            await self.controller._apply(_Command(kind="translation-ready"))

        self.assertEqual(self.controller.state.phase, "idle")

    async def test_view_handlers_receive_each_transition(self) -> None:
        views: list[dict[str, Any]] = []

        async def _capture(view: dict[str, Any]) -> None:
            views.append(view)

        self.controller.register_view_handler(_capture)
        await self.controller.start()

        await self._publish("loading-started")
        await self._publish("translation-ready", HELLO)
        await self.controller.close()

        self.assertEqual([view["state"] for view in views], ["loading", "result", "idle"])
        self.assertEqual(views[1]["result"]["direction"], ["EN", "JA"])
        self.assertTrue(views[1]["visible"])
        self.assertFalse(views[2]["visible"])


if __name__ == "__main__":
    unittest.main()
