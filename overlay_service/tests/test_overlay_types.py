from __future__ import annotations

import unittest

from overlay_service.app.events.channel import ChannelEvent
from overlay_service.app.health.types import HealthSnapshot, remediation_steps
from overlay_service.app.overlay.types import EventPayloadError, OverlayState, TranslationResult


class TranslationResultTest(unittest.TestCase):
    def test_accepts_camel_case_payload(self) -> None:
        result = TranslationResult.from_payload(
            {
                "original": "こんにちは",
                "translated": "hello",
                "sourceLang": "JA",
                "targetLang": "en",
            }
        )

        self.assertEqual(result.source_lang, "ja")
        self.assertEqual(result.target_lang, "en")
        self.assertEqual(result.direction, ("JA", "EN"))

    def test_direction_defaults_to_english_source(self) -> None:
        result = TranslationResult.from_payload(
            {"original": "hi", "translated": "やあ", "source_lang": "en", "target_lang": "ja"}
        )
        self.assertEqual(result.to_dict()["direction"], ["EN", "JA"])

    def test_rejects_invalid_payloads(self) -> None:
        invalid = [
            None,
            "hello",
            {"original": "hi", "source_lang": "en", "target_lang": "ja"},
            {"original": "hi", "translated": "   ", "source_lang": "en", "target_lang": "ja"},
            {"original": "hi", "translated": 5, "source_lang": "en", "target_lang": "ja"},
            {"original": "hi", "translated": "やあ", "target_lang": "ja"},
        ]
        for payload in invalid:
            with self.subTest(payload=payload):
                with self.assertRaises(EventPayloadError):
                    TranslationResult.from_payload(payload)


class OverlayStateTest(unittest.TestCase):
    def test_result_only_in_result_phase(self) -> None:
        result = TranslationResult("hi", "やあ", "en", "ja")

        with self.assertRaises(ValueError):
            OverlayState(phase="result")
        with self.assertRaises(ValueError):
            OverlayState(phase="loading", result=result)

        self.assertEqual(OverlayState.showing(result).result, result)

    def test_mascot_state_mapping(self) -> None:
        result = TranslationResult("hi", "やあ", "en", "ja")
        self.assertEqual(OverlayState.idle().mascot_state, "idle")
        self.assertEqual(OverlayState.loading().mascot_state, "loading")
        self.assertEqual(OverlayState.showing(result).to_dict()["mascot_state"], "success")


class ChannelEventTest(unittest.TestCase):
    def test_aliases_map_to_canonical_kinds(self) -> None:
        self.assertEqual(ChannelEvent.parse("translation-loading").kind, "loading-started")
        self.assertEqual(ChannelEvent.parse(" ESCAPE ").kind, "escape")
        event = ChannelEvent.parse(
            "show-translation",
            {"original": "hi", "translated": "やあ", "source_lang": "en", "target_lang": "ja"},
        )
        self.assertEqual(event.kind, "translation-ready")
        self.assertEqual(event.result, TranslationResult("hi", "やあ", "en", "ja"))

    def test_unknown_event_rejected(self) -> None:
        with self.assertRaises(EventPayloadError):
            ChannelEvent.parse("rotate-mascot")


class HealthSnapshotTest(unittest.TestCase):
    def test_equality_ignores_check_time(self) -> None:
        first = HealthSnapshot(daemon_running=True, model_installed=False)
        second = HealthSnapshot(daemon_running=True, model_installed=False)
        self.assertEqual(first, second)
        self.assertFalse(first.healthy)

    def test_no_remediation_when_healthy(self) -> None:
        snapshot = HealthSnapshot(daemon_running=True, model_installed=True)
        self.assertEqual(remediation_steps(snapshot, "qwen2.5:1.5b"), [])


if __name__ == "__main__":
    unittest.main()
