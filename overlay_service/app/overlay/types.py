from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal

OverlayPhase = Literal["idle", "loading", "result"]
MascotState = Literal["idle", "loading", "success"]

_MASCOT_BY_PHASE: dict[str, MascotState] = {
    "idle": "idle",
    "loading": "loading",
    "result": "success",
}


class EventPayloadError(ValueError):
    """Raised when an inbound event payload cannot be parsed."""


def _require_text(raw: dict[str, Any], *keys: str) -> str:
    for key in keys:
        value = raw.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise EventPayloadError(f"{keys[0]} must be a string")
        return value
    raise EventPayloadError(f"{keys[0]} is required")


@dataclass(frozen=True)
class TranslationResult:
    original: str
    translated: str
    source_lang: str
    target_lang: str

    @classmethod
    def from_payload(cls, raw: Any) -> TranslationResult:
        if not isinstance(raw, dict):
            raise EventPayloadError("translation payload must be an object")

        translated = _require_text(raw, "translated")
        if not translated.strip():
            raise EventPayloadError("translated must not be blank")

        return cls(
            original=_require_text(raw, "original"),
            translated=translated,
            source_lang=_require_text(raw, "source_lang", "sourceLang").strip().lower(),
            target_lang=_require_text(raw, "target_lang", "targetLang").strip().lower(),
        )

    @property
    def direction(self) -> tuple[str, str]:
        if self.source_lang == "ja":
            return ("JA", "EN")
        return ("EN", "JA")

    def to_dict(self) -> dict[str, object]:
        return {
            "original": self.original,
            "translated": self.translated,
            "source_lang": self.source_lang,
            "target_lang": self.target_lang,
            "direction": list(self.direction),
        }


@dataclass(frozen=True)
class OverlayState:
    """Idle, Loading or Result; only Result carries a translation."""

    phase: OverlayPhase
    result: TranslationResult | None = None

    def __post_init__(self) -> None:
        if self.phase not in _MASCOT_BY_PHASE:
            raise ValueError(f"unknown overlay phase: {self.phase}")
        if self.phase == "result" and self.result is None:
            raise ValueError("result state requires a translation result")
        if self.phase != "result" and self.result is not None:
            raise ValueError(f"{self.phase} state cannot carry a translation result")

    @classmethod
    def idle(cls) -> OverlayState:
        return cls(phase="idle")

    @classmethod
    def loading(cls) -> OverlayState:
        return cls(phase="loading")

    @classmethod
    def showing(cls, result: TranslationResult) -> OverlayState:
        return cls(phase="result", result=result)

    @property
    def mascot_state(self) -> MascotState:
        return _MASCOT_BY_PHASE[self.phase]

    def to_dict(self) -> dict[str, object]:
        return {
            "state": self.phase,
            "mascot_state": self.mascot_state,
            "result": self.result.to_dict() if self.result is not None else None,
        }
