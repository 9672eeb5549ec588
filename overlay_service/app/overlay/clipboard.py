from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

import pyperclip


class ClipboardError(Exception):
    """Raised when the platform denies clipboard access."""


class ClipboardSink(ABC):
    @property
    @abstractmethod
    def name(self) -> str:
        raise NotImplementedError

    @abstractmethod
    async def write_text(self, text: str) -> None:
        raise NotImplementedError


class PyperclipClipboardSink(ClipboardSink):
    """System clipboard via pyperclip; the blocking call runs in a worker thread."""

    @property
    def name(self) -> str:
        return "system-clipboard"

    async def write_text(self, text: str) -> None:
        try:
            await asyncio.to_thread(pyperclip.copy, text)
        except pyperclip.PyperclipException as exc:
            raise ClipboardError(f"clipboard_unavailable:{exc}") from exc


class MemoryClipboardSink(ClipboardSink):
    def __init__(self) -> None:
        self.text: str | None = None
        self.writes = 0

    @property
    def name(self) -> str:
        return "memory-clipboard"

    async def write_text(self, text: str) -> None:
        self.writes += 1
        self.text = text
