"""
Speech engine contract shared by every transcription backend.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional

from cofacilitator.schemas.transcript import SpeechErrorEvent, TranscriptEvent

logger = logging.getLogger(__name__)

TranscriptCallback = Callable[[TranscriptEvent], None]
ErrorCallback = Callable[[SpeechErrorEvent], None]

ENGINE_NATIVE = "native"
ENGINE_WHISPER = "whisper"
ENGINE_DEEPGRAM = "deepgram"
ENGINE_NONE = "none"

FALLBACK_RECOMMENDATION = "Please use manual entry or switch to the Whisper fallback engine."


class SpeechEngineError(RuntimeError):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


class EngineCallbacks:
    """Single-slot subscriber registry; emitting never raises."""

    def __init__(self, engine_name: str) -> None:
        self.engine_name = engine_name
        self.partial: Optional[TranscriptCallback] = None
        self.final: Optional[TranscriptCallback] = None
        self.error: Optional[ErrorCallback] = None

    def emit_partial(self, event: TranscriptEvent) -> None:
        self._invoke("partial", self.partial, event)

    def emit_final(self, event: TranscriptEvent) -> None:
        self._invoke("final", self.final, event)

    def emit_error(self, code: str, message: str, fatal: bool = False) -> None:
        event = SpeechErrorEvent(code=code, message=message, fatal=fatal, engine=self.engine_name)
        self._invoke("error", self.error, event)

    def emit_error_event(self, event: SpeechErrorEvent) -> None:
        if event.engine != self.engine_name:
            event = event.model_copy(update={"engine": self.engine_name})
        self._invoke("error", self.error, event)

    def _invoke(self, kind: str, callback, payload) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("speech_callback_failed engine=%s kind=%s", self.engine_name, kind)


class SpeechEngine(ABC):
    name: str = ENGINE_NONE

    def __init__(self) -> None:
        self._callbacks = EngineCallbacks(self.name)

    @abstractmethod
    async def start(self) -> None: ...

    @abstractmethod
    async def stop(self) -> None: ...

    @abstractmethod
    def is_supported(self) -> bool: ...

    @property
    @abstractmethod
    def is_listening(self) -> bool: ...

    def on_partial(self, callback: Optional[TranscriptCallback]) -> None:
        self._callbacks.partial = callback

    def on_final(self, callback: Optional[TranscriptCallback]) -> None:
        self._callbacks.final = callback

    def on_error(self, callback: Optional[ErrorCallback]) -> None:
        self._callbacks.error = callback
