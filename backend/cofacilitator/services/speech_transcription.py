"""
Speech transcription facade.

Picks one engine per session at construction from the environment's
capabilities and the configured override, creates it on first use and exposes
a single start/stop/subscribe surface no matter which backend ends up active.

Engine choice:
- native    continuous host recognizer, secure context required
- whisper   chunked uploads to the transcription endpoint, works anywhere
- deepgram  reserved for a streaming backend; currently runs the whisper engine
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from cofacilitator.core.config import get_settings

from .chunked_engine import MediaDevices, SegmentTranscriber, WhisperChunkedEngine
from .native_engine import NativeSpeechEngine, RecognizerFactory
from .speech_engine import (
    ENGINE_DEEPGRAM,
    ENGINE_NATIVE,
    ENGINE_WHISPER,
    EngineCallbacks,
    ErrorCallback,
    SpeechEngine,
    SpeechEngineError,
    TranscriptCallback,
)

logger = logging.getLogger(__name__)

ENGINE_AUTO = "auto"
ENGINE_OVERRIDES = frozenset({ENGINE_AUTO, ENGINE_NATIVE, ENGINE_WHISPER, ENGINE_DEEPGRAM})


@dataclass
class SpeechEnvironment:
    secure_context: bool = True
    recognizer_factory: Optional[RecognizerFactory] = None
    media_devices: Optional[MediaDevices] = None

    @property
    def has_native_recognition(self) -> bool:
        return self.recognizer_factory is not None


def resolve_engine_kind(environment: SpeechEnvironment, override: Optional[str]) -> str:
    choice = (override or ENGINE_AUTO).strip().lower()
    if choice not in ENGINE_OVERRIDES:
        logger.warning("speech_engine_override_unknown value=%s using=auto", override)
        choice = ENGINE_AUTO
    if choice != ENGINE_AUTO:
        return choice
    if environment.secure_context and environment.has_native_recognition:
        return ENGINE_NATIVE
    return ENGINE_WHISPER


def create_engine(
    kind: str,
    environment: SpeechEnvironment,
    transcriber: Optional[SegmentTranscriber] = None,
) -> SpeechEngine:
    if kind == ENGINE_NATIVE:
        return NativeSpeechEngine(
            environment.recognizer_factory,
            secure_context=environment.secure_context,
        )
    if kind == ENGINE_DEEPGRAM:
        # TODO: replace with a streaming websocket client once the provider contract is settled
        logger.info("speech_engine_deepgram_stub delegate=whisper")
    return WhisperChunkedEngine(environment.media_devices, transcriber=transcriber)


class SpeechTranscription:
    """One per facilitation session: construct, start/stop any number of times, dispose."""

    def __init__(
        self,
        environment: Optional[SpeechEnvironment] = None,
        *,
        engine_override: Optional[str] = None,
        transcriber: Optional[SegmentTranscriber] = None,
    ) -> None:
        settings = get_settings()
        self.environment = environment or SpeechEnvironment(secure_context=settings.speech_secure_context)
        self._override = engine_override if engine_override is not None else settings.speech_engine
        self._transcriber = transcriber
        self._engine: Optional[SpeechEngine] = None
        self._engine_kind = resolve_engine_kind(self.environment, self._override)
        self._callbacks = EngineCallbacks(self._engine_kind)
        self._start_lock = asyncio.Lock()
        self._disposed = False

    @property
    def current_engine(self) -> str:
        return self._engine_kind

    @property
    def is_listening(self) -> bool:
        return self._engine is not None and self._engine.is_listening

    def is_supported(self) -> bool:
        try:
            return self._get_engine().is_supported()
        except Exception:
            logger.debug("speech_support_probe_failed", exc_info=True)
            return False

    def on_partial(self, callback: Optional[TranscriptCallback]) -> None:
        self._callbacks.partial = callback

    def on_final(self, callback: Optional[TranscriptCallback]) -> None:
        self._callbacks.final = callback

    def on_error(self, callback: Optional[ErrorCallback]) -> None:
        self._callbacks.error = callback

    async def start(self) -> None:
        async with self._start_lock:
            if self._disposed:
                logger.warning("speech_start_ignored reason=disposed")
                self._callbacks.emit_error(
                    "disposed", "This transcription session has ended. Start a new session.", fatal=True
                )
                return
            engine = self._get_engine()
            if engine.is_listening:
                logger.warning("speech_start_ignored engine=%s reason=already_listening", self._engine_kind)
                return
            try:
                await engine.start()
            except SpeechEngineError as exc:
                logger.warning("speech_start_failed engine=%s code=%s", self._engine_kind, exc.code)
                self._callbacks.emit_error(exc.code, exc.message, fatal=True)
                return
            except Exception as exc:
                logger.exception("speech_start_failed engine=%s", self._engine_kind)
                self._callbacks.emit_error("start-failed", f"Speech recognition failed to start: {exc}", fatal=True)
                return
            logger.info("speech_started engine=%s listening=%s", self._engine_kind, engine.is_listening)

    async def stop(self) -> None:
        # not serialized with start(): a stop during a pending start must reach the engine
        engine = self._engine
        if engine is None:
            return
        try:
            await engine.stop()
        except Exception:
            logger.exception("speech_stop_failed engine=%s", self._engine_kind)

    async def dispose(self) -> None:
        await self.stop()
        engine = self._engine
        if engine is not None:
            engine.on_partial(None)
            engine.on_final(None)
            engine.on_error(None)
        self._callbacks.partial = None
        self._callbacks.final = None
        self._callbacks.error = None
        self._disposed = True
        logger.info("speech_disposed engine=%s", self._engine_kind)

    def _get_engine(self) -> SpeechEngine:
        if self._engine is not None:
            return self._engine
        kind = self._engine_kind
        engine = create_engine(kind, self.environment, transcriber=self._transcriber)
        engine.on_partial(self._callbacks.emit_partial)
        engine.on_final(self._callbacks.emit_final)
        engine.on_error(self._callbacks.emit_error_event)
        self._engine = engine
        logger.info(
            "speech_engine_created engine=%s override=%s secure_context=%s native_available=%s",
            kind,
            self._override,
            self.environment.secure_context,
            self.environment.has_native_recognition,
        )
        return engine
