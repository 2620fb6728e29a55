"""
Native continuous recognizer engine.

The host supplies a continuous recognizer with interim results. That recognizer
stops on its own after roughly a minute, raises spurious "no-speech" errors
during silence and fails repeatedly on flaky networks; this engine keeps one
logical listening session alive across all of that.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence, Set

from cofacilitator.core.config import get_settings
from cofacilitator.schemas.transcript import TranscriptEvent

from .speech_engine import (
    ENGINE_NATIVE,
    FALLBACK_RECOMMENDATION,
    SpeechEngine,
    SpeechEngineError,
)

logger = logging.getLogger(__name__)

ERROR_NO_SPEECH = "no-speech"
ERROR_ABORTED = "aborted"
ERROR_NETWORK = "network"
ERROR_START_FAILED = "start-failed"
ERROR_RESTART_LIMIT = "restart-limit"
FATAL_ERRORS = frozenset({"not-allowed", "audio-capture", "service-not-allowed"})

ERROR_MESSAGES = {
    "not-allowed": "Microphone permission denied. Please allow microphone access.",
    "audio-capture": "No microphone found. Please check your audio devices.",
    "service-not-allowed": "Speech recognition service not available.",
}

NETWORK_FALLBACK_MESSAGE = (
    "Speech recognition unavailable. Network errors detected. " + FALLBACK_RECOMMENDATION
)
RECURRING_ERROR_MESSAGE = "Speech recognition keeps failing. " + FALLBACK_RECOMMENDATION
RESTART_LIMIT_MESSAGE = "Speech recognition keeps stopping unexpectedly. " + FALLBACK_RECOMMENDATION


@dataclass(frozen=True)
class RecognitionResult:
    transcript: str
    is_final: bool
    confidence: Optional[float] = None


@dataclass(frozen=True)
class RecognitionResultEvent:
    result_index: int
    results: Sequence[RecognitionResult]


class Recognizer(Protocol):
    continuous: bool
    interim_results: bool
    lang: str
    on_result: Optional[Callable[[RecognitionResultEvent], None]]
    on_error: Optional[Callable[[str], None]]
    on_end: Optional[Callable[[], None]]

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...


RecognizerFactory = Callable[[], Recognizer]


def _clean_confidence(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if 0.0 <= numeric <= 1.0:
        return numeric
    return None


class NativeSpeechEngine(SpeechEngine):
    name = ENGINE_NATIVE

    def __init__(
        self,
        recognizer_factory: Optional[RecognizerFactory],
        *,
        secure_context: bool = True,
        lang: Optional[str] = None,
        restart_interval: Optional[float] = None,
        silence_cycle: Optional[float] = None,
        watchdog_tick: Optional[float] = None,
        network_error_threshold: Optional[int] = None,
        restart_backoff: Optional[float] = None,
        max_total_restarts: Optional[int] = None,
    ) -> None:
        super().__init__()
        settings = get_settings()
        self._recognizer_factory = recognizer_factory
        self._secure_context = bool(secure_context)
        self.lang = lang or settings.speech_lang
        self.restart_interval = float(
            restart_interval if restart_interval is not None else settings.native_restart_interval_seconds
        )
        self.silence_cycle = float(
            silence_cycle if silence_cycle is not None else settings.native_silence_cycle_seconds
        )
        self.watchdog_tick = max(
            0.001,
            float(watchdog_tick if watchdog_tick is not None else settings.native_watchdog_tick_seconds),
        )
        self.network_error_threshold = max(
            1,
            int(
                network_error_threshold
                if network_error_threshold is not None
                else settings.native_network_error_threshold
            ),
        )
        self.restart_backoff = max(
            0.0,
            float(restart_backoff if restart_backoff is not None else settings.native_restart_backoff_seconds),
        )
        self.max_total_restarts = int(
            max_total_restarts if max_total_restarts is not None else settings.native_max_total_restarts
        )

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._recognizer: Optional[Recognizer] = None
        self._generation = 0
        # recognizer running vs. session supposed to be running
        self._active = False
        self._should_restart = False
        self._disabled_code: Optional[str] = None
        self._network_errors = 0
        self._unknown_streak = 0
        self._restarts = 0
        self._restart_handle: Optional[asyncio.TimerHandle] = None
        self._watchdog_task: Optional[asyncio.Task] = None
        self._run_started_at = 0.0
        self._last_final_at = 0.0
        self._finalized: Set[int] = set()

    def is_supported(self) -> bool:
        return self._secure_context and self._recognizer_factory is not None

    @property
    def is_listening(self) -> bool:
        return self._should_restart

    @property
    def network_errors(self) -> int:
        return self._network_errors

    @property
    def restart_pending(self) -> bool:
        return self._restart_handle is not None

    @property
    def disabled_code(self) -> Optional[str]:
        return self._disabled_code

    async def start(self) -> None:
        if self._should_restart:
            logger.warning("native_engine_start_ignored reason=already_listening")
            return
        if not self.is_supported():
            raise SpeechEngineError("unsupported", "Native speech recognition is not supported in this environment")
        if self._disabled_code:
            message = ERROR_MESSAGES.get(self._disabled_code, "Speech recognition is disabled.")
            raise SpeechEngineError(self._disabled_code, f"{message} Start a new session to retry.")

        self._loop = asyncio.get_running_loop()
        self._network_errors = 0
        self._unknown_streak = 0
        self._restarts = 0
        self._should_restart = True
        try:
            self._launch()
        except Exception as exc:
            self._should_restart = False
            self._active = False
            self._release_recognizer(stop=False)
            raise SpeechEngineError(ERROR_START_FAILED, f"Speech recognition failed to start: {exc}") from exc

        self._watchdog_task = self._loop.create_task(self._watchdog())
        logger.info("native_engine_started lang=%s restart_interval=%.1fs", self.lang, self.restart_interval)

    async def stop(self) -> None:
        was_running = self._should_restart or self._recognizer is not None
        self._should_restart = False
        self._cancel_restart()
        self._shutdown()
        if was_running:
            logger.info("native_engine_stopped")

    def _launch(self) -> None:
        assert self._recognizer_factory is not None
        self._generation += 1
        generation = self._generation
        recognizer = self._recognizer_factory()
        recognizer.continuous = True
        recognizer.interim_results = True
        recognizer.lang = self.lang
        recognizer.on_result = lambda event: self._handle_result(generation, event)
        recognizer.on_error = lambda code: self._handle_error(generation, code)
        recognizer.on_end = lambda: self._handle_end(generation)
        self._recognizer = recognizer
        self._finalized = set()
        now = self._now()
        self._run_started_at = now
        self._last_final_at = now
        self._active = True
        recognizer.start()

    def _release_recognizer(self, stop: bool) -> None:
        recognizer = self._recognizer
        self._recognizer = None
        # anything the old recognizer delivers from now on is stale
        self._generation += 1
        if recognizer is None:
            return
        recognizer.on_result = None
        recognizer.on_error = None
        recognizer.on_end = None
        if stop:
            try:
                recognizer.stop()
            except Exception:
                logger.debug("native_recognizer_stop_failed", exc_info=True)

    def _shutdown(self) -> None:
        task = self._watchdog_task
        self._watchdog_task = None
        if task is not None and not task.done():
            task.cancel()
        self._release_recognizer(stop=self._active)
        self._active = False

    def _handle_result(self, generation: int, event: RecognitionResultEvent) -> None:
        if generation != self._generation or not self._should_restart:
            logger.debug("native_result_discarded generation=%s", generation)
            return
        for index in range(max(0, event.result_index), len(event.results)):
            if index in self._finalized:
                continue
            result = event.results[index]
            text = result.transcript or ""
            if not text.strip():
                continue
            transcript_event = TranscriptEvent(
                text=text,
                is_partial=not result.is_final,
                confidence=_clean_confidence(result.confidence),
            )
            if result.is_final:
                self._finalized.add(index)
                self._last_final_at = self._now()
                self._network_errors = 0
                self._unknown_streak = 0
                self._callbacks.emit_final(transcript_event)
            else:
                self._callbacks.emit_partial(transcript_event)

    def _handle_error(self, generation: int, code: str) -> None:
        if generation != self._generation:
            logger.debug("native_error_discarded generation=%s code=%s", generation, code)
            return
        code = str(code or "").strip().lower() or "unknown"

        if code == ERROR_NO_SPEECH:
            # silence between speakers; the recognizer keeps going
            logger.debug("native_no_speech")
            return

        if code == ERROR_ABORTED:
            logger.info("native_recognizer_aborted")
            self._stop_retry_loop()
            return

        if code in FATAL_ERRORS:
            logger.error("native_fatal_error code=%s", code)
            self._disabled_code = code
            self._stop_retry_loop()
            self._callbacks.emit_error(code, ERROR_MESSAGES[code], fatal=True)
            return

        # recoverable: the failed recognizer is gone, bring up a fresh one later
        self._active = False
        self._release_recognizer(stop=False)

        if code == ERROR_NETWORK:
            self._network_errors += 1
            logger.warning(
                "native_network_error count=%s threshold=%s",
                self._network_errors,
                self.network_error_threshold,
            )
            if self._network_errors >= self.network_error_threshold:
                logger.error("native_network_breaker_open count=%s", self._network_errors)
                self._stop_retry_loop()
                self._callbacks.emit_error(ERROR_NETWORK, NETWORK_FALLBACK_MESSAGE, fatal=True)
                return
            self._schedule_restart(self.restart_backoff * self._network_errors, after_error=True)
            return

        self._unknown_streak += 1
        logger.warning("native_recoverable_error code=%s streak=%s", code, self._unknown_streak)
        if self._unknown_streak >= self.network_error_threshold:
            self._stop_retry_loop()
            self._callbacks.emit_error(code, RECURRING_ERROR_MESSAGE, fatal=True)
            return
        if self._unknown_streak > 1:
            self._callbacks.emit_error(code, f"Speech recognition error: {code}. Retrying.", fatal=False)
        self._schedule_restart(self.restart_backoff, after_error=True)

    def _handle_end(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._active = False
        self._release_recognizer(stop=False)
        if not self._should_restart:
            self._shutdown()
            return
        if self._restart_handle is not None:
            return
        logger.debug("native_recognizer_ended restarting=true")
        self._schedule_restart(0.0)

    def _stop_retry_loop(self) -> None:
        self._should_restart = False
        self._cancel_restart()
        self._active = False
        self._shutdown()

    def _schedule_restart(self, delay: float, after_error: bool = False) -> None:
        self._cancel_restart()
        if self._active:
            logger.debug("native_restart_skipped reason=recognizer_active")
            return
        if not self._should_restart or self._loop is None:
            return
        if after_error:
            self._restarts += 1
            if self._restarts > self.max_total_restarts:
                logger.error("native_restart_limit_reached restarts=%s", self._restarts)
                self._stop_retry_loop()
                self._callbacks.emit_error(ERROR_RESTART_LIMIT, RESTART_LIMIT_MESSAGE, fatal=True)
                return
        self._restart_handle = self._loop.call_later(max(0.0, delay), self._restart)

    def _cancel_restart(self) -> None:
        handle = self._restart_handle
        self._restart_handle = None
        if handle is not None:
            handle.cancel()

    def _restart(self) -> None:
        self._restart_handle = None
        if not self._should_restart or self._disabled_code or self._active:
            return
        logger.info("native_recognizer_restarting error_restarts=%s", self._restarts)
        try:
            self._launch()
        except Exception as exc:
            logger.warning("native_restart_failed err=%s", exc, exc_info=True)
            self._active = False
            self._release_recognizer(stop=False)
            self._handle_error(self._generation, ERROR_START_FAILED)

    def _cycle(self, reason: str) -> None:
        recognizer = self._recognizer
        if recognizer is None:
            return
        logger.info("native_recognizer_cycle reason=%s", reason)
        now = self._now()
        self._run_started_at = now
        self._last_final_at = now
        try:
            # graceful stop; the end event brings the next run up
            recognizer.stop()
        except Exception:
            logger.warning("native_recognizer_cycle_failed reason=%s", reason, exc_info=True)
            self._active = False
            self._release_recognizer(stop=False)
            self._schedule_restart(0.0)

    async def _watchdog(self) -> None:
        try:
            while self._should_restart:
                await asyncio.sleep(self.watchdog_tick)
                if not self._should_restart or not self._active:
                    continue
                now = self._now()
                if now - self._run_started_at >= self.restart_interval:
                    self._cycle("session_limit")
                elif now - self._last_final_at >= self.silence_cycle:
                    self._cycle("silence")
        except asyncio.CancelledError:
            pass

    def _now(self) -> float:
        if self._loop is not None:
            return self._loop.time()
        return asyncio.get_running_loop().time()
