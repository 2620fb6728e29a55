"""
Chunked fallback engine.

Records the microphone continuously and, every few seconds, hands the audio
captured since the previous cut to the transcription endpoint. Works wherever
a microphone can be opened; every result is final.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Tuple

from cofacilitator.core.config import get_settings
from cofacilitator.schemas.transcript import TranscriptEvent

from .asr_service import AsrServiceError, transcribe_audio_chunk
from .speech_engine import ENGINE_WHISPER, SpeechEngine, SpeechEngineError

logger = logging.getLogger(__name__)

RECORDER_INACTIVE = "inactive"
RECORDER_RECORDING = "recording"

MIME_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/mp4": "m4a",
    "audio/mpeg": "mp3",
}


class MediaStream(Protocol):
    @property
    def active(self) -> bool: ...

    def stop(self) -> None: ...


class MediaRecorder(Protocol):
    state: str
    mime_type: str
    on_data_available: Optional[Callable[[bytes], None]]
    on_error: Optional[Callable[[Exception], None]]

    def start(self) -> None: ...

    def request_data(self) -> None: ...

    def stop(self) -> None: ...


class MediaDevices(Protocol):
    def is_available(self) -> bool: ...

    async def get_user_media(self) -> MediaStream: ...

    def create_recorder(self, stream: MediaStream, mime_type: str) -> MediaRecorder: ...


SegmentTranscriber = Callable[..., Awaitable[Dict[str, Any]]]


def base_mime_type(mime_type: str) -> str:
    return (mime_type or "").split(";", 1)[0].strip().lower() or "audio/webm"


def segment_filename(mime_type: str) -> str:
    return f"audio.{MIME_EXTENSIONS.get(base_mime_type(mime_type), 'webm')}"


class WhisperChunkedEngine(SpeechEngine):
    name = ENGINE_WHISPER

    def __init__(
        self,
        media_devices: Optional[MediaDevices],
        *,
        transcriber: Optional[SegmentTranscriber] = None,
        chunk_interval: Optional[float] = None,
        mime_type: Optional[str] = None,
    ) -> None:
        super().__init__()
        settings = get_settings()
        self._devices = media_devices
        self._transcriber = transcriber or transcribe_audio_chunk
        self.chunk_interval = max(
            0.001,
            float(chunk_interval if chunk_interval is not None else settings.chunk_interval_seconds),
        )
        self.mime_type = mime_type or settings.chunk_mime_type
        self._segment_mime = self.mime_type

        self._stream: Optional[MediaStream] = None
        self._recorder: Optional[MediaRecorder] = None
        self._chunk_task: Optional[asyncio.Task] = None
        self._upload_task: Optional[asyncio.Task] = None
        self._segments: Optional["asyncio.Queue[Tuple[int, bytes]]"] = None
        self._generation = 0
        self._segment_seq = 0
        self._listening = False
        self._starting = False

    def is_supported(self) -> bool:
        if self._devices is None:
            return False
        try:
            return bool(self._devices.is_available())
        except Exception:
            logger.debug("whisper_engine_support_probe_failed", exc_info=True)
            return False

    @property
    def is_listening(self) -> bool:
        return self._listening

    async def start(self) -> None:
        if self._listening or self._starting:
            logger.warning(
                "whisper_engine_start_ignored listening=%s starting=%s", self._listening, self._starting
            )
            return
        if not self.is_supported():
            raise SpeechEngineError("unsupported", "Audio recording is not supported in this environment")
        assert self._devices is not None

        self._generation += 1
        generation = self._generation
        self._starting = True
        try:
            stream = await self._devices.get_user_media()
        except Exception as exc:
            logger.error("whisper_engine_microphone_failed err=%s", exc, exc_info=True)
            self._callbacks.emit_error("audio-capture", "Failed to access microphone", fatal=True)
            return
        finally:
            self._starting = False

        if generation != self._generation:
            logger.info("whisper_engine_start_cancelled reason=stopped_during_setup")
            self._release_stream(stream)
            return

        try:
            recorder = self._devices.create_recorder(stream, self.mime_type)
            recorder.on_data_available = lambda data: self._handle_data(generation, data)
            recorder.on_error = lambda exc: self._handle_recorder_error(generation, exc)
            recorder.start()
        except Exception as exc:
            logger.error("whisper_engine_recorder_failed err=%s", exc, exc_info=True)
            self._release_stream(stream)
            self._callbacks.emit_error("audio-capture", "Audio recording error occurred", fatal=True)
            return

        loop = asyncio.get_running_loop()
        self._stream = stream
        self._recorder = recorder
        self._segment_mime = getattr(recorder, "mime_type", None) or self.mime_type
        self._segments = asyncio.Queue()
        self._listening = True
        self._upload_task = loop.create_task(self._upload_worker(generation, self._segments))
        self._chunk_task = loop.create_task(self._chunk_loop(recorder))
        logger.info(
            "whisper_engine_started interval=%.1fs mime=%s", self.chunk_interval, self._segment_mime
        )

    async def stop(self) -> None:
        # late segments and late transcriptions belong to a dead session
        self._generation += 1
        was_listening = self._listening
        self._listening = False

        chunk_task = self._chunk_task
        self._chunk_task = None
        if chunk_task is not None and not chunk_task.done():
            chunk_task.cancel()

        recorder = self._recorder
        self._recorder = None
        if recorder is not None:
            try:
                if recorder.state != RECORDER_INACTIVE:
                    recorder.stop()
            except Exception:
                logger.warning("whisper_engine_recorder_stop_failed", exc_info=True)
            recorder.on_data_available = None
            recorder.on_error = None

        stream = self._stream
        self._stream = None
        if stream is not None:
            self._release_stream(stream)

        upload_task = self._upload_task
        self._upload_task = None
        if upload_task is not None and not upload_task.done():
            upload_task.cancel()
        self._segments = None

        if was_listening:
            logger.info("whisper_engine_stopped segments=%s", self._segment_seq)

    def _release_stream(self, stream: MediaStream) -> None:
        try:
            stream.stop()
        except Exception:
            logger.warning("whisper_engine_stream_release_failed", exc_info=True)

    async def _chunk_loop(self, recorder: MediaRecorder) -> None:
        try:
            while True:
                await asyncio.sleep(self.chunk_interval)
                if recorder.state != RECORDER_RECORDING:
                    continue
                try:
                    recorder.request_data()
                except Exception:
                    logger.warning("whisper_engine_request_data_failed", exc_info=True)
        except asyncio.CancelledError:
            pass

    def _handle_data(self, generation: int, data: bytes) -> None:
        if generation != self._generation or self._segments is None:
            logger.debug("whisper_segment_discarded reason=stopped bytes=%s", len(data or b""))
            return
        if not data:
            return
        self._segment_seq += 1
        self._segments.put_nowait((self._segment_seq, bytes(data)))

    def _handle_recorder_error(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        logger.error("whisper_engine_recorder_error err=%s", exc)
        self._callbacks.emit_error("recorder-error", "Audio recording error occurred", fatal=False)

    async def _upload_worker(self, generation: int, queue: "asyncio.Queue[Tuple[int, bytes]]") -> None:
        # one upload at a time keeps finals in capture order
        try:
            while True:
                seq, audio = await queue.get()
                await self._process_segment(generation, seq, audio)
        except asyncio.CancelledError:
            pass

    async def _process_segment(self, generation: int, seq: int, audio: bytes) -> None:
        logger.info("whisper_segment_upload seq=%s bytes=%s", seq, len(audio))
        try:
            payload = await self._transcriber(
                audio,
                filename=segment_filename(self._segment_mime),
                content_type=base_mime_type(self._segment_mime),
            )
        except AsrServiceError as exc:
            logger.warning("whisper_segment_failed seq=%s err=%s", seq, exc)
            self._segment_failed(generation)
            return
        except Exception:
            logger.exception("whisper_segment_failed seq=%s", seq)
            self._segment_failed(generation)
            return

        if generation != self._generation:
            logger.debug("whisper_segment_result_discarded seq=%s reason=stopped", seq)
            return
        text = str((payload or {}).get("text") or "").strip()
        if not text:
            logger.debug("whisper_segment_empty seq=%s", seq)
            return
        self._callbacks.emit_final(TranscriptEvent(text=text, is_partial=False))

    def _segment_failed(self, generation: int) -> None:
        if generation != self._generation:
            return
        self._callbacks.emit_error("transcription-failed", "Transcription service error", fatal=False)
