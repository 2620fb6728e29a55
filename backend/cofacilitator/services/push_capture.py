"""
Microphone capture fed by a client connection.

The browser streams PCM s16le mono bytes over the websocket; the websocket
handler calls push(). The recorder hands out WAV segments on request_data(),
the same contract a browser MediaRecorder offers.
"""
from __future__ import annotations

import io
import logging
import wave
from typing import Callable, List, Optional

from cofacilitator.core.config import get_settings

logger = logging.getLogger(__name__)

SAMPLE_WIDTH_BYTES = 2


class MicrophoneBusyError(RuntimeError):
    pass


def pcm_to_wav(pcm_bytes: bytes, sample_rate: int, channels: int = 1) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(SAMPLE_WIDTH_BYTES)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm_bytes)
    return buf.getvalue()


class PushAudioStream:
    def __init__(self, device: "PushAudioDevices") -> None:
        self._device = device
        self._active = True
        self._recorders: List["WavSegmentRecorder"] = []

    @property
    def active(self) -> bool:
        return self._active

    def push(self, pcm_bytes: bytes) -> None:
        if not self._active or not pcm_bytes:
            return
        for recorder in list(self._recorders):
            recorder._append(pcm_bytes)

    def stop(self) -> None:
        if not self._active:
            return
        self._active = False
        self._recorders.clear()
        self._device._release(self)

    def _attach(self, recorder: "WavSegmentRecorder") -> None:
        if recorder not in self._recorders:
            self._recorders.append(recorder)

    def _detach(self, recorder: "WavSegmentRecorder") -> None:
        if recorder in self._recorders:
            self._recorders.remove(recorder)


class WavSegmentRecorder:
    mime_type = "audio/wav"

    def __init__(self, stream: PushAudioStream, sample_rate: int, channels: int = 1) -> None:
        self._stream = stream
        self.sample_rate = sample_rate
        self.channels = channels
        self.state = "inactive"
        self.on_data_available: Optional[Callable[[bytes], None]] = None
        self.on_error: Optional[Callable[[Exception], None]] = None
        self._buffer = bytearray()

    def start(self) -> None:
        if self.state == "recording":
            return
        if not self._stream.active:
            raise RuntimeError("Cannot record from a released stream")
        self._buffer = bytearray()
        self.state = "recording"
        self._stream._attach(self)

    def request_data(self) -> None:
        if self.state != "recording":
            return
        self._flush()

    def stop(self) -> None:
        if self.state == "inactive":
            return
        self._flush()
        self.state = "inactive"
        self._stream._detach(self)

    def _append(self, pcm_bytes: bytes) -> None:
        if self.state == "recording":
            self._buffer.extend(pcm_bytes)

    def _flush(self) -> None:
        frame_bytes = SAMPLE_WIDTH_BYTES * self.channels
        usable = len(self._buffer) - (len(self._buffer) % frame_bytes)
        if usable <= 0:
            return
        # a trailing half frame rides along with the next segment
        pcm = bytes(self._buffer[:usable])
        del self._buffer[:usable]
        callback = self.on_data_available
        if callback is None:
            return
        try:
            callback(pcm_to_wav(pcm, self.sample_rate, self.channels))
        except Exception as exc:
            logger.exception("push_recorder_delivery_failed bytes=%s", usable)
            if self.on_error is not None:
                self.on_error(exc)


class PushAudioDevices:
    """Exclusive single-stream capture device for one client connection."""

    def __init__(self, sample_rate: Optional[int] = None, channels: int = 1) -> None:
        self.sample_rate = int(sample_rate or get_settings().capture_sample_rate)
        self.channels = channels
        self._stream: Optional[PushAudioStream] = None
        self.acquisitions = 0

    def is_available(self) -> bool:
        return True

    @property
    def in_use(self) -> bool:
        return self._stream is not None and self._stream.active

    async def get_user_media(self) -> PushAudioStream:
        if self.in_use:
            raise MicrophoneBusyError("Microphone is already in use by another engine")
        self._stream = PushAudioStream(self)
        self.acquisitions += 1
        logger.debug("push_capture_acquired acquisitions=%s", self.acquisitions)
        return self._stream

    def create_recorder(self, stream: PushAudioStream, mime_type: str) -> WavSegmentRecorder:
        return WavSegmentRecorder(stream, self.sample_rate, self.channels)

    def push(self, pcm_bytes: bytes) -> bool:
        stream = self._stream
        if stream is None or not stream.active:
            return False
        stream.push(pcm_bytes)
        return True

    def _release(self, stream: PushAudioStream) -> None:
        if self._stream is stream:
            self._stream = None
            logger.debug("push_capture_released")
