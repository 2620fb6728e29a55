from __future__ import annotations

import asyncio
from typing import Any, List, Optional

import pytest

from cofacilitator.services.native_engine import RecognitionResult, RecognitionResultEvent


class FakeRecognizer:
    def __init__(self, fail_start: bool = False) -> None:
        self.continuous = False
        self.interim_results = False
        self.lang = ""
        self.on_result = None
        self.on_error = None
        self.on_end = None
        self.fail_start = fail_start
        self.start_calls = 0
        self.stop_calls = 0
        self.abort_calls = 0

    def start(self) -> None:
        self.start_calls += 1
        if self.fail_start:
            raise RuntimeError("recognizer busy")

    def stop(self) -> None:
        # the host answers a stop with an asynchronous end event
        self.stop_calls += 1
        asyncio.get_running_loop().call_soon(self.emit_end)

    def abort(self) -> None:
        self.abort_calls += 1

    def emit_results(self, result_index: int, results: List[RecognitionResult]) -> None:
        if self.on_result is not None:
            self.on_result(RecognitionResultEvent(result_index=result_index, results=results))

    def emit_result(self, text: str, is_final: bool, confidence: Optional[float] = None) -> None:
        self.emit_results(0, [RecognitionResult(transcript=text, is_final=is_final, confidence=confidence)])

    def emit_error(self, code: str) -> None:
        if self.on_error is not None:
            self.on_error(code)

    def emit_end(self) -> None:
        if self.on_end is not None:
            self.on_end()


class FakeRecognizerFactory:
    def __init__(self) -> None:
        self.created: List[FakeRecognizer] = []
        self.fail_next = 0

    def __call__(self) -> FakeRecognizer:
        recognizer = FakeRecognizer(fail_start=self.fail_next > 0)
        if self.fail_next > 0:
            self.fail_next -= 1
        self.created.append(recognizer)
        return recognizer

    @property
    def latest(self) -> FakeRecognizer:
        return self.created[-1]


class FakeStream:
    def __init__(self, devices: "FakeMediaDevices") -> None:
        self._devices = devices
        self.active = True

    def stop(self) -> None:
        if self.active:
            self.active = False
            self._devices.live_streams -= 1


class FakeRecorder:
    def __init__(self, stream: FakeStream, mime_type: str, segment: bytes) -> None:
        self.stream = stream
        self.mime_type = mime_type
        self.state = "inactive"
        self.on_data_available = None
        self.on_error = None
        self.segment = segment
        self.requests = 0

    def start(self) -> None:
        self.state = "recording"

    def request_data(self) -> None:
        self.requests += 1
        if self.on_data_available is not None:
            self.on_data_available(self.segment)

    def stop(self) -> None:
        self.state = "inactive"


class FakeMediaDevices:
    def __init__(self, segment: bytes = b"\x01" * 4096, fail: bool = False) -> None:
        self.segment = segment
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None
        self.acquisitions = 0
        self.live_streams = 0
        self.recorders: List[FakeRecorder] = []

    def is_available(self) -> bool:
        return True

    async def get_user_media(self) -> FakeStream:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise PermissionError("Permission denied")
        self.acquisitions += 1
        self.live_streams += 1
        return FakeStream(self)

    def create_recorder(self, stream: FakeStream, mime_type: str) -> FakeRecorder:
        recorder = FakeRecorder(stream, mime_type, self.segment)
        self.recorders.append(recorder)
        return recorder


class Collector:
    def __init__(self) -> None:
        self.partials: List[Any] = []
        self.finals: List[Any] = []
        self.errors: List[Any] = []
        self.order: List[str] = []

    def partial(self, event) -> None:
        self.partials.append(event)
        self.order.append(f"partial:{event.text}")

    def final(self, event) -> None:
        self.finals.append(event)
        self.order.append(f"final:{event.text}")

    def error(self, event) -> None:
        self.errors.append(event)
        self.order.append(f"error:{event.code}")

    def attach(self, target) -> "Collector":
        target.on_partial(self.partial)
        target.on_final(self.final)
        target.on_error(self.error)
        return self


@pytest.fixture
def recognizer_factory() -> FakeRecognizerFactory:
    return FakeRecognizerFactory()


@pytest.fixture
def media_devices() -> FakeMediaDevices:
    return FakeMediaDevices()


@pytest.fixture
def collector() -> Collector:
    return Collector()
