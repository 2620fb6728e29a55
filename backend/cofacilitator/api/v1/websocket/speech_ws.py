from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import ValidationError

from cofacilitator.core.config import get_settings
from cofacilitator.schemas.transcript import (
    ManualEntryPayload,
    SpeechControlPayload,
    SpeechErrorEvent,
    TranscriptEvent,
)
from cofacilitator.services import whisper_client
from cofacilitator.services.asr_service import AsrServiceError
from cofacilitator.services.push_capture import PushAudioDevices
from cofacilitator.services.speech_transcription import SpeechEnvironment, SpeechTranscription
from cofacilitator.services.transcript_ingest import transcript_sessions
from cofacilitator.services.whisper_client import WhisperApiError

router = APIRouter()
logger = logging.getLogger(__name__)
settings = get_settings()


async def _safe_send_json(websocket: WebSocket, lock: asyncio.Lock, payload: Dict[str, Any]) -> None:
    async with lock:
        await websocket.send_json(payload)


def _extract_payload(message_obj: Dict[str, Any]) -> Dict[str, Any]:
    payload = message_obj.get("payload")
    if isinstance(payload, dict):
        return payload
    return message_obj


async def _forward_events(
    websocket: WebSocket,
    lock: asyncio.Lock,
    outbox: "asyncio.Queue[Dict[str, Any]]",
    session_id: str,
) -> None:
    while True:
        event = await outbox.get()
        try:
            await _safe_send_json(websocket, lock, event)
        except Exception:
            logger.exception("speech_forward_failed session_id=%s", session_id)
            break
    # outbox is no longer drained past this point
    try:
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
    except Exception:
        logger.debug("speech_ws_close_failed session_id=%s", session_id, exc_info=True)


async def transcribe_segment(
    audio: bytes,
    *,
    filename: str = "audio.wav",
    content_type: str = "audio/wav",
) -> Dict[str, Any]:
    # server-side capture talks to Whisper directly instead of looping back over HTTP
    if len(audio) < settings.transcribe_min_bytes:
        return {"text": ""}
    try:
        text = await whisper_client.transcribe_with_whisper(
            audio,
            filename=filename,
            content_type=content_type,
        )
    except WhisperApiError as exc:
        raise AsrServiceError(f"Whisper error {exc.status_code}: {exc.message}") from exc
    return {"text": text}


@router.websocket("/ws/speech/{session_id}")
async def speech_ingest(websocket: WebSocket, session_id: str) -> None:
    await websocket.accept()
    ingestor = transcript_sessions.ensure_session(session_id)
    devices = PushAudioDevices()
    speech = SpeechTranscription(
        SpeechEnvironment(secure_context=settings.speech_secure_context, media_devices=devices),
        transcriber=transcribe_segment,
    )
    send_lock = asyncio.Lock()
    outbox: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def _enqueue(event: Dict[str, Any]) -> None:
        if forward_task.done():
            return
        outbox.put_nowait(event)

    def _on_partial(event: TranscriptEvent) -> None:
        _enqueue(
            {
                "event": "transcript_partial",
                "session_id": session_id,
                "payload": event.model_dump(mode="json"),
            }
        )

    def _on_final(event: TranscriptEvent) -> None:
        record = ingestor.handle_final(event)
        payload = event.model_dump(mode="json")
        payload["record"] = record.model_dump(mode="json") if record is not None else None
        _enqueue({"event": "transcript_final", "session_id": session_id, "payload": payload})

    def _on_error(error: SpeechErrorEvent) -> None:
        _enqueue({"event": "error", "session_id": session_id, "payload": error.model_dump()})

    speech.on_partial(_on_partial)
    speech.on_final(_on_final)
    speech.on_error(_on_error)

    await websocket.send_json(
        {
            "event": "connected",
            "channel": "speech",
            "session_id": session_id,
            "payload": {"sample_rate": devices.sample_rate, "audio_format": "pcm_s16le"},
        }
    )

    forward_task = asyncio.create_task(_forward_events(websocket, send_lock, outbox, session_id))
    dropped_frames = 0

    try:
        while not forward_task.done():
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break

            if message.get("bytes") is not None:
                chunk = message.get("bytes") or b""
                if chunk and not devices.push(chunk):
                    dropped_frames += 1
                    if dropped_frames == 1:
                        logger.debug("speech_audio_dropped session_id=%s reason=not_listening", session_id)
                continue

            text_payload = message.get("text")
            if text_payload is None:
                continue

            try:
                obj = json.loads(text_payload)
                if not isinstance(obj, dict):
                    raise ValueError("message must be a JSON object")
            except Exception as exc:
                await _safe_send_json(
                    websocket,
                    send_lock,
                    {"event": "error", "payload": {"code": "invalid_json", "message": str(exc)}},
                )
                continue

            event_name = str(obj.get("event") or "").strip()
            payload = _extract_payload(obj)
            try:
                if event_name == "speech_control":
                    data = SpeechControlPayload.model_validate(payload)
                    if data.action == "start":
                        if data.speaker is not None:
                            ingestor.set_speaker(data.speaker)
                        dropped_frames = 0
                        await speech.start()
                    else:
                        await speech.stop()
                    await _safe_send_json(
                        websocket,
                        send_lock,
                        {
                            "event": "speech_control_ack",
                            "session_id": session_id,
                            "payload": {
                                "action": data.action,
                                "engine": speech.current_engine,
                                "listening": speech.is_listening,
                                "speaker": ingestor.speaker_override,
                            },
                        },
                    )
                    continue

                if event_name == "manual_entry":
                    data = ManualEntryPayload.model_validate(payload)
                    record = ingestor.add_manual_entry(data.text, data.speaker)
                    await _safe_send_json(
                        websocket,
                        send_lock,
                        {
                            "event": "manual_entry_ack",
                            "session_id": session_id,
                            "payload": record.model_dump(mode="json") if record is not None else None,
                        },
                    )
                    continue

                await _safe_send_json(
                    websocket,
                    send_lock,
                    {
                        "event": "error",
                        "payload": {
                            "code": "unsupported_event",
                            "message": f"Unsupported event: {event_name or '<empty>'}",
                        },
                    },
                )
            except ValidationError as exc:
                await _safe_send_json(
                    websocket,
                    send_lock,
                    {"event": "error", "payload": {"code": "validation_error", "message": str(exc)}},
                )
            except Exception as exc:
                logger.exception("speech_event_failed session_id=%s event=%s", session_id, event_name)
                await _safe_send_json(
                    websocket,
                    send_lock,
                    {"event": "error", "payload": {"code": "internal_error", "message": str(exc)}},
                )
    except WebSocketDisconnect:
        pass
    finally:
        await speech.dispose()
        forward_task.cancel()
        try:
            await forward_task
        except asyncio.CancelledError:
            pass
        logger.info(
            "speech_ws_closed session_id=%s engine=%s acquisitions=%s",
            session_id,
            speech.current_engine,
            devices.acquisitions,
        )
