"""
Transcription endpoint client used by the chunked engine.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from cofacilitator.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class AsrServiceError(RuntimeError):
    pass


async def transcribe_audio_chunk(
    audio: bytes,
    *,
    filename: str = "audio.webm",
    content_type: str = "audio/webm",
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """
    Send one recorded audio segment to the transcription endpoint.

    Returns the endpoint JSON, which carries at least ``{"text": str}``.
    """
    url = (settings.transcribe_url or "").strip()
    if not url:
        raise AsrServiceError("TRANSCRIBE_URL not configured")
    if not audio:
        raise AsrServiceError("Audio segment is empty")

    files = {"file": (filename, audio, content_type)}
    try:
        if client is not None:
            resp = await client.post(url, files=files)
        else:
            timeout = httpx.Timeout(
                connect=10.0,
                read=settings.transcribe_timeout_seconds,
                write=settings.transcribe_timeout_seconds,
                pool=10.0,
            )
            async with httpx.AsyncClient(timeout=timeout) as owned_client:
                resp = await owned_client.post(url, files=files)
    except httpx.HTTPError as exc:
        raise AsrServiceError(f"Transcription request failed: {exc}") from exc

    if resp.status_code >= 400:
        detail: Any = resp.text
        if resp.headers.get("content-type", "").startswith("application/json"):
            try:
                detail = resp.json()
            except Exception:
                pass
        raise AsrServiceError(f"Transcription error {resp.status_code}: {detail}")

    try:
        payload = resp.json()
    except Exception as exc:
        raise AsrServiceError(f"Invalid transcription JSON response: {exc}") from exc
    if not isinstance(payload, dict):
        raise AsrServiceError("Invalid transcription JSON response: expected an object")

    logger.debug("transcribe_chunk_ok bytes=%s chars=%s", len(audio), len(str(payload.get("text") or "")))
    return payload
