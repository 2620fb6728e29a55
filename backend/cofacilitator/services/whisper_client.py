from __future__ import annotations

import logging
from typing import Optional

import httpx

from cofacilitator.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class WhisperApiError(RuntimeError):
    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


def _error_message(resp: httpx.Response) -> str:
    if resp.headers.get("content-type", "").startswith("application/json"):
        try:
            body = resp.json()
        except ValueError:
            return resp.text
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict) and error.get("message"):
                return str(error["message"])
            if error:
                return str(error)
        return str(body)
    return resp.text


async def transcribe_with_whisper(
    audio: bytes,
    *,
    filename: str = "audio.webm",
    content_type: str = "audio/webm",
    client: Optional[httpx.AsyncClient] = None,
) -> str:
    """Send one audio file to the Whisper transcription API and return plain text."""
    api_key = settings.openai_api_key
    if not api_key:
        raise WhisperApiError(500, "OpenAI API key not configured")

    url = f"{settings.openai_base_url.rstrip('/')}/audio/transcriptions"
    headers = {"Authorization": f"Bearer {api_key}"}
    data = {
        "model": settings.whisper_model,
        "response_format": "text",
    }
    if settings.whisper_language:
        data["language"] = settings.whisper_language
    files = {"file": (filename, audio, content_type)}

    try:
        if client is not None:
            resp = await client.post(url, headers=headers, data=data, files=files)
        else:
            timeout = httpx.Timeout(connect=10.0, read=120.0, write=120.0, pool=10.0)
            async with httpx.AsyncClient(timeout=timeout) as owned_client:
                resp = await owned_client.post(url, headers=headers, data=data, files=files)
    except httpx.HTTPError as exc:
        raise WhisperApiError(502, f"Whisper request failed: {exc}") from exc

    if resp.status_code >= 400:
        message = _error_message(resp)
        logger.warning("whisper_api_error status=%s message=%s", resp.status_code, message[:200])
        raise WhisperApiError(resp.status_code, message)

    text = resp.text.strip()
    logger.info("whisper_transcribed bytes=%s chars=%s", len(audio), len(text))
    return text
