from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, File, HTTPException, UploadFile

from cofacilitator.core.config import get_settings
from cofacilitator.schemas.transcript import TranscribeResponse, utc_now
from cofacilitator.services import whisper_client
from cofacilitator.services.whisper_client import WhisperApiError

router = APIRouter()
logger = logging.getLogger(__name__)
settings = get_settings()


@router.post('/transcribe', response_model=TranscribeResponse)
async def transcribe(file: Optional[UploadFile] = File(None)) -> TranscribeResponse:
    if not settings.openai_api_key:
        logger.error("transcribe_rejected reason=api_key_missing")
        raise HTTPException(status_code=500, detail="OpenAI API key not configured")

    if file is None:
        raise HTTPException(status_code=400, detail="No audio file provided")

    content_type = (file.content_type or '').lower()
    if not content_type.startswith('audio/'):
        raise HTTPException(status_code=400, detail="Invalid file type. Audio file required.")

    await file.seek(0)
    audio = await file.read()
    size = len(audio)
    logger.info("transcribe_chunk filename=%s size=%s type=%s", file.filename, size, content_type)

    if size > settings.transcribe_max_bytes:
        max_mb = settings.transcribe_max_bytes // (1024 * 1024)
        raise HTTPException(status_code=400, detail=f"File too large. Maximum size is {max_mb}MB.")

    if size < settings.transcribe_min_bytes:
        logger.info("transcribe_chunk_skipped reason=too_small size=%s", size)
        return TranscribeResponse(text='')

    try:
        text = await whisper_client.transcribe_with_whisper(
            audio,
            filename=file.filename or 'audio.webm',
            content_type=content_type,
        )
    except WhisperApiError as exc:
        logger.error("transcribe_failed status=%s err=%s", exc.status_code, exc.message)
        if exc.status_code == 401:
            raise HTTPException(status_code=401, detail="Invalid OpenAI API key") from exc
        if exc.status_code == 429:
            raise HTTPException(
                status_code=429,
                detail="OpenAI API rate limit exceeded. Please try again later.",
            ) from exc
        if exc.status_code == 400 and 'audio file' in exc.message.lower():
            raise HTTPException(status_code=400, detail="Invalid audio file format or corrupted file") from exc
        detail = "Transcription failed"
        if settings.env == 'development':
            detail = f"Transcription failed: {exc.message}"
        raise HTTPException(status_code=500, detail=detail) from exc

    return TranscribeResponse(
        text=text.strip(),
        metadata={
            'file_size': size,
            'duration': 'unknown',
            'model': settings.whisper_model,
            'timestamp': utc_now().isoformat(),
        },
    )
