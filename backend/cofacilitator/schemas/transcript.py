from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptEvent(BaseModel):
    text: str
    is_partial: bool = False
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utc_now)


class SpeechErrorEvent(BaseModel):
    code: str
    message: str
    fatal: bool = False
    engine: str = "none"


class TranscriptRecord(BaseModel):
    """Finalized transcript line handed to the persistence collaborator."""

    id: str
    speaker: str
    text: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=utc_now)
    is_auto_detected: bool = True
    source: Literal["speech", "manual"] = "speech"


class TranscribeResponse(BaseModel):
    text: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SpeechControlPayload(BaseModel):
    action: Literal["start", "stop"]
    speaker: Optional[str] = None
    audio_format: str = "pcm_s16le_16k_mono"


class ManualEntryPayload(BaseModel):
    text: str
    speaker: Optional[str] = None


class BulkEntryPayload(BaseModel):
    text: str


class TranscriptListResponse(BaseModel):
    session_id: str
    records: List[TranscriptRecord] = Field(default_factory=list)
