from __future__ import annotations

import logging
import threading
import uuid
from typing import Dict, List, Optional, Protocol

from cofacilitator.core.config import get_settings
from cofacilitator.schemas.transcript import TranscriptEvent, TranscriptRecord, utc_now

from .speaker_detection import FACILITATOR, PARTICIPANT, SpeakerDetector

logger = logging.getLogger(__name__)

AUTO_SPEAKER = "auto"
KNOWN_SPEAKERS = {"facilitator": FACILITATOR, "participant": PARTICIPANT}


class TranscriptSink(Protocol):
    def append(self, record: TranscriptRecord) -> None: ...


class InMemoryTranscriptSink:
    def __init__(self) -> None:
        self.records: List[TranscriptRecord] = []

    def append(self, record: TranscriptRecord) -> None:
        self.records.append(record)


def normalize_speaker(value: Optional[str]) -> Optional[str]:
    """Map user-supplied labels onto canonical roles; None means detect."""
    raw = (value or "").strip()
    if not raw or raw.lower() == AUTO_SPEAKER:
        return None
    return KNOWN_SPEAKERS.get(raw.lower(), raw)


class TranscriptIngestor:
    """
    Turns final transcripts and manual entries into attributed transcript records.
    """

    def __init__(
        self,
        sink: Optional[TranscriptSink] = None,
        detector: Optional[SpeakerDetector] = None,
    ) -> None:
        settings = get_settings()
        self.sink = sink if sink is not None else InMemoryTranscriptSink()
        self.detector = detector or SpeakerDetector(
            facilitator_name=settings.facilitator_name,
            continuity_seconds=settings.speaker_continuity_seconds,
        )
        self._speaker_override: Optional[str] = None

    @property
    def speaker_override(self) -> Optional[str]:
        return self._speaker_override

    def set_speaker(self, speaker: Optional[str]) -> None:
        self._speaker_override = normalize_speaker(speaker)

    def handle_final(self, event: TranscriptEvent) -> Optional[TranscriptRecord]:
        if event.is_partial:
            return None
        text = event.text.strip()
        if not text:
            return None
        speaker = self._speaker_override
        record = TranscriptRecord(
            id=str(uuid.uuid4()),
            speaker=speaker or self.detector.detect(text),
            text=text,
            confidence=event.confidence,
            timestamp=event.timestamp,
            is_auto_detected=speaker is None,
            source="speech",
        )
        return self._store(record)

    def add_manual_entry(self, text: str, speaker: Optional[str] = None) -> Optional[TranscriptRecord]:
        value = (text or "").strip()
        if not value:
            return None
        chosen = normalize_speaker(speaker)
        record = TranscriptRecord(
            id=str(uuid.uuid4()),
            speaker=chosen or self.detector.detect(value),
            text=value,
            confidence=1.0,
            timestamp=utc_now(),
            is_auto_detected=chosen is None,
            source="manual",
        )
        return self._store(record)

    def add_bulk_entries(self, text: str) -> List[TranscriptRecord]:
        """
        Each non-empty line becomes one entry; ``Speaker: text`` picks the speaker,
        ``auto: text`` or a bare line is attributed automatically.
        """
        records: List[TranscriptRecord] = []
        for line in (text or "").splitlines():
            line = line.strip()
            if not line:
                continue
            speaker: Optional[str] = None
            body = line
            label, sep, rest = line.partition(":")
            if sep and label.strip() and " " not in label.strip() and rest.strip():
                speaker = label.strip()
                body = rest.strip()
            record = self.add_manual_entry(body, speaker)
            if record is not None:
                records.append(record)
        logger.info("transcript_bulk_ingested count=%s", len(records))
        return records

    def _store(self, record: TranscriptRecord) -> TranscriptRecord:
        self.sink.append(record)
        logger.debug(
            "transcript_record_added id=%s speaker=%s auto=%s source=%s",
            record.id,
            record.speaker,
            record.is_auto_detected,
            record.source,
        )
        return record


class TranscriptSessionService:
    """Per-session ingestors, shared by the speech websocket and the transcript endpoints."""

    def __init__(self) -> None:
        self._sessions: Dict[str, TranscriptIngestor] = {}
        self._lock = threading.Lock()

    def ensure_session(self, session_id: str) -> TranscriptIngestor:
        with self._lock:
            ingestor = self._sessions.get(session_id)
            if ingestor is None:
                ingestor = TranscriptIngestor()
                self._sessions[session_id] = ingestor
                logger.info("transcript_session_created session_id=%s", session_id)
            return ingestor

    def get_records(self, session_id: str) -> Optional[List[TranscriptRecord]]:
        with self._lock:
            ingestor = self._sessions.get(session_id)
        if ingestor is None:
            return None
        records = getattr(ingestor.sink, "records", None)
        return list(records) if records is not None else []

    def drop_session(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None


transcript_sessions = TranscriptSessionService()
