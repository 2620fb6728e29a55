from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, HTTPException

from cofacilitator.schemas.transcript import (
    BulkEntryPayload,
    ManualEntryPayload,
    TranscriptListResponse,
    TranscriptRecord,
)
from cofacilitator.services.transcript_ingest import transcript_sessions

router = APIRouter()


@router.get("/sessions/{session_id}/transcript", response_model=TranscriptListResponse)
async def get_transcript(session_id: str) -> TranscriptListResponse:
    records = transcript_sessions.get_records(session_id)
    if records is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return TranscriptListResponse(session_id=session_id, records=records)


@router.post("/sessions/{session_id}/transcript/manual", response_model=TranscriptRecord)
async def add_manual_entry(session_id: str, payload: ManualEntryPayload) -> TranscriptRecord:
    ingestor = transcript_sessions.ensure_session(session_id)
    record = ingestor.add_manual_entry(payload.text, payload.speaker)
    if record is None:
        raise HTTPException(status_code=400, detail="Entry text is empty")
    return record


@router.post("/sessions/{session_id}/transcript/bulk", response_model=TranscriptListResponse)
async def add_bulk_entries(session_id: str, payload: BulkEntryPayload) -> TranscriptListResponse:
    ingestor = transcript_sessions.ensure_session(session_id)
    records = ingestor.add_bulk_entries(payload.text)
    return TranscriptListResponse(session_id=session_id, records=records)


@router.delete("/sessions/{session_id}/transcript")
async def clear_transcript(session_id: str) -> Dict[str, Any]:
    if not transcript_sessions.drop_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session_id": session_id, "cleared": True}
