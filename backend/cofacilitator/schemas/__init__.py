from .transcript import (
    BulkEntryPayload,
    ManualEntryPayload,
    SpeechControlPayload,
    SpeechErrorEvent,
    TranscribeResponse,
    TranscriptEvent,
    TranscriptListResponse,
    TranscriptRecord,
)

__all__ = [
    'BulkEntryPayload',
    'ManualEntryPayload',
    'SpeechControlPayload',
    'SpeechErrorEvent',
    'TranscribeResponse',
    'TranscriptEvent',
    'TranscriptListResponse',
    'TranscriptRecord',
]
