from cofacilitator.schemas.transcript import TranscriptEvent
from cofacilitator.services.speaker_detection import SpeakerDetector
from cofacilitator.services.transcript_ingest import (
    InMemoryTranscriptSink,
    TranscriptIngestor,
    TranscriptSessionService,
    normalize_speaker,
)


def _ingestor() -> TranscriptIngestor:
    return TranscriptIngestor(
        sink=InMemoryTranscriptSink(),
        detector=SpeakerDetector(clock=lambda: 0.0),
    )


def test_normalize_speaker() -> None:
    assert normalize_speaker(None) is None
    assert normalize_speaker("  ") is None
    assert normalize_speaker("AUTO") is None
    assert normalize_speaker("facilitator") == "Facilitator"
    assert normalize_speaker("Participant") == "Participant"
    assert normalize_speaker("Dana") == "Dana"


def test_final_event_is_attributed_automatically() -> None:
    ingestor = _ingestor()

    record = ingestor.handle_final(TranscriptEvent(text=" Welcome everyone ", confidence=0.8))

    assert record is not None
    assert record.text == "Welcome everyone"
    assert record.speaker == "Facilitator"
    assert record.is_auto_detected is True
    assert record.source == "speech"
    assert record.confidence == 0.8
    assert ingestor.sink.records == [record]


def test_speaker_override_wins() -> None:
    ingestor = _ingestor()
    ingestor.set_speaker("participant")

    record = ingestor.handle_final(TranscriptEvent(text="Welcome everyone"))

    assert record.speaker == "Participant"
    assert record.is_auto_detected is False

    ingestor.set_speaker("auto")
    assert ingestor.speaker_override is None


def test_partial_and_blank_events_are_ignored() -> None:
    ingestor = _ingestor()

    assert ingestor.handle_final(TranscriptEvent(text="half a sen", is_partial=True)) is None
    assert ingestor.handle_final(TranscriptEvent(text="   ")) is None
    assert ingestor.sink.records == []


def test_manual_entry_has_full_confidence() -> None:
    ingestor = _ingestor()

    record = ingestor.add_manual_entry("We rolled it out to three regions", speaker="Dana")

    assert record.speaker == "Dana"
    assert record.confidence == 1.0
    assert record.source == "manual"
    assert record.is_auto_detected is False
    assert ingestor.add_manual_entry("   ") is None


def test_bulk_entries_parse_speaker_labels() -> None:
    ingestor = _ingestor()
    text = "\n".join(
        [
            "Facilitator: Welcome everyone",
            "auto: At our company we automate intake",
            "",
            "Just a bare line",
            "Note to self: this has spaces in the label",
        ]
    )

    records = ingestor.add_bulk_entries(text)

    assert [r.speaker for r in records] == ["Facilitator", "Participant", "Participant", "Participant"]
    assert [r.is_auto_detected for r in records] == [False, True, True, True]
    assert records[0].text == "Welcome everyone"
    assert records[3].text == "Note to self: this has spaces in the label"
    assert len(ingestor.sink.records) == 4


def test_session_service_reuses_ingestors() -> None:
    service = TranscriptSessionService()

    assert service.get_records("missing") is None
    first = service.ensure_session("s1")
    assert service.ensure_session("s1") is first

    first.add_manual_entry("hello", speaker="Facilitator")
    assert [r.text for r in service.get_records("s1")] == ["hello"]

    assert service.drop_session("s1") is True
    assert service.drop_session("s1") is False
