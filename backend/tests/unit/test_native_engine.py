import asyncio

import pytest

from cofacilitator.services.native_engine import ERROR_MESSAGES, FATAL_ERRORS, NativeSpeechEngine, RecognitionResult
from cofacilitator.services.speech_engine import SpeechEngineError


def _engine(factory, **overrides) -> NativeSpeechEngine:
    params = dict(
        restart_interval=45.0,
        silence_cycle=30.0,
        watchdog_tick=0.01,
        network_error_threshold=3,
        restart_backoff=0.0,
        max_total_restarts=20,
    )
    params.update(overrides)
    return NativeSpeechEngine(factory, **params)


@pytest.mark.asyncio
async def test_final_result_is_delivered_once(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)

    await engine.start()
    recognizer = recognizer_factory.latest
    assert recognizer.continuous is True
    assert recognizer.interim_results is True
    assert recognizer.start_calls == 1

    recognizer.emit_result("hello", is_final=True, confidence=0.92)

    assert [e.text for e in collector.finals] == ["hello"]
    assert collector.finals[0].is_partial is False
    assert collector.finals[0].confidence == pytest.approx(0.92)
    assert collector.partials == []
    await engine.stop()


@pytest.mark.asyncio
async def test_partials_precede_final_and_finalized_slots_are_not_replayed(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()
    recognizer = recognizer_factory.latest

    recognizer.emit_result("hel", is_final=False)
    recognizer.emit_result("hello", is_final=False)
    recognizer.emit_results(0, [RecognitionResult("hello there", True)])
    recognizer.emit_results(
        0,
        [RecognitionResult("hello there", True), RecognitionResult("next", False)],
    )

    assert collector.order == [
        "partial:hel",
        "partial:hello",
        "final:hello there",
        "partial:next",
    ]
    await engine.stop()


@pytest.mark.asyncio
async def test_out_of_range_confidence_is_dropped(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()

    recognizer_factory.latest.emit_result("loud", is_final=True, confidence=3.5)

    assert collector.finals[0].confidence is None
    await engine.stop()


@pytest.mark.asyncio
async def test_no_speech_errors_are_ignored(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()

    for _ in range(5):
        recognizer_factory.latest.emit_error("no-speech")
    await asyncio.sleep(0.03)

    assert collector.errors == []
    assert engine.restart_pending is False
    assert len(recognizer_factory.created) == 1
    assert engine.is_listening is True
    await engine.stop()


@pytest.mark.asyncio
async def test_three_network_errors_surface_one_terminal_error(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()

    recognizer_factory.latest.emit_error("network")
    assert engine.restart_pending is True
    await asyncio.sleep(0.02)
    assert len(recognizer_factory.created) == 2

    recognizer_factory.latest.emit_error("network")
    await asyncio.sleep(0.02)
    assert len(recognizer_factory.created) == 3
    assert collector.errors == []

    last = recognizer_factory.latest
    last.emit_error("network")

    assert len(collector.errors) == 1
    error = collector.errors[0]
    assert error.code == "network"
    assert error.fatal is True
    assert "manual entry" in error.message
    assert engine.is_listening is False
    assert engine.restart_pending is False

    last.emit_error("network")
    last.emit_end()
    await asyncio.sleep(0.03)
    assert len(collector.errors) == 1
    assert len(recognizer_factory.created) == 3


@pytest.mark.asyncio
async def test_network_counter_resets_after_final_result(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()

    recognizer_factory.latest.emit_error("network")
    await asyncio.sleep(0.02)
    recognizer_factory.latest.emit_error("network")
    await asyncio.sleep(0.02)
    assert engine.network_errors == 2

    recognizer_factory.latest.emit_result("back online", is_final=True)
    assert engine.network_errors == 0

    recognizer_factory.latest.emit_error("network")
    await asyncio.sleep(0.02)
    assert collector.errors == []
    assert engine.is_listening is True
    await engine.stop()


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["not-allowed", "audio-capture"])
async def test_fatal_errors_never_restart(recognizer_factory, collector, code) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()
    recognizer = recognizer_factory.latest

    recognizer.emit_error(code)
    recognizer.emit_end()
    await asyncio.sleep(0.03)

    assert [e.code for e in collector.errors] == [code]
    assert collector.errors[0].fatal is True
    assert engine.is_listening is False
    assert engine.disabled_code == code
    assert len(recognizer_factory.created) == 1

    with pytest.raises(SpeechEngineError) as exc_info:
        await engine.start()
    assert exc_info.value.code == code
    assert len(recognizer_factory.created) == 1


@pytest.mark.asyncio
async def test_aborted_is_treated_as_user_stop(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()

    recognizer_factory.latest.emit_error("aborted")
    await asyncio.sleep(0.03)

    assert collector.errors == []
    assert engine.is_listening is False
    assert len(recognizer_factory.created) == 1


@pytest.mark.asyncio
async def test_stop_when_never_started_is_noop(recognizer_factory) -> None:
    engine = _engine(recognizer_factory)
    await engine.stop()
    await engine.stop()
    assert engine.is_listening is False
    assert recognizer_factory.created == []


@pytest.mark.asyncio
async def test_unexpected_end_restarts_recognizer(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()

    recognizer_factory.latest.emit_end()
    await asyncio.sleep(0.02)

    assert len(recognizer_factory.created) == 2
    assert recognizer_factory.latest.start_calls == 1
    assert engine.is_listening is True
    assert collector.errors == []
    await engine.stop()


@pytest.mark.asyncio
async def test_user_stop_does_not_restart_and_drops_late_results(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()
    recognizer = recognizer_factory.latest

    await engine.stop()
    recognizer.emit_result("too late", is_final=True)
    recognizer.emit_end()
    await asyncio.sleep(0.03)

    assert recognizer.stop_calls == 1
    assert collector.finals == []
    assert len(recognizer_factory.created) == 1
    assert engine.restart_pending is False


@pytest.mark.asyncio
async def test_stop_cancels_pending_restart(recognizer_factory) -> None:
    engine = _engine(recognizer_factory, restart_backoff=0.05)
    await engine.start()

    recognizer_factory.latest.emit_error("network")
    assert engine.restart_pending is True
    await engine.stop()
    await asyncio.sleep(0.1)

    assert engine.restart_pending is False
    assert len(recognizer_factory.created) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [
        {"restart_interval": 0.05, "silence_cycle": 30.0},
        {"restart_interval": 30.0, "silence_cycle": 0.05},
    ],
)
async def test_watchdog_cycles_recognizer_without_surfacing_anything(recognizer_factory, collector, overrides) -> None:
    engine = _engine(recognizer_factory, **overrides)
    collector.attach(engine)
    await engine.start()
    first = recognizer_factory.latest

    await asyncio.sleep(0.2)

    assert first.stop_calls >= 1
    assert len(recognizer_factory.created) >= 2
    assert collector.errors == []
    assert collector.finals == []
    assert engine.is_listening is True
    await engine.stop()


@pytest.mark.asyncio
async def test_unknown_errors_escalate_when_recurring(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()

    recognizer_factory.latest.emit_error("bad-grammar")
    await asyncio.sleep(0.02)
    assert collector.errors == []

    recognizer_factory.latest.emit_error("bad-grammar")
    await asyncio.sleep(0.02)
    assert len(collector.errors) == 1
    assert collector.errors[0].fatal is False

    recognizer_factory.latest.emit_error("bad-grammar")
    assert len(collector.errors) == 2
    assert collector.errors[1].fatal is True
    assert engine.is_listening is False


@pytest.mark.asyncio
async def test_total_restart_limit_stops_retry_loop(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory, network_error_threshold=10, max_total_restarts=2)
    collector.attach(engine)
    await engine.start()

    for _ in range(3):
        recognizer_factory.latest.emit_error("network")
        await asyncio.sleep(0.02)

    assert [e.code for e in collector.errors] == ["restart-limit"]
    assert engine.is_listening is False
    assert len(recognizer_factory.created) == 3


@pytest.mark.asyncio
async def test_failed_restart_is_retried(recognizer_factory, collector) -> None:
    engine = _engine(recognizer_factory)
    collector.attach(engine)
    await engine.start()

    recognizer_factory.fail_next = 1
    recognizer_factory.latest.emit_end()
    await asyncio.sleep(0.05)

    assert len(recognizer_factory.created) == 3
    assert recognizer_factory.created[1].fail_start is True
    assert engine.is_listening is True
    assert collector.errors == []
    await engine.stop()


@pytest.mark.asyncio
async def test_start_requires_secure_context(recognizer_factory) -> None:
    engine = NativeSpeechEngine(recognizer_factory, secure_context=False)
    assert engine.is_supported() is False

    with pytest.raises(SpeechEngineError) as exc_info:
        await engine.start()
    assert exc_info.value.code == "unsupported"
    assert recognizer_factory.created == []


def test_fixed_messages_exist_only_for_fatal_codes() -> None:
    assert set(ERROR_MESSAGES) == set(FATAL_ERRORS)
