import pytest

from realty_agent.logging.flight_recorder import FlightRecorder


def test_stage_records_timing_and_redacts():
    recorder = FlightRecorder(request_id="req-1")
    with recorder.stage("SEARCH", phone="61999990000", name="Maria", neighborhood="Asa Sul"):
        pass

    [event] = recorder.events
    assert event.stage == "SEARCH"
    assert event.message == "SEARCH completed"
    assert event.metadata["phone"] == "***0000"
    assert event.metadata["name"] == "***"
    assert event.metadata["neighborhood"] == "Asa Sul"
    assert recorder.request_id == "req-1"


def test_failed_stage_is_marked_and_reraised():
    recorder = FlightRecorder()
    with pytest.raises(RuntimeError):
        with recorder.stage("LLM"):
            raise RuntimeError("boom")
    assert recorder.messages("LLM") == ["LLM failed"]


def test_log_events_and_totals():
    recorder = FlightRecorder()
    recorder.log("QUALIFY", "lead_qualified", qualification="quente")
    with recorder.stage("PERSIST"):
        pass

    assert recorder.messages("QUALIFY") == ["lead_qualified"]
    totals = recorder.stage_totals()
    assert "QUALIFY" not in totals
    assert set(totals) <= {"PERSIST"}
