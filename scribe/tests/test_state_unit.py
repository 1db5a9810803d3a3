from scribe.evidence.models import MedicalInsight, MedicalSuggestions
from scribe.internal_core.contracts import PatientContext, VisualAnalysis
from scribe.live.events import ToolCall
from scribe.session.state import (
    EncounterState,
    advance_order,
    apply_suggestions,
    apply_tool_calls,
    apply_transcription,
    attach_visual_analysis,
)
from scribe.transcript.models import TranscriptFragment


def _state() -> EncounterState:
    return EncounterState(session_id="s-1", patient=PatientContext(id="p-1", name="Ana"))


def test_transcription_updates_transcript_and_ignores_blank_fragments() -> None:
    state, debug = apply_transcription(_state(), TranscriptFragment(text="I feel faint"), now_ms=0)
    assert debug["action"] == "appended"

    same, debug = apply_transcription(state, TranscriptFragment(text="  "), now_ms=10)
    assert same is state
    assert debug["action"] == "dropped"


def test_tool_calls_are_applied_in_order_and_acknowledged_once_each() -> None:
    calls = [
        ToolCall(
            name="updateClinicalIntelligence",
            id="c1",
            args={"possibleDiagnoses": [{"title": "Angina", "confidence": "High"}]},
        ),
        ToolCall(name="lookupWeather", id="c2", args={"city": "Lisbon"}),
        ToolCall(
            name="updateClinicalIntelligence",
            id="c3",
            args={
                "possibleDiagnoses": [{"title": "ACS"}],
                "suggestedLabsAndTests": [{"title": "Troponin", "confidence": "High"}],
            },
        ),
    ]

    state, acks, debug = apply_tool_calls(_state(), calls, now_ms=5_000)

    assert acks == [
        {"id": "c1", "name": "updateClinicalIntelligence", "response": {"status": "registered"}},
        {"id": "c2", "name": "lookupWeather", "response": {"status": "ignored"}},
        {"id": "c3", "name": "updateClinicalIntelligence", "response": {"status": "registered"}},
    ]
    assert [item.title for item in state.suggestions.possible_diagnoses] == ["ACS", "Angina"]
    assert state.merge_seq == 2
    assert state.last_update_ms == 5_000
    assert [order.name for order in state.orders] == ["Troponin"]
    assert state.orders[0].priority == "Urgent"
    assert [entry["status"] for entry in debug["calls"]] == ["registered", "ignored", "registered"]


def test_malformed_tool_args_still_acknowledged() -> None:
    calls = [ToolCall(name="updateClinicalIntelligence", id="bad", args="{nope")]

    state, acks, debug = apply_tool_calls(_state(), calls, now_ms=1)

    assert acks[0]["response"] == {"status": "registered"}
    assert state.suggestions.is_empty()
    assert debug["calls"][0]["parse"]["status"] == "invalid_json"


def test_repeated_updates_in_same_millisecond_give_distinct_order_ids() -> None:
    update = MedicalSuggestions(potential_treatments=[MedicalInsight(title="Aspirin")])

    state, _ = apply_suggestions(_state(), update, now_ms=7)
    state, debug = apply_suggestions(state, update, now_ms=7)

    assert len({order.id for order in state.orders}) == 2
    assert debug["orders_total"] == 2


def test_advance_order_and_payload_shape() -> None:
    update = MedicalSuggestions(suggested_labs_and_tests=[MedicalInsight(title="CBC")])
    state, _ = apply_suggestions(_state(), update, now_ms=1)
    order_id = state.orders[0].id

    advanced, debug = advance_order(state, order_id, "pending")
    unchanged, back_debug = advance_order(advanced, order_id, "suggested")
    with_visual = attach_visual_analysis(unchanged, VisualAnalysis(observation="Pallor"))

    assert debug["applied"] is True
    assert back_debug["reason"] == "not_forward"
    assert unchanged is advanced

    payload = with_visual.to_payload()
    assert payload["sessionId"] == "s-1"
    assert payload["orders"][0]["status"] == "pending"
    assert payload["suggestions"]["suggestedLabsAndTests"][0]["title"] == "CBC"
    assert payload["visualAnalysis"]["observation"] == "Pallor"
    assert payload["lastUpdate"] == 1
    assert payload["packet"] is None
