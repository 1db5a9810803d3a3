import base64
import itertools
import json

from fastapi.testclient import TestClient

from scribe.api.main import app
from scribe.llm.gemini_adapter import GeminiAdapterError
from scribe.memory.store import InMemoryKeyValueStore, PatientMemoryStore

PATIENT = {"id": "p-100", "name": "Maria Lopez", "age": 58, "gender": "Female", "allergies": ["Penicillin"]}

PACKET_REPLY = {
    "soapNote": {
        "subjective": {"chiefComplaint": "Chest pain", "historyOfPresentIllness": "Exertional chest pressure."},
        "assessment": {"diagnoses": ["Unstable angina"]},
        "plan": {"tests": ["EKG", "Troponin"]},
    },
    "problemList": [{"description": "Hypertension", "code": "I10", "status": "Chronic"}],
    "orders": [{"type": "Lab", "description": "Troponin", "priority": "STAT", "rationale": "rule out MI"}],
    "redFlags": ["Possible ACS"],
}


class FakeStructuredClient:
    def __init__(self, reply: str = "", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.models: list[str] = []

    def generate_json_text(self, *, model, contents):
        self.models.append(model)
        if self.error is not None:
            raise self.error
        return self.reply


def _clear_injected_state() -> None:
    for name in ("structured_client", "memory_store", "live_transport_factory"):
        if hasattr(app.state, name):
            delattr(app.state, name)


def _create_session(client: TestClient, **extra) -> str:
    response = client.post("/sessions", json={"patient": PATIENT, **extra})
    assert response.status_code == 200
    return response.json()["session_id"]


def test_encounter_flow_from_transcript_to_signed_fhir_export(monkeypatch) -> None:
    clock = itertools.count(1_000, 500)
    monkeypatch.setattr("scribe.api.main._now_ms", lambda: next(clock))
    app.state.structured_client = FakeStructuredClient(json.dumps(PACKET_REPLY))
    client = TestClient(app)
    try:
        session_id = _create_session(client, clinician_name="Dr. Chen")

        client.post(f"/sessions/{session_id}/transcription", json={"text": "I have chest pain"})
        response = client.post(
            f"/sessions/{session_id}/transcription",
            json={"text": "and shortness of breath"},
        )
        assert response.status_code == 200
        assert response.json()["debug"]["action"] == "merged"
        response = client.post(
            f"/sessions/{session_id}/transcription",
            json={"text": "Doctor: Let's get an EKG", "is_user_channel": False, "is_final": True},
        )
        transcript = response.json()["transcript"]
        assert [(entry["speaker"], entry["text"]) for entry in transcript] == [
            ("Patient", "I have chest pain and shortness of breath"),
            ("Clinician", "Let's get an EKG"),
        ]

        response = client.post(
            f"/sessions/{session_id}/tool-calls",
            json={
                "calls": [
                    {
                        "id": "fc-1",
                        "name": "updateClinicalIntelligence",
                        "args": {
                            "possibleDiagnoses": [{"title": "Unstable angina", "confidence": "High"}],
                            "suggestedLabsAndTests": [
                                {"title": "Chest X-Ray PA/Lateral", "confidence": "High"},
                                {"title": "CBC", "confidence": "Medium"},
                            ],
                        },
                    },
                    {"id": "fc-2", "name": "somethingElse", "args": {}},
                ]
            },
        )
        assert response.status_code == 200
        body = response.json()
        assert [ack["response"]["status"] for ack in body["acks"]] == ["registered", "ignored"]
        assert body["suggestions"]["possibleDiagnoses"][0]["title"] == "Unstable angina"
        assert [(order["type"], order["priority"]) for order in body["orders"]] == [
            ("Imaging", "Urgent"),
            ("Lab", "Routine"),
        ]
        assert body["last_update"] is not None
        xray_id = body["orders"][0]["id"]

        response = client.post(f"/sessions/{session_id}/orders/{xray_id}/status", json={"status": "ordered"})
        assert response.status_code == 200
        assert response.json()["orders"][0]["status"] == "ordered"
        response = client.post(f"/sessions/{session_id}/orders/{xray_id}/status", json={"status": "pending"})
        assert response.status_code == 409

        response = client.post(f"/sessions/{session_id}/packet")
        assert response.status_code == 200
        packet = response.json()["packet"]
        assert response.json()["debug"]["status"] == "ok"
        assert packet["signatureStatus"] == "Draft"
        assert packet["clinicianName"] == "Dr. Chen"
        assert packet["requiresConfirmation"] is True
        assert packet["orders"][0]["priority"] == "STAT"

        review = client.post(f"/sessions/{session_id}/packet/review").json()
        assert review["applied"] is True
        assert review["packet"]["signatureStatus"] == "PendingReview"
        assert client.post(f"/sessions/{session_id}/packet/review").json()["applied"] is False
        signed = client.post(f"/sessions/{session_id}/packet/sign").json()
        assert signed["packet"]["signatureStatus"] == "Signed"
        assert client.post(f"/sessions/{session_id}/packet/sign").json()["applied"] is False

        bundle = client.get(f"/sessions/{session_id}/packet/fhir").json()
        resource_types = [entry["resource"]["resourceType"] for entry in bundle["entry"]]
        assert resource_types == ["Condition", "Condition", "ServiceRequest", "DocumentReference"]
        assert bundle["entry"][2]["resource"]["requester"] == {"reference": "Practitioner/Dr.-Chen"}
        assert bundle["entry"][-1]["resource"]["status"] == "current"

        session = client.get(f"/sessions/{session_id}").json()
        audit_types = [event["type"] for event in session["audit_events"]]
        assert audit_types == [
            "SESSION_CREATED",
            "TOOL_CALL",
            "ORDER_STATUS",
            "PACKET_GENERATED",
            "PACKET_REVIEW_REQUESTED",
            "PACKET_SIGNED",
        ]
        assert all("chest" not in event["detail"].lower() for event in session["audit_events"])

        response = client.delete(f"/sessions/{session_id}")
        assert response.json()["destroyed"] is True
        assert client.get(f"/sessions/{session_id}").status_code == 404
    finally:
        _clear_injected_state()


def test_packet_generation_failure_returns_flagged_fallback() -> None:
    app.state.structured_client = FakeStructuredClient(error=GeminiAdapterError("Gemini API key is not configured."))
    client = TestClient(app)
    try:
        session_id = _create_session(client)
        response = client.post(f"/sessions/{session_id}/packet", json={"clinician_name": "Dr. Park"})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    body = response.json()
    assert body["debug"]["status"] == "fallback"
    assert body["packet"]["redFlags"] == ["Generation error - manual review required"]
    assert body["packet"]["soapNote"]["assessment"]["diagnoses"] == ["Error in generation"]
    assert body["packet"]["clinicianName"] == "Dr. Park"


def test_packet_transitions_and_export_require_generated_packet() -> None:
    client = TestClient(app)
    session_id = _create_session(client)

    assert client.post(f"/sessions/{session_id}/packet/review").status_code == 404
    assert client.post(f"/sessions/{session_id}/packet/sign").status_code == 404
    assert client.get(f"/sessions/{session_id}/packet/fhir").status_code == 404


def test_unknown_session_and_order_return_404() -> None:
    client = TestClient(app)

    assert client.get("/sessions/does-not-exist").status_code == 404
    assert client.post("/sessions/does-not-exist/transcription", json={"text": "hi"}).status_code == 404
    assert client.post("/sessions/does-not-exist/tool-calls", json={"calls": []}).status_code == 404

    session_id = _create_session(client)
    response = client.post(f"/sessions/{session_id}/orders/nope/status", json={"status": "ordered"})
    assert response.status_code == 404
    response = client.post(f"/sessions/{session_id}/orders/nope/status", json={"status": "cancelled"})
    assert response.status_code == 422


def test_replay_sample_and_validation_errors() -> None:
    client = TestClient(app)
    session_id = _create_session(client)

    response = client.post(f"/sessions/{session_id}/replay", json={"sample_id": "demo-chest-pain", "base_ms": 0})
    assert response.status_code == 200
    assert response.json()["debug"]["replayed"] == 19
    assert response.json()["transcript"][0]["speaker"] == "Clinician"

    assert client.post(f"/sessions/{session_id}/replay", json={"sample_id": "missing"}).status_code == 404
    response = client.post(f"/sessions/{session_id}/replay", json={})
    assert response.status_code == 400
    assert "Provide one of" in response.json()["detail"]
    response = client.post(
        f"/sessions/{session_id}/replay",
        json={"sample_id": "demo-chest-pain", "playback_speed": 0},
    )
    assert response.status_code == 422


def test_suggestions_refresh_merges_or_reports_upstream_failure() -> None:
    reply = json.dumps({"potentialTreatments": [{"title": "Metformin", "confidence": "High"}]})
    app.state.structured_client = FakeStructuredClient(reply)
    client = TestClient(app)
    try:
        session_id = _create_session(client)
        response = client.post(f"/sessions/{session_id}/suggestions/refresh")
        assert response.status_code == 200
        assert response.json()["suggestions"]["potentialTreatments"][0]["title"] == "Metformin"
        assert response.json()["orders"][0]["type"] == "Medication"

        app.state.structured_client = FakeStructuredClient(error=GeminiAdapterError("Gemini request failed"))
        response = client.post(f"/sessions/{session_id}/suggestions/refresh")
        assert response.status_code == 502
    finally:
        _clear_injected_state()


def test_repeated_refreshes_keep_insight_ids_unique() -> None:
    app.state.structured_client = FakeStructuredClient(
        json.dumps({"possibleDiagnoses": [{"id": "dx1", "title": "Asthma", "confidence": "Medium"}]})
    )
    client = TestClient(app)
    try:
        session_id = _create_session(client)
        client.post(f"/sessions/{session_id}/suggestions/refresh")
        first = client.post(f"/sessions/{session_id}/suggestions/refresh").json()

        app.state.structured_client = FakeStructuredClient("not json at all")
        client.post(f"/sessions/{session_id}/suggestions/refresh")
        second = client.post(f"/sessions/{session_id}/suggestions/refresh").json()
    finally:
        _clear_injected_state()

    dx_ids = [item["id"] for item in first["suggestions"]["possibleDiagnoses"]]
    assert len(dx_ids) == 2
    assert len(set(dx_ids)) == 2
    question_ids = [item["id"] for item in second["suggestions"]["recommendedQuestions"]]
    assert len(question_ids) == 2
    assert len(set(question_ids)) == 2


def test_visual_analysis_validates_image_and_stores_result() -> None:
    reply = json.dumps({"observation": "Target lesion", "concerns": ["Lyme disease"], "suggestedAction": "Serology"})
    app.state.structured_client = FakeStructuredClient(reply)
    client = TestClient(app)
    try:
        session_id = _create_session(client)
        bad = client.post(f"/sessions/{session_id}/visual-analysis", json={"image_b64": "%%%"})
        image_b64 = base64.b64encode(b"\xff\xd8\xff\xe0 jpeg bytes").decode("ascii")
        good = client.post(f"/sessions/{session_id}/visual-analysis", json={"image_b64": image_b64})
        session = client.get(f"/sessions/{session_id}").json()
    finally:
        _clear_injected_state()

    assert bad.status_code == 400
    assert good.status_code == 200
    assert good.json()["visual_analysis"]["suggestedAction"] == "Serology"
    assert session["encounter"]["visualAnalysis"]["observation"] == "Target lesion"


def test_visual_analysis_with_null_fields_is_not_a_client_error() -> None:
    app.state.structured_client = FakeStructuredClient('{"observation": null, "concerns": [], "suggestedAction": "x"}')
    client = TestClient(app)
    try:
        session_id = _create_session(client)
        image_b64 = base64.b64encode(b"\xff\xd8 jpeg").decode("ascii")
        response = client.post(f"/sessions/{session_id}/visual-analysis", json={"image_b64": image_b64})
    finally:
        _clear_injected_state()

    assert response.status_code == 200
    assert response.json()["visual_analysis"]["observation"] == ""
    assert response.json()["visual_analysis"]["suggestedAction"] == "x"


def test_patient_memory_endpoints() -> None:
    app.state.memory_store = PatientMemoryStore(InMemoryKeyValueStore())
    client = TestClient(app)
    try:
        item = client.post(
            "/patients/p-100/memory",
            json={"type": "allergy", "content": "Sulfa drugs", "source": "prior visit"},
        ).json()
        client.post("/patients/p-100/memory", json={"type": "fact", "content": "Retired electrician"})

        pinned = client.post(f"/patients/p-100/memory/{item['id']}/pin").json()
        assert pinned["items"][0]["id"] == item["id"]
        assert pinned["items"][0]["isPinned"] is True

        assert client.post("/patients/p-100/memory/unknown/pin").status_code == 404
        assert client.post("/patients/p-100/memory", json={"type": "rumor", "content": "x"}).status_code == 422

        remaining = client.delete(f"/patients/p-100/memory/{item['id']}").json()
        assert [entry["content"] for entry in remaining["items"]] == ["Retired electrician"]
        assert client.delete(f"/patients/p-100/memory/{item['id']}").status_code == 404

        assert client.delete("/patients/p-100/memory").json()["items"] == []
        assert client.get("/patients/p-100/memory").json()["patientId"] == "p-100"
    finally:
        _clear_injected_state()
