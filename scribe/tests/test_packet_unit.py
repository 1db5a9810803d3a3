import json

import pytest

from scribe.internal_core.contracts import PatientContext, VisualAnalysis
from scribe.note.packet import EncounterPacket, request_review, sign_packet
from scribe.note.synthesizer import (
    GENERATION_ERROR_DIAGNOSIS,
    GENERATION_ERROR_FLAG,
    PacketParseError,
    build_packet_prompt,
    normalize_packet_payload,
    parse_packet_response,
    synthesize_encounter_packet,
)
from scribe.transcript.models import TranscriptEntry

PATIENT = PatientContext(id="p-1", name="Ana Souza", age=54, gender="Female", allergies=["Penicillin"])
STAMP = "2026-03-01T10:15:00+00:00"
TRANSCRIPT = [
    TranscriptEntry(speaker="Patient", text="I have chest pain and shortness of breath", timestamp=0),
    TranscriptEntry(speaker="Clinician", text="Let's get an EKG", timestamp=3000),
]


def _assert_fallback(packet: EncounterPacket) -> None:
    assert packet.red_flags == [GENERATION_ERROR_FLAG]
    assert packet.soap_note.assessment.diagnoses == [GENERATION_ERROR_DIAGNOSIS]
    assert packet.soap_note.subjective.chief_complaint == "Unable to generate"
    assert packet.requires_confirmation is True
    assert packet.signature_status == "Draft"


@pytest.mark.parametrize("raw", ["", "not json at all", "[1, 2, 3]", "```json\n{broken\n```"])
def test_unusable_replies_produce_flagged_fallback(raw: str) -> None:
    packet, debug = synthesize_encounter_packet(PATIENT, TRANSCRIPT, generate=lambda prompt: raw, generated_at=STAMP)

    _assert_fallback(packet)
    assert packet.patient_id == "p-1"
    assert packet.generated_at == STAMP
    assert debug["status"] == "fallback"
    assert debug["error"] == "PacketParseError"


def test_generator_exception_produces_fallback_with_visual_findings() -> None:
    def boom(prompt: str) -> str:
        raise RuntimeError("service unavailable")

    visual = VisualAnalysis(observation="Erythematous rash on forearm", concerns=["cellulitis"])
    packet, debug = synthesize_encounter_packet(PATIENT, TRANSCRIPT, visual, generate=boom, generated_at=STAMP)

    _assert_fallback(packet)
    assert packet.soap_note.objective.visual_findings == "Erythematous rash on forearm"
    assert debug["error"] == "RuntimeError"
    assert debug["has_visual"] is True


def test_successful_reply_is_normalized_into_draft_packet() -> None:
    reply = {
        "soapNote": {
            "subjective": {
                "chiefComplaint": "Chest pain",
                "historyOfPresentIllness": "Chest pain with dyspnea.",
                "provenance": [{"quote": "I have chest pain", "confidence": "high", "startMs": 0}],
            },
            "assessment": {"diagnoses": "Possible ACS", "differentials": ["GERD", 7]},
            "plan": {"tests": ["EKG"]},
        },
        "problemList": [{"description": "Chest pain", "code": "R07.9", "status": "ongoing"}],
        "orders": [
            {"type": "lab", "description": "Troponin", "priority": "now"},
            {"type": "Imaging"},
        ],
        "patientInstructions": ["Call 911 if pain worsens"],
        "redFlags": ["Possible cardiac ischemia"],
        "requiresConfirmation": False,
        "signatureStatus": "Signed",
    }

    packet, debug = synthesize_encounter_packet(
        PATIENT,
        TRANSCRIPT,
        generate=lambda prompt: "```json\n" + json.dumps(reply) + "\n```",
        clinician_name="Dr. Lee",
        generated_at=STAMP,
    )

    assert debug["status"] == "ok"
    assert packet.signature_status == "Draft"
    assert packet.requires_confirmation is False
    assert packet.clinician_name == "Dr. Lee"
    assert packet.soap_note.subjective.provenance[0].confidence == "High"
    assert packet.soap_note.subjective.provenance[0].start_ms == 0
    assert packet.soap_note.assessment.diagnoses == ["Possible ACS"]
    assert packet.soap_note.assessment.differentials == ["GERD"]
    assert packet.problem_list[0].status == "Active"
    assert [(o.type, o.description, o.priority) for o in packet.orders] == [("Lab", "Troponin", "Routine")]
    assert packet.patient_instructions[0].category == "general"


def test_normalization_fills_defaults_and_uses_visual_observation() -> None:
    visual = VisualAnalysis(observation="Swollen left ankle")

    packet = normalize_packet_payload({}, patient=PATIENT, generated_at=STAMP, visual_analysis=visual)

    assert packet.soap_note.objective.visual_findings == "Swollen left ankle"
    assert packet.requires_confirmation is True
    assert packet.problem_list == []
    assert packet.red_flags == []


def test_parse_packet_response_raises_for_non_objects() -> None:
    with pytest.raises(PacketParseError):
        parse_packet_response("[]", patient=PATIENT, generated_at=STAMP)


def test_prompt_includes_transcript_and_patient_context() -> None:
    prompt = build_packet_prompt(PATIENT, TRANSCRIPT)

    assert "Patient: I have chest pain and shortness of breath" in prompt
    assert "Clinician: Let's get an EKG" in prompt
    assert "Allergies: Penicillin" in prompt
    assert "VISUAL FINDINGS:\nNone captured." in prompt


def test_signature_status_only_moves_forward() -> None:
    draft = normalize_packet_payload({}, patient=PATIENT, generated_at=STAMP)

    pending = request_review(draft)
    signed = sign_packet(pending)

    assert pending.signature_status == "PendingReview"
    assert signed.signature_status == "Signed"
    assert request_review(signed) is signed
    assert sign_packet(signed) is signed
    assert request_review(pending) is pending
    assert sign_packet(draft).signature_status == "Signed"
    assert draft.signature_status == "Draft"


def test_packet_serializes_with_camel_case_keys() -> None:
    packet = normalize_packet_payload({}, patient=PATIENT, generated_at=STAMP)

    payload = packet.model_dump(by_alias=True)

    assert payload["patientId"] == "p-1"
    assert payload["signatureStatus"] == "Draft"
    assert "chiefComplaint" in payload["soapNote"]["subjective"]
