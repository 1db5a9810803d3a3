from __future__ import annotations

"""
Synthesize an encounter packet from the consolidated transcript.

Design intent:
- The model call is injected; this module owns the prompt and the response contract.
- Every response field is optional on the wire and default-filled before exposure.
- Any failure yields a flagged fallback packet; nothing raises past `synthesize_encounter_packet`.
- Signature status is always Draft here; review and signing are clinician actions.
"""

import datetime as _dt
import logging
import time
from typing import Any, Callable, Mapping, Sequence

from pydantic import ValidationError

from scribe.evidence.models import normalize_confidence
from scribe.internal_core.contracts import PatientContext, VisualAnalysis
from scribe.llm.gemini_adapter import parse_json_object
from scribe.note.packet import (
    AssessmentSection,
    EncounterPacket,
    FollowUp,
    ObjectiveSection,
    Order,
    PatientInstruction,
    PlanSection,
    ProblemListItem,
    Provenance,
    SOAPNote,
    SubjectiveSection,
)
from scribe.transcript.formatting import format_transcript
from scribe.transcript.models import TranscriptEntry

logger = logging.getLogger(__name__)

GENERATION_ERROR_FLAG = "Generation error - manual review required"
GENERATION_ERROR_DIAGNOSIS = "Error in generation"

_ORDER_TYPES = ("Medication", "Lab", "Imaging", "Referral", "Procedure")
_ORDER_PRIORITIES = ("STAT", "Urgent", "Routine")
_PROBLEM_STATUSES = ("Active", "Chronic", "Resolved")


class PacketParseError(ValueError):
    """Raised when a model reply cannot be read as a packet object."""


def _utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _field(data: Mapping[str, Any], camel: str, snake: str | None = None) -> Any:
    if camel in data:
        return data[camel]
    if snake is not None:
        return data.get(snake)
    return None


def _mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _text(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return ""


def _optional_text(value: Any) -> str | None:
    return _text(value) or None


def _text_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, (list, tuple)):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _records(value: Any) -> list[Any]:
    if isinstance(value, (list, tuple)):
        return list(value)
    if value is None:
        return []
    return [value]


def _clamp(value: Any, allowed: Sequence[str], default: str) -> str:
    text = _text(value).lower()
    for option in allowed:
        if text == option.lower():
            return option
    return default


def _optional_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def _provenance(value: Any) -> Provenance | None:
    if not isinstance(value, Mapping):
        return None
    alternatives = _field(value, "alternativeInterpretations", "alternative_interpretations")
    return Provenance(
        quote=_text(value.get("quote")),
        start_ms=_optional_int(_field(value, "startMs", "start_ms")),
        end_ms=_optional_int(_field(value, "endMs", "end_ms")),
        reasoning=_text(value.get("reasoning")),
        confidence=normalize_confidence(value.get("confidence")),
        alternative_interpretations=_text_list(alternatives) if alternatives is not None else None,
    )


def _provenance_list(value: Any) -> list[Provenance]:
    out: list[Provenance] = []
    for record in _records(value):
        provenance = _provenance(record)
        if provenance is not None:
            out.append(provenance)
    return out


def _soap_note(value: Any, visual_analysis: VisualAnalysis | None) -> SOAPNote:
    soap = _mapping(value)
    subjective = _mapping(soap.get("subjective"))
    objective = _mapping(soap.get("objective"))
    assessment = _mapping(soap.get("assessment"))
    plan = _mapping(soap.get("plan"))

    visual_findings = _optional_text(_field(objective, "visualFindings", "visual_findings"))
    if visual_findings is None and visual_analysis is not None and visual_analysis.observation:
        visual_findings = visual_analysis.observation

    return SOAPNote(
        subjective=SubjectiveSection(
            chief_complaint=_text(_field(subjective, "chiefComplaint", "chief_complaint")),
            history_of_present_illness=_text(
                _field(subjective, "historyOfPresentIllness", "history_of_present_illness")
            ),
            provenance=_provenance_list(subjective.get("provenance")),
        ),
        objective=ObjectiveSection(
            vital_signs=_optional_text(_field(objective, "vitalSigns", "vital_signs")),
            physical_exam=_optional_text(_field(objective, "physicalExam", "physical_exam")),
            visual_findings=visual_findings,
            provenance=_provenance_list(objective.get("provenance")),
        ),
        assessment=AssessmentSection(
            diagnoses=_text_list(assessment.get("diagnoses")),
            differentials=_text_list(assessment.get("differentials")),
            provenance=_provenance_list(assessment.get("provenance")),
        ),
        plan=PlanSection(
            treatments=_text_list(plan.get("treatments")),
            tests=_text_list(plan.get("tests")),
            referrals=_text_list(plan.get("referrals")),
            provenance=_provenance_list(plan.get("provenance")),
        ),
    )


def _problem_list(value: Any) -> list[ProblemListItem]:
    out: list[ProblemListItem] = []
    for record in _records(value):
        if isinstance(record, str):
            record = {"description": record}
        if not isinstance(record, Mapping):
            continue
        description = _text(record.get("description"))
        if not description:
            continue
        out.append(
            ProblemListItem(
                description=description,
                code=_optional_text(record.get("code")),
                status=_clamp(record.get("status"), _PROBLEM_STATUSES, "Active"),
                date_identified=_optional_text(_field(record, "dateIdentified", "date_identified")),
            )
        )
    return out


def _orders(value: Any) -> list[Order]:
    out: list[Order] = []
    for record in _records(value):
        if not isinstance(record, Mapping):
            continue
        description = _text(record.get("description")) or _text(record.get("name"))
        if not description:
            continue
        out.append(
            Order(
                type=_clamp(record.get("type"), _ORDER_TYPES, "Lab"),
                description=description,
                priority=_clamp(record.get("priority"), _ORDER_PRIORITIES, "Routine"),
                rationale=_text(record.get("rationale")),
                provenance=_provenance(record.get("provenance")),
            )
        )
    return out


def _instructions(value: Any) -> list[PatientInstruction]:
    out: list[PatientInstruction] = []
    for record in _records(value):
        if isinstance(record, str):
            record = {"instruction": record}
        if not isinstance(record, Mapping):
            continue
        instruction = _text(record.get("instruction"))
        if not instruction:
            continue
        out.append(
            PatientInstruction(
                instruction=instruction,
                category=_text(record.get("category")) or "general",
                language=_optional_text(record.get("language")),
            )
        )
    return out


def _follow_ups(value: Any) -> list[FollowUp]:
    out: list[FollowUp] = []
    for record in _records(value):
        if not isinstance(record, Mapping):
            continue
        follow_up = FollowUp(
            type=_text(record.get("type")),
            timeframe=_text(record.get("timeframe")),
            reason=_text(record.get("reason")),
        )
        if follow_up.type or follow_up.timeframe or follow_up.reason:
            out.append(follow_up)
    return out


def normalize_packet_payload(
    data: Mapping[str, Any],
    *,
    patient: PatientContext,
    generated_at: str,
    clinician_name: str | None = None,
    visual_analysis: VisualAnalysis | None = None,
) -> EncounterPacket:
    """
    Default-fill a model packet payload into a valid Draft `EncounterPacket`.

    Scalars where lists are expected become one-element lists and unknown enum values clamp to defaults.
    Patient identity and generation time always come from the caller, never from the model.
    """
    requires_confirmation = _field(data, "requiresConfirmation", "requires_confirmation")
    return EncounterPacket(
        patient_id=patient.id,
        patient_name=patient.name,
        clinician_name=clinician_name,
        generated_at=generated_at,
        soap_note=_soap_note(_field(data, "soapNote", "soap_note"), visual_analysis),
        problem_list=_problem_list(_field(data, "problemList", "problem_list")),
        orders=_orders(data.get("orders")),
        patient_instructions=_instructions(_field(data, "patientInstructions", "patient_instructions")),
        follow_ups=_follow_ups(_field(data, "followUps", "follow_ups")),
        red_flags=_text_list(_field(data, "redFlags", "red_flags")),
        requires_confirmation=requires_confirmation if isinstance(requires_confirmation, bool) else True,
        signature_status="Draft",
    )


def parse_packet_response(
    raw: str,
    *,
    patient: PatientContext,
    generated_at: str,
    clinician_name: str | None = None,
    visual_analysis: VisualAnalysis | None = None,
) -> EncounterPacket:
    data = parse_json_object(raw)
    if data is None:
        raise PacketParseError("Model reply is not a JSON object.")
    try:
        return normalize_packet_payload(
            data,
            patient=patient,
            generated_at=generated_at,
            clinician_name=clinician_name,
            visual_analysis=visual_analysis,
        )
    except ValidationError as exc:
        raise PacketParseError(f"Packet payload failed validation: {exc.error_count()} errors") from exc


def fallback_packet(
    patient: PatientContext,
    *,
    generated_at: str,
    clinician_name: str | None = None,
    visual_analysis: VisualAnalysis | None = None,
) -> EncounterPacket:
    visual_findings = visual_analysis.observation if visual_analysis is not None and visual_analysis.observation else None
    return EncounterPacket(
        patient_id=patient.id,
        patient_name=patient.name,
        clinician_name=clinician_name,
        generated_at=generated_at,
        soap_note=SOAPNote(
            subjective=SubjectiveSection(
                chief_complaint="Unable to generate",
                history_of_present_illness="Packet generation failed. Review the transcript manually.",
            ),
            objective=ObjectiveSection(visual_findings=visual_findings),
            assessment=AssessmentSection(diagnoses=[GENERATION_ERROR_DIAGNOSIS]),
            plan=PlanSection(),
        ),
        red_flags=[GENERATION_ERROR_FLAG],
        requires_confirmation=True,
        signature_status="Draft",
    )


def build_packet_prompt(
    patient: PatientContext,
    transcript: Sequence[TranscriptEntry],
    visual_analysis: VisualAnalysis | None = None,
) -> str:
    history = ", ".join(patient.medical_history) or "None documented"
    medications = ", ".join(patient.current_medications) or "None"
    allergies = ", ".join(patient.allergies) or "NKDA"
    visual_block = "None captured."
    if visual_analysis is not None:
        concerns = ", ".join(visual_analysis.concerns) or "none"
        visual_block = (
            f"Observation: {visual_analysis.observation}\n"
            f"Concerns: {concerns}\n"
            f"Suggested action: {visual_analysis.suggested_action}"
        )

    return f"""You are a clinical documentation assistant producing a DRAFT encounter packet for clinician review.

Rules:
- Use ONLY information present in the transcript, patient context and visual findings.
- Do NOT invent vitals, exam findings or history.
- Every assertion in the SOAP note should carry provenance quoting the transcript.
- Mark anything urgent or dangerous as a red flag.
- Return ONLY valid JSON. No markdown. No explanations.

PATIENT CONTEXT:
- Name: {patient.name}
- Age: {patient.age if patient.age > 0 else 'Unknown'}
- Gender: {patient.gender}
- Medical History: {history}
- Current Medications: {medications}
- Allergies: {allergies}

TRANSCRIPT:
{format_transcript(transcript) or '(empty)'}

VISUAL FINDINGS:
{visual_block}

Return JSON in the following format:
{{
  "soapNote": {{
    "subjective": {{"chiefComplaint": "string", "historyOfPresentIllness": "string", "provenance": [PROVENANCE]}},
    "objective": {{"vitalSigns": "string or null", "physicalExam": "string or null", "visualFindings": "string or null", "provenance": [PROVENANCE]}},
    "assessment": {{"diagnoses": ["string"], "differentials": ["string"], "provenance": [PROVENANCE]}},
    "plan": {{"treatments": ["string"], "tests": ["string"], "referrals": ["string"], "provenance": [PROVENANCE]}}
  }},
  "problemList": [{{"description": "string", "code": "ICD-10 code or null", "status": "Active|Chronic|Resolved", "dateIdentified": "string or null"}}],
  "orders": [{{"type": "Medication|Lab|Imaging|Referral|Procedure", "description": "string", "priority": "STAT|Urgent|Routine", "rationale": "string", "provenance": PROVENANCE}}],
  "patientInstructions": [{{"instruction": "string", "category": "string", "language": "string or null"}}],
  "followUps": [{{"type": "string", "timeframe": "string", "reason": "string"}}],
  "redFlags": ["string"],
  "requiresConfirmation": true
}}

PROVENANCE is {{"quote": "exact transcript words", "reasoning": "string", "confidence": "Low|Medium|High", "alternativeInterpretations": ["string"]}}.
"""


def synthesize_encounter_packet(
    patient: PatientContext,
    transcript: Sequence[TranscriptEntry],
    visual_analysis: VisualAnalysis | None = None,
    *,
    generate: Callable[[str], str],
    clinician_name: str | None = None,
    generated_at: str | None = None,
) -> tuple[EncounterPacket, dict[str, Any]]:
    """
    Request a packet through `generate(prompt) -> raw text` and normalize the reply.

    Returns `(packet, debug)`; `debug["status"]` is `ok` or `fallback` with the failure reason.
    """
    stamp = generated_at or _utc_now_iso()
    started = time.perf_counter()
    debug: dict[str, Any] = {"transcript_entries": len(transcript), "has_visual": visual_analysis is not None}

    try:
        raw = generate(build_packet_prompt(patient, transcript, visual_analysis))
        packet = parse_packet_response(
            raw,
            patient=patient,
            generated_at=stamp,
            clinician_name=clinician_name,
            visual_analysis=visual_analysis,
        )
    except Exception as exc:
        logger.warning(
            "packet_generation_fallback patient_id=%s err=%s detail=%s",
            patient.id,
            type(exc).__name__,
            str(exc)[:200],
        )
        debug.update(
            {
                "status": "fallback",
                "error": type(exc).__name__,
                "duration_ms": int((time.perf_counter() - started) * 1000),
            }
        )
        packet = fallback_packet(
            patient,
            generated_at=stamp,
            clinician_name=clinician_name,
            visual_analysis=visual_analysis,
        )
        return packet, debug

    debug.update({"status": "ok", "duration_ms": int((time.perf_counter() - started) * 1000)})
    return packet, debug
