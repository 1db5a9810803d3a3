from __future__ import annotations

"""
System instruction and tool declaration for the silent live scribe.

Design intent:
- The live model never speaks; it reports evidence through `updateClinicalIntelligence` early and often.
- Patient context and pinned memory notes are rendered into the instruction once at session start.
"""

from typing import Any, Sequence

from scribe.internal_core.contracts import PatientContext
from scribe.memory.store import MemoryItem

UPDATE_CLINICAL_INTELLIGENCE = "updateClinicalIntelligence"

_CONFIDENCE_ENUM = ["Low", "Medium", "High"]


def _insight_array(title_description: str | None = None, details_description: str | None = None) -> dict[str, Any]:
    title: dict[str, Any] = {"type": "STRING"}
    details: dict[str, Any] = {"type": "STRING"}
    if title_description:
        title["description"] = title_description
    if details_description:
        details["description"] = details_description
    return {
        "type": "ARRAY",
        "items": {
            "type": "OBJECT",
            "properties": {
                "title": title,
                "details": details,
                "confidence": {"type": "STRING", "enum": list(_CONFIDENCE_ENUM)},
            },
        },
    }


UPDATE_CLINICAL_INTELLIGENCE_TOOL: dict[str, Any] = {
    "name": UPDATE_CLINICAL_INTELLIGENCE,
    "description": (
        "Silently update the diagnostic dashboard with structured evidence. "
        "Items marked HIGH confidence move to the primary decision engine."
    ),
    "parameters": {
        "type": "OBJECT",
        "properties": {
            "possibleDiagnoses": _insight_array(),
            "recommendedQuestions": _insight_array(
                "The specific question for the doctor to ask",
                "The clinical rationale",
            ),
            "suggestedLabsAndTests": _insight_array(),
            "potentialTreatments": _insight_array(),
            "workingObservations": _insight_array(),
        },
    },
}


def _join_or(values: Sequence[str], empty: str) -> str:
    cleaned = [value for value in values if value]
    return ", ".join(cleaned) if cleaned else empty


def build_system_instruction(
    patient: PatientContext,
    pinned_memory: Sequence[MemoryItem] = (),
) -> str:
    lines = [
        "SYSTEM ROLE: Institutional Clinical Decision Support Scribe.",
        "",
        "CRITICAL REQUIREMENTS:",
        "1. SILENT MODE: Never speak or generate audio responses. Only listen and analyze.",
        f"2. PROACTIVE TOOL USE: You MUST call '{UPDATE_CLINICAL_INTELLIGENCE}' FREQUENTLY as you hear clinical information.",
        "3. DO NOT WAIT: Even partial observations should be reported via the tool. Call it early and often.",
        "4. LANGUAGE: Always analyze in English. Translate other languages to clinical English for the dashboard.",
        "",
        "WHAT TO DETECT AND REPORT:",
        "- Any symptoms mentioned -> add to workingObservations",
        "- Any medications discussed -> add to workingObservations",
        "- Possible diagnoses (even if uncertain) -> add to possibleDiagnoses with appropriate confidence",
        "- Questions the clinician should ask -> add to recommendedQuestions",
        "- Red flags or urgent findings -> add with HIGH confidence",
        "- Required labs, imaging, or diagnostic tests -> add to suggestedLabsAndTests",
        "- Potential medications or treatments to consider -> add to potentialTreatments",
        "",
        "PATIENT CONTEXT:",
        f"- Name: {patient.name}",
        f"- Age: {patient.age if patient.age > 0 else 'Unknown'}",
        f"- Gender: {patient.gender}",
        f"- Medical History: {_join_or(patient.medical_history, 'None documented')}",
        f"- Current Medications: {_join_or(patient.current_medications, 'None')}",
        f"- Allergies: {_join_or(patient.allergies, 'NKDA')}",
    ]

    if pinned_memory:
        lines.extend(["", "PRIOR ENCOUNTER MEMORY (clinician pinned):"])
        for item in pinned_memory:
            source = f" [{item.source}]" if item.source else ""
            lines.append(f"- ({item.type}) {item.content}{source}")

    lines.extend(
        [
            "",
            "SPEAKER LABELING:",
            "- Default to PATIENT when ambiguous",
            "- Only mark as CLINICIAN when clearly the doctor/provider speaking",
            "",
            f"START NOW: As soon as you hear any clinical content, call {UPDATE_CLINICAL_INTELLIGENCE} immediately.",
        ]
    )
    return "\n".join(lines)
