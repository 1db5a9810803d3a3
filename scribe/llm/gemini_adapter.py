from __future__ import annotations

"""
Request/response access to hosted Gemini models for structured JSON output.

Design intent:
- One thin client owns credentials and the SDK call; prompt building and parsing live beside it.
- Request failures raise `GeminiAdapterError`; unparseable output falls back to flagged content.
- Model names are passed in by callers so deployments can switch models through config.
"""

import base64
import binascii
import json
import logging
from typing import Any, Protocol, Sequence

from google import genai
from google.genai import types
from pydantic import ValidationError

from scribe.evidence.merge import parse_intelligence_update
from scribe.evidence.models import MedicalInsight, MedicalSuggestions
from scribe.internal_core.contracts import PatientContext, VisualAnalysis
from scribe.transcript.formatting import format_transcript
from scribe.transcript.models import TranscriptEntry

logger = logging.getLogger(__name__)

DEFAULT_SUGGESTIONS_MODEL = "gemini-3-flash-preview"
DEFAULT_VISION_MODEL = "gemini-2.5-flash-image"

VISUAL_ANALYSIS_FALLBACK = VisualAnalysis(
    observation="Processing delay in high-resolution analysis.",
    concerns=["Resolution Error"],
    suggested_action="Re-capture evidence with neutral lighting.",
)

SUGGESTIONS_FALLBACK = MedicalSuggestions(
    recommended_questions=[
        MedicalInsight(
            id="err-default",
            title="Baseline assessment required.",
            details="Insufficient data in transcript.",
            confidence="Low",
        )
    ]
)


class GeminiAdapterError(RuntimeError):
    """Raised when the structured-generation model cannot be reached or is not configured."""


class StructuredClient(Protocol):
    def generate_json_text(self, *, model: str, contents: Any) -> str: ...


class GeminiStructuredClient:
    def __init__(self, api_key: str = "", *, client: Any = None):
        self._api_key = api_key
        self._client = client

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        if not self._api_key:
            raise GeminiAdapterError("Gemini API key is not configured.")
        self._client = genai.Client(api_key=self._api_key)
        return self._client

    def generate_json_text(self, *, model: str, contents: Any) -> str:
        client = self._get_client()
        try:
            response = client.models.generate_content(
                model=model,
                contents=contents,
                config=types.GenerateContentConfig(response_mime_type="application/json"),
            )
        except Exception as exc:
            raise GeminiAdapterError(f"Gemini request failed: {type(exc).__name__}: {exc}") from exc
        return str(getattr(response, "text", None) or "").strip()


def strip_code_fences(raw: str) -> str:
    text = (raw or "").strip()
    if text.startswith("```"):
        text = text.strip("`").strip()
        if text.lower().startswith("json"):
            text = text[4:].strip()
    return text


def _extract_first_json_object(text: str) -> str:
    start = text.find("{")
    if start < 0:
        return ""
    depth = 0
    in_str = False
    escape = False
    for i, ch in enumerate(text[start:], start=start):
        if in_str:
            if escape:
                escape = False
            elif ch == "\\":
                escape = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return ""


def parse_json_object(raw: str) -> dict[str, Any] | None:
    """Parse a model reply into a JSON object, tolerating code fences and surrounding prose."""
    text = strip_code_fences(raw)
    if not text:
        return None
    try:
        data = json.loads(text)
        if isinstance(data, dict):
            return data
    except ValueError:
        pass

    extracted = _extract_first_json_object(text)
    if not extracted:
        return None
    try:
        data = json.loads(extracted)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _join_or(values: Sequence[str], empty: str) -> str:
    cleaned = [value for value in values if value]
    return ", ".join(cleaned) if cleaned else empty


def build_visual_prompt(patient: PatientContext) -> str:
    return (
        "You are a world-class institutional medical diagnostic assistant.\n"
        f"Analyze this clinical image for {patient.name}.\n"
        f"Age: {patient.age if patient.age > 0 else 'Unknown'}, Gender: {patient.gender}.\n"
        f"History: {_join_or(patient.medical_history, 'No documented history')}.\n\n"
        "Guidelines:\n"
        "1. Be specific and clinical.\n"
        "2. Consider cultural contexts (e.g., skin tone variations for dermatological symptoms).\n"
        "3. Provide your analysis in JSON format:\n"
        "{\n"
        '  "observation": "detailed clinical description",\n'
        '  "concerns": ["potential differentials"],\n'
        '  "suggestedAction": "immediate next step"\n'
        "}"
    )


def build_suggestions_prompt(patient: PatientContext, transcript: Sequence[TranscriptEntry]) -> str:
    insight_shape = '[{"id": "string", "title": "string", "details": "string", "confidence": "Low|Medium|High"}]'
    return (
        f"Institutional Clinical Copilot Analysis for Patient {patient.name}.\n\n"
        f"Demographics: {patient.age}y, {patient.gender}.\n"
        "Cultural/Linguistic Context: Support multilingual input and translate insights to standard clinical English.\n"
        "EHR Context:\n"
        f"- History: {_join_or(patient.medical_history, 'UNSPECIFIED')}\n"
        f"- Meds: {_join_or(patient.current_medications, 'UNSPECIFIED')}\n"
        f"- Allergies: {_join_or(patient.allergies, 'NKA')}\n\n"
        "Session Transcript:\n"
        f"{format_transcript(transcript)}\n\n"
        "Task: Generate a real-time differential and order set.\n"
        "If patient history is minimal, focus suggestions on baseline diagnostic intake.\n\n"
        "Output JSON:\n"
        "{\n"
        f'  "possibleDiagnoses": {insight_shape},\n'
        f'  "recommendedQuestions": {insight_shape},\n'
        f'  "suggestedLabsAndTests": {insight_shape},\n'
        f'  "potentialTreatments": {insight_shape},\n'
        f'  "workingObservations": {insight_shape}\n'
        "}"
    )


def analyze_visual_symptom(
    client: StructuredClient,
    image_b64: str,
    patient: PatientContext,
    *,
    model: str = DEFAULT_VISION_MODEL,
) -> tuple[VisualAnalysis, dict[str, Any]]:
    """
    Describe a captured JPEG frame. Raises ValueError for undecodable images.

    Unparseable model output yields the flagged fallback analysis rather than an error.
    """
    try:
        image_bytes = base64.b64decode(image_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("image_b64 is not valid base64.") from exc
    if not image_bytes:
        raise ValueError("image_b64 is empty.")

    contents = [
        types.Part.from_bytes(data=image_bytes, mime_type="image/jpeg"),
        build_visual_prompt(patient),
    ]
    raw = client.generate_json_text(model=model, contents=contents)
    data = parse_json_object(raw)
    if data is None:
        logger.warning("visual_analysis_parse_failed model=%s raw_chars=%d", model, len(raw))
        return VISUAL_ANALYSIS_FALLBACK, {"status": "fallback", "model": model}
    try:
        analysis = VisualAnalysis.model_validate(data)
    except ValidationError as exc:
        logger.warning("visual_analysis_invalid model=%s errors=%d", model, exc.error_count())
        return VISUAL_ANALYSIS_FALLBACK, {"status": "fallback", "model": model}
    return analysis, {"status": "ok", "model": model}


def request_medical_suggestions(
    client: StructuredClient,
    patient: PatientContext,
    transcript: Sequence[TranscriptEntry],
    *,
    model: str = DEFAULT_SUGGESTIONS_MODEL,
) -> tuple[MedicalSuggestions, dict[str, Any]]:
    raw = client.generate_json_text(model=model, contents=build_suggestions_prompt(patient, transcript))
    data = parse_json_object(raw)
    if data is None:
        logger.warning("suggestions_parse_failed model=%s raw_chars=%d", model, len(raw))
        return SUGGESTIONS_FALLBACK, {"status": "fallback", "model": model}
    suggestions, parse_debug = parse_intelligence_update(data)
    return suggestions, {"status": "ok", "model": model, "parse": parse_debug}
