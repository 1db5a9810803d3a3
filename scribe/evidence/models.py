from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Confidence = Literal["Low", "Medium", "High"]
CONFIDENCE_LEVELS: tuple[str, ...] = ("Low", "Medium", "High")

SuggestionCategory = Literal[
    "possible_diagnoses",
    "recommended_questions",
    "suggested_labs_and_tests",
    "potential_treatments",
    "working_observations",
]

CATEGORY_CAPS: dict[str, int] = {
    "possible_diagnoses": 10,
    "recommended_questions": 5,
    "suggested_labs_and_tests": 5,
    "potential_treatments": 5,
    "working_observations": 10,
}

CATEGORY_ID_PREFIXES: dict[str, str] = {
    "possible_diagnoses": "dx",
    "recommended_questions": "q",
    "suggested_labs_and_tests": "lab",
    "potential_treatments": "tx",
    "working_observations": "obs",
}


def normalize_confidence(value: object, default: Confidence = "Low") -> Confidence:
    text = str(value or "").strip().lower()
    for level in CONFIDENCE_LEVELS:
        if text == level.lower():
            return level  # type: ignore[return-value]
    return default


class MedicalInsight(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str | None = None
    title: str = ""
    details: str = ""
    confidence: Confidence = "Low"
    source: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: object) -> str:
        return normalize_confidence(value)

    @field_validator("id", "source", mode="before")
    @classmethod
    def _coerce_optional_text(cls, value: object) -> str | None:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("title", "details", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value).strip()


class MedicalSuggestions(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    possible_diagnoses: list[MedicalInsight] = Field(default_factory=list)
    recommended_questions: list[MedicalInsight] = Field(default_factory=list)
    suggested_labs_and_tests: list[MedicalInsight] = Field(default_factory=list)
    potential_treatments: list[MedicalInsight] = Field(default_factory=list)
    working_observations: list[MedicalInsight] = Field(default_factory=list)

    def category(self, name: str) -> list[MedicalInsight]:
        return list(getattr(self, name))

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in CATEGORY_CAPS)
