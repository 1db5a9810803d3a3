from __future__ import annotations

"""
Typed transcript contracts shared by live ingestion and API endpoints.

Design intent:
- Keep speaker turns immutable; consolidation replaces entries instead of mutating them.
- Serialize with camelCase aliases so browser payloads keep their original shape.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Speaker = Literal["Clinician", "Patient", "System"]


class TranscriptEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    speaker: Speaker
    text: str = Field(min_length=1)
    original_text: str | None = None
    detected_language: str | None = None
    timestamp: int = Field(ge=0)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _validate_text(self) -> "TranscriptEntry":
        if not self.text.strip():
            raise ValueError("TranscriptEntry.text must not be blank")
        return self


class TranscriptFragment(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    text: str = ""
    is_user_channel: bool = True
    is_final: bool = False
