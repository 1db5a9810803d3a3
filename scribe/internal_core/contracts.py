from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

LifecycleState = Literal["idle", "connecting", "active", "closing", "error"]

Gender = Literal["Male", "Female", "Other"]


def _as_string_list(value: object) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item).strip() for item in value if isinstance(item, str) and item.strip()]
    return []


class PatientContext(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = "anonymous"
    name: str = "Unknown Patient"
    age: int = 0
    gender: Gender = "Other"
    medical_history: List[str] = Field(default_factory=list)
    current_medications: List[str] = Field(default_factory=list)
    allergies: List[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> str:
        text = str(value if value is not None else "").strip()
        return text or "anonymous"

    @field_validator("medical_history", "current_medications", "allergies", mode="before")
    @classmethod
    def _coerce_lists(cls, value: object) -> list[str]:
        return _as_string_list(value)


class VisualAnalysis(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    observation: str = ""
    concerns: List[str] = Field(default_factory=list)
    suggested_action: str = ""

    @field_validator("observation", "suggested_action", mode="before")
    @classmethod
    def _coerce_text(cls, value: object) -> str:
        if value is None or isinstance(value, (dict, list)):
            return ""
        return str(value).strip()

    @field_validator("concerns", mode="before")
    @classmethod
    def _coerce_concerns(cls, value: object) -> list[str]:
        return _as_string_list(value)


AuditEventType = Literal[
    "SESSION_CREATED",
    "LIVE_CONNECTING",
    "LIVE_ACTIVE",
    "LIVE_STOPPED",
    "LIVE_ERROR",
    "TOOL_CALL",
    "SUGGESTIONS_REFRESHED",
    "VISUAL_ANALYSIS",
    "PACKET_GENERATED",
    "PACKET_REVIEW_REQUESTED",
    "PACKET_SIGNED",
    "ORDER_STATUS",
    "SESSION_DESTROYED",
    "ERROR",
]


class AuditEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    ts_iso: str
    session_id: str
    type: AuditEventType
    code: str
    detail: str
    duration_ms: Optional[int] = None
