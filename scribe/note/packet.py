from __future__ import annotations

"""
Encounter packet document model and its signature state machine.

Design intent:
- Packets are immutable snapshots; signature transitions return new packets.
- Draft -> PendingReview -> Signed, or Draft -> Signed. Nothing leaves Signed.
- Invalid transitions are no-ops that return the packet unchanged.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from scribe.evidence.models import Confidence
from scribe.evidence.orders import OrderPriority, OrderType

SignatureStatus = Literal["Draft", "PendingReview", "Signed"]
ProblemStatus = Literal["Active", "Chronic", "Resolved"]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class Provenance(_WireModel):
    quote: str = ""
    start_ms: Optional[int] = None
    end_ms: Optional[int] = None
    reasoning: str = ""
    confidence: Confidence = "Low"
    alternative_interpretations: Optional[List[str]] = None


class SubjectiveSection(_WireModel):
    chief_complaint: str = ""
    history_of_present_illness: str = ""
    provenance: List[Provenance] = Field(default_factory=list)


class ObjectiveSection(_WireModel):
    vital_signs: Optional[str] = None
    physical_exam: Optional[str] = None
    visual_findings: Optional[str] = None
    provenance: List[Provenance] = Field(default_factory=list)


class AssessmentSection(_WireModel):
    diagnoses: List[str] = Field(default_factory=list)
    differentials: List[str] = Field(default_factory=list)
    provenance: List[Provenance] = Field(default_factory=list)


class PlanSection(_WireModel):
    treatments: List[str] = Field(default_factory=list)
    tests: List[str] = Field(default_factory=list)
    referrals: List[str] = Field(default_factory=list)
    provenance: List[Provenance] = Field(default_factory=list)


class SOAPNote(_WireModel):
    subjective: SubjectiveSection = Field(default_factory=SubjectiveSection)
    objective: ObjectiveSection = Field(default_factory=ObjectiveSection)
    assessment: AssessmentSection = Field(default_factory=AssessmentSection)
    plan: PlanSection = Field(default_factory=PlanSection)


class ProblemListItem(_WireModel):
    description: str
    code: Optional[str] = None
    status: ProblemStatus = "Active"
    date_identified: Optional[str] = None


class Order(_WireModel):
    type: OrderType = "Lab"
    description: str
    priority: OrderPriority = "Routine"
    rationale: str = ""
    provenance: Optional[Provenance] = None


class PatientInstruction(_WireModel):
    instruction: str
    category: str = "general"
    language: Optional[str] = None


class FollowUp(_WireModel):
    type: str = ""
    timeframe: str = ""
    reason: str = ""


class EncounterPacket(_WireModel):
    patient_id: str
    patient_name: str
    clinician_name: Optional[str] = None
    generated_at: str
    soap_note: SOAPNote = Field(default_factory=SOAPNote)
    problem_list: List[ProblemListItem] = Field(default_factory=list)
    orders: List[Order] = Field(default_factory=list)
    patient_instructions: List[PatientInstruction] = Field(default_factory=list)
    follow_ups: List[FollowUp] = Field(default_factory=list)
    red_flags: List[str] = Field(default_factory=list)
    requires_confirmation: bool = True
    signature_status: SignatureStatus = "Draft"


def request_review(packet: EncounterPacket) -> EncounterPacket:
    if packet.signature_status != "Draft":
        return packet
    return packet.model_copy(update={"signature_status": "PendingReview"})


def sign_packet(packet: EncounterPacket) -> EncounterPacket:
    if packet.signature_status == "Signed":
        return packet
    return packet.model_copy(update={"signature_status": "Signed"})
