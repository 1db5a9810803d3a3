from __future__ import annotations

"""
Map an encounter packet to a minimal FHIR R4 collection bundle.

Design intent:
- Pure mapping with no validation beyond what the packet model already guarantees.
- Resource ids and the bundle timestamp are injectable so exports can be reproduced in tests.
"""

import base64
import datetime as _dt
import re
import uuid
from typing import Any, Callable

from scribe.note.packet import EncounterPacket, Order, ProblemListItem

CONDITION_CLINICAL_SYSTEM = "http://terminology.hl7.org/CodeSystem/condition-clinical"
OBSERVATION_CATEGORY_SYSTEM = "http://terminology.hl7.org/CodeSystem/observation-category"
ICD10CM_SYSTEM = "http://hl7.org/fhir/sid/icd-10-cm"
SNOMED_SYSTEM = "http://snomed.info/sct"
LOINC_SYSTEM = "http://loinc.org"

SERVICE_CATEGORY_CODES = {"Lab": "108252007", "Imaging": "363679005"}
DEFAULT_SERVICE_CATEGORY_CODE = "3457005"

_PRIORITY_CODES = {"STAT": "stat", "Urgent": "urgent"}
_PROBLEM_STATUS_CODES = {"Active": "active", "Resolved": "resolved"}


def _uuid_id() -> str:
    return uuid.uuid4().hex


def _utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).isoformat()


def _priority_code(priority: str) -> str:
    return _PRIORITY_CODES.get(priority, "routine")


def _practitioner_ref(clinician_name: str | None) -> str:
    if not clinician_name or not clinician_name.strip():
        return "Practitioner/unknown"
    return "Practitioner/" + re.sub(r"\s+", "-", clinician_name.strip())


def _problem_to_condition(problem: ProblemListItem, patient_ref: str, resource_id: str) -> dict[str, Any]:
    coding = []
    if problem.code:
        coding.append({"system": ICD10CM_SYSTEM, "code": problem.code, "display": problem.description})
    resource: dict[str, Any] = {
        "resourceType": "Condition",
        "id": resource_id,
        "clinicalStatus": {
            "coding": [
                {
                    "system": CONDITION_CLINICAL_SYSTEM,
                    "code": _PROBLEM_STATUS_CODES.get(problem.status, "recurrence"),
                }
            ]
        },
        "code": {"coding": coding, "text": problem.description},
        "subject": {"reference": patient_ref},
    }
    if problem.date_identified:
        resource["recordedDate"] = problem.date_identified
    return resource


def _diagnosis_to_condition(diagnosis: str, patient_ref: str, recorded_date: str, resource_id: str) -> dict[str, Any]:
    return {
        "resourceType": "Condition",
        "id": resource_id,
        "clinicalStatus": {"coding": [{"system": CONDITION_CLINICAL_SYSTEM, "code": "active"}]},
        "code": {"text": diagnosis},
        "subject": {"reference": patient_ref},
        "recordedDate": recorded_date,
    }


def _order_to_request(order: Order, patient_ref: str, practitioner_ref: str, resource_id: str) -> dict[str, Any]:
    common = {
        "id": resource_id,
        "status": "draft",
        "intent": "order",
        "priority": _priority_code(order.priority),
        "subject": {"reference": patient_ref},
        "requester": {"reference": practitioner_ref},
        "reasonCode": [{"text": order.rationale}],
    }
    if order.type == "Medication":
        return {
            "resourceType": "MedicationRequest",
            **common,
            "medicationCodeableConcept": {"text": order.description},
        }
    return {
        "resourceType": "ServiceRequest",
        **common,
        "category": [
            {
                "coding": [
                    {
                        "system": SNOMED_SYSTEM,
                        "code": SERVICE_CATEGORY_CODES.get(order.type, DEFAULT_SERVICE_CATEGORY_CODE),
                        "display": order.type,
                    }
                ]
            }
        ],
        "code": {"text": order.description},
    }


def _visual_observation(visual_findings: str, patient_ref: str, effective: str, resource_id: str) -> dict[str, Any]:
    return {
        "resourceType": "Observation",
        "id": resource_id,
        "status": "preliminary",
        "category": [{"coding": [{"system": OBSERVATION_CATEGORY_SYSTEM, "code": "exam", "display": "Exam"}]}],
        "code": {
            "coding": [{"system": LOINC_SYSTEM, "code": "32422-2", "display": "Physical examination findings"}],
            "text": "Visual Analysis Finding",
        },
        "subject": {"reference": patient_ref},
        "valueString": visual_findings,
        "effectiveDateTime": effective,
    }


def render_soap_narrative(packet: EncounterPacket) -> str:
    soap = packet.soap_note
    lines = [
        f"SOAP NOTE - {packet.patient_name}",
        f"Generated: {packet.generated_at}",
        "",
        "SUBJECTIVE",
        f"Chief Complaint: {soap.subjective.chief_complaint}",
        f"HPI: {soap.subjective.history_of_present_illness}",
        "",
        "OBJECTIVE",
    ]
    if soap.objective.vital_signs:
        lines.append(f"Vitals: {soap.objective.vital_signs}")
    if soap.objective.physical_exam:
        lines.append(f"Exam: {soap.objective.physical_exam}")
    if soap.objective.visual_findings:
        lines.append(f"Visual Findings: {soap.objective.visual_findings}")
    lines.extend(["", "ASSESSMENT"])
    lines.extend(f"{index}. {dx}" for index, dx in enumerate(soap.assessment.diagnoses, start=1))
    if soap.assessment.differentials:
        lines.append(f"Differentials: {', '.join(soap.assessment.differentials)}")
    lines.extend(
        [
            "",
            "PLAN",
            f"Treatments: {'; '.join(soap.plan.treatments)}",
            f"Tests: {'; '.join(soap.plan.tests)}",
        ]
    )
    if soap.plan.referrals:
        lines.append(f"Referrals: {'; '.join(soap.plan.referrals)}")
    return "\n".join(lines).strip()


def _narrative_document(packet: EncounterPacket, patient_ref: str, resource_id: str) -> dict[str, Any]:
    narrative = render_soap_narrative(packet)
    return {
        "resourceType": "DocumentReference",
        "id": resource_id,
        "status": "current" if packet.signature_status == "Signed" else "preliminary",
        "type": {"coding": [{"system": LOINC_SYSTEM, "code": "34117-2", "display": "History and physical note"}]},
        "subject": {"reference": patient_ref},
        "date": packet.generated_at,
        "content": [
            {
                "attachment": {
                    "contentType": "text/plain",
                    "data": base64.b64encode(narrative.encode("utf-8")).decode("ascii"),
                }
            }
        ],
    }


def convert_to_fhir_bundle(
    packet: EncounterPacket,
    *,
    id_factory: Callable[[], str] = _uuid_id,
    now_iso: Callable[[], str] = _utc_now_iso,
) -> dict[str, Any]:
    """
    Build `Bundle{type: collection}` entries in a fixed order.

    Problem-list conditions, diagnosis conditions, order requests, the visual-findings
    observation when present, then the narrative document.
    """
    patient_ref = f"Patient/{packet.patient_id}"
    practitioner_ref = _practitioner_ref(packet.clinician_name)
    timestamp = now_iso()
    recorded_date = packet.generated_at.split("T")[0]

    resources: list[dict[str, Any]] = []
    for problem in packet.problem_list:
        resources.append(_problem_to_condition(problem, patient_ref, id_factory()))
    for diagnosis in packet.soap_note.assessment.diagnoses:
        resources.append(_diagnosis_to_condition(diagnosis, patient_ref, recorded_date, id_factory()))
    for order in packet.orders:
        resources.append(_order_to_request(order, patient_ref, practitioner_ref, id_factory()))
    if packet.soap_note.objective.visual_findings:
        resources.append(
            _visual_observation(packet.soap_note.objective.visual_findings, patient_ref, timestamp, id_factory())
        )
    resources.append(_narrative_document(packet, patient_ref, id_factory()))

    return {
        "resourceType": "Bundle",
        "type": "collection",
        "timestamp": timestamp,
        "entry": [{"resource": resource} for resource in resources],
    }
