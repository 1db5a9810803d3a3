from __future__ import annotations

"""
Explicit per-encounter state and the pure reducers that advance it.

Design intent:
- One immutable snapshot per session; every reducer returns a new snapshot plus a debug dict.
- Callers apply reducers against the latest stored snapshot so sequential events never see stale state.
- Reducers never raise for malformed model input; they report what they skipped.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Sequence

from scribe.evidence.merge import merge_suggestions, parse_intelligence_update
from scribe.evidence.models import MedicalSuggestions
from scribe.evidence.orders import OrderItem, OrderStatus, advance_order_status, derive_orders, merge_orders
from scribe.internal_core.contracts import PatientContext, VisualAnalysis
from scribe.live.events import ACK_IGNORED, ACK_REGISTERED, ToolCall, tool_call_ack
from scribe.live.prompts import UPDATE_CLINICAL_INTELLIGENCE
from scribe.note.packet import EncounterPacket
from scribe.transcript.models import TranscriptEntry, TranscriptFragment
from scribe.transcript.turns import TurnPolicy, append_turn, ingest_fragment


@dataclass(frozen=True)
class EncounterState:
    session_id: str
    patient: PatientContext = field(default_factory=PatientContext)
    clinician_name: str | None = None
    transcript: tuple[TranscriptEntry, ...] = ()
    suggestions: MedicalSuggestions = field(default_factory=MedicalSuggestions)
    orders: tuple[OrderItem, ...] = ()
    last_update_ms: int | None = None
    merge_seq: int = 0
    visual_analysis: VisualAnalysis | None = None
    packet: EncounterPacket | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "patient": self.patient.model_dump(by_alias=True),
            "clinicianName": self.clinician_name,
            "transcript": [entry.model_dump(by_alias=True, exclude_none=True) for entry in self.transcript],
            "suggestions": self.suggestions.model_dump(by_alias=True, exclude_none=True),
            "orders": [order.model_dump(by_alias=True) for order in self.orders],
            "lastUpdate": self.last_update_ms,
            "visualAnalysis": (
                self.visual_analysis.model_dump(by_alias=True) if self.visual_analysis is not None else None
            ),
            "packet": self.packet.model_dump(by_alias=True) if self.packet is not None else None,
        }


def apply_transcription(
    state: EncounterState,
    fragment: TranscriptFragment,
    *,
    now_ms: int,
    policy: TurnPolicy | None = None,
) -> tuple[EncounterState, dict[str, Any]]:
    result, debug = ingest_fragment(state.transcript, fragment, now_ms=now_ms, policy=policy)
    if result.action == "dropped":
        return state, debug
    return replace(state, transcript=result.entries), debug


def apply_transcript_entry(
    state: EncounterState,
    entry: TranscriptEntry,
    *,
    now_ms: int,
    merge_window_ms: int,
) -> tuple[EncounterState, dict[str, Any]]:
    """Fold an already-attributed entry (replay, imports) through the same turn rule."""
    result = append_turn(
        state.transcript,
        speaker=entry.speaker,
        text=entry.text,
        now_ms=now_ms,
        merge_window_ms=merge_window_ms,
        original_text=entry.original_text,
        detected_language=entry.detected_language,
        confidence=entry.confidence,
    )
    debug = {"action": result.action, "speaker": entry.speaker, "total_entries": len(result.entries)}
    if result.action == "dropped":
        return state, debug
    return replace(state, transcript=result.entries), debug


def apply_suggestions(
    state: EncounterState,
    update: MedicalSuggestions,
    *,
    now_ms: int,
) -> tuple[EncounterState, dict[str, Any]]:
    """Merge an evidence update, derive orders from it and stamp `last_update_ms`."""
    merge_seq = state.merge_seq + 1
    merged = merge_suggestions(state.suggestions, update, now_ms=now_ms, merge_seq=merge_seq)
    new_orders = derive_orders(update, now_ms=now_ms, batch=merge_seq)
    orders = merge_orders(state.orders, new_orders) if new_orders else list(state.orders)

    next_state = replace(
        state,
        suggestions=merged.suggestions,
        orders=tuple(orders),
        last_update_ms=merged.last_update_ms,
        merge_seq=merge_seq,
    )
    debug = {
        "merge_seq": merge_seq,
        "added": merged.added,
        "evicted": merged.evicted,
        "orders_added": len(new_orders),
        "orders_total": len(orders),
    }
    return next_state, debug


def apply_tool_calls(
    state: EncounterState,
    calls: Sequence[ToolCall],
    *,
    now_ms: int,
) -> tuple[EncounterState, list[dict[str, Any]], dict[str, Any]]:
    """
    Apply each call in arrival order and acknowledge every one of them exactly once.

    Calls to unknown tools are acknowledged as ignored and leave the state untouched.
    """
    current = state
    acks: list[dict[str, Any]] = []
    per_call: list[dict[str, Any]] = []
    for call in calls:
        if call.name != UPDATE_CLINICAL_INTELLIGENCE:
            acks.append(tool_call_ack(call, ACK_IGNORED))
            per_call.append({"id": call.id, "name": call.name, "status": ACK_IGNORED})
            continue

        update, parse_debug = parse_intelligence_update(call.args)
        current, merge_debug = apply_suggestions(current, update, now_ms=now_ms)
        acks.append(tool_call_ack(call, ACK_REGISTERED))
        per_call.append(
            {"id": call.id, "name": call.name, "status": ACK_REGISTERED, "parse": parse_debug, "merge": merge_debug}
        )
    return current, acks, {"calls": per_call}


def advance_order(
    state: EncounterState,
    order_id: str,
    status: OrderStatus,
) -> tuple[EncounterState, dict[str, Any]]:
    orders, debug = advance_order_status(state.orders, order_id, status)
    if not debug["applied"]:
        return state, debug
    return replace(state, orders=tuple(orders)), debug


def attach_visual_analysis(state: EncounterState, analysis: VisualAnalysis) -> EncounterState:
    return replace(state, visual_analysis=analysis)


def attach_packet(state: EncounterState, packet: EncounterPacket) -> EncounterState:
    return replace(state, packet=packet)
