from __future__ import annotations

"""
HTTP and WebSocket surface for the Silent Scribe backend.

Design intent:
- Keep API orchestration thin and typed; domain rules live in transcript/evidence/note/session.
- Every session mutation goes through `InMemorySessionStore.update_encounter` so it reads the latest snapshot.
- External collaborators (live transport, structured client, memory backend) are injectable via `app.state`.
"""

import binascii
import json
import logging
import time
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from scribe.evidence.orders import OrderStatus
from scribe.internal_core import ScribeConfig, load_config
from scribe.internal_core.audit import log_event
from scribe.internal_core.contracts import PatientContext
from scribe.internal_core.session_store import InMemorySessionStore
from scribe.live.audio import AUDIO_ENCODINGS, decode_audio_chunk
from scribe.live.controller import SessionLifecycleController
from scribe.live.events import ToolCall, TranscriptionEvent
from scribe.live.prompts import UPDATE_CLINICAL_INTELLIGENCE_TOOL, build_system_instruction
from scribe.live.replay import SAMPLE_SESSIONS, replay_entries
from scribe.live.transport import GeminiLiveTransport, LiveSessionConfig, LiveTransport
from scribe.llm.gemini_adapter import (
    GeminiAdapterError,
    GeminiStructuredClient,
    StructuredClient,
    analyze_visual_symptom,
    request_medical_suggestions,
)
from scribe.memory.store import JsonFileKeyValueStore, MemoryItemType, PatientMemoryStore
from scribe.note.fhir import convert_to_fhir_bundle
from scribe.note.packet import request_review, sign_packet
from scribe.note.synthesizer import synthesize_encounter_packet
from scribe.session.state import (
    EncounterState,
    advance_order,
    apply_suggestions,
    apply_tool_calls,
    apply_transcription,
    attach_packet,
    attach_visual_analysis,
)
from scribe.transcript.models import TranscriptEntry, TranscriptFragment
from scribe.transcript.turns import TurnPolicy

_BOOT_CONFIG = load_config()
logging.basicConfig(
    level=getattr(logging, _BOOT_CONFIG.SCRIBE_LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


class CreateSessionRequest(BaseModel):
    patient: PatientContext = Field(default_factory=PatientContext)
    clinician_name: Optional[str] = Field(default=None, max_length=200)


class TranscriptionRequest(BaseModel):
    text: str = ""
    is_user_channel: bool = True
    is_final: bool = False


class ToolCallPayload(BaseModel):
    id: Optional[str] = None
    name: str = Field(min_length=1)
    args: Any = None


class ToolCallsRequest(BaseModel):
    calls: list[ToolCallPayload] = Field(default_factory=list)


class ReplayRequest(BaseModel):
    sample_id: Optional[str] = None
    entries: list[TranscriptEntry] = Field(default_factory=list)
    playback_speed: float = Field(default=1.0, gt=0)
    base_ms: Optional[int] = Field(default=None, ge=0)


class VisualAnalysisRequest(BaseModel):
    image_b64: str = Field(min_length=1)


class OrderStatusRequest(BaseModel):
    status: OrderStatus


class PacketRequest(BaseModel):
    clinician_name: Optional[str] = Field(default=None, max_length=200)


class MemoryItemRequest(BaseModel):
    type: MemoryItemType
    content: str = Field(min_length=1, max_length=4000)
    source: str = Field(default="", max_length=200)


app = FastAPI(title="silent scribe backend service")
logger = logging.getLogger(__name__)


def _get_config() -> ScribeConfig:
    existing = getattr(app.state, "config", None)
    if isinstance(existing, ScribeConfig):
        return existing
    setattr(app.state, "config", _BOOT_CONFIG)
    return _BOOT_CONFIG


if _BOOT_CONFIG.SCRIBE_CORS_ALLOW_ALL:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def _get_session_store() -> InMemorySessionStore:
    existing = getattr(app.state, "session_store", None)
    if isinstance(existing, InMemorySessionStore):
        return existing
    created = InMemorySessionStore(ttl_seconds=_get_config().SCRIBE_SESSION_TTL_SECONDS)
    setattr(app.state, "session_store", created)
    return created


def _get_memory_store() -> PatientMemoryStore:
    existing = getattr(app.state, "memory_store", None)
    if isinstance(existing, PatientMemoryStore):
        return existing
    config = _get_config()
    backend = getattr(app.state, "memory_backend", None) or JsonFileKeyValueStore(config.memory_dir_path())
    created = PatientMemoryStore(backend, key_prefix=config.SCRIBE_MEMORY_KEY_PREFIX)
    setattr(app.state, "memory_store", created)
    return created


def _get_structured_client() -> StructuredClient:
    existing = getattr(app.state, "structured_client", None)
    if existing is not None:
        return existing
    created = GeminiStructuredClient(_get_config().SCRIBE_GEMINI_API_KEY)
    setattr(app.state, "structured_client", created)
    return created


def _build_live_transport() -> LiveTransport:
    factory = getattr(app.state, "live_transport_factory", None)
    if callable(factory):
        return factory()
    return GeminiLiveTransport(_get_config().SCRIBE_GEMINI_API_KEY)


def _turn_policy() -> TurnPolicy:
    return TurnPolicy.from_config(_get_config())


def _now_ms() -> int:
    return int(time.time() * 1000)


def _require_session(session_id: str) -> dict[str, Any]:
    try:
        return _get_session_store().get_session(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown session_id: {session_id}") from exc


def _update(session_id: str, reducer) -> Any:
    try:
        return _get_session_store().update_encounter(session_id, reducer)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown session_id: {session_id}") from exc


def _session_payload(session_id: str) -> dict[str, Any]:
    session = _require_session(session_id)
    controller = session.get("controller")
    encounter: EncounterState = session["encounter"]
    return {
        "session_id": session_id,
        "lifecycle": session["lifecycle"],
        "last_error": session["error"],
        "encounter": encounter.to_payload(),
        "audit_events": [event.model_dump() for event in session["audit_events"]],
        "media_status": dict(controller.media_status) if controller is not None else None,
    }


async def _stop_controller(controller: Any) -> None:
    if controller is None:
        return
    try:
        await controller.stop()
    except Exception as exc:
        logger.warning("live_stop_failed session_id=%s err=%s", controller.session_id, type(exc).__name__)


async def _cleanup_expired_sessions() -> None:
    for session in _get_session_store().cleanup_expired_sessions():
        logger.info("session_expired session_id=%s", session["session_id"])
        await _stop_controller(session.get("controller"))


@app.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/sessions")
async def create_session(payload: CreateSessionRequest) -> dict[str, Any]:
    await _cleanup_expired_sessions()
    store = _get_session_store()
    session_id = store.create_session(payload.patient, clinician_name=payload.clinician_name)
    log_event(store, session_id, "SESSION_CREATED", "ok", f"patient_id={payload.patient.id}")
    logger.info("session_created session_id=%s patient_id=%s", session_id, payload.patient.id)
    return _session_payload(session_id)


@app.get("/sessions/{session_id}")
async def get_session(session_id: str) -> dict[str, Any]:
    return _session_payload(session_id)


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str) -> dict[str, Any]:
    store = _get_session_store()
    session = _require_session(session_id)
    controller = store.get_controller(session_id)
    await _stop_controller(controller)
    log_event(store, session_id, "SESSION_DESTROYED", "ok", "reason=user_request")
    store.destroy_session(session_id, reason="user_request")
    return {"session_id": session_id, "destroyed": True, "lifecycle": session["lifecycle"]}


@app.post("/sessions/{session_id}/transcription")
def ingest_transcription(session_id: str, payload: TranscriptionRequest) -> dict[str, Any]:
    fragment = TranscriptFragment(
        text=payload.text,
        is_user_channel=payload.is_user_channel,
        is_final=payload.is_final,
    )
    now_ms = _now_ms()
    policy = _turn_policy()
    debug = _update(session_id, lambda state: apply_transcription(state, fragment, now_ms=now_ms, policy=policy))
    encounter = _get_session_store().get_encounter(session_id)
    return {
        "session_id": session_id,
        "transcript": [entry.model_dump(by_alias=True, exclude_none=True) for entry in encounter.transcript],
        "debug": debug,
    }


def _apply_tool_calls_reducer(calls: list[ToolCall], now_ms: int):
    def reducer(state: EncounterState) -> tuple[EncounterState, tuple[list[dict[str, Any]], dict[str, Any]]]:
        next_state, acks, debug = apply_tool_calls(state, calls, now_ms=now_ms)
        return next_state, (acks, debug)

    return reducer


def _record_tool_calls(session_id: str, calls: list[ToolCall]) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    acks, debug = _update(session_id, _apply_tool_calls_reducer(calls, _now_ms()))
    registered = sum(1 for ack in acks if ack["response"]["status"] == "registered")
    log_event(
        _get_session_store(),
        session_id,
        "TOOL_CALL",
        "ok",
        f"calls={len(calls)} registered={registered}",
    )
    return acks, debug


@app.post("/sessions/{session_id}/tool-calls")
def ingest_tool_calls(session_id: str, payload: ToolCallsRequest) -> dict[str, Any]:
    _require_session(session_id)
    calls = [ToolCall(name=call.name, args=call.args, id=call.id) for call in payload.calls]
    acks, debug = _record_tool_calls(session_id, calls)
    encounter = _get_session_store().get_encounter(session_id)
    return {
        "session_id": session_id,
        "acks": acks,
        "suggestions": encounter.suggestions.model_dump(by_alias=True, exclude_none=True),
        "orders": [order.model_dump(by_alias=True) for order in encounter.orders],
        "last_update": encounter.last_update_ms,
        "debug": debug,
    }


@app.post("/sessions/{session_id}/replay")
def replay_session(session_id: str, payload: ReplayRequest) -> dict[str, Any]:
    _require_session(session_id)
    if payload.sample_id:
        sample = SAMPLE_SESSIONS.get(payload.sample_id)
        if sample is None:
            raise HTTPException(status_code=404, detail=f"Unknown sample_id: {payload.sample_id}")
        entries = list(sample.entries)
    else:
        entries = list(payload.entries)
    if not entries:
        raise HTTPException(status_code=400, detail="Provide one of: sample_id or entries.")

    base_ms = payload.base_ms if payload.base_ms is not None else _now_ms()
    merge_window_ms = _get_config().SCRIBE_TURN_MERGE_WINDOW_MS
    debug = _update(
        session_id,
        lambda state: replay_entries(
            state,
            entries,
            base_ms=base_ms,
            playback_speed=payload.playback_speed,
            merge_window_ms=merge_window_ms,
        ),
    )
    encounter = _get_session_store().get_encounter(session_id)
    return {
        "session_id": session_id,
        "transcript": [entry.model_dump(by_alias=True, exclude_none=True) for entry in encounter.transcript],
        "debug": debug,
    }


@app.post("/sessions/{session_id}/suggestions/refresh")
def refresh_suggestions(session_id: str) -> dict[str, Any]:
    store = _get_session_store()
    encounter = _require_session(session_id)["encounter"]
    started = time.perf_counter()
    try:
        update, debug = request_medical_suggestions(
            _get_structured_client(),
            encounter.patient,
            encounter.transcript,
            model=_get_config().SCRIBE_SUGGESTIONS_MODEL,
        )
    except GeminiAdapterError as exc:
        log_event(store, session_id, "ERROR", "suggestions_failed", str(exc))
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    now_ms = _now_ms()
    merge_debug = _update(session_id, lambda state: apply_suggestions(state, update, now_ms=now_ms))
    log_event(
        store,
        session_id,
        "SUGGESTIONS_REFRESHED",
        debug["status"],
        f"added={sum(merge_debug['added'].values())}",
        duration_ms=int((time.perf_counter() - started) * 1000),
    )
    encounter = store.get_encounter(session_id)
    return {
        "session_id": session_id,
        "suggestions": encounter.suggestions.model_dump(by_alias=True, exclude_none=True),
        "orders": [order.model_dump(by_alias=True) for order in encounter.orders],
        "last_update": encounter.last_update_ms,
        "debug": {**debug, "merge": merge_debug},
    }


@app.post("/sessions/{session_id}/visual-analysis")
def visual_analysis(session_id: str, payload: VisualAnalysisRequest) -> dict[str, Any]:
    store = _get_session_store()
    encounter = _require_session(session_id)["encounter"]
    started = time.perf_counter()
    try:
        analysis, debug = analyze_visual_symptom(
            _get_structured_client(),
            payload.image_b64,
            encounter.patient,
            model=_get_config().SCRIBE_VISION_MODEL,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except GeminiAdapterError as exc:
        log_event(store, session_id, "ERROR", "visual_analysis_failed", str(exc))
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    _update(session_id, lambda state: (attach_visual_analysis(state, analysis), None))
    log_event(
        store,
        session_id,
        "VISUAL_ANALYSIS",
        debug["status"],
        f"concerns={len(analysis.concerns)}",
        duration_ms=int((time.perf_counter() - started) * 1000),
    )
    return {"session_id": session_id, "visual_analysis": analysis.model_dump(by_alias=True), "debug": debug}


@app.post("/sessions/{session_id}/orders/{order_id}/status")
def update_order_status(session_id: str, order_id: str, payload: OrderStatusRequest) -> dict[str, Any]:
    debug = _update(session_id, lambda state: advance_order(state, order_id, payload.status))
    if debug["reason"] == "not_found":
        raise HTTPException(status_code=404, detail=f"Unknown order_id: {order_id}")
    if not debug["applied"]:
        raise HTTPException(
            status_code=409,
            detail=f"Order status cannot move from {debug.get('previous')} to {payload.status}.",
        )
    log_event(_get_session_store(), session_id, "ORDER_STATUS", payload.status, f"order_id={order_id}")
    encounter = _get_session_store().get_encounter(session_id)
    return {
        "session_id": session_id,
        "orders": [order.model_dump(by_alias=True) for order in encounter.orders],
        "debug": debug,
    }


@app.post("/sessions/{session_id}/packet")
def generate_packet(session_id: str, payload: Optional[PacketRequest] = None) -> dict[str, Any]:
    store = _get_session_store()
    encounter: EncounterState = _require_session(session_id)["encounter"]
    client = _get_structured_client()
    model = _get_config().SCRIBE_PACKET_MODEL
    clinician_name = (payload.clinician_name if payload is not None else None) or encounter.clinician_name

    packet, debug = synthesize_encounter_packet(
        encounter.patient,
        encounter.transcript,
        encounter.visual_analysis,
        generate=lambda prompt: client.generate_json_text(model=model, contents=prompt),
        clinician_name=clinician_name,
    )
    _update(session_id, lambda state: (attach_packet(state, packet), None))
    log_event(
        store,
        session_id,
        "PACKET_GENERATED",
        debug["status"],
        f"entries={debug['transcript_entries']} error={debug.get('error', '')}",
        duration_ms=debug.get("duration_ms"),
    )
    return {"session_id": session_id, "packet": packet.model_dump(by_alias=True), "debug": debug}


def _transition_packet(session_id: str, transition, event_type: str) -> dict[str, Any]:
    def reducer(state: EncounterState):
        if state.packet is None:
            return state, None
        updated = transition(state.packet)
        return attach_packet(state, updated), (state.packet.signature_status, updated.signature_status)

    result = _update(session_id, reducer)
    if result is None:
        raise HTTPException(status_code=404, detail="No encounter packet generated for this session.")
    previous, current = result
    applied = previous != current
    if applied:
        log_event(_get_session_store(), session_id, event_type, current, f"from={previous}")
    packet = _get_session_store().get_encounter(session_id).packet
    return {"session_id": session_id, "applied": applied, "packet": packet.model_dump(by_alias=True)}


@app.post("/sessions/{session_id}/packet/review")
def review_packet(session_id: str) -> dict[str, Any]:
    return _transition_packet(session_id, request_review, "PACKET_REVIEW_REQUESTED")


@app.post("/sessions/{session_id}/packet/sign")
def sign_encounter_packet(session_id: str) -> dict[str, Any]:
    return _transition_packet(session_id, sign_packet, "PACKET_SIGNED")


@app.get("/sessions/{session_id}/packet/fhir")
def export_packet_fhir(session_id: str) -> dict[str, Any]:
    encounter: EncounterState = _require_session(session_id)["encounter"]
    if encounter.packet is None:
        raise HTTPException(status_code=404, detail="No encounter packet generated for this session.")
    return convert_to_fhir_bundle(encounter.packet)


@app.get("/patients/{patient_id}/memory")
def get_patient_memory(patient_id: str) -> dict[str, Any]:
    return _get_memory_store().load(patient_id).model_dump(by_alias=True)


@app.post("/patients/{patient_id}/memory")
def add_patient_memory(patient_id: str, payload: MemoryItemRequest) -> dict[str, Any]:
    item = _get_memory_store().add_item(
        patient_id,
        type=payload.type,
        content=payload.content,
        source=payload.source,
    )
    return item.model_dump(by_alias=True)


@app.delete("/patients/{patient_id}/memory")
def clear_patient_memory(patient_id: str) -> dict[str, Any]:
    return _get_memory_store().clear_all(patient_id).model_dump(by_alias=True)


@app.post("/patients/{patient_id}/memory/{item_id}/pin")
def toggle_patient_memory_pin(patient_id: str, item_id: str) -> dict[str, Any]:
    try:
        memory = _get_memory_store().toggle_pin(patient_id, item_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown memory item: {item_id}") from exc
    return memory.model_dump(by_alias=True)


@app.delete("/patients/{patient_id}/memory/{item_id}")
def forget_patient_memory(patient_id: str, item_id: str) -> dict[str, Any]:
    try:
        memory = _get_memory_store().forget_item(patient_id, item_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown memory item: {item_id}") from exc
    return memory.model_dump(by_alias=True)


_LIFECYCLE_AUDIT = {
    "connecting": "LIVE_CONNECTING",
    "active": "LIVE_ACTIVE",
    "idle": "LIVE_STOPPED",
    "error": "LIVE_ERROR",
}


async def _send_ws(websocket: WebSocket, payload: dict[str, Any]) -> None:
    try:
        await websocket.send_json(payload)
    except (RuntimeError, WebSocketDisconnect) as exc:
        logger.debug("ws_send_skipped type=%s err=%s", payload.get("type"), type(exc).__name__)


def _build_live_controller(session_id: str, websocket: WebSocket) -> SessionLifecycleController:
    store = _get_session_store()
    policy = _turn_policy()

    async def on_transcription(event: TranscriptionEvent) -> None:
        fragment = TranscriptFragment(text=event.text, is_user_channel=event.is_user_channel, is_final=event.is_final)
        now_ms = _now_ms()
        try:
            debug = store.update_encounter(
                session_id,
                lambda state: apply_transcription(state, fragment, now_ms=now_ms, policy=policy),
            )
        except KeyError:
            return
        if debug["action"] == "dropped":
            return
        encounter = store.get_encounter(session_id)
        await _send_ws(
            websocket,
            {
                "type": "transcript",
                "session_id": session_id,
                "action": debug["action"],
                "transcript": [entry.model_dump(by_alias=True, exclude_none=True) for entry in encounter.transcript],
            },
        )

    async def on_tool_calls(calls: list[ToolCall]) -> list[dict[str, Any]]:
        try:
            acks, _debug = store.update_encounter(session_id, _apply_tool_calls_reducer(list(calls), _now_ms()))
        except KeyError:
            # Session is gone; still acknowledge so the stream is never blocked.
            return [{"id": call.id, "name": call.name, "response": {"status": "ignored"}} for call in calls]
        log_event(store, session_id, "TOOL_CALL", "ok", f"calls={len(calls)}")
        encounter = store.get_encounter(session_id)
        await _send_ws(
            websocket,
            {
                "type": "suggestions",
                "session_id": session_id,
                "suggestions": encounter.suggestions.model_dump(by_alias=True, exclude_none=True),
                "orders": [order.model_dump(by_alias=True) for order in encounter.orders],
                "last_update": encounter.last_update_ms,
            },
        )
        return acks

    async def on_state_change(state: str, error: Optional[str]) -> None:
        store.set_lifecycle(session_id, state, error)
        audit_type = _LIFECYCLE_AUDIT.get(state)
        if audit_type is not None:
            log_event(store, session_id, audit_type, state, error or "")
        await _send_ws(websocket, {"type": "state", "session_id": session_id, "state": state, "error": error})

    return SessionLifecycleController(
        session_id=session_id,
        transport=_build_live_transport(),
        on_transcription=on_transcription,
        on_tool_calls=on_tool_calls,
        on_state_change=on_state_change,
    )


def _live_session_config(encounter: EncounterState) -> LiveSessionConfig:
    config = _get_config()
    pinned = _get_memory_store().pinned_items(encounter.patient.id)
    return LiveSessionConfig(
        model=config.SCRIBE_LIVE_MODEL,
        system_instruction=build_system_instruction(encounter.patient, pinned),
        tools=(UPDATE_CLINICAL_INTELLIGENCE_TOOL,),
        voice=config.SCRIBE_LIVE_VOICE,
        sample_rate_hz=config.SCRIBE_AUDIO_SAMPLE_RATE_HZ,
    )


@app.websocket("/ws/live")
async def live_ws(websocket: WebSocket) -> None:
    await websocket.accept()
    session_id = str(websocket.query_params.get("session_id", "")).strip()
    store = _get_session_store()
    if not session_id or not store.has_session(session_id):
        await websocket.send_json({"type": "error", "detail": "unknown_session_id"})
        await websocket.close(code=1008)
        return

    controller = _build_live_controller(session_id, websocket)
    previous = store.get_controller(session_id)
    await _stop_controller(previous)
    store.attach_controller(session_id, controller)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                await websocket.send_json({"type": "error", "detail": "invalid_json"})
                continue
            if not isinstance(payload, dict):
                await websocket.send_json({"type": "error", "detail": "invalid_payload"})
                continue

            message_type = str(payload.get("type", "")).strip().lower()
            if message_type == "start":
                try:
                    encounter = store.get_encounter(session_id)
                except KeyError:
                    await websocket.send_json({"type": "error", "detail": "unknown_session_id"})
                    break
                started = await controller.start(_live_session_config(encounter))
                await websocket.send_json(
                    {
                        "type": "ack_start",
                        "session_id": session_id,
                        "started": started,
                        "state": controller.state,
                        "error": controller.last_error,
                    }
                )
                continue

            if message_type == "audio_chunk":
                data_b64 = str(payload.get("data_b64", "")).strip()
                if not data_b64:
                    await websocket.send_json({"type": "error", "detail": "missing_data_b64"})
                    continue
                encoding = str(payload.get("encoding", "pcm16")).strip().lower() or "pcm16"
                if encoding not in AUDIO_ENCODINGS:
                    await websocket.send_json({"type": "error", "detail": "invalid_audio_encoding"})
                    continue
                try:
                    pcm = decode_audio_chunk(data_b64, encoding)
                except (binascii.Error, ValueError):
                    await websocket.send_json({"type": "error", "detail": "invalid_base64"})
                    continue
                accepted = await controller.send_audio(pcm)
                if not accepted:
                    await websocket.send_json(
                        {"type": "error", "detail": "not_active", "state": controller.state}
                    )
                continue

            if message_type == "media_error":
                kind = str(payload.get("kind", "microphone")).strip().lower() or "microphone"
                if kind not in ("microphone", "camera"):
                    await websocket.send_json({"type": "error", "detail": "invalid_media_kind"})
                    continue
                detail = str(payload.get("detail", "")).strip()
                error = await controller.report_media_error(kind, detail)
                await websocket.send_json(
                    {
                        "type": "ack_media_error",
                        "session_id": session_id,
                        "state": controller.state,
                        "error": error.message,
                        "media_status": dict(controller.media_status),
                    }
                )
                continue

            if message_type == "stop":
                await controller.stop()
                await websocket.send_json(
                    {"type": "ack_stop", "session_id": session_id, "state": controller.state}
                )
                continue

            await websocket.send_json({"type": "error", "detail": "unknown_message_type"})
    except WebSocketDisconnect:
        logger.info("live_ws_disconnected session_id=%s", session_id)
    finally:
        await _stop_controller(controller)
