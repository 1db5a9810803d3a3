from __future__ import annotations

import time
import uuid
from threading import RLock
from typing import Any, Callable, Dict, Optional, TypeVar

from scribe.session.state import EncounterState

from .contracts import AuditEvent, LifecycleState, PatientContext

T = TypeVar("T")


class InMemorySessionStore:
    def __init__(self, ttl_seconds: int):
        self._ttl_seconds = ttl_seconds
        self._lock = RLock()
        self._sessions: Dict[str, Dict[str, Any]] = {}

    def create_session(self, patient: PatientContext, clinician_name: Optional[str] = None) -> str:
        session_id = uuid.uuid4().hex
        now = time.time()
        with self._lock:
            self._sessions[session_id] = {
                "session_id": session_id,
                "created_at": now,
                "updated_at": now,
                "expires_at": now + self._ttl_seconds,
                "lifecycle": "idle",
                "encounter": EncounterState(session_id=session_id, patient=patient, clinician_name=clinician_name),
                "audit_events": [],
                "controller": None,
                "error": None,
            }
        return session_id

    def _touch(self, session_id: str) -> None:
        now = time.time()
        session = self._sessions[session_id]
        session["updated_at"] = now
        session["expires_at"] = now + self._ttl_seconds

    def _require(self, session_id: str) -> Dict[str, Any]:
        session = self._sessions.get(session_id)
        if session is None:
            raise KeyError(f"Unknown session_id: {session_id}")
        return session

    def has_session(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def get_encounter(self, session_id: str) -> EncounterState:
        with self._lock:
            return self._require(session_id)["encounter"]

    def update_encounter(self, session_id: str, reducer: Callable[[EncounterState], tuple[EncounterState, T]]) -> T:
        """Apply `reducer` to the latest snapshot and store its result atomically."""
        with self._lock:
            session = self._require(session_id)
            next_state, result = reducer(session["encounter"])
            session["encounter"] = next_state
            self._touch(session_id)
            return result

    def set_lifecycle(self, session_id: str, lifecycle: LifecycleState, error: Optional[str] = None) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session["lifecycle"] = lifecycle
            if error is not None:
                session["error"] = error
            self._touch(session_id)

    def attach_controller(self, session_id: str, controller: Any) -> None:
        with self._lock:
            self._require(session_id)["controller"] = controller
            self._touch(session_id)

    def get_controller(self, session_id: str) -> Any:
        with self._lock:
            return self._require(session_id)["controller"]

    def append_audit_event(self, session_id: str, event: AuditEvent) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session["audit_events"].append(event)
            self._touch(session_id)

    def get_session(self, session_id: str) -> Dict[str, Any]:
        with self._lock:
            session = self._require(session_id)
            return {
                "session_id": session["session_id"],
                "created_at": session["created_at"],
                "updated_at": session["updated_at"],
                "expires_at": session["expires_at"],
                "lifecycle": session["lifecycle"],
                "encounter": session["encounter"],
                "audit_events": list(session["audit_events"]),
                "controller": session["controller"],
                "error": session["error"],
            }

    def destroy_session(self, session_id: str, reason: str) -> Optional[Dict[str, Any]]:
        """Drop the session and return its last record so callers can release live resources."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        session["destroyed_reason"] = reason
        return session

    def expired_session_ids(self) -> list[str]:
        now = time.time()
        with self._lock:
            return [sid for sid, session in self._sessions.items() if session["expires_at"] <= now]

    def cleanup_expired_sessions(self) -> list[Dict[str, Any]]:
        removed = []
        for session_id in self.expired_session_ids():
            session = self.destroy_session(session_id, reason="ttl_expired")
            if session is not None:
                removed.append(session)
        return removed
