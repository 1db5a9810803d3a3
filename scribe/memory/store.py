from __future__ import annotations

"""
Per-patient memory notes persisted in a simple key-value store.

Design intent:
- One JSON document per patient under `{prefix}{patientId}`, rewritten on every mutation.
- The stored layout is `{patientId, items[], lastUpdated}` with camelCase item fields.
- Unreadable documents are logged and treated as empty memory.
"""

import datetime as _dt
import json
import logging
import re
import uuid
from pathlib import Path
from threading import RLock
from typing import Callable, Dict, List, Literal, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

MemoryItemType = Literal["fact", "medication", "allergy", "diagnosis", "note"]

DEFAULT_KEY_PREFIX = "clinical_os_patient_memory_"

_UNSAFE_KEY_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")


class MemoryItem(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: MemoryItemType
    content: str
    source: str = ""
    created_at: str
    is_pinned: bool = False


class PatientMemory(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    patient_id: str
    items: List[MemoryItem] = Field(default_factory=list)
    last_updated: str


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._lock = RLock()
        self._values: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value


class JsonFileKeyValueStore:
    """One `<key>.json` file per key inside `root_dir`."""

    def __init__(self, root_dir: Path):
        self._root_dir = Path(root_dir)
        self._lock = RLock()

    def _path_for(self, key: str) -> Path:
        safe = _UNSAFE_KEY_CHARS_RE.sub("_", key)
        return self._root_dir / f"{safe}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path_for(key)
        with self._lock:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        with self._lock:
            self._root_dir.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(value, encoding="utf-8")
            tmp_path.replace(path)


def _utc_now() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _created_at_sort_key(item: MemoryItem) -> float:
    try:
        parsed = _dt.datetime.fromisoformat(item.created_at.replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=_dt.timezone.utc)
    return parsed.timestamp()


class PatientMemoryStore:
    def __init__(
        self,
        backend: KeyValueStore,
        *,
        key_prefix: str = DEFAULT_KEY_PREFIX,
        clock: Callable[[], _dt.datetime] = _utc_now,
    ):
        self._backend = backend
        self._key_prefix = key_prefix
        self._clock = clock

    def key_for(self, patient_id: str) -> str:
        return f"{self._key_prefix}{patient_id}"

    def _now_iso(self) -> str:
        return self._clock().isoformat()

    def _empty(self, patient_id: str) -> PatientMemory:
        return PatientMemory(patient_id=str(patient_id), items=[], last_updated=self._now_iso())

    def load(self, patient_id: str) -> PatientMemory:
        raw = self._backend.get(self.key_for(patient_id))
        if not raw:
            return self._empty(patient_id)
        try:
            data = json.loads(raw)
            if isinstance(data, dict) and data.get("patientId") is not None:
                data["patientId"] = str(data["patientId"])
            return PatientMemory.model_validate(data)
        except (ValueError, ValidationError) as exc:
            logger.warning("patient_memory_load_failed patient_id=%s err=%s", patient_id, type(exc).__name__)
            return self._empty(patient_id)

    def _save(self, memory: PatientMemory) -> PatientMemory:
        memory.last_updated = self._now_iso()
        payload = memory.model_dump(by_alias=True)
        self._backend.set(self.key_for(memory.patient_id), json.dumps(payload, ensure_ascii=False))
        return memory

    def add_item(
        self,
        patient_id: str,
        *,
        type: MemoryItemType,
        content: str,
        source: str = "",
    ) -> MemoryItem:
        memory = self.load(patient_id)
        now = self._clock()
        item = MemoryItem(
            id=f"{int(now.timestamp() * 1000)}-{uuid.uuid4().hex[:9]}",
            type=type,
            content=content,
            source=source,
            created_at=now.isoformat(),
            is_pinned=False,
        )
        memory.items = [item] + list(memory.items)
        self._save(memory)
        return item

    def toggle_pin(self, patient_id: str, item_id: str) -> PatientMemory:
        memory = self.load(patient_id)
        if not any(item.id == item_id for item in memory.items):
            raise KeyError(f"Unknown memory item: {item_id}")
        items = [
            item.model_copy(update={"is_pinned": not item.is_pinned}) if item.id == item_id else item
            for item in memory.items
        ]
        # Pinned first, then newest first.
        items.sort(key=lambda item: (not item.is_pinned, -_created_at_sort_key(item)))
        memory.items = items
        return self._save(memory)

    def forget_item(self, patient_id: str, item_id: str) -> PatientMemory:
        memory = self.load(patient_id)
        remaining = [item for item in memory.items if item.id != item_id]
        if len(remaining) == len(memory.items):
            raise KeyError(f"Unknown memory item: {item_id}")
        memory.items = remaining
        return self._save(memory)

    def clear_all(self, patient_id: str) -> PatientMemory:
        return self._save(self._empty(patient_id))

    def items_by_type(self, patient_id: str, item_type: MemoryItemType) -> list[MemoryItem]:
        return [item for item in self.load(patient_id).items if item.type == item_type]

    def pinned_items(self, patient_id: str) -> list[MemoryItem]:
        return [item for item in self.load(patient_id).items if item.is_pinned]
