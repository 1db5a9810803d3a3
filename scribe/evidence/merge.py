from __future__ import annotations

"""
Fold structured evidence updates from the live model into bounded suggestion lists.

Design intent:
- Validate tool-call payloads at the boundary; malformed items are dropped, never raised.
- Incoming items are prepended per category, then the list is truncated to its cap.
- No content de-duplication: repeated mentions are expected and bounded only by the cap.
"""

import hashlib
import json
from collections import Counter
from dataclasses import dataclass
from typing import Any, Mapping

from pydantic import ValidationError
from pydantic.alias_generators import to_camel

from scribe.evidence.models import (
    CATEGORY_CAPS,
    CATEGORY_ID_PREFIXES,
    MedicalInsight,
    MedicalSuggestions,
)


@dataclass(frozen=True)
class MergeResult:
    suggestions: MedicalSuggestions
    added: dict[str, int]
    evicted: dict[str, int]
    last_update_ms: int


def parse_intelligence_update(args: Any) -> tuple[MedicalSuggestions, dict[str, Any]]:
    """
    Validate an `updateClinicalIntelligence` argument payload.

    Every category is optional. Bare strings become titles; other non-object items are dropped.
    """
    payload = args
    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except (TypeError, ValueError):
            return MedicalSuggestions(), {"status": "invalid_json", "accepted": 0, "dropped": {}}

    if not isinstance(payload, Mapping):
        return MedicalSuggestions(), {"status": "invalid_payload", "accepted": 0, "dropped": {}}

    accepted: dict[str, list[MedicalInsight]] = {}
    dropped: Counter[str] = Counter()
    for category in CATEGORY_CAPS:
        raw = payload.get(to_camel(category), payload.get(category))
        if raw is None:
            continue
        if not isinstance(raw, list):
            dropped[category] += 1
            continue

        items: list[MedicalInsight] = []
        for item in raw:
            if isinstance(item, str):
                item = {"title": item}
            if not isinstance(item, Mapping):
                dropped[category] += 1
                continue
            try:
                insight = MedicalInsight.model_validate(dict(item))
            except ValidationError:
                dropped[category] += 1
                continue
            if not insight.title and not insight.details:
                dropped[category] += 1
                continue
            items.append(insight)
        accepted[category] = items

    update = MedicalSuggestions(**accepted)
    debug = {
        "status": "ok",
        "accepted": sum(len(items) for items in accepted.values()),
        "dropped": dict(dropped),
    }
    return update, debug


def _with_ids(
    items: list[MedicalInsight],
    *,
    category: str,
    merge_seq: int,
    taken: set[str],
) -> list[MedicalInsight]:
    prefix = CATEGORY_ID_PREFIXES[category]
    out: list[MedicalInsight] = []
    for position, item in enumerate(items):
        ident = item.id or f"{prefix}-{merge_seq}-{position}"
        if ident in taken:
            ident = f"{ident}-{merge_seq}"
        suffix = 0
        candidate = ident
        while candidate in taken:
            suffix += 1
            candidate = f"{ident}-{suffix}"
        taken.add(candidate)
        out.append(item if candidate == item.id else item.model_copy(update={"id": candidate}))
    return out


def merge_suggestions(
    existing: MedicalSuggestions | None,
    update: MedicalSuggestions,
    *,
    now_ms: int,
    merge_seq: int = 0,
) -> MergeResult:
    """
    Prepend `update` to `existing` per category and truncate to each category cap.

    Arrival order decides ranking: the latest batch always leads its lists.
    Items without an id receive `{prefix}-{merge_seq}-{position}`; an incoming id already
    present in the category is re-keyed with the merge sequence so ids stay unique.
    """
    current = existing or MedicalSuggestions()
    merged: dict[str, list[MedicalInsight]] = {}
    added: dict[str, int] = {}
    evicted: dict[str, int] = {}

    for category, cap in CATEGORY_CAPS.items():
        existing_items = current.category(category)
        taken = {item.id for item in existing_items if item.id}
        incoming = _with_ids(update.category(category), category=category, merge_seq=merge_seq, taken=taken)
        combined = incoming + existing_items
        merged[category] = combined[:cap]
        added[category] = len(incoming)
        evicted[category] = max(0, len(combined) - cap)

    return MergeResult(
        suggestions=MedicalSuggestions(**merged),
        added=added,
        evicted=evicted,
        last_update_ms=int(now_ms),
    )


def insight_display_key(insight: MedicalInsight | Mapping[str, Any], position: int) -> str:
    """Stable identity for rendering: the id when present, else a content hash plus position."""
    if isinstance(insight, MedicalInsight):
        ident, title, details = insight.id, insight.title, insight.details
    else:
        ident = insight.get("id")
        title = str(insight.get("title", "") or "")
        details = str(insight.get("details", "") or "")
    if ident:
        return str(ident)
    digest = hashlib.sha1(f"{title}\x1f{details}".encode("utf-8")).hexdigest()[:12]
    return f"{digest}-{position}"
