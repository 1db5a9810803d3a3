from __future__ import annotations

"""
Consolidate streaming transcription fragments into speaker turns.

Design intent:
- Speech recognition delivers fragments faster than natural turn boundaries.
- A same-speaker fragment arriving inside the merge window extends the last turn in place.
- Anything else appends a new turn; existing turns are never reordered.
"""

from dataclasses import dataclass
from typing import Any, Literal, Sequence

from scribe.transcript.labels import resolve_speaker_label
from scribe.transcript.models import Speaker, TranscriptEntry, TranscriptFragment

TurnAction = Literal["appended", "merged", "dropped"]

DEFAULT_MERGE_WINDOW_MS = 3000


@dataclass(frozen=True)
class TurnPolicy:
    merge_window_ms: int = DEFAULT_MERGE_WINDOW_MS
    user_channel_speaker: Speaker = "Patient"
    model_channel_speaker: Speaker = "System"

    @classmethod
    def from_config(cls, config: Any) -> "TurnPolicy":
        return cls(
            merge_window_ms=int(config.SCRIBE_TURN_MERGE_WINDOW_MS),
            user_channel_speaker=config.SCRIBE_USER_CHANNEL_SPEAKER,
            model_channel_speaker=config.SCRIBE_MODEL_CHANNEL_SPEAKER,
        )

    def channel_speaker(self, is_user_channel: bool) -> Speaker:
        return self.user_channel_speaker if is_user_channel else self.model_channel_speaker


@dataclass(frozen=True)
class TurnAppendResult:
    entries: tuple[TranscriptEntry, ...]
    action: TurnAction
    entry: TranscriptEntry | None = None


def _join_optional(left: str | None, right: str | None) -> str | None:
    if left and right:
        return f"{left} {right}"
    return left or right


def append_turn(
    entries: Sequence[TranscriptEntry],
    *,
    speaker: Speaker,
    text: str,
    now_ms: int,
    merge_window_ms: int = DEFAULT_MERGE_WINDOW_MS,
    original_text: str | None = None,
    detected_language: str | None = None,
    confidence: float | None = None,
) -> TurnAppendResult:
    current = tuple(entries)
    normalized = str(text or "").strip()
    if not normalized:
        return TurnAppendResult(entries=current, action="dropped")

    last = current[-1] if current else None
    # Clock skew must not move timestamps backwards.
    timestamp = max(int(now_ms), last.timestamp) if last is not None else int(now_ms)

    if last is not None and last.speaker == speaker and int(now_ms) - last.timestamp < merge_window_ms:
        merged = last.model_copy(
            update={
                "text": f"{last.text} {normalized}",
                "timestamp": timestamp,
                "original_text": _join_optional(last.original_text, original_text),
                "detected_language": last.detected_language or detected_language,
            }
        )
        return TurnAppendResult(entries=current[:-1] + (merged,), action="merged", entry=merged)

    created = TranscriptEntry(
        speaker=speaker,
        text=normalized,
        original_text=original_text,
        detected_language=detected_language,
        timestamp=timestamp,
        confidence=confidence,
    )
    return TurnAppendResult(entries=current + (created,), action="appended", entry=created)


def ingest_fragment(
    entries: Sequence[TranscriptEntry],
    fragment: TranscriptFragment,
    *,
    now_ms: int,
    policy: TurnPolicy | None = None,
) -> tuple[TurnAppendResult, dict[str, Any]]:
    """
    Resolve the fragment's speaker and fold it into the turn sequence.

    Label resolution runs before the merge rule so a label switch always opens a new turn.
    `is_final` is advisory and only reported in the debug payload.
    """
    resolved_policy = policy or TurnPolicy()
    channel_speaker = resolved_policy.channel_speaker(bool(fragment.is_user_channel))
    resolution = resolve_speaker_label(fragment.text, channel_speaker)

    result = append_turn(
        entries,
        speaker=resolution.speaker,
        text=resolution.text,
        now_ms=now_ms,
        merge_window_ms=resolved_policy.merge_window_ms,
    )
    debug = {
        "action": result.action,
        "speaker": resolution.speaker,
        "channel_speaker": channel_speaker,
        "label": resolution.label,
        "is_final": bool(fragment.is_final),
        "total_entries": len(result.entries),
    }
    return result, debug
