from __future__ import annotations

"""
Format speaker turns into compact transcript lines.

Design intent:
- Keep prompt-facing transcript text deterministic.
- Preserve turn order exactly as consolidated, one line per turn.
"""

from typing import Sequence

from scribe.transcript.models import TranscriptEntry


def format_transcript(entries: Sequence[TranscriptEntry]) -> str:
    lines: list[str] = []
    for entry in entries:
        text = " ".join(entry.text.split())
        if text:
            lines.append(f"{entry.speaker}: {text}")
    return "\n".join(lines)
