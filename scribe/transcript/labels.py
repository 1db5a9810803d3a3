from __future__ import annotations

"""
Explicit speaker-label detection for transcription fragments.

Design intent:
- A spoken or typed role prefix ("Doctor: ...", "Patient: ...") always wins over channel defaults.
- Unlabeled fragments keep the channel-based speaker; matching never raises.
"""

import re
from dataclasses import dataclass

from scribe.transcript.models import Speaker

_LABEL_RE = re.compile(r"^(clinician|doctor|patient)\s*:\s*(.+)$", flags=re.IGNORECASE | re.DOTALL)


@dataclass(frozen=True)
class LabelResolution:
    speaker: Speaker
    text: str
    label: str | None = None

    @property
    def labeled(self) -> bool:
        return self.label is not None


def resolve_speaker_label(text: str, default_speaker: Speaker) -> LabelResolution:
    """
    Strip a leading role label and map it to a speaker.

    `patient` maps to Patient; `clinician` and `doctor` map to Clinician.
    Without a label the fragment is returned stripped, attributed to `default_speaker`.
    """
    source = str(text or "").strip()
    match = _LABEL_RE.match(source)
    if match is None:
        return LabelResolution(speaker=default_speaker, text=source)

    label = match.group(1).lower()
    remainder = match.group(2).strip()
    if not remainder:
        return LabelResolution(speaker=default_speaker, text=source)

    speaker: Speaker = "Patient" if label == "patient" else "Clinician"
    return LabelResolution(speaker=speaker, text=remainder, label=label)
