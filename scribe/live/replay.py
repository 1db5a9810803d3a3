from __future__ import annotations

"""
Replay recorded encounters through the turn aggregator.

Design intent:
- Recorded entries carry explicit speakers, so label resolution is skipped.
- Synthetic arrival times `base_ms + timestamp / playback_speed` keep the merge window meaningful.
"""

from dataclasses import dataclass, field
from typing import Any, Sequence

from scribe.session.state import EncounterState, apply_transcript_entry
from scribe.transcript.models import TranscriptEntry
from scribe.transcript.turns import DEFAULT_MERGE_WINDOW_MS


@dataclass(frozen=True)
class ReplaySession:
    id: str
    name: str
    entries: tuple[TranscriptEntry, ...]
    metadata: dict[str, Any] = field(default_factory=dict)


def replay_entries(
    state: EncounterState,
    entries: Sequence[TranscriptEntry],
    *,
    base_ms: int,
    playback_speed: float = 1.0,
    merge_window_ms: int = DEFAULT_MERGE_WINDOW_MS,
) -> tuple[EncounterState, dict[str, Any]]:
    if playback_speed <= 0:
        raise ValueError("playback_speed must be positive.")

    current = state
    actions = {"appended": 0, "merged": 0, "dropped": 0}
    for entry in entries:
        now_ms = int(base_ms + entry.timestamp / playback_speed)
        current, debug = apply_transcript_entry(current, entry, now_ms=now_ms, merge_window_ms=merge_window_ms)
        actions[debug["action"]] += 1
    return current, {"replayed": len(entries), "actions": actions, "total_entries": len(current.transcript)}


def _entry(speaker: str, text: str, timestamp: int, **extra: Any) -> TranscriptEntry:
    return TranscriptEntry(speaker=speaker, text=text, timestamp=timestamp, **extra)


SAMPLE_SESSIONS: dict[str, ReplaySession] = {
    "demo-chest-pain": ReplaySession(
        id="demo-chest-pain",
        name="Chest Pain Evaluation (Demo)",
        metadata={"duration": 180000, "language": "en", "patientAge": 58, "chiefComplaint": "Chest pain"},
        entries=(
            _entry("Clinician", "Good morning, I'm Dr. Smith. What brings you in today?", 0),
            _entry("Patient", "I've been having this chest pain for the past few days. It's been worrying me.", 5000),
            _entry("Clinician", "I understand your concern. Can you describe the pain for me? Where exactly do you feel it?", 12000),
            _entry("Patient", "It's right here in the center of my chest. It feels like a pressure, especially when I climb stairs.", 20000),
            _entry("Clinician", "Does the pain radiate anywhere else? To your arm, jaw, or back?", 30000),
            _entry("Patient", "Sometimes it goes to my left arm, but not always.", 38000),
            _entry("Clinician", "How long does each episode last?", 45000),
            _entry("Patient", "Usually about five to ten minutes. It gets better when I rest.", 52000),
            _entry("Clinician", "Any shortness of breath, nausea, or sweating with these episodes?", 60000),
            _entry("Patient", "Yes, I do get a little short of breath and sometimes sweaty.", 68000),
            _entry("Clinician", "Do you have any history of heart disease, diabetes, or high blood pressure?", 78000),
            _entry("Patient", "I have high blood pressure and my father had a heart attack at 62.", 88000),
            _entry("Clinician", "Are you currently taking any medications?", 98000),
            _entry("Patient", "Just lisinopril for the blood pressure and baby aspirin.", 105000),
            _entry("Clinician", "Have you experienced any similar symptoms before today?", 115000),
            _entry("Patient", "I had something similar a few months ago but it went away, so I didn't think much of it.", 125000),
            _entry(
                "Clinician",
                "I'd like to do an EKG and some blood work. Given your symptoms and history, we should also consider a stress test.",
                140000,
            ),
            _entry("Patient", "Okay, whatever you think is best. I just want to make sure it's nothing serious.", 155000),
            _entry("Clinician", "We'll take good care of you. Let's start with the EKG right away.", 165000),
        ),
    ),
    "demo-multilingual-diabetes": ReplaySession(
        id="demo-multilingual-diabetes",
        name="Diabetes Follow-up (Spanish-English)",
        metadata={"duration": 150000, "language": "es", "patientAge": 45, "chiefComplaint": "Diabetes follow-up"},
        entries=(
            _entry("Clinician", "Hello Mrs. Rodriguez, how have you been managing your diabetes?", 0),
            _entry(
                "Patient",
                "Doctor, I've been trying, but sometimes I forget my medicine.",
                8000,
                original_text="Doctor, he estado tratando, pero a veces se me olvida la medicina.",
                detected_language="es",
            ),
            _entry("Clinician", "I understand. How often do you miss doses?", 18000),
            _entry(
                "Patient",
                "Maybe two or three times a week. In the mornings when I'm rushed.",
                26000,
                original_text="Tal vez dos o tres veces por semana. En las mañanas cuando estoy apurada.",
                detected_language="es",
            ),
            _entry("Clinician", "Have you been checking your blood sugar at home?", 38000),
            _entry(
                "Patient",
                "Yes, it's usually around 180 in the mornings.",
                46000,
                original_text="Sí, usualmente está alrededor de 180 en las mañanas.",
                detected_language="es",
            ),
            _entry("Clinician", "That's a bit high. We should discuss ways to help you remember your medication.", 58000),
            _entry(
                "Patient",
                "What do you suggest, doctor?",
                70000,
                original_text="¿Qué me sugiere, doctor?",
                detected_language="es",
            ),
        ),
    ),
}
