from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

_SPEAKER_CHOICES = {"Clinician", "Patient", "System"}


def _project_root() -> Path:
    # scribe/internal_core/config.py -> scribe -> project root
    return Path(__file__).resolve().parents[2]


def _getenv_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return default if value is None else value


def _getenv_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _getenv_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _getenv_first(names: list[str], default: str) -> str:
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value.strip()
    return default


def _getenv_speaker(name: str, default: str) -> str:
    raw = _getenv_str(name, default).strip()
    for choice in _SPEAKER_CHOICES:
        if raw.lower() == choice.lower():
            return choice
    return default


@dataclass(frozen=True)
class ScribeConfig:
    SCRIBE_GEMINI_API_KEY: str
    SCRIBE_LIVE_MODEL: str
    SCRIBE_PACKET_MODEL: str
    SCRIBE_SUGGESTIONS_MODEL: str
    SCRIBE_VISION_MODEL: str
    SCRIBE_LIVE_VOICE: str
    SCRIBE_USER_CHANNEL_SPEAKER: str
    SCRIBE_MODEL_CHANNEL_SPEAKER: str
    SCRIBE_TURN_MERGE_WINDOW_MS: int
    SCRIBE_AUDIO_SAMPLE_RATE_HZ: int
    SCRIBE_SESSION_TTL_SECONDS: int
    SCRIBE_MEMORY_DIR: str
    SCRIBE_MEMORY_KEY_PREFIX: str
    SCRIBE_LOG_LEVEL: str
    SCRIBE_CORS_ALLOW_ALL: bool

    def memory_dir_path(self, repo_root: Path | None = None) -> Path:
        base = repo_root or _project_root()
        return (base / self.SCRIBE_MEMORY_DIR).resolve()


def load_config() -> ScribeConfig:
    return ScribeConfig(
        SCRIBE_GEMINI_API_KEY=_getenv_first(
            ["SCRIBE_GEMINI_API_KEY", "GEMINI_API_KEY", "API_KEY"], ""
        ),
        SCRIBE_LIVE_MODEL=_getenv_str(
            "SCRIBE_LIVE_MODEL", "gemini-2.5-flash-native-audio-preview-12-2025"
        ),
        SCRIBE_PACKET_MODEL=_getenv_str("SCRIBE_PACKET_MODEL", "gemini-2.5-flash"),
        SCRIBE_SUGGESTIONS_MODEL=_getenv_str("SCRIBE_SUGGESTIONS_MODEL", "gemini-3-flash-preview"),
        SCRIBE_VISION_MODEL=_getenv_str("SCRIBE_VISION_MODEL", "gemini-2.5-flash-image"),
        SCRIBE_LIVE_VOICE=_getenv_str("SCRIBE_LIVE_VOICE", "Charon"),
        SCRIBE_USER_CHANNEL_SPEAKER=_getenv_speaker("SCRIBE_USER_CHANNEL_SPEAKER", "Patient"),
        SCRIBE_MODEL_CHANNEL_SPEAKER=_getenv_speaker("SCRIBE_MODEL_CHANNEL_SPEAKER", "System"),
        SCRIBE_TURN_MERGE_WINDOW_MS=_getenv_int("SCRIBE_TURN_MERGE_WINDOW_MS", 3000),
        SCRIBE_AUDIO_SAMPLE_RATE_HZ=_getenv_int("SCRIBE_AUDIO_SAMPLE_RATE_HZ", 16000),
        SCRIBE_SESSION_TTL_SECONDS=_getenv_int("SCRIBE_SESSION_TTL_SECONDS", 14400),
        SCRIBE_MEMORY_DIR=_getenv_str("SCRIBE_MEMORY_DIR", "./tmp/memory"),
        SCRIBE_MEMORY_KEY_PREFIX=_getenv_str(
            "SCRIBE_MEMORY_KEY_PREFIX", "clinical_os_patient_memory_"
        ),
        SCRIBE_LOG_LEVEL=_getenv_str("SCRIBE_LOG_LEVEL", "INFO"),
        SCRIBE_CORS_ALLOW_ALL=_getenv_bool("SCRIBE_CORS_ALLOW_ALL", True),
    )
