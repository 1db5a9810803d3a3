from __future__ import annotations

import base64

import numpy as np

PCM_MIME_TEMPLATE = "audio/pcm;rate={rate}"

AUDIO_ENCODINGS = ("pcm16", "f32le")


def pcm_mime_type(sample_rate_hz: int = 16000) -> str:
    return PCM_MIME_TEMPLATE.format(rate=int(sample_rate_hz))


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert mono float32 samples in [-1, 1] to little-endian int16 PCM bytes."""
    audio = np.asarray(samples, dtype=np.float32).reshape(-1)
    audio = np.nan_to_num(np.clip(audio, -1.0, 1.0))
    return (audio * 32767.0).astype("<i2").tobytes()


def pcm16_bytes_to_base64(data: bytes) -> str:
    if len(data) % 2:
        raise ValueError("PCM16 payload must contain an even number of bytes.")
    return base64.b64encode(data).decode("ascii")


def decode_pcm16_base64(data_b64: str) -> bytes:
    raw = base64.b64decode(data_b64, validate=True)
    if len(raw) % 2:
        raise ValueError("PCM16 payload must contain an even number of bytes.")
    return raw


def decode_audio_chunk(data_b64: str, encoding: str = "pcm16") -> bytes:
    """
    Decode one client audio chunk into PCM16 bytes for the live stream.

    `f32le` chunks carry raw little-endian float32 microphone samples and are
    converted here; `pcm16` chunks pass through after validation.
    """
    if encoding == "pcm16":
        return decode_pcm16_base64(data_b64)
    if encoding != "f32le":
        raise ValueError(f"Unsupported audio encoding: {encoding}")
    raw = base64.b64decode(data_b64, validate=True)
    if len(raw) % 4:
        raise ValueError("float32 payload must contain a multiple of four bytes.")
    return float32_to_pcm16(np.frombuffer(raw, dtype="<f4"))
