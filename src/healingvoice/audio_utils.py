"""PCM16 audio helpers."""

from __future__ import annotations

import base64
from typing import Union

import numpy as np

INPUT_SAMPLE_RATE_HZ = 16000


def float_to_pcm16(samples) -> np.ndarray:
    """Convert float samples to signed 16-bit PCM.

    Values are clamped to [-1.0, 1.0]. Negative samples scale by 32768 and
    non-negative samples by 32767, so 1.0 maps to 32767 and -1.0 to -32768.
    Scaled values truncate toward zero.
    """
    data = np.clip(np.asarray(samples, dtype=np.float64).reshape(-1), -1.0, 1.0)
    scaled = np.where(data < 0, data * 32768.0, data * 32767.0)
    return np.trunc(scaled).astype(np.int16)


def pcm16_to_float(pcm) -> np.ndarray:
    data = np.asarray(pcm, dtype=np.int16).reshape(-1)
    return (data.astype(np.float32) / np.float32(32768.0)).astype(np.float32)


def pcm16_to_bytes(pcm) -> bytes:
    return np.asarray(pcm, dtype="<i2").tobytes()


def bytes_to_pcm16(raw: bytes) -> np.ndarray:
    if len(raw) % 2:
        raise ValueError("PCM16 payload must contain an even number of bytes.")
    return np.frombuffer(raw, dtype="<i2").astype(np.int16)


def encode_base64_pcm(samples) -> str:
    return base64.b64encode(pcm16_to_bytes(float_to_pcm16(samples))).decode("ascii")


def decode_base64_pcm(data: Union[bytes, bytearray, str]) -> np.ndarray:
    """Decode a model audio payload into float32 samples.

    The SDK hands over raw bytes; the wire form is base64 text. Both are accepted.
    """
    if isinstance(data, str):
        raw = base64.b64decode(data)
    else:
        raw = bytes(data)
    return pcm16_to_float(bytes_to_pcm16(raw))


def mime_type_for_rate(sample_rate_hz: int = INPUT_SAMPLE_RATE_HZ) -> str:
    return f"audio/pcm;rate={sample_rate_hz}"

