"""Microphone capture and device discovery."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from .errors import DeviceError, MicrophonePermissionError

logger = logging.getLogger("healingvoice")

PERMISSION_MARKERS = ("permission", "denied", "not authorized", "unauthorized")


def _sounddevice():
    try:
        import sounddevice as sd
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise DeviceError("sounddevice is required for audio device access.") from exc
    return sd


def list_input_devices() -> List[Dict[str, Any]]:
    devices = _sounddevice().query_devices()
    return [dict(d) for d in devices if d.get("max_input_channels", 0) > 0]


def list_output_devices() -> List[Dict[str, Any]]:
    devices = _sounddevice().query_devices()
    return [dict(d) for d in devices if d.get("max_output_channels", 0) > 0]


def select_preferred_device(
    candidates: List[Dict[str, Any]],
    prefer_name: Optional[str] = None,
    kind: str = "input",
) -> Dict[str, Any]:
    """Pick a device by name substring, else the host default (index None)."""
    if not candidates:
        raise DeviceError(f"No {kind} devices found.")
    if prefer_name:
        preferred = [
            d for d in candidates if prefer_name.lower() in d.get("name", "").lower()
        ]
        if preferred:
            return preferred[0]
        logger.warning("No %s device matches %r; using default", kind, prefer_name)
    return {"index": None, "name": "default"}


def find_input_device(prefer_name: Optional[str] = None) -> Dict[str, Any]:
    return select_preferred_device(list_input_devices(), prefer_name, kind="input")


def find_output_device(prefer_name: Optional[str] = None) -> Dict[str, Any]:
    return select_preferred_device(list_output_devices(), prefer_name, kind="output")


def classify_device_failure(exc: BaseException, kind: str = "microphone") -> Exception:
    message = str(exc)
    if isinstance(exc, PermissionError) or any(
        marker in message.lower() for marker in PERMISSION_MARKERS
    ):
        return MicrophonePermissionError(message or "microphone access denied")
    return DeviceError(f"{kind} unavailable: {message}" if message else f"{kind} unavailable")


class MicrophoneCapture:
    """Push-source capture: each block of float32 mono samples goes to ``on_block``.

    The callback runs on the audio thread; it must not block.
    """

    def __init__(
        self,
        on_block: Callable[[np.ndarray], None],
        sample_rate_hz: int = 16000,
        block_size: int = 4096,
        device_name: Optional[str] = None,
    ) -> None:
        self.on_block = on_block
        self.sample_rate_hz = sample_rate_hz
        self.block_size = block_size
        self.device_name = device_name
        self._stream = None

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    def start(self) -> None:
        if self._stream is not None:
            return
        sd = _sounddevice()
        try:
            device = find_input_device(self.device_name)
            stream = sd.InputStream(
                samplerate=self.sample_rate_hz,
                channels=1,
                dtype="float32",
                blocksize=self.block_size,
                device=device.get("index"),
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, PermissionError, RuntimeError, ValueError) as exc:
            raise classify_device_failure(exc) from exc
        self._stream = stream
        logger.info(
            "Microphone opened at %s Hz (block %s)", self.sample_rate_hz, self.block_size
        )

    def close(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            logger.warning("Microphone close failed: %s", exc)

    def _callback(self, indata, _frames, _time, status) -> None:
        if status:
            logger.debug("Capture status: %s", status)
        self.on_block(indata[:, 0].copy())
