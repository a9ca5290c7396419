"""Serial playback of model audio."""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Callable, Deque, List, Optional, Protocol, Tuple

import numpy as np

from .errors import DeviceError

logger = logging.getLogger("healingvoice")


class PlaybackSink(Protocol):
    @property
    def is_active(self) -> bool: ...

    def play(self, chunk_id: int, samples: np.ndarray) -> None: ...

    def stop_current(self) -> None: ...


class PlaybackQueue:
    """FIFO of decoded chunks awaiting playback; ids increase monotonically."""

    def __init__(self) -> None:
        self._items: Deque[Tuple[int, np.ndarray]] = deque()
        self._next_id = 1

    def append(self, samples: np.ndarray) -> int:
        chunk_id = self._next_id
        self._next_id += 1
        self._items.append((chunk_id, samples))
        return chunk_id

    def pop(self) -> Tuple[int, np.ndarray]:
        return self._items.popleft()

    def clear(self) -> int:
        dropped = len(self._items)
        self._items.clear()
        return dropped

    def __len__(self) -> int:
        return len(self._items)


class SerialPlayer:
    """Plays queued chunks strictly one at a time, in arrival order.

    ``advance`` starts the oldest chunk only when nothing is playing and the
    sink is active. ``on_finished`` must be called on natural completion; it
    ignores completions for chunks that were stopped by an interruption.
    """

    def __init__(self, sink: Optional[PlaybackSink] = None) -> None:
        self.queue = PlaybackQueue()
        self.sink = sink
        self.current: Optional[int] = None
        self.played: List[int] = []

    @property
    def playing(self) -> bool:
        return self.current is not None

    def enqueue(self, samples: np.ndarray) -> int:
        chunk_id = self.queue.append(samples)
        self.advance()
        return chunk_id

    def advance(self) -> bool:
        if self.current is not None or not len(self.queue):
            return False
        if self.sink is None or not self.sink.is_active:
            return False
        chunk_id, samples = self.queue.pop()
        self.current = chunk_id
        self.played.append(chunk_id)
        self.sink.play(chunk_id, samples)
        return True

    def on_finished(self, chunk_id: int) -> bool:
        if chunk_id != self.current:
            return False
        self.current = None
        self.advance()
        return True

    def interrupt(self) -> int:
        dropped = self.queue.clear()
        if self.current is not None:
            self.current = None
            if self.sink is not None:
                self.sink.stop_current()
        return dropped

    def reset(self) -> None:
        self.queue.clear()
        self.current = None
        self.sink = None


class SpeakerOutput:
    """One persistent output stream; plays a single chunk at a time."""

    def __init__(
        self,
        sample_rate_hz: int = 24000,
        device_name: Optional[str] = None,
        on_finished: Optional[Callable[[int], None]] = None,
        blocksize: int = 1024,
    ) -> None:
        self.sample_rate_hz = sample_rate_hz
        self.device_name = device_name
        self.on_finished = on_finished
        self.blocksize = blocksize
        self._lock = threading.Lock()
        self._current: Optional[Tuple[int, np.ndarray, int]] = None
        self._stream = None

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    def open(self) -> None:
        if self._stream is not None:
            return
        try:
            import sounddevice as sd
        except Exception as exc:  # pragma: no cover - environment-dependent
            raise DeviceError("sounddevice is required for playback.") from exc

        from .recorder import find_output_device

        try:
            device = find_output_device(self.device_name)
            stream = sd.OutputStream(
                samplerate=self.sample_rate_hz,
                channels=1,
                dtype="float32",
                device=device.get("index"),
                blocksize=self.blocksize,
                callback=self._callback,
            )
            stream.start()
        except (sd.PortAudioError, RuntimeError, ValueError) as exc:
            raise DeviceError(f"speaker unavailable: {exc}") from exc
        self._stream = stream
        logger.info("Speaker output opened at %s Hz", self.sample_rate_hz)

    def play(self, chunk_id: int, samples: np.ndarray) -> None:
        with self._lock:
            self._current = (chunk_id, np.asarray(samples, dtype=np.float32), 0)

    def stop_current(self) -> None:
        with self._lock:
            self._current = None

    def close(self) -> None:
        self.stop_current()
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as exc:
            logger.warning("Speaker close failed: %s", exc)

    def _callback(self, outdata, frames, _time, status) -> None:
        if status:
            logger.debug("Playback status: %s", status)
        finished = None
        with self._lock:
            if self._current is None:
                outdata.fill(0)
                return
            chunk_id, samples, pos = self._current
            take = min(frames, len(samples) - pos)
            outdata[:take, 0] = samples[pos:pos + take]
            outdata[take:, 0] = 0.0
            pos += take
            if pos >= len(samples):
                self._current = None
                finished = chunk_id
            else:
                self._current = (chunk_id, samples, pos)
        if finished is not None and self.on_finished is not None:
            self.on_finished(finished)
