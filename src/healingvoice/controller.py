"""Lifecycle of one real-time voice conversation."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple

import numpy as np

from .audio_utils import float_to_pcm16, mime_type_for_rate, pcm16_to_bytes
from .config import MIN_API_KEY_LENGTH, LiveConfig
from .errors import ConfigurationError, RemoteError, describe_error
from .live_client import GeminiLiveTransport, LiveTransport
from .logging_utils import log_event
from .models import (
    AudioChunkReceived,
    CaptureBlock,
    ConnectionState,
    Interrupted,
    PlaybackFinished,
    RemoteClosed,
    RemoteFailed,
    Role,
    SessionSnapshot,
    TranscriptEntry,
    TranscriptReceived,
    TurnComplete,
)
from .playback import SerialPlayer, SpeakerOutput
from .recorder import MicrophoneCapture

logger = logging.getLogger("healingvoice")

Observer = Callable[[SessionSnapshot], None]

# Capture blocks queued for sending; blocks past this are dropped.
MAX_PENDING_CAPTURE_BLOCKS = 32


@dataclass
class SessionResources:
    """Everything one session holds; released together by ``release``."""

    generation: int
    events: asyncio.Queue = field(default_factory=asyncio.Queue)
    player: SerialPlayer = field(default_factory=SerialPlayer)
    closed: asyncio.Event = field(default_factory=asyncio.Event)
    capture: Any = None
    speaker: Any = None
    connection: Any = None
    consumer: Optional[asyncio.Task] = None
    receiver: Optional[asyncio.Task] = None
    streaming: bool = False
    closing: bool = False
    pending_capture: int = 0

    def release(self) -> None:
        self.streaming = False
        self.player.interrupt()
        self.player.reset()
        for name in ("capture", "speaker"):
            handle = getattr(self, name)
            setattr(self, name, None)
            if handle is None:
                continue
            try:
                handle.close()
            except Exception:
                logger.exception("Failed to release %s", name)


class AudioSessionController:
    """Owns microphone, remote session and playback for one conversation at a time.

    All device and network callbacks are turned into events on a single queue
    and handled one at a time by a consumer task. Events from a session that is
    being torn down are dropped.
    """

    def __init__(
        self,
        settings: LiveConfig,
        transport: Optional[LiveTransport] = None,
        capture_factory: Optional[Callable[[Callable[[np.ndarray], None]], Any]] = None,
        speaker_factory: Optional[Callable[[Callable[[int], None]], Any]] = None,
        input_device: Optional[str] = None,
        output_device: Optional[str] = None,
    ) -> None:
        self.settings = settings
        self.transport = transport or GeminiLiveTransport()
        self.input_device = input_device
        self.output_device = output_device
        self._capture_factory = capture_factory or self._default_capture
        self._speaker_factory = speaker_factory or self._default_speaker
        self._state = ConnectionState.IDLE
        self._error: Optional[str] = None
        self._transcript: List[TranscriptEntry] = []
        self._turn_count = 0
        self._generation = 0
        self._resources: Optional[SessionResources] = None
        self._observers: List[Observer] = []

    # Observable state

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def transcript(self) -> Tuple[TranscriptEntry, ...]:
        return tuple(self._transcript)

    @property
    def turn_count(self) -> int:
        return self._turn_count

    @property
    def queued_chunks(self) -> int:
        return len(self._resources.player.queue) if self._resources else 0

    @property
    def is_playing(self) -> bool:
        return bool(self._resources and self._resources.player.playing)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            transcript=self.transcript,
            turn_count=self._turn_count,
            error=self._error,
            queued_chunks=self.queued_chunks,
            playing=self.is_playing,
        )

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    # Lifecycle

    async def connect(self) -> None:
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return
        self._error = None
        try:
            self._validate_credentials()
        except ConfigurationError as exc:
            logger.error("Live session not started: %s", exc)
            self._error = describe_error(exc)
            self._notify()
            return

        loop = asyncio.get_running_loop()
        self._generation += 1
        resources = SessionResources(generation=self._generation)
        self._resources = resources
        self._set_state(ConnectionState.CONNECTING)
        generation = resources.generation

        try:
            resources.speaker = self._speaker_factory(
                lambda chunk_id: self._post_threadsafe(loop, generation, PlaybackFinished(chunk_id))
            )
            resources.speaker.open()
            resources.player.sink = resources.speaker
            resources.capture = self._capture_factory(
                lambda samples: self._post_threadsafe(loop, generation, CaptureBlock(samples))
            )
            resources.capture.start()
            connection = await self.transport.connect(self.settings)
        except asyncio.CancelledError:
            if not resources.closing:
                logger.info("Connect cancelled; releasing devices")
                await self._teardown(resources, ConnectionState.CLOSED)
            raise
        except Exception as exc:
            if resources.closing:
                logger.info("Connect failed after disconnect: %s", exc)
                return
            logger.error("Failed to connect", exc_info=exc)
            await self._teardown(resources, ConnectionState.ERRORED, exc)
            return

        if resources.closing:
            # disconnect() won the race; drop the late connection.
            await self._close_connection(connection)
            return

        resources.connection = connection
        resources.streaming = True
        resources.consumer = asyncio.create_task(self._consume(resources))
        resources.receiver = asyncio.create_task(self._receive(resources))
        self._set_state(ConnectionState.OPEN)
        log_event("session_open", generation=generation, voice=self.settings.voice)

    async def disconnect(self) -> None:
        resources = self._resources
        if resources is None:
            return
        await self._teardown(resources, ConnectionState.CLOSED)

    async def wait_closed(self) -> None:
        resources = self._resources
        if resources is not None:
            await resources.closed.wait()

    # Internals

    def _default_capture(self, on_block: Callable[[np.ndarray], None]) -> MicrophoneCapture:
        return MicrophoneCapture(
            on_block,
            sample_rate_hz=self.settings.input_sample_rate_hz,
            block_size=self.settings.block_size,
            device_name=self.input_device,
        )

    def _default_speaker(self, on_finished: Callable[[int], None]) -> SpeakerOutput:
        return SpeakerOutput(
            sample_rate_hz=self.settings.output_sample_rate_hz,
            device_name=self.output_device,
            on_finished=on_finished,
        )

    def _validate_credentials(self) -> None:
        key = (self.settings.api_key or "").strip()
        if not key:
            raise ConfigurationError(
                "Gemini API key is missing. Set GEMINI_API_KEY (or API_KEY) and try again."
            )
        if len(key) < MIN_API_KEY_LENGTH:
            raise ConfigurationError(
                "Gemini API key looks malformed (too short). Check GEMINI_API_KEY."
            )

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug("State %s -> %s", self._state.value, state.value)
        self._state = state
        self._notify()

    def _notify(self) -> None:
        if not self._observers:
            return
        snap = self.snapshot()
        for observer in list(self._observers):
            try:
                observer(snap)
            except Exception:
                logger.exception("Session observer failed")

    def _post(self, generation: int, event: Any) -> None:
        resources = self._resources
        if resources is None or resources.generation != generation or resources.closing:
            return
        if isinstance(event, CaptureBlock):
            if not resources.streaming:
                return
            if resources.pending_capture >= MAX_PENDING_CAPTURE_BLOCKS:
                logger.warning("Send backlog full; dropping capture block")
                return
            resources.pending_capture += 1
        resources.events.put_nowait(event)

    def _post_threadsafe(self, loop: asyncio.AbstractEventLoop, generation: int, event: Any) -> None:
        try:
            loop.call_soon_threadsafe(self._post, generation, event)
        except RuntimeError:
            # Event loop already closed; the session is gone.
            pass

    async def _receive(self, resources: SessionResources) -> None:
        try:
            async for event in resources.connection.events():
                self._post(resources.generation, event)
        except Exception as exc:
            logger.error("Live session transport failed", exc_info=exc)
            self._post(resources.generation, RemoteFailed(error=exc))
            return
        self._post(resources.generation, RemoteClosed(reason="stream ended"))

    async def _consume(self, resources: SessionResources) -> None:
        while not resources.closing:
            event = await resources.events.get()
            if resources.closing:
                break
            await self._handle(resources, event)

    async def _handle(self, resources: SessionResources, event: Any) -> None:
        if isinstance(event, CaptureBlock):
            resources.pending_capture -= 1
            await self._send_block(resources, event.samples)
        elif isinstance(event, AudioChunkReceived):
            resources.player.enqueue(event.samples)
            self._notify()
        elif isinstance(event, PlaybackFinished):
            if resources.player.on_finished(event.chunk_id):
                self._notify()
        elif isinstance(event, Interrupted):
            dropped = resources.player.interrupt()
            log_event("interrupted", level=logging.DEBUG, dropped=dropped)
            self._notify()
        elif isinstance(event, TranscriptReceived):
            self._transcript.append(TranscriptEntry(role=event.role, text=event.text))
            if event.role == Role.USER:
                self._turn_count += 1
            self._notify()
        elif isinstance(event, TurnComplete):
            logger.debug("Model turn complete")
        elif isinstance(event, RemoteClosed):
            log_event("remote_closed", reason=event.reason or None)
            await self._teardown(resources, ConnectionState.CLOSED)
        elif isinstance(event, RemoteFailed):
            error = event.error or RemoteError(event.message)
            logger.error("Live session error: %s", error)
            await self._teardown(resources, ConnectionState.ERRORED, error)
        else:
            logger.warning("Ignoring unknown event %r", event)

    async def _send_block(self, resources: SessionResources, samples: np.ndarray) -> None:
        if not resources.streaming:
            return
        pcm = pcm16_to_bytes(float_to_pcm16(samples))
        try:
            await resources.connection.send_audio(
                pcm, mime_type_for_rate(self.settings.input_sample_rate_hz)
            )
        except Exception as exc:
            logger.error("Failed to send audio block", exc_info=exc)
            await self._teardown(resources, ConnectionState.ERRORED, exc)

    async def _close_connection(self, connection: Any) -> None:
        try:
            await connection.close()
        except Exception as exc:
            logger.warning("Live session close failed: %s", exc)

    async def _teardown(
        self,
        resources: SessionResources,
        final_state: ConnectionState,
        error: Optional[BaseException] = None,
    ) -> None:
        if resources.closing:
            return
        resources.closing = True
        if self._resources is resources:
            self._resources = None

        resources.release()

        current = asyncio.current_task()
        pending = [
            task
            for task in (resources.receiver, resources.consumer)
            if task is not None and task is not current and not task.done()
        ]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        connection, resources.connection = resources.connection, None
        if connection is not None:
            await self._close_connection(connection)

        if error is not None:
            self._error = describe_error(error)
        self._set_state(final_state)
        resources.closed.set()
        log_event(
            "session_closed",
            generation=resources.generation,
            state=final_state.value,
            turns=self._turn_count,
        )
