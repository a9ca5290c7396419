"""Remote streaming session against the Gemini Live API."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, List, Protocol

from google import genai
from google.genai import types
from websockets.exceptions import ConnectionClosedOK

from .audio_utils import decode_base64_pcm
from .config import LiveConfig
from .errors import SessionConnectionError
from .models import (
    AudioChunkReceived,
    Interrupted,
    Role,
    TranscriptReceived,
    TurnComplete,
)

logger = logging.getLogger("healingvoice")


class LiveConnection(Protocol):
    async def send_audio(self, pcm: bytes, mime_type: str) -> None: ...

    def events(self) -> AsyncIterator[Any]: ...

    async def close(self) -> None: ...


class LiveTransport(Protocol):
    async def connect(self, settings: LiveConfig) -> LiveConnection: ...


def parse_server_message(message: Any) -> List[Any]:
    """Normalize one server message into controller events.

    Order within a message: audio, interruption, model text, model transcript,
    user transcript, turn completion.
    """
    events: List[Any] = []
    content = getattr(message, "server_content", None)
    if content is None:
        return events

    parts = []
    model_turn = getattr(content, "model_turn", None)
    if model_turn is not None and model_turn.parts:
        parts = list(model_turn.parts)

    for part in parts:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            events.append(AudioChunkReceived(samples=decode_base64_pcm(inline.data)))

    if getattr(content, "interrupted", False):
        events.append(Interrupted())

    for part in parts:
        text = getattr(part, "text", None)
        if text and not getattr(part, "thought", False):
            events.append(TranscriptReceived(role=Role.MODEL, text=text))

    output_tx = getattr(content, "output_transcription", None)
    if output_tx is not None and output_tx.text:
        events.append(TranscriptReceived(role=Role.MODEL, text=output_tx.text))

    input_tx = getattr(content, "input_transcription", None)
    if input_tx is not None and input_tx.text:
        events.append(TranscriptReceived(role=Role.USER, text=input_tx.text))

    if getattr(content, "turn_complete", False):
        events.append(TurnComplete())
    return events


def build_connect_config(settings: LiveConfig) -> types.LiveConnectConfig:
    return types.LiveConnectConfig(
        response_modalities=[types.Modality.AUDIO],
        speech_config=types.SpeechConfig(
            voice_config=types.VoiceConfig(
                prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=settings.voice)
            )
        ),
        input_audio_transcription=types.AudioTranscriptionConfig(),
        output_audio_transcription=types.AudioTranscriptionConfig(),
        system_instruction=types.Content(
            parts=[types.Part(text=settings.system_instruction)]
        ),
    )


class GeminiLiveConnection:
    def __init__(self, session, stack: AsyncExitStack) -> None:
        self._session = session
        self._stack = stack
        self._closed = False

    async def send_audio(self, pcm: bytes, mime_type: str) -> None:
        await self._session.send_realtime_input(
            audio=types.Blob(data=pcm, mime_type=mime_type)
        )

    async def events(self) -> AsyncIterator[Any]:
        """Yield events until the server ends the session; transport errors propagate."""
        try:
            while not self._closed:
                received = 0
                # receive() stops after each completed turn.
                async for message in self._session.receive():
                    received += 1
                    if getattr(message, "go_away", None) is not None:
                        logger.info("Live session will be closed by the server soon")
                    for event in parse_server_message(message):
                        yield event
                if not received:
                    return
        except ConnectionClosedOK as exc:
            logger.info("Live session closed by server: %s", exc)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._stack.aclose()


class GeminiLiveTransport:
    """Opens Live API sessions with the google-genai async client."""

    async def connect(self, settings: LiveConfig) -> GeminiLiveConnection:
        stack = AsyncExitStack()
        try:
            client = genai.Client(api_key=settings.api_key)
            session = await stack.enter_async_context(
                client.aio.live.connect(
                    model=settings.model, config=build_connect_config(settings)
                )
            )
        except asyncio.CancelledError:
            await stack.aclose()
            raise
        except Exception as exc:
            await stack.aclose()
            raise SessionConnectionError(str(exc) or "handshake failed") from exc
        logger.info("Live session opened (model=%s, voice=%s)", settings.model, settings.voice)
        return GeminiLiveConnection(session, stack)
