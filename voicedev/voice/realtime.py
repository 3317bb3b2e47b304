"""Realtime Voice Session - OpenAI Realtime API over WebSocket.

One long-lived socket carries both directions:
- a writer task drains the outbound command queue, so commands issued
  from orchestrator handlers never wait on the network
- a reader task translates server events into VoiceEvent records and
  hands them to the sink

Session configuration (sent once after connect):
- pcm16 audio in and out
- whisper-1 input transcription
- server VAD: threshold 0.5, 300ms prefix padding, 500ms silence
- the five voice tools

Handshakes that fail on the network or with a 5xx/408/429 are retried
with exponential backoff. A rejected key or unknown model fails on the
first attempt.
"""

from __future__ import annotations

import asyncio
import json
import random
from dataclasses import dataclass
from typing import Any, Iterator

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidStatus

from voicedev.exceptions import VoiceConnectionError, VoiceNotConnectedError
from voicedev.observability.logging import get_logger
from voicedev.observability.metrics import record_error, update_voice_connected
from voicedev.orchestrator.tools import VOICE_TOOLS
from voicedev.voice.base import (
    TranscriptRole,
    VoiceAudio,
    VoiceDisconnected,
    VoiceEvent,
    VoiceFailure,
    VoiceFunctionCall,
    VoiceResponseDone,
    VoiceSession,
    VoiceSpeechStarted,
    VoiceTranscript,
)

logger = get_logger(__name__)

# Cancelling when nothing is being spoken is harmless
IGNORED_ERROR_CODES = frozenset({"response_cancel_not_active"})

# Handshake statuses below 500 that may succeed on a later attempt
RETRYABLE_STATUS_CODES = frozenset({408, 429})


@dataclass
class ConnectBackoff:
    """Retry schedule for the realtime handshake."""

    attempts: int = 3
    initial_delay_s: float = 0.5
    max_delay_s: float = 10.0
    factor: float = 2.0
    jitter: bool = True

    def delays(self) -> Iterator[float]:
        """Sleep before each retry, attempts - 1 values."""
        delay = self.initial_delay_s
        for _ in range(self.attempts - 1):
            yield delay * (0.5 + random.random()) if self.jitter else delay
            delay = min(delay * self.factor, self.max_delay_s)


def is_transient(error: BaseException) -> bool:
    """Whether a failed handshake is worth another attempt."""
    if isinstance(error, InvalidStatus):
        status = error.response.status_code
        return status >= 500 or status in RETRYABLE_STATUS_CODES
    return isinstance(error, (OSError, asyncio.TimeoutError))


def translate_server_event(event: dict[str, Any]) -> VoiceEvent | None:
    """Map one realtime server event to a VoiceEvent.

    Returns:
        VoiceEvent, or None for events the session does not act on
    """
    event_type = event.get("type")

    if event_type == "response.audio.delta":
        delta = event.get("delta")
        return VoiceAudio(delta) if delta else None

    if event_type == "conversation.item.input_audio_transcription.completed":
        return VoiceTranscript(event.get("transcript", ""), TranscriptRole.USER)

    if event_type == "response.audio_transcript.done":
        return VoiceTranscript(event.get("transcript", ""), TranscriptRole.ASSISTANT)

    if event_type == "response.output_item.done":
        item = event.get("item") or {}
        if item.get("type") == "function_call" and item.get("call_id"):
            return VoiceFunctionCall(
                name=item.get("name", ""),
                args_json=item.get("arguments") or "",
                call_id=item["call_id"],
            )
        return None

    if event_type == "input_audio_buffer.speech_started":
        return VoiceSpeechStarted()

    if event_type == "response.done":
        return VoiceResponseDone()

    if event_type == "error":
        error = event.get("error") or {}
        code = error.get("code")
        if code in IGNORED_ERROR_CODES:
            logger.debug("realtime_error_ignored", code=code)
            return None
        message = error.get("message") or json.dumps(event)
        return VoiceFailure(f"Realtime API error: {message}", code=code)

    return None


class RealtimeVoiceSession(VoiceSession):
    """OpenAI Realtime adapter.

    Usage:
        voice = RealtimeVoiceSession(api_key="sk-...")
        voice.set_sink(orchestrator.deliver_voice_event)
        await voice.connect()
    """

    name = "realtime"

    def __init__(
        self,
        api_key: str | None,
        url: str = "wss://api.openai.com/v1/realtime",
        model: str = "gpt-4o-realtime-preview-2024-12-17",
        voice: str = "cedar",
        instructions: str = "",
        connect_timeout_s: float = 30.0,
        backoff: ConnectBackoff | None = None,
    ) -> None:
        super().__init__()
        self._api_key = api_key
        self._url = url
        self._model = model
        self._voice = voice
        self._instructions = instructions
        self._connect_timeout_s = connect_timeout_s
        self._backoff = backoff or ConnectBackoff()

        self._ws: ClientConnection | None = None
        self._outbox: asyncio.Queue[dict[str, Any] | None] | None = None
        self._writer_task: asyncio.Task | None = None
        self._reader_task: asyncio.Task | None = None
        self._closing = False

    @property
    def endpoint(self) -> str:
        return f"{self._url}?model={self._model}"

    def session_config(self) -> dict[str, Any]:
        """session.update payload."""
        return {
            "type": "session.update",
            "session": {
                "modalities": ["text", "audio"],
                "instructions": self._instructions,
                "voice": self._voice,
                "input_audio_format": "pcm16",
                "output_audio_format": "pcm16",
                "input_audio_transcription": {"model": "whisper-1"},
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": 0.5,
                    "prefix_padding_ms": 300,
                    "silence_duration_ms": 500,
                },
                "tools": VOICE_TOOLS,
            },
        }

    async def _open(self) -> ClientConnection:
        return await asyncio.wait_for(
            connect(
                self.endpoint,
                additional_headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "OpenAI-Beta": "realtime=v1",
                },
                max_size=None,
            ),
            timeout=self._connect_timeout_s,
        )

    async def _open_with_backoff(self) -> ClientConnection:
        delays = self._backoff.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                ws = await self._open()
            except Exception as e:
                transient = is_transient(e)
                delay = next(delays, None) if transient else None
                if delay is None:
                    record_error("voice", "connect")
                    logger.error(
                        "voice_connect_failed",
                        service=self.name,
                        attempts=attempt,
                        transient=transient,
                        error=str(e),
                    )
                    raise VoiceConnectionError(self.name, str(e) or type(e).__name__) from e

                logger.warning(
                    "voice_connect_retry",
                    service=self.name,
                    attempt=attempt,
                    delay_s=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)
                continue

            if attempt > 1:
                logger.info("voice_reconnected", service=self.name, attempt=attempt)
            return ws

    async def connect(self) -> None:
        if self._connected:
            return
        if not self._api_key:
            raise VoiceConnectionError(self.name, "OPENAI_API_KEY is not set")

        self._ws = await self._open_with_backoff()

        self._closing = False
        self._outbox = asyncio.Queue()
        self._connected = True
        update_voice_connected(True)

        self._send(self.session_config())
        self._writer_task = asyncio.create_task(self._write_loop())
        self._reader_task = asyncio.create_task(self._read_loop())

        logger.info("voice_connected", service=self.name, model=self._model, voice=self._voice)

    async def disconnect(self) -> None:
        if self._ws is None:
            return

        self._closing = True
        self._connected = False
        update_voice_connected(False)

        if self._outbox is not None:
            self._outbox.put_nowait(None)

        for task in (self._reader_task, self._writer_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        try:
            await self._ws.close()
        except Exception as e:
            logger.debug("voice_close_error", error=str(e))

        self._ws = None
        self._outbox = None
        self._reader_task = None
        self._writer_task = None

        logger.info("voice_disconnected", service=self.name)

    def _send(self, command: dict[str, Any]) -> None:
        if self._outbox is None:
            raise VoiceNotConnectedError(command.get("type", "unknown"))
        self._outbox.put_nowait(command)

    async def _write_loop(self) -> None:
        """Background loop to send queued commands."""
        assert self._outbox is not None and self._ws is not None
        while True:
            command = await self._outbox.get()
            if command is None:
                break
            try:
                await self._ws.send(json.dumps(command))
            except ConnectionClosed:
                # Reader reports the disconnect
                break

    async def _read_loop(self) -> None:
        """Background loop translating server events."""
        assert self._ws is not None
        reason = ""
        try:
            async for raw in self._ws:
                try:
                    event = json.loads(raw)
                except (TypeError, ValueError) as e:
                    logger.warning("realtime_event_undecodable", error=str(e))
                    continue

                translated = translate_server_event(event)
                if translated is not None:
                    await self._emit(translated)
        except ConnectionClosed as e:
            reason = str(e)

        if not self._closing:
            self._connected = False
            update_voice_connected(False)
            if self._outbox is not None:
                self._outbox.put_nowait(None)
            logger.warning("voice_connection_lost", service=self.name, reason=reason)
            await self._emit(VoiceDisconnected(reason))
