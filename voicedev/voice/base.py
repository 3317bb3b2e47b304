"""Voice Base Interface - Pluggable realtime voice endpoints.

A voice session owns the connection to a speech-to-speech model. It:
- accepts fire-and-forget commands (audio frames, commit, interrupt,
  tool results) that never block the caller
- delivers what the endpoint says back as VoiceEvent records through a
  sink coroutine supplied by the orchestrator

Commands are realtime wire messages; every backend speaks the same
command vocabulary so the mock can record exactly what would be sent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Union

from voicedev.exceptions import VoiceNotConnectedError
from voicedev.observability.logging import get_logger

logger = get_logger(__name__)


class TranscriptRole(str, Enum):
    """Who spoke a transcript."""

    USER = "user"
    ASSISTANT = "assistant"


# -----------------------------------------------------------------------------
# Events from the voice endpoint
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class VoiceTranscript:
    """Finished transcript of a user utterance or a spoken response."""

    text: str
    role: TranscriptRole


@dataclass(frozen=True)
class VoiceAudio:
    """Base64 PCM16 chunk of spoken output."""

    audio: str


@dataclass(frozen=True)
class VoiceFunctionCall:
    """Endpoint asks for one of the voice tools to be run."""

    name: str
    args_json: str
    call_id: str


@dataclass(frozen=True)
class VoiceSpeechStarted:
    """Server-side VAD detected the user talking."""


@dataclass(frozen=True)
class VoiceResponseDone:
    """Endpoint finished a response."""


@dataclass(frozen=True)
class VoiceFailure:
    """Error reported by the endpoint."""

    message: str
    code: str | None = None


@dataclass(frozen=True)
class VoiceDisconnected:
    """Connection to the endpoint was lost."""

    reason: str = ""


VoiceEvent = Union[
    VoiceTranscript,
    VoiceAudio,
    VoiceFunctionCall,
    VoiceSpeechStarted,
    VoiceResponseDone,
    VoiceFailure,
    VoiceDisconnected,
]

VoiceEventSink = Callable[[VoiceEvent], Awaitable[None]]


class VoiceSession(ABC):
    """Base class for realtime voice adapters.

    Usage:
        voice = create_voice_session("mock")
        voice.set_sink(orchestrator.deliver_voice_event)
        await voice.connect()

        voice.send_audio_frame(b64_pcm)
        voice.commit_audio()

        await voice.disconnect()
    """

    name: str = "base"

    def __init__(self) -> None:
        self._sink: VoiceEventSink | None = None
        self._connected: bool = False

    def set_sink(self, sink: VoiceEventSink | None) -> None:
        """Set the coroutine that receives endpoint events."""
        self._sink = sink

    @abstractmethod
    async def connect(self) -> None:
        """Open the endpoint connection.

        Raises:
            VoiceConnectionError: If the endpoint cannot be reached
        """
        ...

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the endpoint connection. Safe when not connected."""
        ...

    @abstractmethod
    def _send(self, command: dict[str, Any]) -> None:
        """Queue one wire command. Must not block."""
        ...

    @property
    def connected(self) -> bool:
        """Whether the endpoint connection is open."""
        return self._connected

    async def _emit(self, event: VoiceEvent) -> None:
        """Deliver an endpoint event to the sink."""
        if self._sink is None:
            logger.debug("voice_event_without_sink", event=type(event).__name__)
            return
        await self._sink(event)

    def _require_connected(self, command: str) -> None:
        if not self._connected:
            raise VoiceNotConnectedError(command)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def send_audio_frame(self, audio_b64: str) -> None:
        """Append a base64 PCM16 frame to the input buffer."""
        self._require_connected("send_audio_frame")
        self._send({"type": "input_audio_buffer.append", "audio": audio_b64})

    def commit_audio(self) -> None:
        """Finalize the buffered utterance."""
        self._require_connected("commit_audio")
        self._send({"type": "input_audio_buffer.commit"})

    def interrupt_output(self) -> None:
        """Cancel the response currently being spoken."""
        self._require_connected("interrupt_output")
        self._send({"type": "response.cancel"})

    def send_tool_result(self, call_id: str, text: str) -> None:
        """Answer a function call and ask the endpoint to speak it."""
        self._require_connected("send_tool_result")
        self._send({
            "type": "conversation.item.create",
            "item": {
                "type": "function_call_output",
                "call_id": call_id,
                "output": text,
            },
        })
        self._send({"type": "response.create"})
