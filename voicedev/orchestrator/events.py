"""Inbox events and outbound messages.

Everything that can change the session arrives as one of these records
on the orchestrator's inbox and is handled one at a time:

- client messages from observers (audio, audio_commit, text, cancel)
- observer registration and removal
- agent task progress and terminal outcomes, tagged with the task id
- voice endpoint events (defined in voicedev.voice.base)

Outbound messages go to observers as {"type": ..., "data": {...}}.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, Union, runtime_checkable

from voicedev.agent.base import AgentResult, ProgressEvent


# -----------------------------------------------------------------------------
# Outbound
# -----------------------------------------------------------------------------


class OutboundType(str, Enum):
    """Server to client message kinds."""

    AUDIO = "audio"
    TRANSCRIPT = "transcript"
    PROGRESS = "progress"
    STATE = "state"
    ERROR = "error"


@dataclass(frozen=True)
class OutboundMessage:
    """One message for observers."""

    type: OutboundType
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_audio(self) -> bool:
        return self.type is OutboundType.AUDIO

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def audio(cls, audio: str) -> OutboundMessage:
        return cls(OutboundType.AUDIO, {"audio": audio})

    @classmethod
    def transcript(cls, text: str, role: str) -> OutboundMessage:
        return cls(OutboundType.TRANSCRIPT, {"text": text, "role": role})

    @classmethod
    def progress(cls, message: str, kind: str | None = None) -> OutboundMessage:
        data: dict[str, Any] = {"message": message}
        if kind is not None:
            data["kind"] = kind
        return cls(OutboundType.PROGRESS, data)

    @classmethod
    def state(cls, state: str) -> OutboundMessage:
        return cls(OutboundType.STATE, {"state": state})

    @classmethod
    def error(cls, message: str, details: str | None = None) -> OutboundMessage:
        data: dict[str, Any] = {"message": message}
        if details is not None:
            data["details"] = details
        return cls(OutboundType.ERROR, data)


@runtime_checkable
class Observer(Protocol):
    """Anything that can receive outbound messages.

    send() must not block: implementations queue the message and deliver
    it from their own task, preserving order.
    """

    observer_id: str

    def send(self, message: OutboundMessage) -> None:
        ...


# -----------------------------------------------------------------------------
# Client messages
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ClientAudio:
    """Base64 PCM16 frame from the client microphone."""

    data: str


@dataclass(frozen=True)
class ClientAudioCommit:
    """Client finished speaking."""


@dataclass(frozen=True)
class ClientText:
    """Typed prompt."""

    text: str


@dataclass(frozen=True)
class ClientCancel:
    """Stop whatever is happening."""


ClientMessage = Union[ClientAudio, ClientAudioCommit, ClientText, ClientCancel]


@dataclass(frozen=True)
class ClientInbound:
    """Client message tagged with the observer that sent it.

    observer is None for messages from the HTTP surface.
    """

    message: ClientMessage
    observer: Observer | None = None


# -----------------------------------------------------------------------------
# Observer lifecycle
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class ObserverRegistered:
    observer: Observer


@dataclass(frozen=True)
class ObserverUnregistered:
    observer: Observer


# -----------------------------------------------------------------------------
# Agent task events
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class AgentProgress:
    task_id: int
    event: ProgressEvent


@dataclass(frozen=True)
class AgentCompleted:
    task_id: int
    result: AgentResult


@dataclass(frozen=True)
class AgentCancelled:
    task_id: int


@dataclass(frozen=True)
class AgentFailed:
    task_id: int
    error: Exception
