"""Client message protocol for the /ws endpoint.

Client -> server frames are JSON objects:

    {"type": "audio", "data": "<base64 pcm16>"}
    {"type": "audio_commit"}
    {"type": "text", "data": "<prompt>"}
    {"type": "cancel"}
"""

import json
from typing import Literal

from pydantic import BaseModel, ValidationError

from voicedev.exceptions import MessageFormatError
from voicedev.orchestrator.events import (
    ClientAudio,
    ClientAudioCommit,
    ClientCancel,
    ClientMessage,
    ClientText,
)


class ClientFrame(BaseModel):
    """Validated client frame."""

    type: Literal["audio", "audio_commit", "text", "cancel"]
    data: str | None = None

    def to_message(self) -> ClientMessage:
        if self.type == "audio":
            return ClientAudio(self.data or "")
        if self.type == "audio_commit":
            return ClientAudioCommit()
        if self.type == "text":
            return ClientText(self.data or "")
        return ClientCancel()


def parse_client_message(raw: str | bytes) -> ClientMessage:
    """Decode one client frame.

    Raises:
        MessageFormatError: Not JSON, not an object, or an unknown type
    """
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MessageFormatError(f"not JSON: {e}") from e

    if not isinstance(payload, dict):
        raise MessageFormatError("frame must be a JSON object")

    try:
        frame = ClientFrame.model_validate(payload)
    except ValidationError as e:
        raise MessageFormatError(str(e.errors()[0]["msg"]) if e.errors() else str(e)) from e

    return frame.to_message()
