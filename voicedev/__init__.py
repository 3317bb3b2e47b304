"""VoiceDev - Voice and text driven coding assistant session service."""

__version__ = "0.1.0"

# Export exception hierarchy for easy importing
from voicedev.exceptions import (
    VoiceDevError,
    AgentError,
    AgentConnectionError,
    AgentExecutionError,
    VoiceError,
    VoiceConnectionError,
    VoiceNotConnectedError,
    ToolError,
    ToolArgumentError,
    UnknownToolError,
    TransportError,
    MessageFormatError,
)

__all__ = [
    "__version__",
    # Base
    "VoiceDevError",
    # Agent
    "AgentError",
    "AgentConnectionError",
    "AgentExecutionError",
    # Voice
    "VoiceError",
    "VoiceConnectionError",
    "VoiceNotConnectedError",
    # Tools
    "ToolError",
    "ToolArgumentError",
    "UnknownToolError",
    # Transport
    "TransportError",
    "MessageFormatError",
]
