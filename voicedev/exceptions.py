"""VoiceDev Exception Hierarchy.

Provides structured exception classes for the session coordination layer.

Hierarchy:
    VoiceDevError (base)
    ├── AgentError
    │   ├── AgentConnectionError
    │   └── AgentExecutionError
    ├── VoiceError
    │   ├── VoiceConnectionError
    │   └── VoiceNotConnectedError
    ├── ToolError
    │   ├── ToolArgumentError
    │   └── UnknownToolError
    └── TransportError
        └── MessageFormatError
"""

from typing import Any


class VoiceDevError(Exception):
    """Base exception for all VoiceDev errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the error can be recovered from
    """

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} ({self.details})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# Agent Errors
# =============================================================================


class AgentError(VoiceDevError):
    """Base exception for coding-agent backend errors."""

    pass


class AgentConnectionError(AgentError):
    """Raised when the agent backend cannot be reached or started."""

    def __init__(self, backend: str, reason: str) -> None:
        super().__init__(
            message=f"Failed to start agent backend {backend}: {reason}",
            details={"backend": backend, "reason": reason},
            recoverable=True,
        )


class AgentExecutionError(AgentError):
    """Raised when an agent task fails while running."""

    def __init__(
        self,
        reason: str,
        backend: str | None = None,
        turns: int | None = None,
    ) -> None:
        details: dict[str, Any] = {"reason": reason}
        if backend:
            details["backend"] = backend
        if turns is not None:
            details["turns"] = turns
        super().__init__(
            message=reason,
            details=details,
            recoverable=True,
        )


# =============================================================================
# Voice Errors
# =============================================================================


class VoiceError(VoiceDevError):
    """Base exception for realtime voice endpoint errors."""

    pass


class VoiceConnectionError(VoiceError):
    """Raised when the voice endpoint connection fails."""

    def __init__(self, service: str, reason: str) -> None:
        super().__init__(
            message=f"Failed to connect to voice service {service}: {reason}",
            details={"service": service, "reason": reason},
            recoverable=True,
        )


class VoiceNotConnectedError(VoiceError):
    """Raised when a command is issued to a disconnected voice session."""

    def __init__(self, command: str) -> None:
        super().__init__(
            message=f"Voice session not connected (command: {command})",
            details={"command": command},
            recoverable=True,
        )


# =============================================================================
# Tool Errors
# =============================================================================


class ToolError(VoiceDevError):
    """Base exception for voice tool-call errors."""

    pass


class ToolArgumentError(ToolError):
    """Raised when tool-call arguments cannot be parsed or are incomplete."""

    def __init__(self, tool: str, reason: str, raw: str | None = None) -> None:
        details: dict[str, Any] = {"tool": tool, "reason": reason}
        if raw is not None:
            details["raw"] = raw[:200]
        super().__init__(
            message=f'Failed to parse arguments for tool "{tool}": {reason}',
            details=details,
            recoverable=True,
        )


class UnknownToolError(ToolError):
    """Raised when the voice endpoint asks for a tool that does not exist."""

    def __init__(self, tool: str) -> None:
        super().__init__(
            message=f"Unknown tool: {tool}",
            details={"tool": tool},
            recoverable=True,
        )


# =============================================================================
# Transport Errors
# =============================================================================


class TransportError(VoiceDevError):
    """Base exception for transport-related errors."""

    pass


class MessageFormatError(TransportError):
    """Raised when an inbound client frame cannot be decoded."""

    def __init__(self, reason: str) -> None:
        super().__init__(
            message="Invalid message format",
            details={"reason": reason},
            recoverable=True,
        )
