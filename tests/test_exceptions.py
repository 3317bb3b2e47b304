"""Tests for Exception Hierarchy.

Tests cover:
- VoiceDevError base class
- Agent and voice exceptions
- Tool and transport exceptions
"""

import pytest

from voicedev.exceptions import (
    AgentConnectionError,
    AgentError,
    AgentExecutionError,
    MessageFormatError,
    ToolArgumentError,
    ToolError,
    TransportError,
    UnknownToolError,
    VoiceConnectionError,
    VoiceDevError,
    VoiceError,
    VoiceNotConnectedError,
)


class TestVoiceDevError:
    """Tests for VoiceDevError base class."""

    def test_basic_creation(self):
        """Create basic error with message."""
        error = VoiceDevError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details == {}
        assert error.recoverable is False

    def test_with_details(self):
        error = VoiceDevError("Operation failed", details={"operation": "test"})
        assert error.details == {"operation": "test"}
        assert "operation" in str(error)

    def test_to_dict(self):
        error = VoiceDevError("Test error", details={"key": "value"}, recoverable=True)
        assert error.to_dict() == {
            "type": "VoiceDevError",
            "message": "Test error",
            "details": {"key": "value"},
            "recoverable": True,
        }


class TestAgentExceptions:
    """Tests for agent errors."""

    def test_connection(self):
        error = AgentConnectionError("claude", "CLI not found")
        assert error.message == "Failed to start agent backend claude: CLI not found"
        assert isinstance(error, AgentError)

    def test_execution_message_is_reason(self):
        error = AgentExecutionError("tests failed", backend="claude", turns=7)
        assert error.message == "tests failed"
        assert error.details == {"reason": "tests failed", "backend": "claude", "turns": 7}


class TestVoiceExceptions:
    """Tests for voice errors."""

    def test_connection(self):
        error = VoiceConnectionError("realtime", "timeout")
        assert "realtime" in error.message
        assert isinstance(error, VoiceError)

    def test_not_connected(self):
        error = VoiceNotConnectedError("commit_audio")
        assert error.details == {"command": "commit_audio"}


class TestToolAndTransportExceptions:
    """Tests for tool and transport errors."""

    def test_argument_error_truncates_raw(self):
        error = ToolArgumentError("plan", "invalid JSON", raw="x" * 500)
        assert len(error.details["raw"]) == 200
        assert error.message == 'Failed to parse arguments for tool "plan": invalid JSON'
        assert isinstance(error, ToolError)

    def test_unknown_tool(self):
        assert UnknownToolError("deploy").message == "Unknown tool: deploy"

    def test_message_format(self):
        error = MessageFormatError("not JSON")
        assert error.message == "Invalid message format"
        assert error.details == {"reason": "not JSON"}
        assert isinstance(error, TransportError)

    @pytest.mark.parametrize(
        "error",
        [
            AgentExecutionError("x"),
            VoiceConnectionError("realtime", "x"),
            UnknownToolError("x"),
            MessageFormatError("x"),
        ],
    )
    def test_all_are_voicedev_errors(self, error):
        assert isinstance(error, VoiceDevError)
