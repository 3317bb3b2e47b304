"""Orchestrator module - Session state and coordination.

Provides:
- SessionStateMachine: 5-state FSM
- CancellationToken: Cooperative agent-task cancellation
- Voice tools: Schema, argument parsing and task prompts
- Spoken formatting helpers

SessionOrchestrator lives in voicedev.orchestrator.orchestrator; it depends
on the agent and voice adapters, which themselves use the pieces above.
"""

from voicedev.orchestrator.cancellation import CancellationToken, CancelReason
from voicedev.orchestrator.formatting import brief_error, format_for_voice
from voicedev.orchestrator.state_machine import (
    VALID_TRANSITIONS,
    ErrorInfo,
    SessionContext,
    SessionState,
    SessionStateMachine,
    StateTransition,
    ToolCallRef,
)
from voicedev.orchestrator.tools import (
    VOICE_TOOLS,
    AgentTask,
    ToolName,
    build_task,
    parse_tool_args,
)

__all__ = [
    # State machine
    "SessionState",
    "SessionStateMachine",
    "SessionContext",
    "StateTransition",
    "ToolCallRef",
    "ErrorInfo",
    "VALID_TRANSITIONS",
    # Cancellation
    "CancellationToken",
    "CancelReason",
    # Tools
    "VOICE_TOOLS",
    "ToolName",
    "AgentTask",
    "build_task",
    "parse_tool_args",
    # Formatting
    "format_for_voice",
    "brief_error",
]
