"""Session State Machine - 5-state FSM for a voice/text coding session.

States:
- IDLE: Ready for a new turn
- LISTENING: Capturing user input (audio frames or typed text)
- PROCESSING: Input captured; deciding what to do with it
- EXECUTING: A coding-agent task is running
- SPEAKING: Delivering the result to the user

The machine is the single source of truth for "what is happening now".
Invalid transitions are rejected without any mutation; reset() always
lands in IDLE with an empty context.
"""

from __future__ import annotations

import dataclasses
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from voicedev.config.constants import LIMITS
from voicedev.observability.logging import SessionLogger, get_logger
from voicedev.observability.metrics import record_rejected_transition, record_transition

logger = get_logger(__name__)


class SessionState(Enum):
    """Session state."""

    IDLE = "idle"
    LISTENING = "listening"
    PROCESSING = "processing"
    EXECUTING = "executing"
    SPEAKING = "speaking"


# Valid state transitions
VALID_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.LISTENING}),
    SessionState.LISTENING: frozenset({SessionState.PROCESSING, SessionState.IDLE}),
    SessionState.PROCESSING: frozenset(
        {SessionState.EXECUTING, SessionState.SPEAKING, SessionState.IDLE}
    ),
    SessionState.EXECUTING: frozenset(
        {SessionState.PROCESSING, SessionState.SPEAKING, SessionState.IDLE}
    ),
    SessionState.SPEAKING: frozenset({SessionState.IDLE, SessionState.LISTENING}),
}


@dataclass(frozen=True)
class ToolCallRef:
    """One pending request from the voice endpoint.

    call_id must be echoed back exactly once with the tool's result.
    """

    name: str
    args: Any
    call_id: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "args": self.args, "call_id": self.call_id}


@dataclass(frozen=True)
class ErrorInfo:
    """Last collaborator failure recorded in the session context."""

    source: str  # agent, voice
    message: str
    brief: str

    def to_dict(self) -> dict[str, str]:
        return {"source": self.source, "message": self.message, "brief": self.brief}


@dataclass(frozen=True)
class SessionContext:
    """Data accumulated across one conversation turn.

    Immutable: updates return a new value, so a context handed to a
    caller can never be used to mutate the machine.
    """

    current_prompt: str | None = None
    current_tool_call: ToolCallRef | None = None
    execution_result: str | None = None
    last_error: ErrorInfo | None = None

    def merge(self, **update: Any) -> SessionContext:
        """Return a copy with the given fields replaced.

        Raises:
            TypeError: If a field name is unknown
        """
        return dataclasses.replace(self, **update)

    @property
    def is_empty(self) -> bool:
        return self == SessionContext()

    def to_dict(self) -> dict[str, Any]:
        """Serialize only the fields that are set."""
        data: dict[str, Any] = {}
        if self.current_prompt is not None:
            data["current_prompt"] = self.current_prompt
        if self.current_tool_call is not None:
            data["current_tool_call"] = self.current_tool_call.to_dict()
        if self.execution_result is not None:
            data["execution_result"] = self.execution_result
        if self.last_error is not None:
            data["last_error"] = self.last_error.to_dict()
        return data


@dataclass
class StateTransition:
    """Record of a state transition."""

    old_state: SessionState
    new_state: SessionState
    context: SessionContext
    reason: str
    at: float = field(default_factory=time.time)


StateChangeCallback = Callable[[StateTransition], None]
ResetCallback = Callable[[SessionState], None]


class SessionStateMachine:
    """5-state FSM for session management.

    Usage:
        fsm = SessionStateMachine(session_id="session-123")
        fsm.on_state_change(handle_state_change)

        fsm.transition(SessionState.LISTENING, "text_input", current_prompt="hi")
        fsm.reset("cancelled")
    """

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._state = SessionState.IDLE
        self._context = SessionContext()
        self._logger = SessionLogger(session_id)

        self._on_change_callbacks: list[StateChangeCallback] = []
        self._on_reset_callbacks: list[ResetCallback] = []

        self._history: deque[StateTransition] = deque(maxlen=LIMITS.MAX_TRANSITION_HISTORY)

    @property
    def state(self) -> SessionState:
        """Current session state."""
        return self._state

    @property
    def context(self) -> SessionContext:
        """Current turn context (immutable value)."""
        return self._context

    @property
    def session_id(self) -> str:
        """Session identifier."""
        return self._session_id

    @property
    def history(self) -> list[StateTransition]:
        """Transition history (most recent last)."""
        return list(self._history)

    def on_state_change(self, callback: StateChangeCallback) -> None:
        """Register callback for any applied transition."""
        self._on_change_callbacks.append(callback)

    def on_reset(self, callback: ResetCallback) -> None:
        """Register callback for reset. Receives the state reset from."""
        self._on_reset_callbacks.append(callback)

    def can_transition(self, new_state: SessionState) -> bool:
        """Whether new_state is an allowed successor of the current state."""
        return new_state in VALID_TRANSITIONS[self._state]

    def transition(
        self,
        new_state: SessionState,
        reason: str = "",
        **context_update: Any,
    ) -> bool:
        """Transition to a new state.

        All-or-nothing: on rejection neither state nor context changes.

        Args:
            new_state: Target state
            reason: Reason for transition (logged)
            **context_update: SessionContext fields to merge

        Returns:
            True if applied, False if not in the allowed table

        Raises:
            TypeError: If context_update names an unknown field
        """
        old_state = self._state

        if not self.can_transition(new_state):
            self._logger.transition_rejected(old_state.value, new_state.value, reason)
            record_rejected_transition(old_state.value, new_state.value)
            return False

        # Build the new context before touching anything
        new_context = self._context.merge(**context_update) if context_update else self._context

        self._state = new_state
        self._context = new_context

        transition = StateTransition(
            old_state=old_state,
            new_state=new_state,
            context=new_context,
            reason=reason,
        )
        self._history.append(transition)

        self._logger.state_change(old_state.value, new_state.value, reason)
        record_transition(old_state.value, new_state.value)

        for callback in self._on_change_callbacks:
            try:
                callback(transition)
            except Exception as e:
                # Listener errors never break the state machine
                logger.warning("state_callback_error", error=str(e))

        return True

    def reset(self, reason: str = "reset") -> None:
        """Force IDLE with an empty context. Always succeeds."""
        old_state = self._state
        self._state = SessionState.IDLE
        self._context = SessionContext()

        self._logger.session_reset(old_state.value, reason)
        if old_state is not SessionState.IDLE:
            record_transition(old_state.value, SessionState.IDLE.value)

        for callback in self._on_reset_callbacks:
            try:
                callback(old_state)
            except Exception as e:
                logger.warning("reset_callback_error", error=str(e))

    def path_to(self, target: SessionState) -> list[SessionState]:
        """Shortest chain of allowed transitions from the current state.

        Returns:
            States to pass through, ending with target. Empty if already
            there (no self-transitions exist, so callers treat that as
            "nothing to do").
        """
        if target is self._state:
            return []

        # BFS over the transition table
        queue: deque[list[SessionState]] = deque([[self._state]])
        seen = {self._state}
        while queue:
            path = queue.popleft()
            for nxt in sorted(VALID_TRANSITIONS[path[-1]], key=lambda s: s.value):
                if nxt in seen:
                    continue
                if nxt is target:
                    return path[1:] + [nxt]
                seen.add(nxt)
                queue.append(path + [nxt])
        return []
