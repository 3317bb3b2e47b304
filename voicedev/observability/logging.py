"""Structured Logging - JSON logs with correlation.

Provides structured logging for:
- Session events (state changes, rejected transitions, turns)
- Cancellation
- Voice tool calls
- Error tracking

All session logs include session_id for correlation.
"""

import logging
import sys
from typing import Any

import structlog


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
) -> None:
    """Configure structured logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; else human-readable
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    # WARN is accepted from the environment but is not a stdlib level name
    level_name = "WARNING" if level.upper() == "WARN" else level.upper()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level_name)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level_name),
    )


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Bound structlog logger
    """
    return structlog.get_logger(name)


def bind_session(session_id: str) -> None:
    """Bind session_id to all logs in current context."""
    structlog.contextvars.bind_contextvars(session_id=session_id)


def unbind_session() -> None:
    """Remove session_id from log context."""
    structlog.contextvars.unbind_contextvars("session_id")


# -----------------------------------------------------------------------------
# Event-specific logging functions
# -----------------------------------------------------------------------------


class SessionLogger:
    """Logger for session-related events."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("session").bind(session_id=session_id)

    def session_started(self, metadata: dict[str, Any] | None = None) -> None:
        """Log session start."""
        self._log.info(
            "session_started",
            event_type="session.started",
            **(metadata or {}),
        )

    def session_ended(self, reason: str) -> None:
        """Log session end."""
        self._log.info(
            "session_ended",
            event_type="session.ended",
            reason=reason,
        )

    def state_change(self, old_state: str, new_state: str, reason: str) -> None:
        """Log state transition."""
        self._log.info(
            "state_change",
            event_type="session.state_change",
            old_state=old_state,
            new_state=new_state,
            reason=reason,
        )

    def transition_rejected(self, old_state: str, new_state: str, reason: str) -> None:
        """Log a transition that is not in the allowed table."""
        self._log.warning(
            "invalid_transition",
            event_type="session.invalid_transition",
            old_state=old_state,
            new_state=new_state,
            reason=reason,
        )

    def session_reset(self, old_state: str, reason: str) -> None:
        """Log forced reset to idle."""
        self._log.info(
            "session_reset",
            event_type="session.reset",
            old_state=old_state,
            reason=reason,
        )

    def turn_started(self, turn_id: int, source: str) -> None:
        """Log turn start."""
        self._log.debug(
            "turn_started",
            event_type="turn.started",
            turn_id=turn_id,
            source=source,
        )

    def turn_completed(self, turn_id: int, outcome: str) -> None:
        """Log turn completion."""
        self._log.info(
            "turn_completed",
            event_type="turn.completed",
            turn_id=turn_id,
            outcome=outcome,
        )

    def input_rejected(self, kind: str, state: str) -> None:
        """Log client input refused because the session is busy."""
        self._log.info(
            "input_rejected",
            event_type="session.input_rejected",
            kind=kind,
            state=state,
        )


class CancelLogger:
    """Logger for cancellation events."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("cancel").bind(session_id=session_id)

    def cancel_requested(self, source: str, state: str, task_id: int | None) -> None:
        """Log cancellation request."""
        self._log.info(
            "cancel_requested",
            event_type="cancel.requested",
            source=source,
            state=state,
            task_id=task_id,
        )

    def task_superseded(self, old_task_id: int, new_call_id: str) -> None:
        """Log a running task invalidated by a newer tool call."""
        self._log.info(
            "task_superseded",
            event_type="cancel.superseded",
            old_task_id=old_task_id,
            new_call_id=new_call_id,
        )

    def stale_event_dropped(self, kind: str, task_id: int, current_task_id: int | None) -> None:
        """Log an agent event from a task that is no longer authoritative."""
        self._log.debug(
            "stale_event_dropped",
            event_type="cancel.stale_dropped",
            kind=kind,
            task_id=task_id,
            current_task_id=current_task_id,
        )


class ToolLogger:
    """Logger for voice tool-call events."""

    def __init__(self, session_id: str) -> None:
        self._session_id = session_id
        self._log = get_logger("tools").bind(session_id=session_id)

    def tool_requested(self, name: str, call_id: str) -> None:
        """Log tool call from the voice endpoint."""
        self._log.info(
            "tool_requested",
            event_type="tool.requested",
            tool=name,
            call_id=call_id,
        )

    def tool_result_sent(self, call_id: str, length: int) -> None:
        """Log tool result delivered to the voice endpoint."""
        self._log.info(
            "tool_result_sent",
            event_type="tool.result_sent",
            call_id=call_id,
            length=length,
        )

    def tool_result_dropped(self, call_id: str, active_call_id: str | None) -> None:
        """Log tool result discarded because the call is no longer current."""
        self._log.info(
            "tool_result_dropped",
            event_type="tool.result_dropped",
            call_id=call_id,
            active_call_id=active_call_id,
        )

    def tool_failed(self, name: str, call_id: str, error: str) -> None:
        """Log a tool call answered with an error."""
        self._log.warning(
            "tool_failed",
            event_type="tool.failed",
            tool=name,
            call_id=call_id,
            error=error,
        )


def init_logging(json_format: bool = True, level: str = "INFO") -> None:
    """Initialize logging with defaults.

    Call this once at application startup.
    """
    configure_logging(level=level, json_format=json_format)
