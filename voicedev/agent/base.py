"""Agent Base Interface - Pluggable coding-agent backends.

An agent session runs one prompt at a time against the working directory
and streams what it is doing:

- ProgressEvent: assistant text, tool use, tool results and short
  progress summaries, in the order the backend produced them
- AgentResult: exactly one, last, carrying the final text or marking
  the run as cancelled

Cancellation is cooperative: the caller passes a CancellationToken and
the backend checks it between messages.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Union

from voicedev.observability.logging import get_logger
from voicedev.orchestrator.cancellation import CancellationToken, CancelReason

logger = get_logger(__name__)


class ProgressKind(Enum):
    """Kinds of agent progress events."""

    TEXT = "text"  # Assistant prose
    TOOL_USE = "tool_use"  # Agent invoked a tool
    TOOL_RESULT = "tool_result"  # Tool returned
    PROGRESS = "progress"  # Short human-readable summary


@dataclass(frozen=True)
class ProgressEvent:
    """One step of agent output."""

    message: str
    kind: ProgressKind
    tool_label: str | None = None
    at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "message": self.message,
            "kind": self.kind.value,
            "at": self.at,
        }
        if self.tool_label:
            data["tool_label"] = self.tool_label
        return data


@dataclass(frozen=True)
class AgentResult:
    """Terminal outcome of one agent run."""

    text: str
    cancelled: bool = False
    turns: int = 0
    duration_s: float = 0.0


AgentStreamItem = Union[ProgressEvent, AgentResult]


class AgentSession(ABC):
    """Base class for coding-agent adapters.

    Usage:
        agent = create_agent_session("mock")
        await agent.start()

        token = CancellationToken()
        async for item in agent.execute("add a health check", 50, token):
            if isinstance(item, AgentResult):
                print(item.text)

        await agent.stop()
    """

    name: str = "base"

    def __init__(self, working_dir: str = ".") -> None:
        self._working_dir = working_dir
        self._token: CancellationToken | None = None
        self._running: bool = False

    async def start(self) -> None:
        """Prepare the backend."""
        self._running = True

    async def stop(self) -> None:
        """Cancel any run and release the backend."""
        self.cancel()
        self._running = False

    async def execute(
        self,
        prompt: str,
        max_turns: int,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[AgentStreamItem]:
        """Run a prompt and stream its progress.

        Args:
            prompt: Natural-language task
            max_turns: Turn budget for the backend
            token: Cancellation token checked between backend messages

        Yields:
            ProgressEvent items, then exactly one AgentResult

        Raises:
            AgentError: If the backend fails
        """
        token = token or CancellationToken()
        self._token = token
        try:
            async for item in self._run(prompt, max_turns, token):
                yield item
        finally:
            if self._token is token:
                self._token = None

    @abstractmethod
    def _run(
        self,
        prompt: str,
        max_turns: int,
        token: CancellationToken,
    ) -> AsyncIterator[AgentStreamItem]:
        """Backend-specific stream."""
        ...

    def cancel(self) -> bool:
        """Signal the current run to stop.

        Idempotent and safe when nothing is running.

        Returns:
            True if a running task was signalled
        """
        token = self._token
        if token is None:
            return False
        signalled = token.cancel(CancelReason.CLIENT)
        if signalled:
            logger.info("agent_cancel_signalled", backend=self.name)
        return signalled

    @property
    def working_dir(self) -> str:
        return self._working_dir

    @property
    def is_running(self) -> bool:
        """Whether the backend has been started."""
        return self._running

    @property
    def busy(self) -> bool:
        """Whether a run is in progress."""
        return self._token is not None
