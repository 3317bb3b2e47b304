"""Mock Agent Session - For testing without the Claude Agent SDK.

Plays back a scripted run: a few progress events, then a result.
Honours the cancellation token between steps so cancel and supersede
paths can be exercised deterministically.

Usage:
    Set AGENT_ENGINE=mock in .env to use this backend.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import AsyncIterator

from voicedev.agent.base import AgentResult, AgentSession, AgentStreamItem, ProgressEvent, ProgressKind
from voicedev.exceptions import AgentExecutionError
from voicedev.orchestrator.cancellation import CancellationToken


def _default_steps() -> list[ProgressEvent]:
    return [
        ProgressEvent("Looking at the repository layout.", ProgressKind.TEXT),
        ProgressEvent("Claude is responding...", ProgressKind.PROGRESS),
        ProgressEvent('Using Glob: {"pattern": "**/*.py"}', ProgressKind.TOOL_USE, tool_label="Glob"),
        ProgressEvent("Using Glob...", ProgressKind.PROGRESS),
    ]


@dataclass
class MockAgentConfig:
    """Configuration for the scripted agent."""

    steps: list[ProgressEvent] = field(default_factory=_default_steps)
    result: str | None = None  # None echoes the prompt
    delay_s: float = 0.01  # Pause before each step
    fail_with: str | None = None  # Raise AgentExecutionError after the steps


class MockAgentSession(AgentSession):
    """Scripted agent for tests and local development.

    Records every prompt it was asked to run in `calls` and counts
    cancel() invocations in `cancel_calls`.
    """

    name = "mock"

    def __init__(self, config: MockAgentConfig | None = None, working_dir: str = ".") -> None:
        super().__init__(working_dir)
        self._config = config or MockAgentConfig()
        self.calls: list[tuple[str, int]] = []
        self.cancel_calls: int = 0

    @property
    def config(self) -> MockAgentConfig:
        return self._config

    def cancel(self) -> bool:
        self.cancel_calls += 1
        return super().cancel()

    async def _run(
        self,
        prompt: str,
        max_turns: int,
        token: CancellationToken,
    ) -> AsyncIterator[AgentStreamItem]:
        self.calls.append((prompt, max_turns))
        started = time.monotonic()
        turns = 0

        for step in self._config.steps:
            await asyncio.sleep(self._config.delay_s)
            if token.cancel_requested:
                break
            turns += 1
            yield step

        if not token.cancel_requested:
            await asyncio.sleep(self._config.delay_s)

        if token.cancel_requested:
            token.mark_stopped()
            yield AgentResult(
                text="", cancelled=True, turns=turns, duration_s=time.monotonic() - started
            )
            return

        if self._config.fail_with is not None:
            raise AgentExecutionError(self._config.fail_with, backend=self.name, turns=turns)

        text = self._config.result if self._config.result is not None else f"Done: {prompt}"
        yield AgentResult(text=text, turns=turns, duration_s=time.monotonic() - started)
