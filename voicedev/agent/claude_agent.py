"""Claude Agent Session - Coding agent backed by the Claude Agent SDK.

Runs Claude Code against the working directory and translates its
message stream into ProgressEvent items:

- assistant text      -> text event + "Claude is responding..." summary
- tool use            -> "Using <tool>: <input>" event + "Using <tool>..." summary
- tool result         -> tool_result event
- success result      -> AgentResult

The SDK stream is closed as soon as the cancellation token is set.
"""

from __future__ import annotations

import json
import time
from typing import Any, AsyncIterator

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ClaudeSDKError,
    CLINotFoundError,
    ResultMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    query,
)

from voicedev.agent.base import AgentResult, AgentSession, AgentStreamItem, ProgressEvent, ProgressKind
from voicedev.config.constants import LIMITS
from voicedev.exceptions import AgentConnectionError, AgentExecutionError
from voicedev.observability.logging import get_logger
from voicedev.orchestrator.cancellation import CancellationToken
from voicedev.orchestrator.formatting import truncate

logger = get_logger(__name__)

DEFAULT_ALLOWED_TOOLS = ["Read", "Write", "Edit", "Bash", "Glob", "Grep"]


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, default=str)


def _tool_result_text(content: Any) -> str:
    """Flatten SDK tool result content (str or list of content blocks)."""
    if content is None:
        return ""
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
            else:
                parts.append(_stringify(block))
        return "\n".join(parts)
    return _stringify(content)


class ClaudeAgentSession(AgentSession):
    """Claude Agent SDK adapter.

    Usage:
        agent = ClaudeAgentSession(working_dir="/path/to/repo")
        await agent.start()

        async for item in agent.execute("Investigate: how is auth handled", 20, token):
            ...
    """

    name = "claude"

    def __init__(
        self,
        working_dir: str = ".",
        model: str | None = None,
        allowed_tools: list[str] | None = None,
    ) -> None:
        super().__init__(working_dir)
        self._model = model
        self._allowed_tools = list(allowed_tools or DEFAULT_ALLOWED_TOOLS)

    def _options(self, max_turns: int) -> ClaudeAgentOptions:
        kwargs: dict[str, Any] = {
            "cwd": self._working_dir,
            "max_turns": max_turns,
            "allowed_tools": self._allowed_tools,
            "permission_mode": "bypassPermissions",
        }
        if self._model:
            kwargs["model"] = self._model
        return ClaudeAgentOptions(**kwargs)

    async def _run(
        self,
        prompt: str,
        max_turns: int,
        token: CancellationToken,
    ) -> AsyncIterator[AgentStreamItem]:
        started = time.monotonic()
        tool_names: dict[str, str] = {}
        final_text = ""
        turns = 0

        logger.info(
            "agent_task_started",
            backend=self.name,
            max_turns=max_turns,
            prompt_length=len(prompt),
        )

        stream = query(prompt=prompt, options=self._options(max_turns))
        try:
            async for message in stream:
                if token.cancel_requested:
                    break

                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            yield ProgressEvent(block.text, ProgressKind.TEXT)
                            yield ProgressEvent("Claude is responding...", ProgressKind.PROGRESS)
                        elif isinstance(block, ToolUseBlock):
                            tool_names[block.id] = block.name
                            preview = truncate(_stringify(block.input), LIMITS.TOOL_INPUT_PREVIEW)
                            yield ProgressEvent(
                                f"Using {block.name}: {preview}",
                                ProgressKind.TOOL_USE,
                                tool_label=block.name,
                            )
                            yield ProgressEvent(f"Using {block.name}...", ProgressKind.PROGRESS)

                elif isinstance(message, UserMessage) and isinstance(message.content, list):
                    for block in message.content:
                        if isinstance(block, ToolResultBlock):
                            label = tool_names.get(block.tool_use_id)
                            text = truncate(
                                _tool_result_text(block.content), LIMITS.TOOL_INPUT_PREVIEW
                            )
                            yield ProgressEvent(text, ProgressKind.TOOL_RESULT, tool_label=label)

                elif isinstance(message, ResultMessage):
                    turns = message.num_turns
                    if message.is_error:
                        raise AgentExecutionError(
                            message.result or f"Agent run ended with {message.subtype}",
                            backend=self.name,
                            turns=turns,
                        )
                    if message.subtype == "success":
                        final_text = message.result or ""

        except CLINotFoundError as e:
            raise AgentConnectionError(self.name, str(e)) from e
        except ClaudeSDKError as e:
            raise AgentExecutionError(str(e), backend=self.name, turns=turns) from e
        finally:
            await stream.aclose()

        duration_s = time.monotonic() - started

        if token.cancel_requested:
            token.mark_stopped()
            logger.info("agent_task_cancelled", backend=self.name, duration_s=duration_s)
            yield AgentResult(text="", cancelled=True, turns=turns, duration_s=duration_s)
            return

        logger.info(
            "agent_task_completed",
            backend=self.name,
            turns=turns,
            duration_s=duration_s,
            result_length=len(final_text),
        )
        yield AgentResult(text=final_text, turns=turns, duration_s=duration_s)
