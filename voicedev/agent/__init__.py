"""Agent module - Coding-agent backends.

Supports:
- claude: Claude Agent SDK running Claude Code in the working directory
- mock: Scripted backend for tests and offline development
"""

from __future__ import annotations

from voicedev.agent.base import (
    AgentResult,
    AgentSession,
    AgentStreamItem,
    ProgressEvent,
    ProgressKind,
)
from voicedev.agent.mock_agent import MockAgentConfig, MockAgentSession


async def create_agent_session(engine: str | None = None) -> AgentSession:
    """Factory function to create and start an agent session.

    Args:
        engine: Override engine selection ("claude" or "mock").
                If None, uses AGENT_ENGINE from settings.

    Returns:
        Started AgentSession

    Raises:
        ValueError: If engine is unknown
    """
    from voicedev.config.settings import get_settings

    settings = get_settings()
    if engine is None:
        engine = settings.agent_engine

    if engine == "mock":
        agent: AgentSession = MockAgentSession(working_dir=settings.working_dir)
    elif engine == "claude":
        from voicedev.agent.claude_agent import ClaudeAgentSession

        agent = ClaudeAgentSession(
            working_dir=settings.working_dir,
            model=settings.agent_model,
            allowed_tools=settings.agent_allowed_tools,
        )
    else:
        raise ValueError(f"Unknown agent engine: {engine}. Available: claude, mock")

    await agent.start()
    return agent


__all__ = [
    # Interface
    "AgentSession",
    "AgentResult",
    "AgentStreamItem",
    "ProgressEvent",
    "ProgressKind",
    # Mock
    "MockAgentSession",
    "MockAgentConfig",
    # ClaudeAgentSession - imported when needed
    # Factory
    "create_agent_session",
]
