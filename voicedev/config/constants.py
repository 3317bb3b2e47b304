"""Session Constants - Turn budgets and delivery limits.

These values define the behavioral contracts of the coordination layer:
how many agent turns each voice tool may spend and how much text a
spoken or client-visible message may carry.
"""

from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class SessionConstants:
    """Immutable session contract values."""

    # Agent turn budgets per tool
    INVESTIGATE_MAX_TURNS: Final[int] = 20
    PLAN_MAX_TURNS: Final[int] = 30
    EXECUTE_MAX_TURNS: Final[int] = 50
    TEXT_MAX_TURNS: Final[int] = 50  # Typed prompts run as an execute

    # Spoken delivery
    MAX_VOICE_LENGTH: Final[int] = 500  # Characters of formatted result
    ERROR_BRIEF_LENGTH: Final[int] = 100  # Client-visible error prefix
    TOOL_INPUT_PREVIEW: Final[int] = 200  # Characters of tool input shown in progress

    # Orchestrator queues
    INBOX_MAX_SIZE: Final[int] = 1024
    OBSERVER_AUDIO_HIGH_WATER: Final[int] = 256  # Audio dropped above this backlog

    # State machine
    MAX_TRANSITION_HISTORY: Final[int] = 100

    # Voice endpoint
    VOICE_CONNECT_TIMEOUT_S: Final[float] = 30.0


# Singleton instance for import convenience
LIMITS = SessionConstants()
