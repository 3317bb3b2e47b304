"""Spoken formatting - Turn agent output into something a voice can read.

Agent results are markdown written for a terminal. Before they are handed
to the voice endpoint (or shown as an assistant transcript) code fences are
dropped, inline markup is unwrapped and the text is capped at a length that
is reasonable to speak.
"""

import re

from voicedev.config.constants import LIMITS
from voicedev.observability.logging import get_logger

logger = get_logger(__name__)

EMPTY_RESULT = "Task completed."
CODE_BLOCK_PLACEHOLDER = "[code block omitted]"

CODE_FENCE_PATTERN = re.compile(r"```\w*\n[\s\S]*?\n```")
INLINE_CODE_PATTERN = re.compile(r"`([^`]+)`")
BOLD_PATTERN = re.compile(r"\*\*([^*]+)\*\*")
ITALIC_PATTERN = re.compile(r"\*([^*]+)\*")
HEADING_PATTERN = re.compile(r"#{1,6}\s+")
BLANK_LINES_PATTERN = re.compile(r"\n{3,}")


def format_for_voice(text: str | None, max_length: int = LIMITS.MAX_VOICE_LENGTH) -> str:
    """Format an agent result for spoken delivery.

    Args:
        text: Raw agent result (markdown)
        max_length: Maximum characters before truncation

    Returns:
        Plain text, never empty

    Example:
        >>> format_for_voice("**Done.** See `main.py`.")
        'Done. See main.py.'
    """
    if not text:
        return EMPTY_RESULT

    summary = CODE_FENCE_PATTERN.sub(CODE_BLOCK_PLACEHOLDER, text)
    summary = INLINE_CODE_PATTERN.sub(r"\1", summary)
    summary = BOLD_PATTERN.sub(r"\1", summary)
    summary = ITALIC_PATTERN.sub(r"\1", summary)
    summary = HEADING_PATTERN.sub("", summary)
    summary = BLANK_LINES_PATTERN.sub("\n\n", summary)

    if len(summary) > max_length:
        truncated = summary[:max_length]
        last_sentence = truncated.rfind(".")
        # Prefer a sentence boundary, but not one that throws away most of the text
        if last_sentence > max_length * 0.5:
            summary = truncated[: last_sentence + 1]
        else:
            summary = truncated + "..."
        logger.debug(
            "voice_text_truncated",
            original_length=len(text),
            truncated_length=len(summary),
        )

    return summary.strip() or EMPTY_RESULT


def brief_error(message: str, limit: int = LIMITS.ERROR_BRIEF_LENGTH) -> str:
    """Client-visible prefix of an error message."""
    return truncate(message, limit)


def truncate(content: str, limit: int) -> str:
    """Cap content at limit characters, marking the cut with '...'."""
    if len(content) <= limit:
        return content
    return content[:limit] + "..."
