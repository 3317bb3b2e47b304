"""Cooperative cancellation for agent tasks.

A cancel has two observable phases:
- requested: the orchestrator has asked the task to stop
- stopped: the task has actually observed the request and unwound

Local session state is reset as soon as cancel is requested. The agent
task stops on its own schedule; anything it reports afterwards is
dropped by task id.
"""

import asyncio
from enum import Enum


class CancelReason(Enum):
    """Reasons for cancel events."""

    CLIENT = "client"  # cancel message from an observer
    TOOL = "tool"  # cancel tool from the voice endpoint
    SUPERSEDED = "superseded"  # newer tool call replaced the task
    VOICE_ERROR = "voice_error"
    SHUTDOWN = "shutdown"


class CancellationToken:
    """Cancel signal shared between the orchestrator and one agent task.

    Usage:
        token = CancellationToken()

        # orchestrator side
        token.cancel(CancelReason.CLIENT)

        # agent side, between backend messages
        if token.cancel_requested:
            token.mark_stopped()
            return
    """

    def __init__(self) -> None:
        self._requested = asyncio.Event()
        self._stopped = asyncio.Event()
        self._reason: CancelReason | None = None

    @property
    def cancel_requested(self) -> bool:
        return self._requested.is_set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    @property
    def reason(self) -> CancelReason | None:
        """Reason given with the first cancel request."""
        return self._reason

    def cancel(self, reason: CancelReason = CancelReason.CLIENT) -> bool:
        """Request cancellation.

        Idempotent: only the first call records a reason.

        Returns:
            True if this call made the request, False if already requested
        """
        if self._requested.is_set():
            return False
        self._reason = reason
        self._requested.set()
        return True

    def mark_stopped(self) -> None:
        """Called by the task once it has honoured the request."""
        self._stopped.set()

    async def wait_requested(self) -> None:
        """Block until cancellation is requested."""
        await self._requested.wait()

    async def wait_stopped(self, timeout: float | None = None) -> bool:
        """Wait for the task to acknowledge.

        Returns:
            True if stopped within timeout
        """
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False
