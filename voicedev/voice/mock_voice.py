"""Mock Voice Session - For testing without the realtime endpoint.

Records every wire command instead of sending it and lets tests play
the endpoint's side by injecting events.

Usage:
    Set VOICE_ENGINE=mock in .env to use this backend.
"""

from typing import Any

from voicedev.exceptions import VoiceConnectionError
from voicedev.voice.base import VoiceDisconnected, VoiceEvent, VoiceSession


class MockVoiceSession(VoiceSession):
    """Recording voice session.

    Usage:
        voice = MockVoiceSession()
        voice.set_sink(orchestrator.deliver_voice_event)
        await voice.connect()

        await voice.inject(VoiceFunctionCall("investigate", '{"query": "auth"}', "c1"))
        assert voice.tool_results() == [("c1", "...")]
    """

    name = "mock"

    def __init__(self, fail_connect: bool = False) -> None:
        super().__init__()
        self._fail_connect = fail_connect
        self.commands: list[dict[str, Any]] = []

    async def connect(self) -> None:
        if self._fail_connect:
            raise VoiceConnectionError(self.name, "connection refused")
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    def _send(self, command: dict[str, Any]) -> None:
        self.commands.append(command)

    async def inject(self, event: VoiceEvent) -> None:
        """Deliver an event as if it came from the endpoint."""
        await self._emit(event)

    async def drop_connection(self, reason: str = "connection lost") -> None:
        """Simulate the endpoint going away."""
        self._connected = False
        await self._emit(VoiceDisconnected(reason))

    def commands_of(self, command_type: str) -> list[dict[str, Any]]:
        """Recorded commands of one wire type."""
        return [c for c in self.commands if c.get("type") == command_type]

    def tool_results(self) -> list[tuple[str, str]]:
        """(call_id, output) for every function result sent."""
        return [
            (c["item"]["call_id"], c["item"]["output"])
            for c in self.commands_of("conversation.item.create")
            if c.get("item", {}).get("type") == "function_call_output"
        ]
