"""Tests for voice sessions: wire commands, server event translation and the factory."""

import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from websockets.exceptions import InvalidStatus

from voicedev.exceptions import VoiceConnectionError, VoiceNotConnectedError
from voicedev.voice import MockVoiceSession, create_voice_session
from voicedev.voice.base import (
    TranscriptRole,
    VoiceAudio,
    VoiceDisconnected,
    VoiceFailure,
    VoiceFunctionCall,
    VoiceResponseDone,
    VoiceSpeechStarted,
    VoiceTranscript,
)
from voicedev.voice.realtime import (
    ConnectBackoff,
    RealtimeVoiceSession,
    is_transient,
    translate_server_event,
)


class TestTranslateServerEvent:
    """Tests for realtime server event mapping."""

    def test_audio_delta(self):
        assert translate_server_event({"type": "response.audio.delta", "delta": "AAAA"}) == VoiceAudio("AAAA")

    def test_empty_audio_delta(self):
        assert translate_server_event({"type": "response.audio.delta", "delta": ""}) is None

    def test_user_transcript(self):
        event = {
            "type": "conversation.item.input_audio_transcription.completed",
            "transcript": "how does auth work",
        }
        assert translate_server_event(event) == VoiceTranscript("how does auth work", TranscriptRole.USER)

    def test_assistant_transcript(self):
        event = {"type": "response.audio_transcript.done", "transcript": "Let me check."}
        assert translate_server_event(event) == VoiceTranscript("Let me check.", TranscriptRole.ASSISTANT)

    def test_function_call(self):
        event = {
            "type": "response.output_item.done",
            "item": {
                "type": "function_call",
                "name": "investigate",
                "arguments": '{"query": "auth"}',
                "call_id": "call_1",
            },
        }
        assert translate_server_event(event) == VoiceFunctionCall("investigate", '{"query": "auth"}', "call_1")

    def test_non_function_output_item(self):
        event = {"type": "response.output_item.done", "item": {"type": "message"}}
        assert translate_server_event(event) is None

    def test_speech_started(self):
        assert translate_server_event({"type": "input_audio_buffer.speech_started"}) == VoiceSpeechStarted()

    def test_response_done(self):
        assert translate_server_event({"type": "response.done"}) == VoiceResponseDone()

    def test_error(self):
        event = {"type": "error", "error": {"code": "server_error", "message": "overloaded"}}
        assert translate_server_event(event) == VoiceFailure("Realtime API error: overloaded", "server_error")

    def test_ignored_error(self):
        event = {"type": "error", "error": {"code": "response_cancel_not_active", "message": "x"}}
        assert translate_server_event(event) is None

    def test_unhandled_event(self):
        assert translate_server_event({"type": "session.created"}) is None


class TestMockVoiceSession:
    """Tests for the recording voice session and base commands."""

    @pytest.fixture
    def voice(self):
        return MockVoiceSession()

    @pytest.mark.asyncio
    async def test_commands_require_connection(self, voice):
        with pytest.raises(VoiceNotConnectedError):
            voice.commit_audio()

    @pytest.mark.asyncio
    async def test_command_vocabulary(self, voice):
        await voice.connect()

        voice.send_audio_frame("AAAA")
        voice.commit_audio()
        voice.interrupt_output()
        voice.send_tool_result("c1", "done")

        assert [c["type"] for c in voice.commands] == [
            "input_audio_buffer.append",
            "input_audio_buffer.commit",
            "response.cancel",
            "conversation.item.create",
            "response.create",
        ]
        assert voice.tool_results() == [("c1", "done")]

    @pytest.mark.asyncio
    async def test_inject_reaches_sink(self, voice):
        received = []

        async def sink(event):
            received.append(event)

        voice.set_sink(sink)
        await voice.connect()
        await voice.inject(VoiceResponseDone())
        await voice.drop_connection("gone")

        assert received == [VoiceResponseDone(), VoiceDisconnected("gone")]
        assert not voice.connected

    @pytest.mark.asyncio
    async def test_inject_without_sink(self, voice):
        await voice.inject(VoiceResponseDone())

    @pytest.mark.asyncio
    async def test_fail_connect(self):
        with pytest.raises(VoiceConnectionError):
            await MockVoiceSession(fail_connect=True).connect()


class FakeConnection:
    """Stand-in for a websockets client connection."""

    def __init__(self, incoming=()):
        self.sent: list[dict] = []
        self._incoming: asyncio.Queue = asyncio.Queue()
        for message in incoming:
            self._incoming.put_nowait(message)
        self.closed = False

    async def send(self, data):
        self.sent.append(json.loads(data))

    async def close(self):
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message


class TestRealtimeVoiceSession:
    """Tests for the realtime adapter with the socket patched out."""

    def make_session(self, **kwargs):
        defaults = {
            "api_key": "sk-test",
            "instructions": "be brief",
            "backoff": ConnectBackoff(attempts=2, initial_delay_s=0.001, jitter=False),
        }
        defaults.update(kwargs)
        return RealtimeVoiceSession(**defaults)

    def test_endpoint(self):
        session = self.make_session(model="gpt-4o-realtime-preview-2024-12-17")
        assert session.endpoint == "wss://api.openai.com/v1/realtime?model=gpt-4o-realtime-preview-2024-12-17"

    def test_session_config(self):
        config = self.make_session(voice="alloy").session_config()["session"]

        assert config["voice"] == "alloy"
        assert config["instructions"] == "be brief"
        assert config["input_audio_format"] == "pcm16"
        assert config["input_audio_transcription"] == {"model": "whisper-1"}
        assert config["turn_detection"] == {
            "type": "server_vad",
            "threshold": 0.5,
            "prefix_padding_ms": 300,
            "silence_duration_ms": 500,
        }
        assert [t["name"] for t in config["tools"]] == ["investigate", "plan", "execute", "get_status", "cancel"]

    @pytest.mark.asyncio
    async def test_connect_requires_key(self):
        with pytest.raises(VoiceConnectionError):
            await self.make_session(api_key=None).connect()

    @pytest.mark.asyncio
    async def test_connect_sends_session_update(self):
        session = self.make_session()
        conn = FakeConnection()

        with patch.object(session, "_open", AsyncMock(return_value=conn)):
            await session.connect()
            session.commit_audio()
            await asyncio.sleep(0.01)
            await session.disconnect()

        assert [c["type"] for c in conn.sent] == ["session.update", "input_audio_buffer.commit"]
        assert conn.closed
        assert not session.connected

    @pytest.mark.asyncio
    async def test_connect_retries_then_fails(self):
        session = self.make_session()
        opener = AsyncMock(side_effect=OSError("refused"))

        with patch.object(session, "_open", opener):
            with pytest.raises(VoiceConnectionError, match="refused"):
                await session.connect()

        assert opener.call_count == 2

    @pytest.mark.asyncio
    async def test_rejected_key_fails_fast(self):
        session = self.make_session(backoff=ConnectBackoff(attempts=5, initial_delay_s=0.001))
        opener = AsyncMock(side_effect=InvalidStatus(SimpleNamespace(status_code=401)))

        with patch.object(session, "_open", opener):
            with pytest.raises(VoiceConnectionError, match="401"):
                await session.connect()

        assert opener.call_count == 1
        assert not session.connected

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        session = self.make_session()
        conn = FakeConnection()
        opener = AsyncMock(side_effect=[InvalidStatus(SimpleNamespace(status_code=503)), conn])

        with patch.object(session, "_open", opener):
            await session.connect()
            await session.disconnect()

        assert opener.call_count == 2
        assert conn.sent[0]["type"] == "session.update"

    @pytest.mark.asyncio
    async def test_server_events_reach_sink(self):
        session = self.make_session()
        conn = FakeConnection([
            json.dumps({"type": "response.audio.delta", "delta": "AAAA"}),
            "not json",
            json.dumps({"type": "response.done"}),
        ])
        received = []

        async def sink(event):
            received.append(event)

        session.set_sink(sink)
        with patch.object(session, "_open", AsyncMock(return_value=conn)):
            await session.connect()
            await asyncio.sleep(0.01)
            await session.disconnect()

        assert received == [VoiceAudio("AAAA"), VoiceResponseDone()]

    @pytest.mark.asyncio
    async def test_lost_connection_reported(self):
        session = self.make_session()
        conn = FakeConnection([None])
        received = []

        async def sink(event):
            received.append(event)

        session.set_sink(sink)
        with patch.object(session, "_open", AsyncMock(return_value=conn)):
            await session.connect()
            await asyncio.sleep(0.01)

        assert received == [VoiceDisconnected("")]
        assert not session.connected
        await session.disconnect()

    def test_send_when_disconnected(self):
        with pytest.raises(VoiceNotConnectedError):
            self.make_session()._send({"type": "response.cancel"})


class TestConnectBackoff:
    """Tests for handshake retry classification and schedule."""

    @pytest.mark.parametrize(
        "error",
        [
            OSError("refused"),
            asyncio.TimeoutError(),
            InvalidStatus(SimpleNamespace(status_code=500)),
            InvalidStatus(SimpleNamespace(status_code=503)),
            InvalidStatus(SimpleNamespace(status_code=429)),
            InvalidStatus(SimpleNamespace(status_code=408)),
        ],
    )
    def test_transient(self, error):
        assert is_transient(error)

    @pytest.mark.parametrize(
        "error",
        [
            InvalidStatus(SimpleNamespace(status_code=401)),
            InvalidStatus(SimpleNamespace(status_code=403)),
            InvalidStatus(SimpleNamespace(status_code=404)),
            ValueError("bad url"),
        ],
    )
    def test_permanent(self, error):
        assert not is_transient(error)

    def test_delays_double_and_cap(self):
        backoff = ConnectBackoff(attempts=5, initial_delay_s=1.0, max_delay_s=3.0, jitter=False)
        assert list(backoff.delays()) == [1.0, 2.0, 3.0, 3.0]

    def test_single_attempt_never_sleeps(self):
        assert list(ConnectBackoff(attempts=1).delays()) == []

    def test_jitter_bounds(self):
        backoff = ConnectBackoff(attempts=2, initial_delay_s=1.0)
        (delay,) = backoff.delays()
        assert 0.5 <= delay <= 1.5


class TestCreateVoiceSession:
    """Tests for the voice factory."""

    def test_none(self):
        assert create_voice_session("none") is None

    def test_from_settings(self):
        """Test environment runs text-only."""
        assert create_voice_session() is None

    def test_mock(self):
        assert isinstance(create_voice_session("mock"), MockVoiceSession)

    def test_realtime(self):
        assert isinstance(create_voice_session("realtime"), RealtimeVoiceSession)

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown voice engine"):
            create_voice_session("sip")
