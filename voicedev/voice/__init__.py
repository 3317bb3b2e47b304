"""Voice module - Realtime speech-to-speech endpoints.

Supports:
- realtime: OpenAI Realtime API over WebSocket
- mock: Recording backend for tests
- none: Text-only sessions (no voice session is created)
"""

from __future__ import annotations

from voicedev.voice.base import (
    TranscriptRole,
    VoiceAudio,
    VoiceDisconnected,
    VoiceEvent,
    VoiceEventSink,
    VoiceFailure,
    VoiceFunctionCall,
    VoiceResponseDone,
    VoiceSession,
    VoiceSpeechStarted,
    VoiceTranscript,
)
from voicedev.voice.mock_voice import MockVoiceSession


def create_voice_session(engine: str | None = None) -> VoiceSession | None:
    """Factory function to create a (not yet connected) voice session.

    Args:
        engine: Override engine selection ("realtime", "mock" or "none").
                If None, uses VOICE_ENGINE from settings.

    Returns:
        VoiceSession, or None for text-only operation

    Raises:
        ValueError: If engine is unknown
    """
    from voicedev.config.settings import get_settings

    settings = get_settings()
    if engine is None:
        engine = settings.voice_engine

    if engine == "none":
        return None
    if engine == "mock":
        return MockVoiceSession()
    if engine == "realtime":
        from voicedev.voice.realtime import ConnectBackoff, RealtimeVoiceSession

        return RealtimeVoiceSession(
            api_key=settings.openai_api_key,
            url=settings.realtime_url,
            model=settings.realtime_model,
            voice=settings.realtime_voice,
            instructions=settings.realtime_instructions,
            connect_timeout_s=settings.voice_connect_timeout_s,
            backoff=ConnectBackoff(attempts=settings.voice_connect_retries),
        )

    raise ValueError(f"Unknown voice engine: {engine}. Available: realtime, mock, none")


__all__ = [
    # Interface
    "VoiceSession",
    "VoiceEvent",
    "VoiceEventSink",
    "TranscriptRole",
    # Events
    "VoiceTranscript",
    "VoiceAudio",
    "VoiceFunctionCall",
    "VoiceSpeechStarted",
    "VoiceResponseDone",
    "VoiceFailure",
    "VoiceDisconnected",
    # Mock
    "MockVoiceSession",
    # RealtimeVoiceSession - imported when needed
    # Factory
    "create_voice_session",
]
