"""Pytest configuration and shared fixtures."""

import asyncio
import os
import uuid
from typing import AsyncGenerator, Callable, Generator

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing settings
os.environ.update({
    "ENVIRONMENT": "development",
    "AGENT_ENGINE": "mock",  # Scripted agent, no Claude CLI needed
    "VOICE_ENGINE": "none",  # Text-only unless a test wires a mock voice
    "WORKING_DIR": ".",
    "METRICS_ENABLED": "true",
})
os.environ.pop("OPENAI_API_KEY", None)

from voicedev.agent.base import ProgressEvent, ProgressKind  # noqa: E402
from voicedev.agent.mock_agent import MockAgentConfig, MockAgentSession  # noqa: E402
from voicedev.orchestrator.events import OutboundMessage, OutboundType  # noqa: E402
from voicedev.orchestrator.orchestrator import OrchestratorConfig, SessionOrchestrator  # noqa: E402
from voicedev.voice.mock_voice import MockVoiceSession  # noqa: E402


class RecordingObserver:
    """Observer that keeps every outbound message it is sent."""

    def __init__(self, observer_id: str | None = None) -> None:
        self.observer_id = observer_id or str(uuid.uuid4())
        self.messages: list[OutboundMessage] = []

    def send(self, message: OutboundMessage) -> None:
        self.messages.append(message)

    def of_type(self, message_type: OutboundType) -> list[dict]:
        return [m.data for m in self.messages if m.type is message_type]

    @property
    def states(self) -> list[str]:
        return [d["state"] for d in self.of_type(OutboundType.STATE)]

    @property
    def errors(self) -> list[dict]:
        return self.of_type(OutboundType.ERROR)

    @property
    def progress(self) -> list[dict]:
        return self.of_type(OutboundType.PROGRESS)

    @property
    def transcripts(self) -> list[dict]:
        return self.of_type(OutboundType.TRANSCRIPT)


def slow_steps(count: int = 20) -> list[ProgressEvent]:
    """Progress script long enough to cancel or supersede mid-run."""
    return [ProgressEvent(f"step {i}", ProgressKind.PROGRESS) for i in range(count)]


@pytest.fixture
def test_settings():
    """Provide test settings instance."""
    from voicedev.config.settings import Settings
    return Settings(
        _env_file=None,
        agent_engine="mock",
        voice_engine="none",
    )


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Provide FastAPI test client with a running session."""
    from voicedev.main import app
    with TestClient(app) as c:
        yield c


@pytest.fixture
def observer() -> RecordingObserver:
    """Provide a recording observer."""
    return RecordingObserver()


@pytest.fixture
def mock_agent() -> MockAgentSession:
    """Provide a fast scripted agent."""
    return MockAgentSession(MockAgentConfig(delay_s=0.001))


@pytest.fixture
def slow_agent() -> MockAgentSession:
    """Provide a scripted agent that runs long enough to interrupt."""
    return MockAgentSession(MockAgentConfig(steps=slow_steps(), delay_s=0.02))


@pytest.fixture
def mock_voice() -> MockVoiceSession:
    """Provide a recording voice session."""
    return MockVoiceSession()


@pytest.fixture
def wait_until() -> Callable:
    """Provide a helper that polls a predicate on the running loop."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not reached before timeout")
            await asyncio.sleep(0.001)

    return _wait


@pytest.fixture
def make_observer() -> Callable[..., RecordingObserver]:
    """Provide a factory for extra named observers."""
    return RecordingObserver


@pytest.fixture
def start_session() -> Callable:
    """Provide a helper that starts an orchestrator and registers observers.

    Sessions started this way are the caller's to stop.
    """

    async def _start(
        agent: MockAgentSession,
        voice: MockVoiceSession | None,
        *observers: RecordingObserver,
    ) -> SessionOrchestrator:
        orchestrator = SessionOrchestrator(
            agent,
            voice,
            OrchestratorConfig(session_id="test-session"),
        )
        await orchestrator.start()
        for obs in observers:
            await orchestrator.register_observer(obs)
        await orchestrator.drain()
        return orchestrator

    return _start


@pytest.fixture
async def text_session(start_session, mock_agent, observer) -> AsyncGenerator[SessionOrchestrator, None]:
    """Running text-only session with one observer."""
    orchestrator = await start_session(mock_agent, None, observer)
    yield orchestrator
    await orchestrator.stop()


@pytest.fixture
async def voice_session(start_session, mock_agent, mock_voice, observer) -> AsyncGenerator[SessionOrchestrator, None]:
    """Running session with a mock voice endpoint and one observer."""
    orchestrator = await start_session(mock_agent, mock_voice, observer)
    yield orchestrator
    await orchestrator.stop()


@pytest.fixture
async def slow_voice_session(start_session, slow_agent, mock_voice, observer) -> AsyncGenerator[SessionOrchestrator, None]:
    """Running voice session whose agent tasks take a while."""
    orchestrator = await start_session(slow_agent, mock_voice, observer)
    yield orchestrator
    await orchestrator.stop()
