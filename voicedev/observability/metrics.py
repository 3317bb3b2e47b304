"""Prometheus Metrics - Session coordination observability.

Exports:
- State transitions (applied and rejected)
- Turn outcomes
- Tool calls and cancellations
- Agent task duration
- Observer counts and dropped audio
"""

from prometheus_client import Counter, Gauge, Histogram, Info

# -----------------------------------------------------------------------------
# Counters
# -----------------------------------------------------------------------------

STATE_TRANSITIONS = Counter(
    "voicedev_state_transitions_total",
    "Applied state transitions",
    ["from_state", "to_state"],
)

REJECTED_TRANSITIONS = Counter(
    "voicedev_rejected_transitions_total",
    "Transitions refused by the state machine",
    ["from_state", "to_state"],
)

TURNS = Counter(
    "voicedev_turns_total",
    "Conversation turns by outcome",
    ["outcome"],  # completed, cancelled, failed
)

TOOL_CALLS = Counter(
    "voicedev_tool_calls_total",
    "Voice tool calls received",
    ["tool"],
)

TOOL_RESULTS_DROPPED = Counter(
    "voicedev_tool_results_dropped_total",
    "Tool results discarded because the call was superseded",
)

CANCELLATIONS = Counter(
    "voicedev_cancellations_total",
    "Cancellation requests",
    ["source"],  # client, tool, superseded, voice_error, shutdown
)

ERRORS = Counter(
    "voicedev_errors_total",
    "Errors by component",
    ["component", "type"],
)

AUDIO_FRAMES_DROPPED = Counter(
    "voicedev_audio_frames_dropped_total",
    "Audio frames dropped",
    ["direction"],  # inbound (inbox full), outbound (observer backlog)
)

# -----------------------------------------------------------------------------
# Histograms
# -----------------------------------------------------------------------------

AGENT_TASK_SECONDS = Histogram(
    "voicedev_agent_task_seconds",
    "Agent task wall time",
    ["outcome"],
    buckets=[1, 2, 5, 10, 20, 30, 60, 120, 300, 600],
)

# -----------------------------------------------------------------------------
# Gauges
# -----------------------------------------------------------------------------

OBSERVERS = Gauge(
    "voicedev_observers",
    "Connected observers",
)

SESSION_STATE = Gauge(
    "voicedev_session_state",
    "1 for the current session state, 0 otherwise",
    ["state"],
)

VOICE_CONNECTED = Gauge(
    "voicedev_voice_connected",
    "Whether the realtime voice session is connected",
)

# -----------------------------------------------------------------------------
# Info
# -----------------------------------------------------------------------------

BUILD_INFO = Info(
    "voicedev_build",
    "Build information",
)


# -----------------------------------------------------------------------------
# Helper functions
# -----------------------------------------------------------------------------


def record_transition(from_state: str, to_state: str) -> None:
    """Record an applied state transition."""
    STATE_TRANSITIONS.labels(from_state=from_state, to_state=to_state).inc()


def record_rejected_transition(from_state: str, to_state: str) -> None:
    """Record a refused state transition."""
    REJECTED_TRANSITIONS.labels(from_state=from_state, to_state=to_state).inc()


def record_turn(outcome: str) -> None:
    """Record a finished turn."""
    TURNS.labels(outcome=outcome).inc()


def record_tool_call(tool: str) -> None:
    """Record a tool call from the voice endpoint."""
    TOOL_CALLS.labels(tool=tool).inc()


def record_tool_result_dropped() -> None:
    """Record a superseded tool result."""
    TOOL_RESULTS_DROPPED.inc()


def record_cancellation(source: str) -> None:
    """Record a cancellation request."""
    CANCELLATIONS.labels(source=source).inc()


def record_error(component: str, error_type: str) -> None:
    """Record error by component."""
    ERRORS.labels(component=component, type=error_type).inc()


def record_audio_dropped(direction: str) -> None:
    """Record a dropped audio frame."""
    AUDIO_FRAMES_DROPPED.labels(direction=direction).inc()


def record_agent_task(duration_s: float, outcome: str) -> None:
    """Record agent task duration in seconds."""
    AGENT_TASK_SECONDS.labels(outcome=outcome).observe(duration_s)


def update_observers(count: int) -> None:
    """Update connected observer gauge."""
    OBSERVERS.set(count)


def update_session_state(state: str, all_states: list[str]) -> None:
    """Mark the current state in the state gauge."""
    for name in all_states:
        SESSION_STATE.labels(state=name).set(1 if name == state else 0)


def update_voice_connected(connected: bool) -> None:
    """Update voice connection gauge."""
    VOICE_CONNECTED.set(1 if connected else 0)


def set_build_info(version: str, agent_engine: str, voice_engine: str) -> None:
    """Set build information."""
    BUILD_INFO.info({
        "version": version,
        "agent_engine": agent_engine,
        "voice_engine": voice_engine,
    })
