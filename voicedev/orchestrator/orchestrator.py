"""Session Orchestrator - Single serialization point for one live session.

Every input (client messages, voice endpoint events, agent task progress
and outcomes, observer registration) is posted to one bounded inbox and
handled to completion before the next one is looked at. Handlers never
await collaborator I/O:

- agent tasks run as background asyncio tasks that post back into the inbox
- voice commands are queued on the voice session's own writer
- observers queue outbound messages on their own sender

Agent tasks carry an increasing task id. Cancel and supersede clear the
current id, so anything a stopped task reports afterwards is dropped.

Usage:
    orchestrator = SessionOrchestrator(agent, voice, OrchestratorConfig())
    await orchestrator.start()

    await orchestrator.register_observer(connection)
    await orchestrator.submit_client_message(connection, ClientText("add a health check"))

    await orchestrator.stop()
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable

from voicedev.agent.base import AgentResult, AgentSession, ProgressEvent, ProgressKind
from voicedev.config.constants import LIMITS
from voicedev.exceptions import (
    AgentExecutionError,
    ToolArgumentError,
    UnknownToolError,
    VoiceDevError,
    VoiceError,
)
from voicedev.observability.logging import (
    CancelLogger,
    SessionLogger,
    ToolLogger,
    bind_session,
    get_logger,
    unbind_session,
)
from voicedev.observability.metrics import (
    record_agent_task,
    record_audio_dropped,
    record_cancellation,
    record_error,
    record_tool_call,
    record_tool_result_dropped,
    record_turn,
    update_observers,
    update_session_state,
    update_voice_connected,
)
from voicedev.orchestrator.cancellation import CancellationToken, CancelReason
from voicedev.orchestrator.events import (
    AgentCancelled,
    AgentCompleted,
    AgentFailed,
    AgentProgress,
    ClientAudio,
    ClientAudioCommit,
    ClientCancel,
    ClientInbound,
    ClientMessage,
    ClientText,
    Observer,
    ObserverRegistered,
    ObserverUnregistered,
    OutboundMessage,
)
from voicedev.orchestrator.formatting import brief_error, format_for_voice
from voicedev.orchestrator.state_machine import (
    ErrorInfo,
    SessionContext,
    SessionState,
    SessionStateMachine,
    ToolCallRef,
)
from voicedev.orchestrator.tools import ToolName, build_task, parse_tool_args, resolve_tool
from voicedev.voice.base import (
    TranscriptRole,
    VoiceAudio,
    VoiceDisconnected,
    VoiceEvent,
    VoiceFailure,
    VoiceFunctionCall,
    VoiceResponseDone,
    VoiceSession,
    VoiceSpeechStarted,
    VoiceTranscript,
)

logger = get_logger(__name__)

ALL_STATES = [s.value for s in SessionState]

BUSY_MESSAGE = "Please wait for the current operation to complete"
CANCELLED_PROGRESS = "Operation cancelled"
CANCELLED_TOOL_RESULT = "Operation cancelled."
VOICE_DISCONNECTED_MESSAGE = "Voice service disconnected. Using text fallback."
VOICE_ERROR_MESSAGE = (
    "I'm having trouble connecting to the voice service. "
    "Please try again or use text input."
)
IDLE_STATUS = "I am currently idle and ready for a new task."

# States in which spoken output is forwarded to observers
AUDIO_OUT_STATES = frozenset({SessionState.PROCESSING, SessionState.EXECUTING, SessionState.SPEAKING})


@dataclass
class OrchestratorConfig:
    """Configuration for one orchestrated session."""

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    inbox_max_size: int = LIMITS.INBOX_MAX_SIZE
    max_voice_length: int = LIMITS.MAX_VOICE_LENGTH
    error_brief_length: int = LIMITS.ERROR_BRIEF_LENGTH
    text_max_turns: int = LIMITS.TEXT_MAX_TURNS

    @classmethod
    def from_settings(cls, settings: Any) -> OrchestratorConfig:
        return cls(
            inbox_max_size=settings.inbox_max_size,
            max_voice_length=settings.max_voice_length,
            error_brief_length=settings.error_brief_length,
        )


@dataclass
class _ActiveTask:
    """Agent task the session currently considers authoritative."""

    task_id: int
    token: CancellationToken
    call_id: str | None
    started_at: float = field(default_factory=time.monotonic)


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of the session for the transport layer."""

    session_id: str
    state: SessionState
    context: SessionContext
    running: bool
    voice_connected: bool
    observers: int
    active_call_id: str | None
    task_id: int | None
    latest_progress: str
    progress_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "context": self.context.to_dict(),
            "running": self.running,
            "voice_connected": self.voice_connected,
            "observers": self.observers,
            "active_call_id": self.active_call_id,
            "task_id": self.task_id,
            "latest_progress": self.latest_progress,
            "progress_count": self.progress_count,
        }


class SessionOrchestrator:
    """Coordinates one session across agent, voice and observers."""

    def __init__(
        self,
        agent: AgentSession,
        voice: VoiceSession | None = None,
        config: OrchestratorConfig | None = None,
    ) -> None:
        self._config = config or OrchestratorConfig()
        self._agent = agent
        self._voice = voice

        session_id = self._config.session_id
        self._fsm = SessionStateMachine(session_id)
        self._session_logger = SessionLogger(session_id)
        self._cancel_logger = CancelLogger(session_id)
        self._tool_logger = ToolLogger(session_id)

        self._inbox: asyncio.Queue = asyncio.Queue(maxsize=self._config.inbox_max_size)
        self._loop_task: asyncio.Task | None = None
        self._running = False

        self._observers: dict[str, Observer] = {}
        self._progress_log: list[ProgressEvent] = []
        self._latest_progress = ""

        self._task_seq = 0
        self._active_task: _ActiveTask | None = None
        self._active_call_id: str | None = None
        self._agent_tasks: set[asyncio.Task] = set()

        self._turn_id = 0
        self._pending_prompt: str | None = None
        # Voice responses still expected to finish in this turn
        self._responses_pending = 0

        self._handlers: dict[type, Callable[[Any], None]] = {
            ClientInbound: self._on_client_inbound,
            ObserverRegistered: self._on_observer_registered,
            ObserverUnregistered: self._on_observer_unregistered,
            AgentProgress: self._on_agent_progress,
            AgentCompleted: self._on_agent_completed,
            AgentCancelled: self._on_agent_cancelled,
            AgentFailed: self._on_agent_failed,
            VoiceTranscript: self._on_voice_transcript,
            VoiceAudio: self._on_voice_audio,
            VoiceFunctionCall: self._on_voice_function_call,
            VoiceSpeechStarted: self._on_voice_speech_started,
            VoiceResponseDone: self._on_voice_response_done,
            VoiceFailure: self._on_voice_error,
            VoiceDisconnected: self._on_voice_disconnected,
        }

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self._config.session_id

    @property
    def state(self) -> SessionState:
        return self._fsm.state

    @property
    def context(self) -> SessionContext:
        return self._fsm.context

    @property
    def state_machine(self) -> SessionStateMachine:
        return self._fsm

    @property
    def voice_connected(self) -> bool:
        return self._voice is not None and self._voice.connected

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def active_call_id(self) -> str | None:
        return self._active_call_id

    @property
    def latest_progress(self) -> str:
        return self._latest_progress

    def progress_log(self) -> list[ProgressEvent]:
        """Copy of the current task's progress log."""
        return list(self._progress_log)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            session_id=self.session_id,
            state=self._fsm.state,
            context=self._fsm.context,
            running=self._running,
            voice_connected=self.voice_connected,
            observers=len(self._observers),
            active_call_id=self._active_call_id,
            task_id=self._active_task.task_id if self._active_task else None,
            latest_progress=self._latest_progress,
            progress_count=len(self._progress_log),
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Connect collaborators and start the inbox loop.

        A voice connection failure is not fatal: the session continues
        text-only.
        """
        if self._running:
            return

        # Inherited by the loop task and every agent task it starts
        bind_session(self.session_id)

        if self._voice is not None:
            self._voice.set_sink(self.deliver_voice_event)
            try:
                await self._voice.connect()
            except VoiceError as e:
                logger.error(
                    "voice_connect_failed",
                    session_id=self.session_id,
                    error=str(e),
                )
                record_error("voice", type(e).__name__)
        update_voice_connected(self.voice_connected)

        self._running = True
        self._loop_task = asyncio.create_task(self.run(), name=f"orchestrator-{self.session_id}")
        update_session_state(self._fsm.state.value, ALL_STATES)
        self._session_logger.session_started({"voice_connected": self.voice_connected})

    async def stop(self) -> None:
        """Stop the loop, cancel any task and disconnect collaborators."""
        if not self._running:
            return
        self._running = False

        if self._active_task is not None:
            record_cancellation(CancelReason.SHUTDOWN.value)
            self._active_task.token.cancel(CancelReason.SHUTDOWN)
            self._active_task = None
        self._agent.cancel()

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        for task in list(self._agent_tasks):
            task.cancel()
        if self._agent_tasks:
            await asyncio.gather(*self._agent_tasks, return_exceptions=True)

        if self._voice is not None:
            self._voice.set_sink(None)
            await self._voice.disconnect()
        update_voice_connected(False)

        self._fsm.reset("shutdown")
        self._observers.clear()
        update_observers(0)
        self._session_logger.session_ended("shutdown")
        unbind_session()

    async def run(self) -> None:
        """Drain the inbox, one event at a time."""
        while True:
            event = await self._inbox.get()
            try:
                self._dispatch(event)
            except Exception as e:
                # A failing handler must not take the session down
                logger.exception(
                    "orchestrator_handler_error",
                    session_id=self.session_id,
                    event=type(event).__name__,
                    error=str(e),
                )
                record_error("orchestrator", type(e).__name__)
                self._clear_turn()
                self._fsm.reset("handler_error")
                self._broadcast_state()
            finally:
                self._inbox.task_done()

    async def drain(self) -> None:
        """Wait until the inbox is empty and no agent task is running."""
        while True:
            await self._inbox.join()
            pending = [t for t in self._agent_tasks if not t.done()]
            if not pending:
                if self._inbox.empty():
                    return
                continue
            await asyncio.gather(*pending, return_exceptions=True)

    def _dispatch(self, event: Any) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning("unknown_inbox_event", event=type(event).__name__)
            return
        handler(event)

    # -------------------------------------------------------------------------
    # Inbox entry points
    # -------------------------------------------------------------------------

    def post(self, event: Any) -> bool:
        """Post without waiting. Returns False if the inbox is full."""
        try:
            self._inbox.put_nowait(event)
            return True
        except asyncio.QueueFull:
            return False

    async def register_observer(self, observer: Observer) -> None:
        await self._inbox.put(ObserverRegistered(observer))

    async def unregister_observer(self, observer: Observer) -> None:
        await self._inbox.put(ObserverUnregistered(observer))

    async def submit_client_message(self, observer: Observer | None, message: ClientMessage) -> None:
        """Queue a client message for serialized handling.

        Audio frames never wait: they are dropped if the inbox is full.
        """
        inbound = ClientInbound(message, observer)
        if isinstance(message, ClientAudio):
            if not self.post(inbound):
                record_audio_dropped("inbound")
            return
        await self._inbox.put(inbound)

    async def cancel(self) -> None:
        """Same effect as a client cancel message."""
        await self.submit_client_message(None, ClientCancel())

    async def deliver_voice_event(self, event: VoiceEvent) -> None:
        """Sink for the voice session."""
        if isinstance(event, VoiceAudio):
            if not self.post(event):
                record_audio_dropped("outbound")
            return
        await self._inbox.put(event)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def _broadcast(self, message: OutboundMessage) -> None:
        for observer in list(self._observers.values()):
            self._send_to(observer, message)

    def _send_to(self, observer: Observer, message: OutboundMessage) -> None:
        try:
            observer.send(message)
        except Exception as e:
            logger.warning(
                "observer_send_error",
                session_id=self.session_id,
                observer_id=observer.observer_id,
                error=str(e),
            )

    def _broadcast_state(self) -> None:
        self._broadcast(OutboundMessage.state(self._fsm.state.value))

    # -------------------------------------------------------------------------
    # State helpers
    # -------------------------------------------------------------------------

    def _set_state(self, to: SessionState, reason: str, **context_update: Any) -> bool:
        """Transition, then broadcast the new state."""
        if self._pending_prompt is not None and "current_prompt" not in context_update:
            context_update["current_prompt"] = self._pending_prompt
        if not self._fsm.transition(to, reason, **context_update):
            return False
        self._pending_prompt = None
        update_session_state(to.value, ALL_STATES)
        self._broadcast_state()
        return True

    def _walk_to(self, target: SessionState, reason: str, **context_update: Any) -> bool:
        """Follow allowed edges to target. context_update applies on the last step."""
        for step in self._fsm.path_to(target):
            update = context_update if step is target else {}
            if not self._set_state(step, reason, **update):
                return False
        return self._fsm.state is target

    def _begin_turn(self, source: str, **context_update: Any) -> bool:
        """idle -> listening, starting from a clean context."""
        if self._fsm.state is not SessionState.IDLE:
            return False
        if not self._fsm.context.is_empty:
            self._fsm.reset("new_turn")
        self._turn_id += 1
        self._session_logger.turn_started(self._turn_id, source)
        return self._set_state(SessionState.LISTENING, source, **context_update)

    def _clear_turn(self) -> None:
        self._active_task = None
        self._active_call_id = None
        self._pending_prompt = None
        self._responses_pending = 0

    def _end_turn(self, outcome: str, reason: str) -> None:
        """Reset to idle and tell observers."""
        was_idle = self._fsm.state is SessionState.IDLE
        self._clear_turn()
        self._fsm.reset(reason)
        update_session_state(SessionState.IDLE.value, ALL_STATES)
        self._broadcast_state()
        if not was_idle:
            record_turn(outcome)
            self._session_logger.turn_completed(self._turn_id, outcome)

    def _is_current(self, task_id: int, kind: str) -> bool:
        current = self._active_task.task_id if self._active_task else None
        if current != task_id:
            self._cancel_logger.stale_event_dropped(kind, task_id, current)
            return False
        return True

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def _on_observer_registered(self, event: ObserverRegistered) -> None:
        observer = event.observer
        self._observers[observer.observer_id] = observer
        update_observers(len(self._observers))
        self._send_to(observer, OutboundMessage.state(self._fsm.state.value))
        logger.info(
            "observer_registered",
            session_id=self.session_id,
            observer_id=observer.observer_id,
            observers=len(self._observers),
        )

    def _on_observer_unregistered(self, event: ObserverUnregistered) -> None:
        if self._observers.pop(event.observer.observer_id, None) is not None:
            update_observers(len(self._observers))
            logger.info(
                "observer_unregistered",
                session_id=self.session_id,
                observer_id=event.observer.observer_id,
                observers=len(self._observers),
            )

    # -------------------------------------------------------------------------
    # Client messages
    # -------------------------------------------------------------------------

    def _on_client_inbound(self, event: ClientInbound) -> None:
        message = event.message
        if isinstance(message, ClientAudio):
            self._on_client_audio(message)
        elif isinstance(message, ClientAudioCommit):
            self._on_client_audio_commit()
        elif isinstance(message, ClientText):
            self._on_client_text(message, event.observer)
        elif isinstance(message, ClientCancel):
            self._cancel_turn(CancelReason.CLIENT, interrupt_voice=True)

    def _on_client_audio(self, message: ClientAudio) -> None:
        if not message.data or not self.voice_connected:
            return
        if self._fsm.state is SessionState.IDLE:
            self._begin_turn("audio")
        self._voice_command(lambda voice: voice.send_audio_frame(message.data))

    def _on_client_audio_commit(self) -> None:
        if not self.voice_connected:
            return
        if self._fsm.state is SessionState.LISTENING:
            self._set_state(SessionState.PROCESSING, "audio_commit")
        self._voice_command(lambda voice: voice.commit_audio())

    def _on_client_text(self, message: ClientText, observer: Observer | None) -> None:
        text = message.text
        if not text.strip():
            return

        if self._fsm.state is not SessionState.IDLE:
            self._session_logger.input_rejected("text", self._fsm.state.value)
            busy = OutboundMessage.error(BUSY_MESSAGE)
            if observer is not None:
                self._send_to(observer, busy)
            else:
                self._broadcast(busy)
            return

        if not self._begin_turn("text", current_prompt=text):
            return
        if not self._walk_to(SessionState.EXECUTING, "text_input"):
            self._end_turn("failed", "text_transition_failed")
            return
        self._start_agent_task(text, self._config.text_max_turns, call_id=None)

    def _cancel_turn(self, reason: CancelReason, interrupt_voice: bool) -> None:
        task_id = self._active_task.task_id if self._active_task else None
        self._cancel_logger.cancel_requested(reason.value, self._fsm.state.value, task_id)
        record_cancellation(reason.value)

        self._agent.cancel()
        if self._active_task is not None:
            self._active_task.token.cancel(reason)

        if interrupt_voice and self.voice_connected:
            self._voice_command(lambda voice: voice.interrupt_output())

        self._end_turn("cancelled", "cancelled")
        self._broadcast(OutboundMessage.progress(CANCELLED_PROGRESS))

    # -------------------------------------------------------------------------
    # Voice events
    # -------------------------------------------------------------------------

    def _voice_command(self, command: Callable[[VoiceSession], None]) -> bool:
        """Issue a voice command, tolerating a connection that just went away."""
        if self._voice is None:
            return False
        try:
            command(self._voice)
            return True
        except VoiceError as e:
            logger.warning("voice_command_failed", session_id=self.session_id, error=str(e))
            return False

    def _on_voice_transcript(self, event: VoiceTranscript) -> None:
        self._broadcast(OutboundMessage.transcript(event.text, event.role.value))

        if event.role is not TranscriptRole.USER or not event.text.strip():
            return

        state = self._fsm.state
        if state is SessionState.LISTENING:
            self._set_state(SessionState.PROCESSING, "user_transcript", current_prompt=event.text)
        elif state is SessionState.PROCESSING:
            # audio_commit got here first; the transcript still names the turn
            self._pending_prompt = event.text
        # In idle the transcript is late; its turn already ended on response.done

    def _on_voice_audio(self, event: VoiceAudio) -> None:
        if self._fsm.state in AUDIO_OUT_STATES:
            self._broadcast(OutboundMessage.audio(event.audio))

    def _on_voice_speech_started(self, event: VoiceSpeechStarted) -> None:
        state = self._fsm.state
        if state is SessionState.SPEAKING:
            # Barge-in
            self._voice_command(lambda voice: voice.interrupt_output())
            self._responses_pending = 0
            self._set_state(SessionState.LISTENING, "barge_in")
        elif state is SessionState.IDLE:
            self._begin_turn("speech")

    def _on_voice_response_done(self, event: VoiceResponseDone) -> None:
        if self._responses_pending > 0:
            self._responses_pending -= 1
        if self._responses_pending > 0 or self._active_task is not None:
            return
        if self._fsm.state in (SessionState.PROCESSING, SessionState.SPEAKING):
            self._end_turn("completed", "response_done")

    def _on_voice_error(self, event: VoiceFailure) -> None:
        self._recover("voice", VoiceError(event.message, details={"code": event.code} if event.code else None))

    def _on_voice_disconnected(self, event: VoiceDisconnected) -> None:
        update_voice_connected(False)
        logger.warning("voice_disconnected", session_id=self.session_id, reason=event.reason)
        self._broadcast(OutboundMessage.error(VOICE_DISCONNECTED_MESSAGE))

        # A voice turn with nothing running can no longer finish
        if self._active_task is None and self._fsm.state is not SessionState.IDLE:
            self._end_turn("failed", "voice_disconnected")

    # -------------------------------------------------------------------------
    # Tool calls
    # -------------------------------------------------------------------------

    def _on_voice_function_call(self, event: VoiceFunctionCall) -> None:
        call_id = event.call_id
        self._tool_logger.tool_requested(event.name, call_id)
        record_tool_call(event.name)
        # The response carrying the call finishes after this
        self._responses_pending += 1

        try:
            tool = resolve_tool(event.name)
        except UnknownToolError as e:
            self._tool_logger.tool_failed(event.name, call_id, e.message)
            self._send_tool_result(call_id, e.message, require_active=False)
            return

        try:
            args = parse_tool_args(tool, event.args_json)
        except ToolArgumentError as e:
            self._tool_logger.tool_failed(tool.value, call_id, e.message)
            self._send_tool_result(call_id, f"Error: {e.message}", require_active=False)
            return

        if tool is ToolName.GET_STATUS:
            self._send_tool_result(call_id, self.status_text(), require_active=False)
            return

        if tool is ToolName.CANCEL:
            self._cancel_turn(CancelReason.TOOL, interrupt_voice=False)
            self._send_tool_result(call_id, CANCELLED_TOOL_RESULT, require_active=False)
            return

        task = build_task(tool, args)

        if self._active_task is not None:
            previous = self._active_task
            self._cancel_logger.task_superseded(previous.task_id, call_id)
            record_cancellation(CancelReason.SUPERSEDED.value)
            previous.token.cancel(CancelReason.SUPERSEDED)
            self._active_task = None

        self._active_call_id = call_id
        ref = ToolCallRef(name=tool.value, args=args, call_id=call_id)
        reason = f"tool:{tool.value}"

        if self._fsm.state is SessionState.IDLE:
            self._begin_turn(reason)
        elif self._fsm.state is SessionState.EXECUTING:
            self._set_state(SessionState.PROCESSING, "superseded")

        if not self._walk_to(SessionState.EXECUTING, reason, current_tool_call=ref):
            self._active_call_id = None
            self._send_tool_result(call_id, f"Error: cannot start {tool.value} now", require_active=False)
            self._end_turn("failed", "tool_transition_failed")
            return

        self._start_agent_task(task.prompt, task.max_turns, call_id=call_id)

    def _send_tool_result(self, call_id: str, text: str, require_active: bool) -> bool:
        """Answer a function call at most once, and only while it is current."""
        if require_active and call_id != self._active_call_id:
            self._tool_logger.tool_result_dropped(call_id, self._active_call_id)
            record_tool_result_dropped()
            return False
        if not self.voice_connected:
            self._tool_logger.tool_result_dropped(call_id, self._active_call_id)
            record_tool_result_dropped()
            return False
        if not self._voice_command(lambda voice: voice.send_tool_result(call_id, text)):
            return False

        if call_id == self._active_call_id:
            self._active_call_id = None
        self._responses_pending += 1
        self._tool_logger.tool_result_sent(call_id, len(text))
        return True

    def status_text(self) -> str:
        """Spoken answer for get_status."""
        state = self._fsm.state
        if state is SessionState.IDLE:
            return IDLE_STATUS
        tool_call = self._fsm.context.current_tool_call
        if state is SessionState.EXECUTING and tool_call is not None:
            return f"Currently executing {tool_call.name}. {self._latest_progress}".rstrip()
        return f"Current state: {state.value}. {self._latest_progress or 'Processing...'}"

    # -------------------------------------------------------------------------
    # Agent tasks
    # -------------------------------------------------------------------------

    def _start_agent_task(self, prompt: str, max_turns: int, call_id: str | None) -> None:
        self._task_seq += 1
        task_id = self._task_seq
        token = CancellationToken()
        self._active_task = _ActiveTask(task_id=task_id, token=token, call_id=call_id)
        self._progress_log.clear()
        self._latest_progress = ""

        task = asyncio.create_task(
            self._run_agent(task_id, prompt, max_turns, token),
            name=f"agent-task-{task_id}",
        )
        self._agent_tasks.add(task)
        task.add_done_callback(self._agent_tasks.discard)

        logger.info(
            "agent_task_dispatched",
            session_id=self.session_id,
            task_id=task_id,
            call_id=call_id,
            max_turns=max_turns,
        )

    async def _run_agent(
        self,
        task_id: int,
        prompt: str,
        max_turns: int,
        token: CancellationToken,
    ) -> None:
        """Background task: stream the agent run into the inbox."""
        started = time.monotonic()
        outcome = "failed"
        try:
            async for item in self._agent.execute(prompt, max_turns, token):
                if isinstance(item, AgentResult):
                    if item.cancelled:
                        outcome = "cancelled"
                        await self._inbox.put(AgentCancelled(task_id))
                    else:
                        outcome = "completed"
                        await self._inbox.put(AgentCompleted(task_id, item))
                    return
                await self._inbox.put(AgentProgress(task_id, item))

            if token.cancel_requested:
                outcome = "cancelled"
                await self._inbox.put(AgentCancelled(task_id))
            else:
                await self._inbox.put(
                    AgentFailed(task_id, AgentExecutionError("Agent finished without a result"))
                )
        except asyncio.CancelledError:
            outcome = "cancelled"
            raise
        except Exception as e:
            await self._inbox.put(AgentFailed(task_id, e))
        finally:
            record_agent_task(time.monotonic() - started, outcome)

    def _on_agent_progress(self, event: AgentProgress) -> None:
        if not self._is_current(event.task_id, "progress"):
            return
        progress = event.event
        self._progress_log.append(progress)
        if progress.kind is ProgressKind.PROGRESS:
            self._latest_progress = progress.message
        self._broadcast(OutboundMessage.progress(progress.message, progress.kind.value))

    def _on_agent_completed(self, event: AgentCompleted) -> None:
        if not self._is_current(event.task_id, "complete"):
            return
        active = self._active_task
        self._active_task = None

        result_text = event.result.text
        formatted = format_for_voice(result_text, self._config.max_voice_length)

        if not self._set_state(SessionState.SPEAKING, "agent_complete", execution_result=result_text):
            logger.warning(
                "agent_complete_unexpected_state",
                session_id=self.session_id,
                state=self._fsm.state.value,
            )

        if active is not None and active.call_id is not None:
            if self._send_tool_result(active.call_id, formatted, require_active=True):
                # Turn ends when the endpoint finishes speaking the result
                return

        self._broadcast(OutboundMessage.transcript(formatted, TranscriptRole.ASSISTANT.value))
        self._end_turn("completed", "turn_complete")

    def _on_agent_cancelled(self, event: AgentCancelled) -> None:
        if not self._is_current(event.task_id, "cancelled"):
            return
        self._end_turn("cancelled", "agent_cancelled")

    def _on_agent_failed(self, event: AgentFailed) -> None:
        if not self._is_current(event.task_id, "error"):
            return
        active = self._active_task
        self._active_task = None
        self._recover("agent", event.error, call_id=active.call_id if active else None)

    # -------------------------------------------------------------------------
    # Error recovery
    # -------------------------------------------------------------------------

    def _recover(self, source: str, error: Exception, call_id: str | None = None) -> None:
        """Common path for agent and voice failures. Always ends in idle."""
        full = error.message if isinstance(error, VoiceDevError) else str(error)
        full = full or type(error).__name__
        brief = brief_error(full, self._config.error_brief_length)

        logger.error(
            f"{source}_error",
            session_id=self.session_id,
            state=self._fsm.state.value,
            error=full,
            error_type=type(error).__name__,
        )
        record_error(source, type(error).__name__)

        if source == "agent":
            user_message = f"Claude encountered an error: {brief}"
        else:
            user_message = VOICE_ERROR_MESSAGE
        self._broadcast(OutboundMessage.error(user_message, details=full))

        if source == "agent" and call_id is not None:
            self._send_tool_result(call_id, f"Error: {brief}", require_active=True)

        if source == "voice" and self._active_task is not None:
            record_cancellation(CancelReason.VOICE_ERROR.value)
            self._active_task.token.cancel(CancelReason.VOICE_ERROR)
            self._agent.cancel()

        was_idle = self._fsm.state is SessionState.IDLE
        self._clear_turn()
        info = ErrorInfo(source=source, message=full, brief=brief)
        if not self._fsm.transition(SessionState.IDLE, f"{source}_error", last_error=info):
            self._fsm.reset(f"{source}_error")
        update_session_state(SessionState.IDLE.value, ALL_STATES)
        self._broadcast_state()
        if not was_idle:
            record_turn("failed")
            self._session_logger.turn_completed(self._turn_id, "failed")
