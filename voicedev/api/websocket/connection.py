"""WebSocket Observers - Session transport for browser clients.

Each connected client is an observer of the one live session. Outbound
messages are queued per connection and written by a background task,
so the orchestrator never waits on a slow socket. Audio is dropped for
a client whose backlog passes the high-water mark; control messages
(state, progress, transcript, error) are always delivered in order.
"""

from __future__ import annotations

import asyncio
import uuid

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from voicedev.api.dependencies import find_orchestrator
from voicedev.api.websocket.protocol import parse_client_message
from voicedev.config.settings import get_settings
from voicedev.exceptions import MessageFormatError
from voicedev.observability.logging import get_logger
from voicedev.observability.metrics import record_audio_dropped
from voicedev.orchestrator.events import OutboundMessage

logger = get_logger(__name__)

router = APIRouter(tags=["websocket"])


class ObserverConnection:
    """One client WebSocket registered as a session observer.

    Usage:
        connection = ObserverConnection(websocket)
        await connection.accept()

        connection.send(OutboundMessage.state("idle"))

        await connection.close()
    """

    def __init__(self, websocket: WebSocket, audio_high_water: int = 256) -> None:
        self.observer_id = str(uuid.uuid4())
        self._websocket = websocket
        self._audio_high_water = audio_high_water
        self._connected = False
        self._send_queue: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self._send_task: asyncio.Task | None = None

    @property
    def is_connected(self) -> bool:
        """Whether WebSocket is connected."""
        return self._connected

    @property
    def backlog(self) -> int:
        """Messages queued but not yet written."""
        return self._send_queue.qsize()

    async def accept(self) -> None:
        """Accept the WebSocket and start the sender."""
        await self._websocket.accept()
        self._connected = True
        self._send_task = asyncio.create_task(self._send_loop())

        logger.info("observer_ws_connected", observer_id=self.observer_id)

    async def close(self) -> None:
        """Stop the sender and close the socket."""
        self._connected = False

        if self._send_task:
            self._send_task.cancel()
            try:
                await self._send_task
            except asyncio.CancelledError:
                pass

        if self._websocket.client_state == WebSocketState.CONNECTED:
            try:
                await self._websocket.close()
            except RuntimeError as e:
                logger.debug("observer_ws_close_error", observer_id=self.observer_id, error=str(e))

        logger.info("observer_ws_disconnected", observer_id=self.observer_id)

    def send(self, message: OutboundMessage) -> None:
        """Queue a message for this client. Never blocks."""
        if not self._connected:
            return

        if message.is_audio and self._send_queue.qsize() >= self._audio_high_water:
            record_audio_dropped("outbound")
            logger.debug("observer_audio_dropped", observer_id=self.observer_id)
            return

        self._send_queue.put_nowait(message)

    async def _send_loop(self) -> None:
        """Background loop to write queued messages."""
        while self._connected:
            message = await self._send_queue.get()
            try:
                await self._websocket.send_text(message.to_json())
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.info("observer_ws_send_stopped", observer_id=self.observer_id, error=str(e))
                self._connected = False
                break


@router.websocket("/ws")
async def session_websocket(websocket: WebSocket) -> None:
    """Bidirectional session channel.

    Inbound frames are client messages; outbound frames are state,
    progress, transcript, audio and error messages.
    """
    orchestrator = find_orchestrator(websocket)
    if orchestrator is None:
        await websocket.close(code=1013)  # Try again later
        return

    connection = ObserverConnection(
        websocket,
        audio_high_water=get_settings().observer_audio_high_water,
    )
    await connection.accept()
    await orchestrator.register_observer(connection)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break

            raw = frame.get("text")
            if raw is None:
                raw = frame.get("bytes") or b""

            try:
                message = parse_client_message(raw)
            except MessageFormatError as e:
                logger.warning(
                    "invalid_client_message",
                    observer_id=connection.observer_id,
                    reason=e.details.get("reason"),
                )
                connection.send(OutboundMessage.error(e.message))
                continue

            await orchestrator.submit_client_message(connection, message)

    except WebSocketDisconnect:
        pass
    finally:
        await orchestrator.unregister_observer(connection)
        await connection.close()
