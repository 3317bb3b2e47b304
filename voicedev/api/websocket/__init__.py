"""WebSocket API package."""

from voicedev.api.websocket.connection import ObserverConnection, router
from voicedev.api.websocket.protocol import ClientFrame, parse_client_message

__all__ = [
    "ObserverConnection",
    "ClientFrame",
    "parse_client_message",
    "router",
]
