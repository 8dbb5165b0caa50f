"""
Client Network Layer

Provides the websocket transport, frame dispatch and the event loop that
serializes client callbacks.
"""

from .connection import WebSocketConnection
from .event_loop import EventLoop
from .message_handler import MessageHandler

__all__ = ["WebSocketConnection", "EventLoop", "MessageHandler"]
