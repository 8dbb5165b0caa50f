"""
Chat Session

Consumer-facing wrapper around ``ChatTransportClient`` that reacts to token
changes the way the chat widget does: whenever a token becomes available the
session connects after a short settle delay.
"""

import logging
import threading
from typing import Optional

from campus_chat.client.chat_client import (
    ChatTransportClient,
    ErrorCallback,
    MessageCallback,
    TransportFactory,
)
from campus_chat.client.network.event_loop import EventLoop
from campus_chat.shared.config import ClientConfig
from campus_chat.shared.exceptions import SchedulerError
from campus_chat.shared.models import ConnectionState
from campus_chat.shared.protocols import ChatMessageSender, Scheduler, TimerHandle


logger = logging.getLogger(__name__)


class ChatSession(ChatMessageSender):
    """
    Token-reactive chat connection.

    Exposes ``is_connected``, ``is_connecting``, ``auth_failed``,
    ``has_token``, ``send_message``, ``disconnect`` and ``reconnect``.
    """

    def __init__(self,
                 token: Optional[str] = None,
                 on_message: Optional[MessageCallback] = None,
                 on_error: Optional[ErrorCallback] = None,
                 streaming: Optional[bool] = None,
                 config: Optional[ClientConfig] = None,
                 loop: Optional[Scheduler] = None,
                 transport_factory: Optional[TransportFactory] = None) -> None:
        """
        Initialize the session and schedule the first connect if a token is given.

        Args:
            token: Access token, or None until the user logs in.
            on_message: Called with each assistant ``ChatEvent``.
            on_error: Called with error text.
            streaming: Use the streaming chat endpoint; overrides ``config.streaming``.
            config: Client configuration.
            loop: Event loop shared with the client; a private one is started if omitted.
            transport_factory: Builds a transport for a websocket URL.
        """
        self.config = config or ClientConfig()
        self._owns_loop = loop is None
        self._loop: Scheduler = loop if loop is not None else EventLoop().start()
        self._lock = threading.Lock()
        self._settle_timer: Optional[TimerHandle] = None

        self.client = ChatTransportClient(
            token=None,
            on_message=on_message,
            on_error=on_error,
            streaming=streaming,
            config=self.config,
            loop=self._loop,
            transport_factory=transport_factory,
        )
        self.update_token(token)

    @property
    def is_connected(self) -> bool:
        return self.client.is_connected

    @property
    def is_connecting(self) -> bool:
        return self.client.is_connecting

    @property
    def auth_failed(self) -> bool:
        return self.client.auth_failed

    @property
    def has_token(self) -> bool:
        return self.client.has_token

    @property
    def state(self) -> ConnectionState:
        return self.client.state

    def update_callbacks(self,
                         on_message: Optional[MessageCallback] = None,
                         on_error: Optional[ErrorCallback] = None) -> None:
        """Replace the consumer callbacks."""
        self.client.set_callbacks(on_message=on_message, on_error=on_error)

    def update_token(self, token: Optional[str]) -> None:
        """
        Hand a new token to the client and, if it changed and is non-null,
        connect after ``connect_settle_delay`` seconds.

        Args:
            token: The new token, or None after logout.
        """
        if not self.client.set_token(token):
            return

        with self._lock:
            if self._settle_timer is not None:
                self._settle_timer.cancel()
                self._settle_timer = None

            if not token:
                return

            try:
                self._settle_timer = self._loop.call_later(
                    self.config.connect_settle_delay, self._on_settled
                )
            except SchedulerError:
                logger.debug("Event loop stopped, not scheduling connect")

    def send_message(self, text: str) -> bool:
        """Send a chat message; False when not connected."""
        return self.client.send_message(text)

    def disconnect(self) -> None:
        """Cancel a pending connect and close the connection."""
        with self._lock:
            if self._settle_timer is not None:
                self._settle_timer.cancel()
                self._settle_timer = None
        self.client.disconnect()

    def reconnect(self) -> None:
        """Force a connection attempt."""
        self.client.reconnect()

    def close(self) -> None:
        """Close the session and release its timers and threads."""
        with self._lock:
            if self._settle_timer is not None:
                self._settle_timer.cancel()
                self._settle_timer = None
        self.client.close()
        if self._owns_loop and isinstance(self._loop, EventLoop):
            self._loop.stop()

    def __enter__(self) -> "ChatSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _on_settled(self) -> None:
        with self._lock:
            if self._settle_timer is None:
                return
            self._settle_timer = None
        self.client.connect()
