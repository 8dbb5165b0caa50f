"""
Chat Transport Client

Owns one logical, authenticated, auto-recovering websocket connection to the
chatbot backend and turns wire events into ``ChatEvent`` and error callbacks.
"""

import dataclasses
import logging
import threading
from typing import Any, Callable, Dict, Optional

from campus_chat.client.network.connection import create_connection
from campus_chat.client.network.event_loop import EventLoop
from campus_chat.client.network.message_handler import MessageHandler, MessageStats, is_auth_error
from campus_chat.shared.config import ClientConfig
from campus_chat.shared.constants import (
    RETRIES_EXHAUSTED_MESSAGE,
    STREAMING_MESSAGE_ID,
    STREAMING_SOURCE,
    TRANSPORT_ERROR_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
)
from campus_chat.shared.exceptions import ConnectionError, SchedulerError
from campus_chat.shared.models import (
    ChatEvent,
    ConnectionState,
    InboundEvent,
    InboundType,
    OutboundEvent,
    Sender,
)
from campus_chat.shared.protocols import Scheduler, TimerHandle, Transport


logger = logging.getLogger(__name__)

MessageCallback = Callable[[ChatEvent], None]
ErrorCallback = Callable[[str], None]
TransportFactory = Callable[[str], Transport]


class ChatTransportClient:
    """
    Websocket chat client with authentication, bounded reconnection and
    heartbeat.

    Transport callbacks and timers are funnelled onto a single event loop, so
    inbound frames are handled strictly in arrival order and the consumer's
    ``on_message``/``on_error`` callbacks are never called concurrently.
    Public methods may be called from any thread.
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
        Initialize the client. No connection is opened until ``connect()``.

        Args:
            token: Access token sent in the auth handshake.
            on_message: Called with each assistant ``ChatEvent``.
            on_error: Called with error text meant for the user.
            streaming: Use the streaming endpoint; overrides ``config.streaming``.
            config: Client configuration.
            loop: Event loop to run callbacks on; a private one is started if omitted.
            transport_factory: Builds a transport for a websocket URL.
        """
        config = config or ClientConfig()
        if streaming is not None and streaming != config.streaming:
            config = dataclasses.replace(config, streaming=streaming)
        self.config = config
        self.url = config.websocket_url

        self._owns_loop = loop is None
        self._loop: Scheduler = loop if loop is not None else EventLoop().start()
        self._transport_factory = transport_factory or self._default_transport

        self._lock = threading.RLock()
        self._socket: Optional[Transport] = None
        self._state = ConnectionState.DISCONNECTED
        self._token = token
        self._reconnect_attempts = 0
        self._streaming_buffer = ""
        self._closed = False

        self._reconnect_timer: Optional[TimerHandle] = None
        self._reconnect_ticket: Optional[object] = None
        self._heartbeat_timer: Optional[TimerHandle] = None
        self._pong_timer: Optional[TimerHandle] = None

        # Single-slot callbacks, replaced by set_callbacks()
        self._on_message = on_message
        self._on_error = on_error

        self._message_handler = MessageHandler()
        self._register_handlers()
        self._start_heartbeat()

    # Public API

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self._state in (ConnectionState.CONNECTING, ConnectionState.AWAITING_AUTH)

    @property
    def auth_failed(self) -> bool:
        return self._state == ConnectionState.AUTH_FAILED

    @property
    def has_token(self) -> bool:
        return bool(self._token)

    @property
    def token(self) -> Optional[str]:
        return self._token

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def max_reconnect_attempts(self) -> int:
        return self.config.max_reconnect_attempts

    @property
    def streaming_buffer(self) -> str:
        return self._streaming_buffer

    @property
    def has_pending_reconnect(self) -> bool:
        return self._reconnect_timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def set_callbacks(self,
                      on_message: Optional[MessageCallback] = None,
                      on_error: Optional[ErrorCallback] = None) -> None:
        """
        Replace the consumer callbacks. Events already queued use the new ones.

        Args:
            on_message: Called with each assistant ``ChatEvent``.
            on_error: Called with error text.
        """
        with self._lock:
            self._on_message = on_message
            self._on_error = on_error

    def set_token(self, token: Optional[str]) -> bool:
        """
        Replace the access token.

        A new non-null token clears an authentication failure and resets the
        reconnect counter. This never connects by itself.

        Args:
            token: The new token, or None when the user logged out.

        Returns:
            True if the token changed.
        """
        stale_socket: Optional[Transport] = None
        with self._lock:
            previous = self._token
            self._token = token
            changed = token != previous

            if token and changed and self._state == ConnectionState.AUTH_FAILED:
                logger.info("New token detected, resetting auth failed state")
                stale_socket, self._socket = self._socket, None
                self._reconnect_attempts = 0
                self._set_state(ConnectionState.DISCONNECTED, "token replaced")

        if stale_socket is not None:
            stale_socket.close()
        return changed

    def connect(self) -> None:
        """
        Open and authenticate a connection unless one is already open or in
        flight, no token is set, authentication failed, or the reconnect
        budget is spent.
        """
        with self._lock:
            if self._closed:
                logger.debug("Client closed, ignoring connect")
                return
            if not self._token:
                logger.debug("No token available, skipping websocket connection")
                return
            if self._state == ConnectionState.AUTH_FAILED:
                logger.debug("Auth previously failed, not reconnecting")
                return
            if self._state in (ConnectionState.CONNECTING, ConnectionState.AWAITING_AUTH):
                logger.debug("Connection in progress, skipping")
                return
            if self._state == ConnectionState.CONNECTED or self._socket is not None:
                logger.debug("Already connected")
                return
            if self._reconnect_attempts >= self.config.max_reconnect_attempts:
                logger.info("Max reconnection attempts reached")
                return

            self._cancel_reconnect_timer()

            try:
                socket = self._transport_factory(self.url)
            except Exception as e:
                logger.error(f"Failed to create websocket transport for {self.url}: {e}")
                return

            socket.set_callbacks(
                on_open=lambda: self._post(socket, self._handle_open),
                on_message=lambda raw: self._post(socket, self._handle_frame, raw),
                on_error=lambda error: self._post(socket, self._handle_transport_error, error),
                on_close=lambda code, reason: self._post(socket, self._handle_close, code, reason),
            )
            self._socket = socket
            self._set_state(ConnectionState.CONNECTING, f"connecting to {self.url}")

            try:
                socket.open()
            except (ConnectionError, OSError, RuntimeError) as e:
                logger.error(f"Failed to open websocket to {self.url}: {e}")
                self._socket = None
                self._set_state(ConnectionState.DISCONNECTED, "open failed")

    def reconnect(self) -> None:
        """
        Force a connection attempt.

        Once the automatic attempts are used up this grants a fresh budget;
        an authentication failure still needs a new token.
        """
        with self._lock:
            if self._reconnect_attempts >= self.config.max_reconnect_attempts:
                logger.info("Manual reconnect requested, resetting reconnect attempts")
                self._reconnect_attempts = 0
            self.connect()

    def disconnect(self) -> None:
        """Cancel any pending reconnect and close the connection. Idempotent."""
        with self._lock:
            self._cancel_reconnect_timer()
            self._cancel_pong_timer()
            socket, self._socket = self._socket, None
            self._streaming_buffer = ""
            # Token replacement is the only way out of an auth failure
            if self._state != ConnectionState.AUTH_FAILED:
                self._set_state(ConnectionState.DISCONNECTED, "disconnect requested")

        if socket is not None:
            socket.close()

    def send_message(self, text: str) -> bool:
        """
        Send a chat message.

        Fire-and-forget: True only means the frame reached the transport.

        Args:
            text: Message text.

        Returns:
            True if sent, False when not connected.
        """
        with self._lock:
            if self._state != ConnectionState.CONNECTED:
                return False
            return self._send(OutboundEvent.chat(text))

    def send_ping(self) -> bool:
        """
        Send a heartbeat ping while the transport is open.

        Returns:
            True if the ping was sent.
        """
        with self._lock:
            if self._state not in (ConnectionState.AWAITING_AUTH, ConnectionState.CONNECTED):
                return False
            sent = self._send(OutboundEvent.ping())
            if sent:
                self._arm_pong_timer()
            return sent

    def close(self) -> None:
        """Tear the client down: stop timers, close the socket, stop an owned loop."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._heartbeat_timer is not None:
                self._heartbeat_timer.cancel()
                self._heartbeat_timer = None

        self.disconnect()

        if self._owns_loop and isinstance(self._loop, EventLoop):
            self._loop.stop()

    def get_stats(self) -> MessageStats:
        """Get inbound message statistics."""
        return self._message_handler.get_stats()

    def get_connection_info(self) -> Dict[str, Any]:
        """
        Get connection information.

        Returns:
            Dictionary with connection details.
        """
        return {
            "url": self.url,
            "state": self._state.value,
            "has_token": self.has_token,
            "reconnect_attempts": self._reconnect_attempts,
            "max_reconnect_attempts": self.config.max_reconnect_attempts,
            "pending_reconnect": self.has_pending_reconnect,
            "streaming": self.config.streaming,
        }

    def __enter__(self) -> "ChatTransportClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # Transport events, always run on the loop

    def _post(self, socket: Transport, handler: Callable[..., None], *args: Any) -> None:
        try:
            self._loop.call_soon(self._dispatch, socket, handler, args)
        except SchedulerError:
            logger.debug(f"Event loop stopped, dropping {handler.__name__}")

    def _dispatch(self, socket: Transport, handler: Callable[..., None], args: tuple) -> None:
        with self._lock:
            if socket is not self._socket:
                logger.debug(f"Ignoring {handler.__name__} from a stale connection")
                return
            handler(*args)

    def _handle_open(self) -> None:
        logger.info("Websocket connected, sending auth")
        self._set_state(ConnectionState.AWAITING_AUTH, "transport open")
        self._send(OutboundEvent.auth(self._token or ""))

    def _handle_frame(self, raw: str) -> None:
        self._message_handler.handle_raw_message(raw)

    def _handle_transport_error(self, error: str) -> None:
        logger.error(f"Websocket connection error ({error}), url: {self.url}")
        self._notify_error(TRANSPORT_ERROR_MESSAGE)

    def _handle_close(self, code: Optional[int], reason: str) -> None:
        logger.info(f"Websocket disconnected, code: {code}, reason: {reason!r}")
        previous = self._state
        self._socket = None
        self._streaming_buffer = ""
        self._cancel_pong_timer()

        if previous == ConnectionState.AUTH_FAILED:
            logger.info("Not reconnecting - auth failed")
            return

        self._set_state(ConnectionState.DISCONNECTED, "transport closed")

        if not self._token:
            logger.info("Not reconnecting - no token")
            return

        self._reconnect_attempts += 1
        max_attempts = self.config.max_reconnect_attempts
        if self._reconnect_attempts < max_attempts:
            delay = self.config.reconnect_delay(self._reconnect_attempts)
            logger.info(
                f"Attempting to reconnect in {delay:.1f}s "
                f"(attempt {self._reconnect_attempts}/{max_attempts})"
            )
            self._schedule_reconnect(delay)
        else:
            logger.warning("Max reconnection attempts reached, giving up")
            self._notify_error(RETRIES_EXHAUSTED_MESSAGE)

    # Inbound message handlers

    def _register_handlers(self) -> None:
        handlers = {
            InboundType.CONNECTED: self._on_connected,
            InboundType.RESPONSE: self._on_response,
            InboundType.STREAM_START: self._on_stream_start,
            InboundType.STREAM_CHUNK: self._on_stream_chunk,
            InboundType.STREAM_END: self._on_stream_end,
            InboundType.ERROR: self._on_server_error,
            InboundType.PONG: self._on_pong,
            InboundType.UNKNOWN: self._on_unknown,
        }
        for message_type, handler in handlers.items():
            self._message_handler.register_handler(message_type, handler)

    def _on_connected(self, event: InboundEvent) -> None:
        self._reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED, "authenticated")
        logger.info(f"Chatbot connected: {event.message or ''}")

    def _on_response(self, event: InboundEvent) -> None:
        if not event.response:
            logger.debug("Ignoring empty response")
            return
        self._notify_message(ChatEvent(
            content=event.response,
            sender=Sender.ASSISTANT,
            source=event.source,
            related_questions=event.related_questions,
        ))

    def _on_stream_start(self, event: InboundEvent) -> None:
        self._streaming_buffer = ""

    def _on_stream_chunk(self, event: InboundEvent) -> None:
        if not event.chunk:
            return
        self._streaming_buffer += event.chunk
        content = event.chunk if self.config.stream_deltas else self._streaming_buffer
        self._notify_message(ChatEvent(
            id=STREAMING_MESSAGE_ID,
            content=content,
            sender=Sender.ASSISTANT,
            source=STREAMING_SOURCE,
        ))

    def _on_stream_end(self, event: InboundEvent) -> None:
        content, self._streaming_buffer = self._streaming_buffer, ""
        if not content:
            return
        self._notify_message(ChatEvent(
            content=content,
            sender=Sender.ASSISTANT,
            source=STREAMING_SOURCE,
            related_questions=event.related_questions,
        ))

    def _on_server_error(self, event: InboundEvent) -> None:
        logger.error(f"Websocket error from server: {event.error}")
        if is_auth_error(event.error):
            self._cancel_reconnect_timer()
            self._set_state(ConnectionState.AUTH_FAILED, "server rejected token")
        self._notify_error(event.error or UNKNOWN_ERROR_MESSAGE)

    def _on_pong(self, event: InboundEvent) -> None:
        self._cancel_pong_timer()

    def _on_unknown(self, event: InboundEvent) -> None:
        logger.info(f"Unknown message type: {event.raw_type!r}")

    # Timers

    def _start_heartbeat(self) -> None:
        try:
            self._heartbeat_timer = self._loop.call_later(self.config.heartbeat_interval, self._heartbeat_tick)
        except SchedulerError:
            self._heartbeat_timer = None

    def _heartbeat_tick(self) -> None:
        with self._lock:
            if self._closed:
                return
            self.send_ping()
            self._start_heartbeat()

    def _schedule_reconnect(self, delay: float) -> None:
        self._cancel_reconnect_timer()
        ticket = object()
        try:
            self._reconnect_timer = self._loop.call_later(delay, self._on_reconnect_due, ticket)
        except SchedulerError:
            logger.debug("Event loop stopped, not scheduling reconnect")
            return
        self._reconnect_ticket = ticket

    def _on_reconnect_due(self, ticket: object) -> None:
        with self._lock:
            if ticket is not self._reconnect_ticket:
                return
            self._reconnect_ticket = None
            self._reconnect_timer = None
            self.connect()

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
        self._reconnect_timer = None
        self._reconnect_ticket = None

    def _arm_pong_timer(self) -> None:
        if self.config.pong_timeout <= 0 or self._pong_timer is not None:
            return
        try:
            self._pong_timer = self._loop.call_later(
                self.config.pong_timeout, self._on_pong_timeout, self._socket
            )
        except SchedulerError:
            self._pong_timer = None

    def _on_pong_timeout(self, socket: Optional[Transport]) -> None:
        with self._lock:
            self._pong_timer = None
            if socket is None or socket is not self._socket:
                return
            logger.warning(f"No pong within {self.config.pong_timeout:.1f}s, closing connection")
        socket.close()

    def _cancel_pong_timer(self) -> None:
        if self._pong_timer is not None:
            self._pong_timer.cancel()
        self._pong_timer = None

    # Helpers

    def _set_state(self, state: ConnectionState, reason: str) -> None:
        if state != self._state:
            logger.debug(f"State {self._state.value} -> {state.value} ({reason})")
        self._state = state

    def _send(self, event: OutboundEvent) -> bool:
        socket = self._socket
        if socket is None or not socket.is_open():
            return False
        try:
            socket.send(event.to_json())
            return True
        except ConnectionError as e:
            logger.warning(f"Failed to send {event.type.value} frame: {e}")
            return False

    def _notify_message(self, event: ChatEvent) -> None:
        callback = self._on_message
        if callback is not None:
            callback(event)

    def _notify_error(self, error: str) -> None:
        callback = self._on_error
        if callback is None:
            return
        try:
            callback(error)
        except Exception:
            logger.exception("Error callback failed")

    def _default_transport(self, url: str) -> Transport:
        return create_connection(url, open_timeout=self.config.open_timeout)
