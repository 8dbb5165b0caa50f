"""
WebSocket Connection Management

Handles a single websocket connection to the chatbot backend. The blocking
handshake and the receive loop run on a reader thread; events are reported
through callbacks in the order they happen.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect as ws_connect

from campus_chat.shared.constants import (
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_OPEN_TIMEOUT,
    MESSAGE_ENCODING,
)
from campus_chat.shared.exceptions import ConnectionError, TransportClosedError
from campus_chat.shared.protocols import Transport


logger = logging.getLogger(__name__)


class ReadyState(Enum):
    """Websocket ready states."""
    CONNECTING = 0
    OPEN = 1
    CLOSING = 2
    CLOSED = 3


@dataclass
class ConnectionConfig:
    """Configuration for a websocket connection."""
    url: str
    open_timeout: float = DEFAULT_OPEN_TIMEOUT
    close_timeout: float = DEFAULT_CLOSE_TIMEOUT
    max_message_size: Optional[int] = 2 ** 20


class WebSocketConnection(Transport):
    """
    One-shot websocket connection.

    ``open()`` starts a reader thread that performs the handshake, reports
    ``on_open``, delivers every text frame to ``on_message`` and finally
    reports ``on_close``. A failed handshake reports ``on_error`` followed by
    ``on_close``. A connection object is opened at most once; reconnecting
    means creating a new one.
    """

    def __init__(self, config: ConnectionConfig,
                 connector: Optional[Callable[..., Any]] = None) -> None:
        """
        Initialize the connection.

        Args:
            config: Connection configuration.
            connector: Factory returning a connected sync websocket; defaults
                to ``websockets.sync.client.connect``.
        """
        self.config = config
        self._connector = connector or ws_connect
        self._ws: Any = None
        self._state = ReadyState.CONNECTING
        self._opened = False
        self._close_requested = False
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._last_error: Optional[str] = None
        self._connection_time: Optional[datetime] = None

        # Callbacks
        self._on_open: Optional[Callable[[], None]] = None
        self._on_message: Optional[Callable[[str], None]] = None
        self._on_error: Optional[Callable[[str], None]] = None
        self._on_close: Optional[Callable[[Optional[int], str], None]] = None

    def set_callbacks(self,
                      on_open: Optional[Callable[[], None]] = None,
                      on_message: Optional[Callable[[str], None]] = None,
                      on_error: Optional[Callable[[str], None]] = None,
                      on_close: Optional[Callable[[Optional[int], str], None]] = None) -> None:
        """
        Set event callbacks.

        Args:
            on_open: Called when the handshake completes.
            on_message: Called with each received text frame.
            on_error: Called with a diagnostic when the connection fails.
            on_close: Called once with the close code and reason.
        """
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._on_close = on_close

    def open(self) -> None:
        """
        Start connecting in the background.

        Raises:
            ConnectionError: If this connection was already opened.
        """
        with self._lock:
            if self._opened:
                raise ConnectionError("Connection already opened", address=self.config.url)
            self._opened = True
            self._state = ReadyState.CONNECTING

        self._thread = threading.Thread(
            target=self._reader_loop,
            name="campus-chat-ws-reader",
            daemon=True,
        )
        self._thread.start()

    def send(self, data: str) -> None:
        """
        Send a text frame.

        Args:
            data: The frame to send.

        Raises:
            TransportClosedError: If not open or the send fails.
        """
        with self._lock:
            ws = self._ws if self._state == ReadyState.OPEN else None
        if ws is None:
            raise TransportClosedError("Not connected to server", address=self.config.url)

        try:
            ws.send(data)
        except (ConnectionClosed, OSError, RuntimeError) as e:
            self._last_error = str(e)
            raise TransportClosedError(f"Failed to send data: {e}", address=self.config.url)

    def close(self) -> None:
        """Close the connection. Safe to call repeatedly and before the handshake completes."""
        with self._lock:
            self._close_requested = True
            if self._state in (ReadyState.CLOSING, ReadyState.CLOSED):
                return
            ws = self._ws
            if ws is not None:
                self._state = ReadyState.CLOSING

        if ws is not None:
            try:
                ws.close()
            except (ConnectionClosed, OSError, RuntimeError) as e:
                logger.debug(f"Error while closing websocket: {e}")

    def is_open(self) -> bool:
        """Check if the connection is open."""
        return self._state == ReadyState.OPEN

    @property
    def ready_state(self) -> ReadyState:
        return self._state

    def get_last_error(self) -> Optional[str]:
        """Get the last error message, or None."""
        return self._last_error

    def get_connection_info(self) -> dict:
        """
        Get connection information.

        Returns:
            Dictionary with connection details.
        """
        return {
            "url": self.config.url,
            "state": self._state.name,
            "connected_at": self._connection_time,
            "last_error": self._last_error,
        }

    def _reader_loop(self) -> None:
        try:
            ws = self._connector(
                self.config.url,
                open_timeout=self.config.open_timeout,
                close_timeout=self.config.close_timeout,
                max_size=self.config.max_message_size,
            )
        except Exception as e:
            # websockets raises OSError, TimeoutError, InvalidURI or
            # InvalidHandshake subclasses here
            self._last_error = str(e) or e.__class__.__name__
            logger.warning(f"Websocket connect to {self.config.url} failed: {self._last_error}")
            with self._lock:
                self._state = ReadyState.CLOSED
            self._emit(self._on_error, self._last_error)
            self._emit(self._on_close, None, self._last_error)
            return

        with self._lock:
            abort = self._close_requested
            if not abort:
                self._ws = ws
                self._state = ReadyState.OPEN
                self._connection_time = datetime.now()

        if abort:
            try:
                ws.close()
            except (ConnectionClosed, OSError, RuntimeError):
                pass
            with self._lock:
                self._state = ReadyState.CLOSED
            self._emit(self._on_close, None, "closed before open")
            return

        logger.debug(f"Websocket connected to {self.config.url}")
        self._emit(self._on_open)

        closed_exc: Optional[ConnectionClosed] = None
        try:
            with ws:
                for frame in ws:
                    if isinstance(frame, bytes):
                        frame = frame.decode(MESSAGE_ENCODING, errors="replace")
                    self._emit(self._on_message, frame)
        except ConnectionClosed as e:
            closed_exc = e
        except Exception as e:
            self._last_error = str(e)
            logger.warning(f"Websocket receive failed: {e}")
            self._emit(self._on_error, self._last_error)

        code, reason = self._close_details(ws, closed_exc)
        with self._lock:
            self._state = ReadyState.CLOSED
        logger.debug(f"Websocket closed, code={code} reason={reason!r}")
        self._emit(self._on_close, code, reason)

    @staticmethod
    def _close_details(ws: Any, exc: Optional[ConnectionClosed]) -> Tuple[Optional[int], str]:
        frame = getattr(exc, "rcvd", None) if exc is not None else None
        if frame is not None:
            return frame.code, frame.reason
        code = getattr(ws, "close_code", None)
        reason = getattr(ws, "close_reason", None) or ""
        return code, reason

    @staticmethod
    def _emit(callback: Optional[Callable[..., None]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Websocket callback failed")


def create_connection(url: str, open_timeout: float = DEFAULT_OPEN_TIMEOUT) -> WebSocketConnection:
    """Default transport factory used by the chat client."""
    return WebSocketConnection(ConnectionConfig(url=url, open_timeout=open_timeout))
