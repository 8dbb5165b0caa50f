"""
Message Handler

Parses frames received from the chatbot backend and routes them to the
handlers registered for each message type.
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from campus_chat.shared.constants import AUTH_ERROR_SIGNATURE
from campus_chat.shared.exceptions import InvalidMessageFormatError
from campus_chat.shared.models import InboundEvent, InboundType


logger = logging.getLogger(__name__)


def is_auth_error(error_text: Optional[str]) -> bool:
    """
    Decide whether a server error reports a rejected credential.

    The backend sends free text, so this matches the word "auth" anywhere in
    the message, ignoring case.
    """
    if not error_text:
        return False
    return AUTH_ERROR_SIGNATURE in error_text.lower()


@dataclass
class MessageStats:
    """Statistics for message handling."""
    total_received: int = 0
    by_type: Dict[str, int] = field(default_factory=dict)
    parse_errors: int = 0
    handler_errors: int = 0
    last_message_time: Optional[datetime] = None


class MessageHandler:
    """
    Handles incoming frames from the chatbot backend.

    Malformed frames are logged and counted but never raised: the connection
    keeps going.
    """

    def __init__(self) -> None:
        """Initialize the message handler."""
        self._handlers: Dict[InboundType, List[Callable[[InboundEvent], None]]] = {
            message_type: [] for message_type in InboundType
        }
        self._lock = threading.Lock()
        self._stats = MessageStats()

    def register_handler(self, message_type: InboundType,
                         handler: Callable[[InboundEvent], None]) -> None:
        """
        Register a handler for a specific message type.

        Args:
            message_type: The type of message to handle.
            handler: The handler function.
        """
        with self._lock:
            self._handlers[message_type].append(handler)

    def unregister_handler(self, message_type: InboundType,
                           handler: Callable[[InboundEvent], None]) -> None:
        """
        Unregister a handler for a specific message type.

        Args:
            message_type: The type of message.
            handler: The handler function to remove.
        """
        with self._lock:
            try:
                self._handlers[message_type].remove(handler)
            except ValueError:
                pass  # Handler not found

    def parse(self, raw_message: str) -> Optional[InboundEvent]:
        """
        Parse a raw frame.

        Args:
            raw_message: The raw text frame.

        Returns:
            The decoded event, or None if the frame is malformed.
        """
        try:
            return InboundEvent.from_json(raw_message)
        except InvalidMessageFormatError as e:
            with self._lock:
                self._stats.parse_errors += 1
            logger.error(f"Error parsing websocket message: {e}")
            return None

    def handle_message(self, event: InboundEvent) -> None:
        """
        Route a decoded event to its handlers.

        Args:
            event: The event to handle.
        """
        key = event.raw_type if event.type == InboundType.UNKNOWN and event.raw_type else event.type.value
        with self._lock:
            self._stats.total_received += 1
            self._stats.by_type[key] = self._stats.by_type.get(key, 0) + 1
            self._stats.last_message_time = datetime.now()
            handlers = list(self._handlers[event.type])

        for handler in handlers:
            try:
                handler(event)
            except Exception:
                with self._lock:
                    self._stats.handler_errors += 1
                logger.exception(f"Handler for {event.type.value!r} message failed")

    def handle_raw_message(self, raw_message: str) -> Optional[InboundEvent]:
        """
        Parse and route a raw frame.

        Args:
            raw_message: The raw text frame.

        Returns:
            The handled event, or None if the frame was dropped.
        """
        event = self.parse(raw_message)
        if event is not None:
            self.handle_message(event)
        return event

    def get_stats(self) -> MessageStats:
        """
        Get message handling statistics.

        Returns:
            Copy of the current statistics.
        """
        with self._lock:
            return MessageStats(
                total_received=self._stats.total_received,
                by_type=dict(self._stats.by_type),
                parse_errors=self._stats.parse_errors,
                handler_errors=self._stats.handler_errors,
                last_message_time=self._stats.last_message_time,
            )

    def reset_stats(self) -> None:
        """Reset message handling statistics."""
        with self._lock:
            self._stats = MessageStats()

    def clear_handlers(self) -> None:
        """Clear all registered handlers."""
        with self._lock:
            for message_type in self._handlers:
                self._handlers[message_type].clear()
