"""
Conversation

Chat transcript kept by the front-end: folds streaming updates into a single
entry, de-duplicates connection errors and gates outgoing messages on the
connection state.
"""

import threading
import time
import uuid
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import List, Optional, Sequence

from campus_chat.shared.constants import (
    BACKEND_DOWN_NOTICE,
    GENERIC_ERROR_NOTICE,
    MAX_CONVERSATION_HISTORY,
    NOT_CONNECTED_NOTICE,
    SEND_FAILED_NOTICE,
    WELCOME_MESSAGE,
)
from campus_chat.shared.models import ChatEvent, Sender
from campus_chat.shared.protocols import ChatMessageSender


@dataclass(frozen=True)
class QuickSuggestion:
    """A canned question offered before the user types anything."""
    text: str
    query: str


DEFAULT_SUGGESTIONS = (
    QuickSuggestion("How to register?", "How do I register as a student?"),
    QuickSuggestion("Available courses", "What courses are available?"),
    QuickSuggestion("Pay fees", "How do I pay my fees?"),
    QuickSuggestion("Exam process", "How do exams work?"),
    QuickSuggestion("Get certificate", "How do I get my certificate?"),
)


class SubmitStatus(Enum):
    """Outcome of submitting user input."""
    IGNORED = "ignored"
    SENT = "sent"
    NOT_CONNECTED = "not_connected"
    SEND_FAILED = "send_failed"


@dataclass
class SubmitResult:
    """Result of ``Conversation.submit``."""
    status: SubmitStatus
    message: Optional[ChatEvent] = None

    @property
    def sent(self) -> bool:
        return self.status == SubmitStatus.SENT


@dataclass
class ConversationStats:
    """Statistics for the transcript."""
    total_messages: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    errors_shown: int = 0
    messages_trimmed: int = 0
    last_message_time: Optional[datetime] = None


def _unique_id(prefix: str) -> str:
    return f"{prefix}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class Conversation:
    """
    Transcript of one chat window.

    Thread-safe: assistant events arrive on the client's event loop while
    user input arrives on the UI thread.
    """

    def __init__(self, max_history: int = MAX_CONVERSATION_HISTORY,
                 suggestions: Sequence[QuickSuggestion] = DEFAULT_SUGGESTIONS) -> None:
        """
        Initialize the conversation with the welcome message.

        Args:
            max_history: Maximum number of entries kept.
            suggestions: Quick suggestions offered to the user.
        """
        self.max_history = max_history
        self._suggestions = tuple(suggestions)
        self._lock = threading.Lock()
        self._messages: List[ChatEvent] = []
        self._error_shown = False
        self._show_suggestions = True
        self._stats = ConversationStats()
        self.reset()

    @property
    def messages(self) -> List[ChatEvent]:
        with self._lock:
            return list(self._messages)

    @property
    def suggestions(self) -> List[QuickSuggestion]:
        return list(self._suggestions)

    @property
    def show_suggestions(self) -> bool:
        return self._show_suggestions

    @property
    def related_questions(self) -> List[str]:
        """Follow-up questions attached to the latest entry."""
        with self._lock:
            if not self._messages:
                return []
            return list(self._messages[-1].related_questions or [])

    @property
    def is_streaming(self) -> bool:
        with self._lock:
            return bool(self._messages) and self._messages[-1].is_streaming

    def apply_assistant_event(self, event: ChatEvent) -> ChatEvent:
        """
        Add an event from the chat client.

        A streaming event replaces the trailing streaming entry, or is
        appended if there is none. A final event removes any streaming entry
        and is appended under a fresh unique id.

        Args:
            event: Event delivered by the chat client.

        Returns:
            The entry as stored.
        """
        with self._lock:
            self._error_shown = False

            if event.is_streaming:
                if self._messages and self._messages[-1].is_streaming:
                    self._messages[-1] = event
                else:
                    self._append(event)
                return event

            self._messages = [m for m in self._messages if not m.is_streaming]
            stored = replace(event, id=_unique_id("msg"))
            self._append(stored)
            return stored

    def apply_error(self, error: str) -> Optional[ChatEvent]:
        """
        Show a connection problem, once until the next assistant message.

        Args:
            error: Error text from the chat client.

        Returns:
            The notice added, or None if one is already showing.
        """
        with self._lock:
            if self._error_shown:
                return None
            self._error_shown = True

            content = BACKEND_DOWN_NOTICE if "backend" in error else GENERIC_ERROR_NOTICE
            notice = ChatEvent(content=content, sender=Sender.ASSISTANT, id=_unique_id("error"))
            self._append(notice)
            self._stats.errors_shown += 1
            return notice

    def submit(self, text: str, sender: ChatMessageSender) -> SubmitResult:
        """
        Send user input through ``sender`` and record it.

        Args:
            text: Raw user input.
            sender: Connection used to deliver the message.

        Returns:
            What happened to the input.
        """
        if not text or not text.strip():
            return SubmitResult(SubmitStatus.IGNORED)

        if not sender.is_connected:
            notice = self._add_notice(NOT_CONNECTED_NOTICE)
            return SubmitResult(SubmitStatus.NOT_CONNECTED, notice)

        user_message = ChatEvent.from_user(text)
        with self._lock:
            self._append(user_message)
            self._show_suggestions = False

        if not sender.send_message(text):
            notice = self._add_notice(SEND_FAILED_NOTICE)
            return SubmitResult(SubmitStatus.SEND_FAILED, notice)

        return SubmitResult(SubmitStatus.SENT, user_message)

    def reset(self) -> None:
        """Start over with only the welcome message."""
        with self._lock:
            self._messages = [ChatEvent(content=WELCOME_MESSAGE, sender=Sender.ASSISTANT, id="1")]
            self._show_suggestions = True
            self._error_shown = False

    def get_stats(self) -> ConversationStats:
        """Get a copy of transcript statistics."""
        with self._lock:
            return replace(self._stats)

    def _add_notice(self, content: str) -> ChatEvent:
        notice = ChatEvent(content=content, sender=Sender.ASSISTANT)
        with self._lock:
            self._append(notice)
        return notice

    def _append(self, message: ChatEvent) -> None:
        self._messages.append(message)
        self._stats.total_messages += 1
        self._stats.last_message_time = datetime.now()
        if message.sender == Sender.USER:
            self._stats.user_messages += 1
        else:
            self._stats.assistant_messages += 1

        excess = len(self._messages) - self.max_history
        if excess > 0:
            del self._messages[:excess]
            self._stats.messages_trimmed += excess
