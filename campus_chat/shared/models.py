"""
Data Models

Defines data classes and models used throughout the campus chat client.
"""

import json
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .constants import STREAMING_MESSAGE_ID
from .exceptions import InvalidMessageFormatError


class ConnectionState(Enum):
    """Lifecycle states of the chat transport client."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_AUTH = "awaiting_auth"
    CONNECTED = "connected"
    AUTH_FAILED = "auth_failed"


class InboundType(Enum):
    """Message types sent by the chat backend."""
    CONNECTED = "connected"
    RESPONSE = "response"
    STREAM_START = "stream_start"
    STREAM_CHUNK = "stream_chunk"
    STREAM_END = "stream_end"
    ERROR = "error"
    PONG = "pong"
    UNKNOWN = "unknown"

    @classmethod
    def from_wire(cls, value: Any) -> "InboundType":
        """Map a wire ``type`` value to a member, defaulting to UNKNOWN."""
        try:
            return cls(value)
        except (ValueError, TypeError):
            return cls.UNKNOWN


class OutboundType(Enum):
    """Message types sent to the chat backend."""
    AUTH = "auth"
    MESSAGE = "message"
    PING = "ping"


class Sender(Enum):
    """Author of a chat event."""
    USER = "user"
    ASSISTANT = "assistant"


def new_message_id() -> str:
    """Generate a fresh, unique chat event identifier."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}"


@dataclass
class InboundEvent:
    """A decoded frame received from the chat backend."""
    type: InboundType
    raw_type: Optional[str] = None
    message: Optional[str] = None
    response: Optional[str] = None
    source: Optional[str] = None
    related_questions: Optional[List[str]] = None
    chunk: Optional[str] = None
    error: Optional[str] = None
    confidence: Optional[float] = None
    faq_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any) -> "InboundEvent":
        """
        Build an event from a decoded JSON object.

        Args:
            data: Decoded JSON value.

        Returns:
            The inbound event.

        Raises:
            InvalidMessageFormatError: If ``data`` is not a JSON object.
        """
        if not isinstance(data, dict):
            raise InvalidMessageFormatError(
                f"Expected a JSON object, got {type(data).__name__}",
                message_data=repr(data)[:200],
                expected_format="object",
            )

        raw_type = data.get("type")
        related = data.get("related_questions")
        if related is not None:
            if isinstance(related, list):
                related = [str(q) for q in related]
            else:
                related = None

        return cls(
            type=InboundType.from_wire(raw_type),
            raw_type=raw_type if isinstance(raw_type, str) else None,
            message=_optional_str(data.get("message")),
            response=_optional_str(data.get("response")),
            source=_optional_str(data.get("source")),
            related_questions=related,
            chunk=_optional_str(data.get("chunk")),
            error=_optional_str(data.get("error")),
            confidence=data.get("confidence") if isinstance(data.get("confidence"), (int, float)) else None,
            faq_id=_optional_str(data.get("faq_id")),
        )

    @classmethod
    def from_json(cls, raw: str) -> "InboundEvent":
        """Decode a raw text frame."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise InvalidMessageFormatError(
                f"Malformed JSON frame: {e}",
                message_data=str(raw)[:200],
                expected_format="json",
            )
        return cls.from_dict(data)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


@dataclass
class OutboundEvent:
    """A frame sent to the chat backend."""
    type: OutboundType
    token: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def auth(cls, token: str) -> "OutboundEvent":
        return cls(OutboundType.AUTH, token=token)

    @classmethod
    def chat(cls, text: str) -> "OutboundEvent":
        return cls(OutboundType.MESSAGE, message=text)

    @classmethod
    def ping(cls) -> "OutboundEvent":
        return cls(OutboundType.PING)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the wire dictionary."""
        data: Dict[str, Any] = {"type": self.type.value}
        if self.type == OutboundType.AUTH:
            data["token"] = self.token
        elif self.type == OutboundType.MESSAGE:
            data["message"] = self.message
        return data

    def to_json(self) -> str:
        """Serialize to a text frame."""
        return json.dumps(self.to_dict(), ensure_ascii=False)


@dataclass
class ChatEvent:
    """A chat message delivered to the consumer."""
    content: str
    sender: Sender = Sender.ASSISTANT
    id: str = field(default_factory=new_message_id)
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = None
    related_questions: Optional[List[str]] = None

    @property
    def is_streaming(self) -> bool:
        """Whether this is a transient, in-progress streaming event."""
        return self.id == STREAMING_MESSAGE_ID

    @classmethod
    def from_user(cls, content: str) -> "ChatEvent":
        """Create an event for a message typed by the local user."""
        return cls(content=content, sender=Sender.USER)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "content": self.content,
            "sender": self.sender.value,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
            "related_questions": list(self.related_questions) if self.related_questions else None,
        }
