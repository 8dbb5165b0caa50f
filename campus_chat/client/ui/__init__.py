"""
Client UI Components

Conversation transcript and its rendering with Rich.
"""

from .conversation import Conversation
from .display_manager import DisplayManager

__all__ = ["Conversation", "DisplayManager"]
