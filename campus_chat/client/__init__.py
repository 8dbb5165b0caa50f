"""
Chat Client Package

Provides the chat transport client and the token-reactive session around it.
"""

from .chat_client import ChatTransportClient
from .session import ChatSession

__all__ = ["ChatTransportClient", "ChatSession"]
