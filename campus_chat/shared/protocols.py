"""
Type Protocols and Interfaces

Defines protocol interfaces for structural typing throughout the client.
"""

from typing import Protocol, Any, Callable, Optional, runtime_checkable
from abc import abstractmethod


@runtime_checkable
class TimerHandle(Protocol):
    """Protocol for a cancellable scheduled call."""

    @abstractmethod
    def cancel(self) -> None:
        """Cancel the call if it has not run yet."""
        ...

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        """Whether the call was cancelled."""
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Protocol for the single-threaded loop that serializes client work."""

    @abstractmethod
    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        """
        Queue a callback to run on the loop.

        Args:
            callback: Function to run.
            *args: Positional arguments for the callback.
        """
        ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """
        Queue a callback to run on the loop after a delay.

        Args:
            delay: Delay in seconds.
            callback: Function to run.
            *args: Positional arguments for the callback.

        Returns:
            Handle that cancels the call.
        """
        ...


@runtime_checkable
class Transport(Protocol):
    """Protocol for a bidirectional text-frame transport."""

    @abstractmethod
    def set_callbacks(self,
                      on_open: Optional[Callable[[], None]] = None,
                      on_message: Optional[Callable[[str], None]] = None,
                      on_error: Optional[Callable[[str], None]] = None,
                      on_close: Optional[Callable[[Optional[int], str], None]] = None) -> None:
        """Set transport event callbacks."""
        ...

    @abstractmethod
    def open(self) -> None:
        """Start opening the transport; completion is reported via ``on_open``."""
        ...

    @abstractmethod
    def send(self, data: str) -> None:
        """
        Send a text frame.

        Args:
            data: The frame to send.
        """
        ...

    @abstractmethod
    def close(self) -> None:
        """Close the transport."""
        ...

    @abstractmethod
    def is_open(self) -> bool:
        """Check if the transport is open."""
        ...


@runtime_checkable
class ChatMessageSender(Protocol):
    """Protocol for anything that can transmit a chat message."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the sender is currently able to deliver messages."""
        ...

    @abstractmethod
    def send_message(self, text: str) -> bool:
        """
        Transmit a chat message.

        Args:
            text: Message text.

        Returns:
            True if the message was handed to the transport.
        """
        ...
