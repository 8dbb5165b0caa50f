"""
Display Manager

Renders the conversation transcript, connection status and suggestions to a
rich console.
"""

import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import List, Optional, Sequence, Set

from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from campus_chat.client.ui.conversation import Conversation, QuickSuggestion
from campus_chat.shared.constants import (
    HELP_COMMAND,
    QUIT_COMMAND,
    RECONNECT_COMMAND,
    REFRESH_COMMAND,
    SUGGEST_COMMAND,
    TOKEN_COMMAND,
)
from campus_chat.shared.models import ChatEvent, ConnectionState, Sender


@dataclass
class DisplayStats:
    """Statistics for display management."""
    messages_printed: int = 0
    user_messages: int = 0
    assistant_messages: int = 0
    status_updates: int = 0
    last_print_time: Optional[datetime] = None


class DisplayManager:
    """
    Prints the chat transcript incrementally.

    Streaming entries are not printed chunk by chunk; a single typing
    indicator is shown until the final message arrives.
    """

    def __init__(self, console: Optional[Console] = None, assistant_name: str = "Raj") -> None:
        """
        Initialize the display manager.

        Args:
            console: Console to print to.
            assistant_name: Label used for assistant messages.
        """
        self.console = console or Console()
        self.assistant_name = assistant_name
        self._lock = threading.Lock()
        self._printed_ids: Set[str] = set()
        self._typing_shown = False
        self._stats = DisplayStats()

        self._sender_styles = {
            Sender.USER: "bright_blue",
            Sender.ASSISTANT: "cyan",
        }
        self._status_styles = {
            ConnectionState.CONNECTED: ("Connected", "bold green"),
            ConnectionState.CONNECTING: ("Connecting...", "yellow"),
            ConnectionState.AWAITING_AUTH: ("Authenticating...", "yellow"),
            ConnectionState.DISCONNECTED: ("Disconnected", "red"),
            ConnectionState.AUTH_FAILED: ("Authentication failed - log in again", "bold red"),
        }

    def format_message(self, message: ChatEvent) -> Text:
        """
        Format a transcript entry.

        Args:
            message: The entry to format.

        Returns:
            Formatted Text object.
        """
        label = "You" if message.sender == Sender.USER else self.assistant_name
        text = Text()
        text.append(f"[{message.timestamp.strftime('%H:%M')}] ", style="dim")
        text.append(f"{label}: ", style=f"bold {self._sender_styles[message.sender]}")
        text.append(message.content, style=self._sender_styles[message.sender])
        if message.source and not message.is_streaming:
            text.append(f" ({message.source})", style="dim italic")
        return text

    def format_status(self, state: ConnectionState, has_token: bool = True) -> Text:
        """
        Format the connection status line.

        Without a token there is nothing to connect with, so the user is asked
        to log in whatever the state.
        """
        if not has_token:
            return Text(f"● Please log in - use {TOKEN_COMMAND} <token>", style="yellow")
        label, style = self._status_styles[state]
        return Text(f"● {label}", style=style)

    def format_suggestions(self, suggestions: Sequence[QuickSuggestion]) -> Text:
        text = Text("Quick questions:\n", style="bold")
        for index, suggestion in enumerate(suggestions, start=1):
            text.append(f"  {index}. {suggestion.text}\n", style="green")
        return text

    def format_related(self, questions: Sequence[str]) -> Text:
        text = Text("Related questions:\n", style="bold")
        for index, question in enumerate(questions, start=1):
            text.append(f"  {index}. {question}\n", style="green")
        return text

    def show_banner(self) -> None:
        self.console.print(Panel("[bold cyan]Campus Chat Assistant[/bold cyan]", border_style="cyan"))

    def show_new_messages(self, conversation: Conversation) -> int:
        """
        Print transcript entries that have not been printed yet.

        Args:
            conversation: Conversation to render.

        Returns:
            Number of entries printed.
        """
        printed = 0
        messages = conversation.messages
        with self._lock:
            for message in messages:
                if message.is_streaming:
                    if not self._typing_shown:
                        self.console.print(Text(f"{self.assistant_name} is typing...", style="dim italic"))
                        self._typing_shown = True
                    continue

                if message.id in self._printed_ids:
                    continue

                self.console.print(self.format_message(message))
                self._printed_ids.add(message.id)
                printed += 1

                self._stats.messages_printed += 1
                self._stats.last_print_time = datetime.now()
                if message.sender == Sender.USER:
                    self._stats.user_messages += 1
                else:
                    self._stats.assistant_messages += 1
                    self._typing_shown = False

            # Entries trimmed from the conversation will not come back
            self._printed_ids.intersection_update(m.id for m in messages)

        return printed

    def show_status(self, state: ConnectionState, has_token: bool = True) -> None:
        self.console.print(self.format_status(state, has_token))
        with self._lock:
            self._stats.status_updates += 1

    def show_choices(self, conversation: Conversation) -> List[str]:
        """
        Print the numbered choices currently on offer.

        Related questions of the latest answer take precedence; quick
        suggestions are offered until the user sends something.

        Args:
            conversation: Conversation to read choices from.

        Returns:
            The queries the numbers map to.
        """
        related = conversation.related_questions
        if related:
            self.console.print(self.format_related(related))
            return related

        if conversation.show_suggestions:
            suggestions = conversation.suggestions
            self.console.print(self.format_suggestions(suggestions))
            return [s.query for s in suggestions]

        return []

    def show_help(self) -> None:
        help_text = Text()
        help_text.append("Commands:\n", style="bold")
        for command, description in (
            (HELP_COMMAND, "show this help"),
            (SUGGEST_COMMAND, "show suggested questions"),
            (RECONNECT_COMMAND, "reconnect to the chat server"),
            (REFRESH_COMMAND, "start a new conversation"),
            (TOKEN_COMMAND, "set a new access token"),
            (QUIT_COMMAND, "exit"),
        ):
            help_text.append(f"  {command:<12}", style="green")
            help_text.append(f"{description}\n")
        help_text.append("Enter a number to ask a listed question.", style="dim")
        self.console.print(help_text)

    def reset(self) -> None:
        """Forget what has been printed, e.g. after the conversation is reset."""
        with self._lock:
            self._printed_ids.clear()
            self._typing_shown = False

    def get_stats(self) -> DisplayStats:
        with self._lock:
            return replace(self._stats)
