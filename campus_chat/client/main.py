"""
Chat Client Main Entry Point

Terminal front-end for the campus chatbot.
"""

import argparse
import logging
import sys
import threading
from typing import Callable, List, Optional, Tuple, Union

from rich.console import Console
from rich.prompt import Prompt

from campus_chat.client.api import ChatbotApi, RestChatSender
from campus_chat.client.session import ChatSession
from campus_chat.client.token_store import TokenStore
from campus_chat.client.ui.conversation import Conversation, SubmitStatus
from campus_chat.client.ui.display_manager import DisplayManager
from campus_chat.shared.config import ClientConfig, ConfigurationLoader
from campus_chat.shared.constants import (
    HELP_COMMAND,
    QUIT_COMMAND,
    RECONNECT_COMMAND,
    REFRESH_COMMAND,
    SUGGEST_COMMAND,
    TOKEN_COMMAND,
)
from campus_chat.shared.exceptions import CampusChatError
from campus_chat.shared.logging_config import LogLevel, configure_from_env, setup_logging
from campus_chat.shared.models import ChatEvent, ConnectionState


logger = logging.getLogger(__name__)

ChatSender = Union[ChatSession, RestChatSender]


class ChatApp:
    """
    Interactive chat loop.

    Assistant events arrive on the client's event loop thread and are printed
    as they come; user input is read on the calling thread.
    """

    def __init__(self,
                 config: ClientConfig,
                 token_store: TokenStore,
                 token: Optional[str] = None,
                 use_rest: bool = False,
                 display: Optional[DisplayManager] = None,
                 conversation: Optional[Conversation] = None,
                 sender: Optional[ChatSender] = None,
                 ask: Callable[[str], str] = Prompt.ask) -> None:
        self.config = config
        self.token_store = token_store
        self.display = display or DisplayManager()
        self.conversation = conversation or Conversation()
        self.choices: List[str] = []
        self._ask = ask
        self._status_lock = threading.Lock()
        self._last_status: Optional[Tuple[ConnectionState, bool]] = None

        if sender is not None:
            sender.update_callbacks(on_message=self.on_message, on_error=self.on_error)
            self.sender: ChatSender = sender
        elif use_rest:
            api = ChatbotApi(config.api_url, token=token, timeout=config.request_timeout)
            self.sender = RestChatSender(api, on_message=self.on_message, on_error=self.on_error)
        else:
            self.sender = ChatSession(
                token=token,
                on_message=self.on_message,
                on_error=self.on_error,
                config=config,
            )

    def on_message(self, event: ChatEvent) -> None:
        self.conversation.apply_assistant_event(event)
        self.display.show_new_messages(self.conversation)
        if not event.is_streaming and event.related_questions:
            self.choices = self.display.show_choices(self.conversation)

    def on_error(self, error: str) -> None:
        if self.conversation.apply_error(error) is not None:
            self.display.show_new_messages(self.conversation)
        self.refresh_status()

    def refresh_status(self, force: bool = False) -> None:
        """
        Print the connection status line if it changed since it was last shown.

        Args:
            force: Print it even when nothing changed.
        """
        status = (self.sender.state, self.sender.has_token)
        with self._status_lock:
            if not force and status == self._last_status:
                return
            self._last_status = status
        self.display.show_status(*status)

    def handle_input(self, line: str) -> bool:
        """
        Handle one line of user input.

        Args:
            line: Text typed by the user.

        Returns:
            False when the user asked to quit.
        """
        stripped = line.strip()
        command, _, argument = stripped.partition(" ")
        command = command.lower()

        if command == QUIT_COMMAND:
            return False

        if command == HELP_COMMAND:
            self.display.show_help()
        elif command == SUGGEST_COMMAND:
            self.choices = self.display.show_choices(self.conversation)
        elif command == RECONNECT_COMMAND:
            self.sender.reconnect()
            self.refresh_status(force=True)
        elif command == REFRESH_COMMAND:
            self.conversation.reset()
            self.display.reset()
            self.display.show_new_messages(self.conversation)
            self.choices = self.display.show_choices(self.conversation)
        elif command == TOKEN_COMMAND:
            self._change_token(argument.strip() or None)
            self.refresh_status(force=True)
        elif stripped.isdigit() and 0 < int(stripped) <= len(self.choices):
            self._submit(self.choices[int(stripped) - 1])
        else:
            self._submit(line)

        return True

    def run(self) -> None:
        """Run the prompt loop until the user quits."""
        self.display.show_banner()
        self.display.show_new_messages(self.conversation)
        self.choices = self.display.show_choices(self.conversation)
        self.display.show_help()
        self.refresh_status(force=True)

        try:
            while True:
                self.refresh_status()
                line = self._ask("[cyan]You[/cyan]")
                if not self.handle_input(line):
                    break
        finally:
            self.sender.close()

    def _submit(self, text: str) -> None:
        result = self.conversation.submit(text, self.sender)
        if result.status != SubmitStatus.IGNORED:
            self.display.show_new_messages(self.conversation)

    def _change_token(self, token: Optional[str]) -> None:
        if token:
            self.token_store.save(token)
            logger.info("Access token updated")
        else:
            self.token_store.clear()
            logger.info("Access token cleared")
        self.sender.update_token(token)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Campus chatbot terminal client")
    parser.add_argument("--api-url", help="Backend base URL, e.g. http://localhost:8000")
    parser.add_argument("--streaming", action="store_true", help="Use the streaming chat endpoint")
    parser.add_argument("--rest", action="store_true", help="Use the REST endpoint instead of a websocket")
    parser.add_argument("--config", help="Path to a JSON or YAML configuration file")
    parser.add_argument("--token", help="Access token to authenticate with")
    parser.add_argument("--save-token", action="store_true", help="Persist --token to the token file")
    parser.add_argument(
        "--log-level",
        choices=[level.value for level in LogLevel],
        help="Logging level (default: CAMPUS_CHAT_LOG_LEVEL or WARNING)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point for the chat client."""
    console = Console()
    args = parse_args(argv)

    if args.log_level:
        setup_logging(level=args.log_level)
    else:
        configure_from_env()

    try:
        config = ConfigurationLoader.load_client_config(args.config)
        if args.api_url:
            config.api_url = args.api_url
        if args.streaming:
            config.streaming = True
        config.validate()

        token_store = TokenStore(config.token_file)
        token = args.token or token_store.get_token()
        if args.token and args.save_token:
            token_store.save(args.token)

        app = ChatApp(config, token_store, token=token, use_rest=args.rest)
        logger.info(f"Starting chat client for {config.api_url}")
        app.run()

    except CampusChatError as e:
        console.print(f"[bold red]{e}[/bold red]")
        sys.exit(1)
    except (KeyboardInterrupt, EOFError):
        console.print("\n[bold blue]Goodbye.[/bold blue]")
        sys.exit(0)
    except Exception as e:
        console.print(f"[bold red]An error occurred: {e}[/bold red]")
        logger.exception("Client error")
        sys.exit(1)


if __name__ == "__main__":
    main()
