"""
Pytest Configuration and Shared Fixtures

Provides common test fixtures and configuration for the test suite.
"""

import json
from typing import Any, Callable, List, Optional, Union
from unittest.mock import Mock

import pytest

from campus_chat.client.chat_client import ChatTransportClient
from campus_chat.shared.config import ClientConfig
from campus_chat.shared.exceptions import SchedulerError, TransportClosedError


class FakeTimer:
    """Timer handle recorded by ``FakeLoop``; fires only when the test says so."""

    def __init__(self, loop: "FakeLoop", delay: float, callback: Callable[..., Any], args: tuple):
        self.loop = loop
        self.delay = delay
        self.callback = callback
        self.args = args
        self.fired = False
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def pending(self) -> bool:
        return not self._cancelled and not self.fired

    @property
    def name(self) -> str:
        return getattr(self.callback, "__name__", repr(self.callback))

    def cancel(self) -> None:
        self._cancelled = True

    def fire(self) -> None:
        if not self.pending:
            return
        self.fired = True
        self.callback(*self.args)


class FakeLoop:
    """
    Deterministic scheduler: ``call_soon`` runs inline, ``call_later`` only
    records a timer.
    """

    def __init__(self):
        self.timers: List[FakeTimer] = []
        self.stopped = False

    def call_soon(self, callback: Callable[..., Any], *args: Any) -> None:
        if self.stopped:
            raise SchedulerError("Event loop is shutdown")
        callback(*args)

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeTimer:
        if self.stopped:
            raise SchedulerError("Event loop is shutdown")
        timer = FakeTimer(self, delay, callback, args)
        self.timers.append(timer)
        return timer

    def pending(self, name: Optional[str] = None) -> List[FakeTimer]:
        """Pending timers, optionally only those whose callback is called ``name``."""
        return [t for t in self.timers if t.pending and (name is None or t.name == name)]

    def fire(self, name: str) -> int:
        """Fire every pending timer called ``name``; returns how many fired."""
        due = self.pending(name)
        for timer in due:
            timer.fire()
        return len(due)

    def stop(self) -> None:
        self.stopped = True


class FakeTransport:
    """In-memory transport; tests drive its lifecycle with the ``simulate_*`` helpers."""

    def __init__(self, url: str):
        self.url = url
        self.sent: List[str] = []
        self.opened = False
        self.closed = False
        self.open_error: Optional[Exception] = None
        self._open = False
        self.on_open = None
        self.on_message = None
        self.on_error = None
        self.on_close = None

    def set_callbacks(self, on_open=None, on_message=None, on_error=None, on_close=None) -> None:
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.on_close = on_close

    def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self.opened = True

    def send(self, data: str) -> None:
        if not self._open:
            raise TransportClosedError("Not connected to server", address=self.url)
        self.sent.append(data)

    def close(self) -> None:
        self.closed = True
        self._open = False

    def is_open(self) -> bool:
        return self._open

    @property
    def frames(self) -> List[dict]:
        return [json.loads(data) for data in self.sent]

    def simulate_open(self) -> None:
        self._open = True
        self.on_open()

    def simulate_message(self, payload: Union[dict, str]) -> None:
        raw = payload if isinstance(payload, str) else json.dumps(payload)
        self.on_message(raw)

    def simulate_error(self, error: str = "connection refused") -> None:
        self.on_error(error)

    def simulate_close(self, code: Optional[int] = 1006, reason: str = "") -> None:
        self._open = False
        self.on_close(code, reason)


class TransportRecorder:
    """Transport factory that keeps every transport it builds."""

    def __init__(self):
        self.created: List[FakeTransport] = []

    def __call__(self, url: str) -> FakeTransport:
        transport = FakeTransport(url)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


@pytest.fixture
def fake_loop() -> FakeLoop:
    """Provide a deterministic event loop."""
    return FakeLoop()


@pytest.fixture
def transports() -> TransportRecorder:
    """Provide a recording transport factory."""
    return TransportRecorder()


@pytest.fixture
def client_config() -> ClientConfig:
    """Provide a test client configuration."""
    return ClientConfig(api_url="http://localhost:8000")


@pytest.fixture
def on_message() -> Mock:
    return Mock()


@pytest.fixture
def on_error() -> Mock:
    return Mock()


@pytest.fixture
def make_client(fake_loop, transports, client_config, on_message, on_error):
    """Build a ChatTransportClient wired to the fake loop and transports."""
    def _make(token: Optional[str] = "test-token", **kwargs) -> ChatTransportClient:
        kwargs.setdefault("config", client_config)
        kwargs.setdefault("transport_factory", transports)
        return ChatTransportClient(
            token=token,
            on_message=on_message,
            on_error=on_error,
            loop=fake_loop,
            **kwargs,
        )
    return _make


@pytest.fixture
def connected_client(make_client, transports):
    """Provide a client that completed the auth handshake."""
    client = make_client()
    client.connect()
    transports.last.simulate_open()
    transports.last.simulate_message({"type": "connected", "message": "Connected to chatbot"})
    return client


@pytest.fixture
def mock_rich_console() -> Mock:
    """Provide a mock Rich console for UI testing."""
    console = Mock()
    console.print = Mock()
    console.height = 24
    console.width = 80
    return console


@pytest.fixture
def temp_log_file(tmp_path) -> str:
    """Provide a temporary log file path."""
    return str(tmp_path / "test.log")


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration between tests."""
    import logging
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    yield

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Keep CAMPUS_CHAT_* variables from the developer's shell out of tests."""
    import os
    for key in list(os.environ):
        if key.startswith("CAMPUS_CHAT_"):
            monkeypatch.delenv(key, raising=False)
