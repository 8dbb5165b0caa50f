"""
Unit tests for the ChatTransportClient class.
"""

import logging
from unittest.mock import Mock

import pytest

from campus_chat.client.chat_client import ChatTransportClient
from campus_chat.shared.config import ClientConfig
from campus_chat.shared.constants import (
    RETRIES_EXHAUSTED_MESSAGE,
    STREAMING_MESSAGE_ID,
    STREAMING_SOURCE,
    TRANSPORT_ERROR_MESSAGE,
    UNKNOWN_ERROR_MESSAGE,
)
from campus_chat.shared.exceptions import ConnectionError
from campus_chat.shared.models import ConnectionState, Sender


def emitted(on_message: Mock):
    """Chat events passed to the message callback, in order."""
    return [c.args[0] for c in on_message.call_args_list]


class TestConstruction:
    """Test client construction."""

    def test_initial_state(self, make_client):
        """Test a fresh client is disconnected and holds the token."""
        client = make_client()

        assert client.state == ConnectionState.DISCONNECTED
        assert client.has_token
        assert not client.is_connected
        assert not client.is_connecting
        assert not client.auth_failed
        assert client.reconnect_attempts == 0
        assert client.max_reconnect_attempts == 3

    def test_does_not_connect_on_construction(self, make_client, transports):
        make_client()
        assert transports.created == []

    def test_chat_endpoint(self, make_client):
        client = make_client()
        assert client.url == "ws://localhost:8000/api/chatbot/ws/chat"

    def test_streaming_endpoint(self, make_client):
        client = make_client(streaming=True)
        assert client.url == "ws://localhost:8000/api/chatbot/ws/chat/stream"
        assert client.config.streaming is True

    def test_streaming_argument_does_not_mutate_config(self, make_client, client_config):
        make_client(streaming=True)
        assert client_config.streaming is False

    def test_https_api_uses_wss(self, make_client):
        client = make_client(config=ClientConfig(api_url="https://campus.example.com"))
        assert client.url == "wss://campus.example.com/api/chatbot/ws/chat"

    def test_heartbeat_started_at_construction(self, make_client, fake_loop):
        """Test the heartbeat runs independently of connection attempts."""
        make_client()

        heartbeats = fake_loop.pending("_heartbeat_tick")
        assert len(heartbeats) == 1
        assert heartbeats[0].delay == 30.0

    def test_no_token(self, make_client):
        client = make_client(token=None)
        assert not client.has_token


class TestConnect:
    """Test connect() and the auth handshake."""

    def test_connect_without_token_is_noop(self, make_client, transports):
        client = make_client(token=None)

        client.connect()

        assert transports.created == []
        assert client.state == ConnectionState.DISCONNECTED

    def test_connect_opens_transport(self, make_client, transports):
        client = make_client()

        client.connect()

        assert len(transports.created) == 1
        assert transports.last.url == client.url
        assert transports.last.opened
        assert client.state == ConnectionState.CONNECTING
        assert client.is_connecting

    def test_transport_open_sends_auth(self, make_client, transports):
        client = make_client(token="secret")
        client.connect()

        transports.last.simulate_open()

        assert client.state == ConnectionState.AWAITING_AUTH
        assert client.is_connecting
        assert transports.last.frames == [{"type": "auth", "token": "secret"}]

    def test_handshake_completes(self, make_client, transports):
        """Test token set, connect, auth sent, connected received."""
        client = make_client(token="secret")
        client.connect()
        transports.last.simulate_open()

        transports.last.simulate_message({"type": "connected", "message": "Connected to chatbot"})

        assert client.is_connected
        assert not client.is_connecting
        assert client.reconnect_attempts == 0

    def test_connect_while_connecting_is_noop(self, make_client, transports):
        client = make_client()
        client.connect()

        client.connect()
        transports.last.simulate_open()
        client.connect()

        assert len(transports.created) == 1

    def test_connect_while_connected_is_noop(self, connected_client, transports):
        connected_client.connect()

        assert len(transports.created) == 1
        assert connected_client.is_connected

    def test_connect_in_flight_keeps_attempt_count(self, make_client, transports, fake_loop):
        """Test a redundant connect does not reset the attempt counter."""
        client = make_client()
        client.connect()
        transports.last.simulate_close()
        fake_loop.fire("_on_reconnect_due")
        assert client.reconnect_attempts == 1

        client.connect()

        assert len(transports.created) == 2
        assert client.reconnect_attempts == 1

    def test_transport_factory_failure(self, make_client):
        def broken_factory(url):
            raise ValueError("bad url")

        client = make_client(transport_factory=broken_factory)
        client.connect()

        assert client.state == ConnectionState.DISCONNECTED

    def test_open_failure_resets_state(self, make_client, transports):
        client = make_client()
        original_factory = transports

        def failing_factory(url):
            transport = original_factory(url)
            transport.open_error = ConnectionError("refused", address=url)
            return transport

        client._transport_factory = failing_factory
        client.connect()

        assert client.state == ConnectionState.DISCONNECTED

        client._transport_factory = original_factory
        client.connect()
        assert len(transports.created) == 2
        assert client.state == ConnectionState.CONNECTING


class TestSendMessage:
    """Test send gating."""

    def test_send_when_disconnected(self, make_client, transports):
        client = make_client()
        assert client.send_message("hi") is False
        assert transports.created == []

    def test_send_while_awaiting_auth(self, make_client, transports):
        client = make_client()
        client.connect()
        transports.last.simulate_open()

        assert client.send_message("hi") is False
        assert transports.last.frames == [{"type": "auth", "token": "test-token"}]

    def test_send_when_connected(self, connected_client, transports):
        assert connected_client.send_message("hi") is True
        assert transports.last.frames[-1] == {"type": "message", "message": "hi"}

    def test_send_preserves_order(self, connected_client, transports):
        for text in ("one", "two", "three"):
            connected_client.send_message(text)

        messages = [f["message"] for f in transports.last.frames if f["type"] == "message"]
        assert messages == ["one", "two", "three"]

    def test_send_failure_returns_false(self, connected_client, transports):
        transports.last.close()
        assert connected_client.send_message("hi") is False


class TestInboundHandling:
    """Test dispatch of inbound frames."""

    def test_response_emits_chat_event(self, connected_client, transports, on_message):
        transports.last.simulate_message({
            "type": "response",
            "response": "Registration opens in May.",
            "source": "faq",
            "related_questions": ["What documents do I need?"],
        })

        events = emitted(on_message)
        assert len(events) == 1
        assert events[0].content == "Registration opens in May."
        assert events[0].sender == Sender.ASSISTANT
        assert events[0].source == "faq"
        assert events[0].related_questions == ["What documents do I need?"]
        assert not events[0].is_streaming

    def test_empty_response_is_ignored(self, connected_client, transports, on_message):
        transports.last.simulate_message({"type": "response", "response": ""})
        on_message.assert_not_called()

    def test_stream_reconstruction(self, make_client, transports, on_message):
        client = make_client(streaming=True)
        client.connect()
        transports.last.simulate_open()
        transports.last.simulate_message({"type": "connected"})

        transports.last.simulate_message({"type": "stream_start"})
        transports.last.simulate_message({"type": "stream_chunk", "chunk": "Hel"})
        transports.last.simulate_message({"type": "stream_chunk", "chunk": "lo"})
        transports.last.simulate_message({"type": "stream_end", "related_questions": ["More?"]})

        events = emitted(on_message)
        assert [e.content for e in events] == ["Hel", "Hello", "Hello"]
        assert [e.id for e in events[:2]] == [STREAMING_MESSAGE_ID, STREAMING_MESSAGE_ID]
        assert all(e.source == STREAMING_SOURCE for e in events)
        assert not events[-1].is_streaming
        assert events[-1].related_questions == ["More?"]
        assert client.streaming_buffer == ""

    def test_stream_deltas(self, make_client, transports, on_message):
        client = make_client(streaming=True, config=ClientConfig(stream_deltas=True))
        client.connect()
        transports.last.simulate_open()

        transports.last.simulate_message({"type": "stream_start"})
        transports.last.simulate_message({"type": "stream_chunk", "chunk": "Hel"})
        transports.last.simulate_message({"type": "stream_chunk", "chunk": "lo"})
        transports.last.simulate_message({"type": "stream_end"})

        assert [e.content for e in emitted(on_message)] == ["Hel", "lo", "Hello"]

    def test_stream_start_discards_partial_buffer(self, connected_client, transports, on_message):
        transports.last.simulate_message({"type": "stream_chunk", "chunk": "stale"})
        transports.last.simulate_message({"type": "stream_start"})
        transports.last.simulate_message({"type": "stream_chunk", "chunk": "fresh"})
        transports.last.simulate_message({"type": "stream_end"})

        assert emitted(on_message)[-1].content == "fresh"

    def test_empty_stream_emits_nothing(self, connected_client, transports, on_message):
        transports.last.simulate_message({"type": "stream_start"})
        transports.last.simulate_message({"type": "stream_end"})
        on_message.assert_not_called()

    def test_malformed_frame_is_swallowed(self, connected_client, transports, on_message, on_error):
        transports.last.simulate_message("{not json")
        transports.last.simulate_message("[1, 2, 3]")

        on_message.assert_not_called()
        on_error.assert_not_called()
        assert connected_client.is_connected
        assert connected_client.get_stats().parse_errors == 2

    def test_unknown_type_is_ignored(self, connected_client, transports, on_message, on_error):
        transports.last.simulate_message({"type": "typing", "who": "raj"})

        on_message.assert_not_called()
        on_error.assert_not_called()
        assert connected_client.get_stats().by_type == {"connected": 1, "typing": 1}

    def test_pong_is_noop(self, connected_client, transports, on_message, on_error):
        transports.last.simulate_message({"type": "pong"})

        on_message.assert_not_called()
        on_error.assert_not_called()
        assert connected_client.is_connected

    def test_server_error_is_forwarded(self, connected_client, transports, on_error):
        transports.last.simulate_message({"type": "error", "error": "Rate limit exceeded"})

        on_error.assert_called_once_with("Rate limit exceeded")
        assert connected_client.is_connected
        assert not connected_client.auth_failed

    def test_server_error_without_text(self, connected_client, transports, on_error):
        transports.last.simulate_message({"type": "error"})
        on_error.assert_called_once_with(UNKNOWN_ERROR_MESSAGE)

    def test_message_callback_failure_is_contained(self, connected_client, transports, on_message, caplog):
        on_message.side_effect = RuntimeError("consumer bug")

        with caplog.at_level(logging.ERROR):
            transports.last.simulate_message({"type": "response", "response": "hi"})

        assert connected_client.is_connected
        assert connected_client.get_stats().handler_errors == 1

    def test_error_callback_failure_is_contained(self, connected_client, transports, on_error):
        on_error.side_effect = RuntimeError("consumer bug")

        transports.last.simulate_message({"type": "error", "error": "oops"})

        on_error.assert_called_once_with("oops")


class TestReconnection:
    """Test the bounded linear backoff."""

    def test_unexpected_close_schedules_one_reconnect(self, connected_client, transports, fake_loop):
        transports.last.simulate_close()

        assert connected_client.state == ConnectionState.DISCONNECTED
        assert connected_client.reconnect_attempts == 1
        reconnects = fake_loop.pending("_on_reconnect_due")
        assert len(reconnects) == 1
        assert reconnects[0].delay == 3.0

        fake_loop.fire("_on_reconnect_due")

        assert len(transports.created) == 2
        assert connected_client.state == ConnectionState.CONNECTING

    def test_retries_are_bounded(self, make_client, transports, fake_loop, on_error):
        client = make_client()
        client.connect()
        delays = []

        for _ in range(10):
            transports.last.simulate_close()
            due = fake_loop.pending("_on_reconnect_due")
            if not due:
                break
            delays.append(due[0].delay)
            fake_loop.fire("_on_reconnect_due")

        assert delays == [3.0, 6.0]
        assert len(transports.created) == 3
        assert client.reconnect_attempts == 3
        on_error.assert_called_once_with(RETRIES_EXHAUSTED_MESSAGE)

        client.connect()
        assert len(transports.created) == 3

    def test_backoff_is_capped(self, make_client, transports, fake_loop):
        config = ClientConfig(max_reconnect_attempts=6)
        client = make_client(config=config)
        client.connect()
        delays = []

        for _ in range(5):
            transports.last.simulate_close()
            delays.append(fake_loop.pending("_on_reconnect_due")[0].delay)
            fake_loop.fire("_on_reconnect_due")

        assert delays == [3.0, 6.0, 9.0, 10.0, 10.0]

    def test_successful_handshake_resets_attempts(self, make_client, transports, fake_loop):
        client = make_client()
        client.connect()
        transports.last.simulate_close()
        fake_loop.fire("_on_reconnect_due")
        transports.last.simulate_open()
        transports.last.simulate_message({"type": "connected"})

        assert client.reconnect_attempts == 0

    def test_failed_handshake_reports_error_then_retries(self, make_client, transports, fake_loop, on_error):
        client = make_client()
        client.connect()

        transports.last.simulate_error("connection refused")
        transports.last.simulate_close(None, "connection refused")

        on_error.assert_called_once_with(TRANSPORT_ERROR_MESSAGE)
        assert not client.auth_failed
        assert len(fake_loop.pending("_on_reconnect_due")) == 1

    def test_no_reconnect_without_token(self, connected_client, transports, fake_loop):
        connected_client.set_token(None)

        transports.last.simulate_close()

        assert connected_client.state == ConnectionState.DISCONNECTED
        assert connected_client.reconnect_attempts == 0
        assert fake_loop.pending("_on_reconnect_due") == []

    def test_manual_reconnect_after_exhaustion(self, make_client, transports, fake_loop):
        client = make_client(config=ClientConfig(max_reconnect_attempts=1))
        client.connect()
        transports.last.simulate_close()
        assert client.reconnect_attempts == 1
        assert fake_loop.pending("_on_reconnect_due") == []

        client.reconnect()

        assert len(transports.created) == 2
        assert client.reconnect_attempts == 0
        assert client.state == ConnectionState.CONNECTING

    def test_reconnect_while_connected_is_noop(self, connected_client, transports):
        connected_client.reconnect()
        assert len(transports.created) == 1

    def test_stream_buffer_cleared_on_close(self, connected_client, transports):
        transports.last.simulate_message({"type": "stream_chunk", "chunk": "partial"})

        transports.last.simulate_close()

        assert connected_client.streaming_buffer == ""


class TestAuthFailure:
    """Test the authentication lockout."""

    def test_auth_error_locks_out_reconnects(self, connected_client, transports, fake_loop, on_error):
        transports.last.simulate_message({"type": "error", "error": "Invalid auth token"})

        assert connected_client.auth_failed
        on_error.assert_called_once_with("Invalid auth token")

        transports.last.simulate_close(1008, "policy violation")

        assert connected_client.auth_failed
        assert fake_loop.pending("_on_reconnect_due") == []

        connected_client.connect()
        connected_client.reconnect()
        assert len(transports.created) == 1

    @pytest.mark.parametrize("error_text", [
        "AUTHENTICATION FAILED",
        "Token expired, please re-authenticate",
        "Unauthorized",
    ])
    def test_auth_signature_is_case_insensitive(self, connected_client, transports, error_text):
        transports.last.simulate_message({"type": "error", "error": error_text})
        assert connected_client.auth_failed

    def test_auth_error_during_handshake(self, make_client, transports):
        client = make_client()
        client.connect()
        transports.last.simulate_open()

        transports.last.simulate_message({"type": "error", "error": "Invalid auth token"})

        assert client.auth_failed
        assert not client.is_connecting

    def test_new_token_clears_auth_failure(self, connected_client, transports):
        transports.last.simulate_message({"type": "error", "error": "auth failed"})
        transports.last.simulate_close()

        assert connected_client.set_token("fresh-token") is True

        assert connected_client.state == ConnectionState.DISCONNECTED
        assert connected_client.reconnect_attempts == 0
        assert len(transports.created) == 1

        connected_client.connect()
        transports.last.simulate_open()
        assert transports.last.frames == [{"type": "auth", "token": "fresh-token"}]

    def test_same_token_keeps_auth_failure(self, connected_client, transports):
        transports.last.simulate_message({"type": "error", "error": "auth failed"})

        assert connected_client.set_token("test-token") is False
        assert connected_client.auth_failed

    def test_cleared_token_keeps_auth_failure(self, connected_client, transports):
        transports.last.simulate_message({"type": "error", "error": "auth failed"})

        connected_client.set_token(None)

        assert connected_client.auth_failed
        assert not connected_client.has_token

    def test_new_token_closes_rejected_socket(self, connected_client, transports, fake_loop):
        rejected = transports.last
        rejected.simulate_message({"type": "error", "error": "auth failed"})

        connected_client.set_token("fresh-token")

        assert rejected.closed
        rejected.simulate_close()
        assert connected_client.reconnect_attempts == 0
        assert fake_loop.pending("_on_reconnect_due") == []

    def test_disconnect_keeps_auth_failure(self, connected_client, transports):
        transports.last.simulate_message({"type": "error", "error": "auth failed"})

        connected_client.disconnect()

        assert connected_client.auth_failed


class TestDisconnect:
    """Test disconnect()."""

    def test_disconnect_is_idempotent(self, connected_client, transports, fake_loop):
        connected_client.disconnect()
        connected_client.disconnect()

        assert connected_client.state == ConnectionState.DISCONNECTED
        assert not connected_client.has_pending_reconnect
        assert fake_loop.pending("_on_reconnect_due") == []
        assert transports.last.closed

    def test_disconnect_when_never_connected(self, make_client):
        client = make_client()
        client.disconnect()
        assert client.state == ConnectionState.DISCONNECTED

    def test_disconnect_cancels_pending_reconnect(self, connected_client, transports, fake_loop):
        transports.last.simulate_close()
        timer = fake_loop.pending("_on_reconnect_due")[0]

        connected_client.disconnect()

        assert timer.cancelled
        assert not connected_client.has_pending_reconnect

    def test_close_event_after_disconnect_is_ignored(self, connected_client, transports, fake_loop):
        socket = transports.last
        connected_client.disconnect()

        socket.simulate_close(1000, "")

        assert connected_client.reconnect_attempts == 0
        assert fake_loop.pending("_on_reconnect_due") == []

    def test_disconnect_during_handshake(self, make_client, transports):
        client = make_client()
        client.connect()

        client.disconnect()

        assert transports.last.closed
        assert client.state == ConnectionState.DISCONNECTED

    def test_stale_reconnect_ticket_does_not_connect(self, connected_client, transports, fake_loop):
        transports.last.simulate_close()
        timer = fake_loop.pending("_on_reconnect_due")[0]
        connected_client.disconnect()

        timer.callback(*timer.args)

        assert len(transports.created) == 1

    def test_connect_after_disconnect(self, connected_client, transports):
        connected_client.disconnect()
        connected_client.connect()

        assert len(transports.created) == 2


class TestHeartbeat:
    """Test the heartbeat timer."""

    def test_tick_pings_when_connected(self, connected_client, transports, fake_loop):
        fake_loop.fire("_heartbeat_tick")

        assert transports.last.frames[-1] == {"type": "ping"}
        assert len(fake_loop.pending("_heartbeat_tick")) == 1

    def test_tick_pings_while_awaiting_auth(self, make_client, transports, fake_loop):
        client = make_client()
        client.connect()
        transports.last.simulate_open()

        fake_loop.fire("_heartbeat_tick")

        assert transports.last.frames[-1] == {"type": "ping"}

    def test_tick_without_connection_only_reschedules(self, make_client, fake_loop):
        client = make_client()

        fake_loop.fire("_heartbeat_tick")

        assert client.send_ping() is False
        assert len(fake_loop.pending("_heartbeat_tick")) == 1

    def test_close_stops_heartbeat(self, connected_client, fake_loop):
        timer = fake_loop.pending("_heartbeat_tick")[0]

        connected_client.close()

        assert timer.cancelled
        assert fake_loop.pending("_heartbeat_tick") == []


class TestPongWatchdog:
    """Test the optional missed-pong watchdog."""

    @pytest.fixture
    def watched_client(self, make_client, transports):
        client = make_client(config=ClientConfig(pong_timeout=5.0))
        client.connect()
        transports.last.simulate_open()
        transports.last.simulate_message({"type": "connected"})
        return client

    def test_disabled_by_default(self, connected_client, fake_loop):
        connected_client.send_ping()
        assert fake_loop.pending("_on_pong_timeout") == []

    def test_ping_arms_watchdog(self, watched_client, fake_loop):
        watched_client.send_ping()

        watchdogs = fake_loop.pending("_on_pong_timeout")
        assert len(watchdogs) == 1
        assert watchdogs[0].delay == 5.0

    def test_pong_disarms_watchdog(self, watched_client, transports, fake_loop):
        watched_client.send_ping()

        transports.last.simulate_message({"type": "pong"})

        assert fake_loop.pending("_on_pong_timeout") == []

    def test_missed_pong_closes_socket(self, watched_client, transports, fake_loop):
        watched_client.send_ping()

        fake_loop.fire("_on_pong_timeout")
        assert transports.last.closed

        transports.last.simulate_close()
        assert len(fake_loop.pending("_on_reconnect_due")) == 1


class TestCallbacksAndLifecycle:
    """Test callback replacement, close() and info."""

    def test_set_callbacks_replaces_handlers(self, connected_client, transports, on_message):
        replacement = Mock()
        connected_client.set_callbacks(on_message=replacement, on_error=Mock())

        transports.last.simulate_message({"type": "response", "response": "hi"})

        on_message.assert_not_called()
        assert replacement.call_args.args[0].content == "hi"

    def test_close_is_terminal(self, connected_client, transports):
        connected_client.close()
        connected_client.connect()

        assert connected_client.closed
        assert transports.last.closed
        assert len(transports.created) == 1

    def test_context_manager(self, make_client, transports):
        with make_client() as client:
            assert client.state == ConnectionState.CONNECTING

        assert client.closed
        assert transports.last.closed

    def test_owned_event_loop_is_stopped(self, transports):
        client = ChatTransportClient(token="t", transport_factory=transports)
        loop = client._loop

        client.close()

        assert not loop.is_running

    def test_get_connection_info(self, connected_client):
        info = connected_client.get_connection_info()

        assert info["url"] == "ws://localhost:8000/api/chatbot/ws/chat"
        assert info["state"] == "connected"
        assert info["has_token"] is True
        assert info["reconnect_attempts"] == 0
        assert info["pending_reconnect"] is False
