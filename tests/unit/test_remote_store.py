# =============================================================================
# tests/unit/test_remote_store.py
# Unit Tests for RemoteStoreAdapter
# =============================================================================

import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests
from unittest.mock import MagicMock

from connect_core.api.remote_store import FailureKind, RemoteStoreAdapter
from connect_core.config import ClientConfig
from connect_core.offline.connection_manager import ConnectionStatus
from tests.helpers import make_response


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def adapter(client_config, connection, session):
    return RemoteStoreAdapter(client_config, connection, session=session)


class TestRequestShape:
    """Test how calls reach the transport"""

    def test_url_params_body_and_timeout_passed(self, adapter, session):
        """Every call carries the configured timeout"""
        session.request.return_value = make_response(200, [])

        adapter.request("GET", "/messages", params={"u1": "a", "u2": "b"})

        session.request.assert_called_once_with(
            method="GET",
            url="http://connect.test/messages",
            params={"u1": "a", "u2": "b"},
            json=None,
            timeout=3.0,
        )

    def test_json_content_type_header_set(self, session, client_config, connection):
        """Session is configured for JSON bodies"""
        RemoteStoreAdapter(client_config, connection, session=session)
        session.headers.update.assert_called_with({"Content-Type": "application/json"})


class TestClassification:
    """Test outcome classification"""

    def test_2xx_returns_parsed_body(self, adapter, session):
        """2xx yields the JSON body"""
        session.request.return_value = make_response(201, {"id": "u1"})

        result = adapter.request("POST", "/users", body={"username": "Ana"})

        assert result.ok
        assert result.data == {"id": "u1"}
        assert result.status_code == 201

    def test_4xx_is_rejected_with_reason(self, adapter, session):
        """4xx is Rejected and keeps the server's reason"""
        session.request.return_value = make_response(
            403, {"error": "You are banned and cannot send messages"}
        )

        result = adapter.request("POST", "/messages", body={})

        assert not result.ok
        assert result.failure == FailureKind.REJECTED
        assert "banned" in result.error
        assert not result.allows_fallback

    def test_5xx_is_server_fault(self, adapter, session):
        """5xx is ServerFault and allows fallback"""
        session.request.return_value = make_response(500, {"error": "Internal server error"})

        result = adapter.request("GET", "/users")

        assert result.failure == FailureKind.SERVER_FAULT
        assert result.allows_fallback

    def test_timeout_is_unreachable(self, adapter, session):
        """Transport timeout becomes Unreachable, never an exception"""
        session.request.side_effect = requests.exceptions.Timeout()

        result = adapter.request("GET", "/users")

        assert result.failure == FailureKind.UNREACHABLE
        assert "timed out" in result.error

    def test_connection_error_is_unreachable(self, adapter, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")

        result = adapter.request("GET", "/users")

        assert result.failure == FailureKind.UNREACHABLE

    def test_unexpected_exception_does_not_escape(self, adapter, session):
        """Any transport exception is converted"""
        session.request.side_effect = RuntimeError("boom")

        result = adapter.request("GET", "/users")

        assert not result.ok
        assert result.failure == FailureKind.UNREACHABLE

    def test_non_json_success_body_is_server_fault(self, adapter, session):
        session.request.return_value = make_response(200, text="<html>proxy</html>")

        result = adapter.request("GET", "/users")

        assert result.failure == FailureKind.SERVER_FAULT

    def test_empty_success_body_is_none(self, adapter, session):
        session.request.return_value = make_response(204)

        result = adapter.request("DELETE", "/users/x")

        assert result.ok
        assert result.data is None


class TestConnectivityUpdates:
    """Test that the adapter owns connectivity state"""

    def test_success_marks_reachable(self, adapter, session, connection):
        session.request.return_value = make_response(200, {"status": "ok"})

        adapter.request("GET", "/health")

        assert connection.status == ConnectionStatus.ONLINE
        assert connection.has_attempted()

    def test_rejection_marks_unreachable(self, adapter, session, connection):
        """Only 2xx counts as reachable"""
        session.request.return_value = make_response(404, {"error": "User not found"})

        adapter.request("PUT", "/users/x", body={"status": "hi"})

        assert not connection.is_reachable()

    def test_local_mock_never_touches_network(self, connection, session, tmp_path):
        """LOCAL_MOCK base URL short-circuits to Unreachable"""
        config = ClientConfig(base_url="LOCAL_MOCK", local_db_path=tmp_path / "c.db")
        adapter = RemoteStoreAdapter(config, connection, session=session)

        result = adapter.request("GET", "/users")

        assert result.failure == FailureKind.UNREACHABLE
        session.request.assert_not_called()
        assert connection.has_attempted()
        assert not connection.is_reachable()


class TrickleHandler(BaseHTTPRequestHandler):
    """Sends headers at once, then the body one byte at a time"""
    gap_seconds = 0.3

    def do_GET(self):
        body = b"[      ]"
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        try:
            for i in range(len(body)):
                self.wfile.write(body[i:i + 1])
                self.wfile.flush()
                time.sleep(self.gap_seconds)
        except OSError:
            pass

    def log_message(self, format, *args):
        pass


@pytest.fixture
def trickle_server():
    server = ThreadingHTTPServer(("127.0.0.1", 0), TrickleHandler)
    server.daemon_threads = True
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{server.server_address[1]}"
    server.shutdown()
    server.server_close()


class TestWholeCallDeadline:
    """The timeout bounds the entire call, not each socket read"""

    def test_trickling_body_is_cut_off(self, trickle_server, connection, tmp_path):
        config = ClientConfig(base_url=trickle_server, timeout_seconds=0.5,
                              local_db_path=tmp_path / "c.db")
        adapter = RemoteStoreAdapter(config, connection)

        started = time.monotonic()
        result = adapter.request("GET", "/users")
        elapsed = time.monotonic() - started

        assert elapsed < 1.5
        assert result.failure == FailureKind.UNREACHABLE
        assert "timed out" in result.error
        assert not connection.is_reachable()

    def test_slow_transport_is_cut_off(self, adapter, session, connection, client_config):
        """A session call that outlives the timeout is abandoned"""
        client_config.timeout_seconds = 0.2
        session.request.side_effect = lambda **kwargs: time.sleep(1.0)

        started = time.monotonic()
        result = adapter.request("GET", "/users")

        assert time.monotonic() - started < 0.8
        assert result.failure == FailureKind.UNREACHABLE
