# =============================================================================
# tests/helpers.py
# Shared test doubles and builders
# =============================================================================

import json
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import MagicMock

from connect_core.api.remote_store import FailureKind, RemoteResult
from connect_core.models import Message
from connect_core.offline.connection_manager import ConnectionManager

ADMIN_EMAIL = "admin@connect.test"


def make_text_message(sender_id: str, receiver_id: str, timestamp: int, text: str = "hi") -> Message:
    return Message(
        id="",
        sender_id=sender_id,
        receiver_id=receiver_id,
        type="text",
        timestamp=timestamp,
        text=text,
    )


def ok(data: Any = None, status_code: int = 200) -> RemoteResult:
    return RemoteResult.success(data, status_code)


def rejected(error: str = "Unauthorized", status_code: int = 403) -> RemoteResult:
    return RemoteResult.failed(FailureKind.REJECTED, error, status_code=status_code)


def server_fault(error: str = "Internal server error") -> RemoteResult:
    return RemoteResult.failed(FailureKind.SERVER_FAULT, error, status_code=500)


def unreachable(error: str = "connection refused") -> RemoteResult:
    return RemoteResult.failed(FailureKind.UNREACHABLE, error)


def make_response(status_code: int, body: Optional[Any] = None, text: str = "") -> MagicMock:
    """Fake requests.Response"""
    response = MagicMock()
    response.status_code = status_code
    if body is not None:
        response.content = json.dumps(body).encode()
        response.json.return_value = body
        response.text = json.dumps(body)
    else:
        response.content = text.encode()
        response.text = text
        response.json.side_effect = ValueError("No JSON object could be decoded")
    return response


class ScriptedRemote:
    """
    Stand-in for RemoteStoreAdapter that answers from a script.

    Routes are keyed by (method, path); unscripted calls get ``default``.
    Like the real adapter, every call updates the ConnectionManager.
    """

    def __init__(self, connection: ConnectionManager):
        self.connection = connection
        self.routes: Dict[Tuple[str, str], List[RemoteResult]] = {}
        self.default = unreachable()
        self.calls: List[Dict[str, Any]] = []

    def respond(self, method: str, path: str, *results: RemoteResult) -> None:
        """Queue results for a route; the last one repeats."""
        self.routes[(method, path)] = list(results)

    def go_offline(self) -> None:
        self.routes.clear()
        self.default = unreachable()

    def request(self, method, path, params=None, body=None) -> RemoteResult:
        self.calls.append({"method": method, "path": path, "params": params, "body": body})
        call_id = self.connection.begin_call()

        queued = self.routes.get((method, path))
        if queued:
            result = queued.pop(0) if len(queued) > 1 else queued[0]
        else:
            result = self.default

        self.connection.record_result(call_id, reachable=result.ok, error=result.error)
        return result

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]

    def close(self) -> None:
        pass
