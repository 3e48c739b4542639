"""
Remote Store Adapter
Translates one logical operation into one HTTP call, enforces the timeout
and classifies the outcome. Never raises: every failure comes back as a
RemoteResult the gateway can branch on.
"""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional
import logging
import threading

import requests

from connect_core.config import ClientConfig

if TYPE_CHECKING:
    from connect_core.offline.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


class FailureKind(Enum):
    """Why a remote call did not produce a result"""
    UNREACHABLE = "unreachable"     # network error, timeout, mock mode
    REJECTED = "rejected"           # 4xx: do not retry, surface the reason
    SERVER_FAULT = "server_fault"   # 5xx: retry later


@dataclass
class RemoteResult:
    """Outcome of a single remote call"""
    ok: bool
    data: Any = None
    status_code: Optional[int] = None
    failure: Optional[FailureKind] = None
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok

    @property
    def allows_fallback(self) -> bool:
        """Unreachable and server faults may degrade to the local store."""
        return self.failure in (FailureKind.UNREACHABLE, FailureKind.SERVER_FAULT)

    @classmethod
    def success(cls, data: Any, status_code: int) -> RemoteResult:
        return cls(ok=True, data=data, status_code=status_code)

    @classmethod
    def failed(
        cls,
        failure: FailureKind,
        error: str,
        status_code: Optional[int] = None,
    ) -> RemoteResult:
        return cls(ok=False, failure=failure, error=error, status_code=status_code)


def _error_text(response) -> str:
    """Pull the server's error/details fields out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip()[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        parts = [str(body[k]) for k in ("error", "details") if body.get(k)]
        if parts:
            return ": ".join(parts)
    return f"HTTP {response.status_code}"


class RemoteStoreAdapter:
    """
    HTTP client wrapper for the Connect remote API.

    Usage:
        adapter = RemoteStoreAdapter(config, connection)
        result = adapter.request("GET", "/users")
        if result.ok:
            users = result.data
    """

    def __init__(
        self,
        config: ClientConfig,
        connection: ConnectionManager,
        session: Optional[requests.Session] = None,
    ):
        self.config = config
        self.connection = connection
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> RemoteResult:
        """
        Make one HTTP call and classify the outcome.

        The timeout bounds the whole call. A stalled or trickling response is
        abandoned and reported as unreachable once it runs out. Connectivity
        state is updated as the last step before returning.

        Args:
            method: HTTP method (GET, POST, PUT, PATCH, DELETE)
            path: Endpoint path starting with '/'
            params: Query parameters
            body: JSON body

        Returns:
            RemoteResult
        """
        call_id = self.connection.begin_call()

        if self.config.is_local_mock:
            result = RemoteResult.failed(FailureKind.UNREACHABLE, "local mock mode")
        else:
            result = self._send(method, path, params, body)

        if not result.ok:
            logger.warning(
                f"{method} {path} failed ({result.failure.value}"
                f"{', HTTP ' + str(result.status_code) if result.status_code else ''}): {result.error}"
            )

        self.connection.record_result(call_id, reachable=result.ok, error=result.error)
        return result

    def _send(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]],
        body: Optional[Dict[str, Any]],
    ) -> RemoteResult:
        url = f"{self.config.base_url}{path}"
        timeout = self.config.timeout_seconds
        outcome: Dict[str, Any] = {}
        done = threading.Event()

        def call() -> None:
            try:
                outcome["response"] = self.session.request(
                    method=method,
                    url=url,
                    params=params,
                    json=body,
                    timeout=timeout,
                )
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        # The transport timeout bounds each socket operation; the wait below
        # bounds the whole call, including a body that trickles in.
        threading.Thread(target=call, name="connect-remote-call", daemon=True).start()
        if not done.wait(timeout):
            return RemoteResult.failed(FailureKind.UNREACHABLE, f"timed out after {timeout}s")

        error = outcome.get("error")
        if isinstance(error, requests.exceptions.Timeout):
            return RemoteResult.failed(FailureKind.UNREACHABLE, f"timed out after {timeout}s")
        if isinstance(error, requests.exceptions.RequestException):
            return RemoteResult.failed(FailureKind.UNREACHABLE, f"request failed: {error}")
        if error is not None:
            # Transport-level surprises must not escape the adapter
            return RemoteResult.failed(FailureKind.UNREACHABLE, f"unexpected transport error: {error}")

        response = outcome["response"]
        status = response.status_code
        if 200 <= status < 300:
            try:
                data = response.json() if response.content else None
            except ValueError:
                return RemoteResult.failed(
                    FailureKind.SERVER_FAULT, "response body is not JSON", status_code=status
                )
            return RemoteResult.success(data, status)

        if 400 <= status < 500:
            return RemoteResult.failed(FailureKind.REJECTED, _error_text(response), status_code=status)

        return RemoteResult.failed(FailureKind.SERVER_FAULT, _error_text(response), status_code=status)

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()
