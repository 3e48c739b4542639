# =============================================================================
# connect_core/offline/connection_manager.py
# Connectivity State for the Sync Gateway
# =============================================================================
"""
ConnectionManager - tracks whether the remote store is reachable.

The state is driven only by the outcome of real remote calls: the
RemoteStoreAdapter brackets each call with ``begin_call()`` and
``record_result()``. Every other component reads it through
``is_reachable()`` / ``has_attempted()``.

Features:
- Last-call-wins state with stale-result protection (a call that
  started before the most recently recorded one cannot overwrite it)
- Event callbacks for status changes
- Status dictionary for UI display
"""

from __future__ import annotations
import itertools
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import logging

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Last remote call answered 2xx
    OFFLINE = "offline"         # Last remote call failed
    UNKNOWN = "unknown"         # No call attempted yet


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    attempted: bool = False
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionManager:
    """
    Connectivity state owned by one SyncGateway.

    Usage:
        manager = ConnectionManager()
        call_id = manager.begin_call()
        ...
        manager.record_result(call_id, reachable=True)
        if manager.is_reachable():
            ...
    """

    def __init__(self):
        self._state = ConnectionState()
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._lock = threading.Lock()
        self._call_ids = itertools.count(1)
        self._last_recorded_call = 0

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        """Get current status."""
        return self._state.status

    def is_reachable(self) -> bool:
        """True if the most recent remote call succeeded."""
        return self._state.status == ConnectionStatus.ONLINE

    def has_attempted(self) -> bool:
        """True once any remote call has completed."""
        return self._state.attempted

    def begin_call(self) -> int:
        """Reserve an ordinal for a remote call that is about to start."""
        with self._lock:
            return next(self._call_ids)

    def record_result(
        self,
        call_id: int,
        reachable: bool,
        error: Optional[str] = None,
    ) -> bool:
        """
        Record the outcome of a remote call (RemoteStoreAdapter only).

        Args:
            call_id: Ordinal returned by begin_call()
            reachable: Whether the call answered 2xx
            error: Failure description when not reachable

        Returns:
            False if the result was older than the last recorded one and ignored
        """
        with self._lock:
            if call_id < self._last_recorded_call:
                logger.debug(f"Ignoring stale result for call {call_id}")
                return False
            self._last_recorded_call = call_id

            old_status = self._state.status
            now = datetime.now()
            self._state.attempted = True
            self._state.last_check = now

            if reachable:
                self._state.status = ConnectionStatus.ONLINE
                self._state.last_online = now
                self._state.consecutive_failures = 0
                self._state.error_message = None
            else:
                self._state.status = ConnectionStatus.OFFLINE
                self._state.consecutive_failures += 1
                self._state.error_message = error

            changed = old_status != self._state.status

        if changed:
            logger.info(f"Connection status changed: {old_status.value} -> {self._state.status.value}")
            self._notify_callbacks()
        return True

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        """Notify all registered callbacks of status change."""
        for callback in list(self._callbacks):
            try:
                callback(self._state)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_reachable(),
            "attempted": self._state.attempted,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
