# =============================================================================
# connect_core/offline/poll_loop.py
# Poll Loop - Periodic Refresh of the Visible State
# =============================================================================
"""
Poll Loop for the chat client.

Features:
- Refreshes users, groups and the open conversation on a fixed interval
- Ticks never overlap: a tick that arrives while one is running is skipped
- Each tick replaces the view wholesale (no merging with the previous view)
- Admin sessions fetch the full user list
- Flushes queued offline messages once connectivity returns
- Runs from a background thread or from an external scheduler
  (the Streamlit UI calls ``tick()`` from a ``st.fragment(run_every=...)``)
"""

from __future__ import annotations
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional
import logging

from connect_core.models import Group, Message, User
from connect_core.offline.sync_gateway import SyncGateway

logger = logging.getLogger(__name__)


@dataclass
class ViewState:
    """Snapshot of everything the UI renders for one session."""
    session_user: Optional[User] = None
    users: List[User] = field(default_factory=list)
    groups: List[Group] = field(default_factory=list)
    messages: List[Message] = field(default_factory=list)
    active_user_id: Optional[str] = None
    active_group_id: Optional[str] = None
    remote_reachable: bool = False
    refreshed_at: Optional[float] = None

    @property
    def active_conversation(self) -> Optional[str]:
        return self.active_group_id or self.active_user_id


class PollLoop:
    """
    Drives periodic refreshes through the Sync Gateway.

    Usage:
        loop = PollLoop(gateway, interval_seconds=2.0, on_update=render)
        loop.set_session_user(user)
        loop.open_direct(other_user.id)
        loop.start()
        ...
        loop.stop()
    """

    def __init__(
        self,
        gateway: SyncGateway,
        interval_seconds: float = 2.0,
        on_update: Optional[Callable[[ViewState], None]] = None,
    ):
        self.gateway = gateway
        self.interval_seconds = interval_seconds
        self._on_update = on_update

        self._tick_lock = threading.Lock()
        self._stop_polling = threading.Event()
        self._poll_thread: Optional[threading.Thread] = None

        self._session_user: Optional[User] = None
        self._active_user_id: Optional[str] = None
        self._active_group_id: Optional[str] = None
        self._view = ViewState()

    # =========================================================================
    # SESSION AND CONVERSATION SELECTION
    # =========================================================================

    @property
    def view(self) -> ViewState:
        return self._view

    @property
    def session_user(self) -> Optional[User]:
        return self._session_user

    def set_session_user(self, user: Optional[User]) -> None:
        """Set (or clear, with None) the logged-in user."""
        self._session_user = user
        if user is None:
            self._active_user_id = None
            self._active_group_id = None
            self._view = ViewState()

    def open_direct(self, user_id: str) -> None:
        self._active_user_id = user_id
        self._active_group_id = None

    def open_group(self, group_id: str) -> None:
        self._active_group_id = group_id
        self._active_user_id = None

    def close_conversation(self) -> None:
        self._active_user_id = None
        self._active_group_id = None

    # =========================================================================
    # TICK
    # =========================================================================

    def tick(self) -> Optional[ViewState]:
        """
        Run one refresh.

        Returns:
            The new ViewState, or None if no session is set or a tick is
            already in progress
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug("Previous tick still running, skipping")
            return None

        try:
            user = self._session_user
            if user is None:
                return None

            self.gateway.flush_if_due()

            if user.is_admin:
                everyone = self.gateway.list_users_for_admin(user.id)
            else:
                everyone = self.gateway.list_users()

            # Pick up ban / profile changes made elsewhere
            for candidate in everyone:
                if candidate.id == user.id:
                    user = candidate
                    self._session_user = candidate
                    break

            groups = self.gateway.list_groups_for_user(user.id)

            active_user_id = self._active_user_id
            active_group_id = self._active_group_id
            if active_group_id:
                messages = self.gateway.list_group_messages(active_group_id)
            elif active_user_id:
                messages = self.gateway.list_direct_messages(user.id, active_user_id)
            else:
                messages = []

            view = ViewState(
                session_user=user,
                users=[u for u in everyone if u.id != user.id],
                groups=groups,
                messages=messages,
                active_user_id=active_user_id,
                active_group_id=active_group_id,
                remote_reachable=self.gateway.is_remote_reachable(),
                refreshed_at=time.time(),
            )
            self._view = view
        except Exception as e:
            logger.error(f"Poll tick failed: {e}", exc_info=True)
            return None
        finally:
            self._tick_lock.release()

        if self._on_update:
            try:
                self._on_update(view)
            except Exception as e:
                logger.error(f"Error in view update callback: {e}")
        return view

    # =========================================================================
    # BACKGROUND THREAD
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._poll_thread is not None and self._poll_thread.is_alive()

    def start(self) -> None:
        """Start the background poll thread."""
        if self.is_running:
            return

        self._stop_polling.clear()
        self._poll_thread = threading.Thread(
            target=self._poll_loop,
            daemon=True,
            name="PollLoop"
        )
        self._poll_thread.start()
        logger.info(f"Poll loop started (every {self.interval_seconds}s)")

    def stop(self) -> None:
        """Stop the background poll thread."""
        self._stop_polling.set()
        if self._poll_thread:
            self._poll_thread.join(timeout=10)
        logger.info("Poll loop stopped")

    def _poll_loop(self) -> None:
        """Tick, then wait one interval after the tick completes."""
        while not self._stop_polling.is_set():
            self.tick()

            if self._stop_polling.wait(timeout=self.interval_seconds):
                break
