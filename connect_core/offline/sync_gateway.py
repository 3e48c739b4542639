# =============================================================================
# connect_core/offline/sync_gateway.py
# Sync Gateway - Single API for Online/Offline Operations
# =============================================================================
"""
SyncGateway - the one entry point every UI action calls.

Each operation:
1. Attempts the call through the RemoteStoreAdapter (bounded by its timeout)
2. On Unreachable / ServerFault, answers from the LocalDatabase when the
   operation has a local fallback (register_user, list_users, send_message,
   list_direct_messages); otherwise returns False / None / [].
3. On Rejected (4xx), returns the failure value without fallback; the reason
   is available from ``last_failure``.
4. On success, returns the remote result.

No public method raises.

Usage:
------
gateway = SyncGateway(config, LocalDatabase(path).initialize())

user = gateway.register_user("Ana", "ana@x.com")
gateway.send_message(message)
history = gateway.list_direct_messages(user.id, other_id)

print(gateway.is_remote_reachable())
"""

from __future__ import annotations
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar
import logging

from connect_core.api.remote_store import FailureKind, RemoteResult, RemoteStoreAdapter
from connect_core.config import ClientConfig
from connect_core.models import Group, Message, User, is_local_id
from connect_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)
from connect_core.offline.local_database import LocalDatabase

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_STATUS_TEXT = "Hey there! I am using Connect."


def default_avatar(email: str) -> str:
    """Deterministic avatar URL seeded by the normalized email."""
    return f"https://api.dicebear.com/7.x/avataaars/svg?seed={email.strip().lower()}"


def now_ms() -> int:
    return int(time.time() * 1000)


class SyncGateway:
    """
    Routes every data operation to the remote store or the local fallback.

    Owns the connectivity state: read it with ``is_remote_reachable()``
    and ``connection_status()``; only the adapter writes it.
    """

    def __init__(
        self,
        config: ClientConfig,
        local_db: LocalDatabase,
        adapter: Optional[RemoteStoreAdapter] = None,
        connection: Optional[ConnectionManager] = None,
    ):
        self.config = config
        self._local_db = local_db
        self._connection = connection or ConnectionManager()
        self._adapter = adapter or RemoteStoreAdapter(config, self._connection)
        self._last_failure: Optional[RemoteResult] = None
        self._flush_due = False
        self._callbacks: List[Callable[[bool], None]] = []

        self._connection.register_callback(self._on_connection_change)

    # =========================================================================
    # CONNECTIVITY
    # =========================================================================

    def is_remote_reachable(self) -> bool:
        """True if the most recent remote call succeeded."""
        return self._connection.is_reachable()

    def has_attempted_remote(self) -> bool:
        """True once any remote call has completed."""
        return self._connection.has_attempted()

    def connection_status(self) -> dict:
        """Connectivity details for UI display."""
        status = self._connection.get_status_display()
        status["pending_sync"] = self.pending_sync_count
        status["base_url"] = self.config.base_url
        return status

    @property
    def last_failure(self) -> Optional[RemoteResult]:
        """Failure of the most recent operation, or None if it succeeded."""
        return self._last_failure

    @property
    def pending_sync_count(self) -> int:
        """Messages written offline and not yet delivered."""
        try:
            return self._local_db.get_pending_count()
        except Exception as e:
            logger.error(f"Could not count pending messages: {e}")
            return 0

    def _on_connection_change(self, state: ConnectionState) -> None:
        """Handle connection status changes."""
        is_online = state.status == ConnectionStatus.ONLINE
        logger.info(f"Connection changed: online={is_online}")
        if is_online:
            self._flush_due = True

        for callback in self._callbacks:
            try:
                callback(is_online)
            except Exception as e:
                logger.error(f"Error in connection callback: {e}")

    def register_status_callback(self, callback: Callable[[bool], None]) -> None:
        """Register a callback for online/offline status changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_status_callback(self, callback: Callable[[bool], None]) -> None:
        """Remove a registered callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def check_health(self) -> bool:
        """Probe GET /health; updates connectivity like any other call."""
        result = self._call("GET", "/health")
        return result.ok and isinstance(result.data, dict) and result.data.get("status") == "ok"

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _call(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> RemoteResult:
        result = self._adapter.request(method, path, params=params, body=body)
        self._last_failure = None if result.ok else result
        return result

    def _local(self, operation: str, func: Callable[[], T], default: T) -> T:
        """Run a local-store fallback; a broken local store yields the default."""
        logger.info(f"{operation}: remote unavailable, answering from local store")
        try:
            return func()
        except Exception as e:
            logger.error(f"{operation}: local fallback failed: {e}", exc_info=True)
            return default

    @staticmethod
    def _users(data: Any) -> List[User]:
        return [User.from_dict(item) for item in (data or []) if isinstance(item, dict)]

    @staticmethod
    def _messages(data: Any) -> List[Message]:
        return [Message.from_dict(item) for item in (data or []) if isinstance(item, dict)]

    @staticmethod
    def _groups(data: Any) -> List[Group]:
        return [Group.from_dict(item) for item in (data or []) if isinstance(item, dict)]

    def _mirror(self, operation: str, func: Callable[[], Any]) -> None:
        """Best-effort copy of a remote answer into the local store."""
        try:
            func()
        except Exception as e:
            logger.warning(f"{operation}: could not mirror remote result locally: {e}")

    # =========================================================================
    # USER OPERATIONS
    # =========================================================================

    def register_user(
        self,
        username: str,
        email: str,
        avatar: Optional[str] = None,
    ) -> Optional[User]:
        """
        Register a user, or fetch the existing one with this email.

        Network failure degrades to the local store, so the caller gets a
        User with a non-empty id. Only an explicit rejection returns None.
        """
        payload = {
            "username": username,
            "email": email,
            "avatar": avatar or default_avatar(email),
            "status": DEFAULT_STATUS_TEXT,
            "lastSeen": now_ms(),
        }
        result = self._call("POST", "/users", body=payload)

        if result.ok and isinstance(result.data, dict) and result.data.get("id"):
            user = User.from_dict(result.data)
            self._mirror("register_user", lambda: self._local_db.upsert_user(user, sync_status="synced"))
            return user

        if result.ok or result.allows_fallback:
            return self._local(
                "register_user",
                lambda: self._local_db.create_local_user(
                    username=username,
                    email=email,
                    avatar=payload["avatar"],
                    status=payload["status"],
                    last_seen=payload["lastSeen"],
                ),
                None,
            )
        return None

    def list_users(self) -> List[User]:
        """Non-admin, non-banned users."""
        result = self._call("GET", "/users")
        if result.ok:
            users = self._users(result.data)
            self._mirror("list_users", lambda: self._local_db.upsert_users(users))
            return users
        if result.allows_fallback:
            return self._local(
                "list_users",
                lambda: [u for u in self._local_db.get_users() if not u.is_admin and not u.is_banned],
                [],
            )
        return []

    def list_users_for_admin(self, admin_id: str) -> List[User]:
        """All users including banned ones (the server narrows this for non-admins)."""
        result = self._call("GET", "/users", params={"adminId": admin_id})
        if result.ok:
            users = self._users(result.data)
            self._mirror("list_users_for_admin", lambda: self._local_db.upsert_users(users))
            return users
        return []

    def update_user(
        self,
        user_id: str,
        username: Optional[str] = None,
        avatar: Optional[str] = None,
        status: Optional[str] = None,
    ) -> Optional[User]:
        """Update profile fields; returns the updated user or None."""
        fields = {"username": username, "avatar": avatar, "status": status}
        body = {k: v for k, v in fields.items() if v is not None}
        result = self._call("PUT", f"/users/{user_id}", body=body)
        if result.ok and isinstance(result.data, dict):
            user = User.from_dict(result.data)
            self._mirror("update_user", lambda: self._local_db.upsert_user(user, sync_status="synced"))
            return user
        return None

    def ban_user(self, user_id: str, admin_id: str) -> bool:
        """Admin ban: soft-delete plus removal of the user's messages and memberships."""
        return self._call("POST", f"/users/{user_id}/ban", body={"adminId": admin_id}).ok

    def delete_user(self, user_id: str) -> bool:
        """Soft delete (marks the user banned)."""
        return self._call("DELETE", f"/users/{user_id}").ok

    def permanent_delete_user(self, user_id: str, admin_id: str) -> bool:
        """Admin hard delete."""
        return self._call("DELETE", f"/users/{user_id}/permanent", body={"adminId": admin_id}).ok

    def cleanup_all_data(self, admin_id: str) -> Optional[Dict[str, int]]:
        """Delete every non-admin user, all messages and all groups. Returns counts."""
        result = self._call("POST", "/users/cleanup", body={"adminId": admin_id})
        if result.ok and isinstance(result.data, dict):
            return {
                "usersDeleted": int(result.data.get("usersDeleted", 0)),
                "messagesDeleted": int(result.data.get("messagesDeleted", 0)),
                "groupsDeleted": int(result.data.get("groupsDeleted", 0)),
            }
        return None

    # =========================================================================
    # MESSAGE OPERATIONS
    # =========================================================================

    def send_message(self, message: Message) -> bool:
        """
        Deliver a message.

        When the remote store cannot be reached the message is queued in the
        local store and True is returned: sending never blocks on the network.
        """
        body = message.to_dict()
        body.pop("id", None)
        result = self._call("POST", "/messages", body=body)

        if result.ok:
            return True
        if result.allows_fallback:
            return self._local(
                "send_message",
                lambda: self._local_db.append_message(message, sync_status="pending") or True,
                True,
            )
        return False

    def list_direct_messages(self, user1_id: str, user2_id: str) -> List[Message]:
        """Messages between two users in either direction, oldest first."""
        result = self._call("GET", "/messages", params={"u1": user1_id, "u2": user2_id})
        if result.ok:
            messages = self._messages(result.data)
            self._mirror(
                "list_direct_messages",
                lambda: self._local_db.replace_synced_conversation(user1_id, user2_id, messages),
            )
            return messages
        if result.allows_fallback:
            return self._local(
                "list_direct_messages",
                lambda: self._local_db.get_direct_messages(user1_id, user2_id),
                [],
            )
        return []

    def list_group_messages(self, group_id: str) -> List[Message]:
        """Group history, oldest first; empty when unavailable."""
        result = self._call("GET", "/messages", params={"groupId": group_id})
        return self._messages(result.data) if result.ok else []

    def edit_message(self, message_id: str, text: str, user_id: str) -> bool:
        """Edit message text; the server enforces sender-only."""
        return self._call(
            "PATCH", f"/messages/{message_id}", body={"text": text, "userId": user_id}
        ).ok

    def delete_message(self, message_id: str, user_id: str) -> bool:
        return self._call("DELETE", f"/messages/{message_id}", body={"userId": user_id}).ok

    def update_message_status(self, message_id: str, status: str) -> Optional[Message]:
        """Advance delivery status (sent -> delivered -> read)."""
        result = self._call("PUT", f"/messages/{message_id}", body={"status": status})
        if result.ok and isinstance(result.data, dict):
            return Message.from_dict(result.data)
        return None

    def flush_if_due(self) -> int:
        """Flush pending messages if connectivity came back since the last flush."""
        if not self._flush_due:
            return 0
        self._flush_due = False
        return self.flush_pending()

    def flush_pending(self) -> int:
        """
        Re-post messages queued while offline.

        Only messages whose ids are all remote ids are replayed; the server's
        natural-key dedupe makes a repeated replay harmless. Stops at the
        first network failure.

        Returns:
            Number of messages delivered
        """
        try:
            pending = self._local_db.get_pending_messages()
        except Exception as e:
            logger.error(f"Could not read pending messages: {e}")
            return 0

        delivered = 0
        for message in pending:
            ids = (message.sender_id, message.receiver_id, message.group_id)
            if any(is_local_id(value) for value in ids):
                continue

            body = message.to_dict()
            body.pop("id", None)
            result = self._call("POST", "/messages", body=body)

            if result.ok:
                remote_id = result.data.get("id") if isinstance(result.data, dict) else None
                self._mirror(
                    "flush_pending",
                    lambda: self._local_db.mark_message_synced(message, remote_id=remote_id),
                )
                delivered += 1
            elif result.failure == FailureKind.REJECTED:
                logger.warning(f"Pending message {message.natural_key} rejected: {result.error}")
            else:
                self._flush_due = True
                break

        if delivered:
            logger.info(f"Delivered {delivered} queued message(s)")
        return delivered

    # =========================================================================
    # GROUP OPERATIONS (no local fallback)
    # =========================================================================

    def create_group(
        self,
        name: str,
        admin_id: str,
        member_ids: List[str],
        avatar: Optional[str] = None,
    ) -> Optional[Group]:
        body = {"name": name, "adminId": admin_id, "memberIds": list(member_ids)}
        if avatar:
            body["avatar"] = avatar
        result = self._call("POST", "/groups", body=body)
        if result.ok and isinstance(result.data, dict):
            return Group.from_dict(result.data)
        return None

    def list_groups_for_user(self, user_id: str) -> List[Group]:
        result = self._call("GET", "/groups", params={"userId": user_id})
        return self._groups(result.data) if result.ok else []

    def list_all_groups_for_admin(self, admin_id: str) -> List[Group]:
        result = self._call("GET", "/groups/all", params={"adminId": admin_id})
        return self._groups(result.data) if result.ok else []

    def delete_group(self, group_id: str, user_id: str) -> bool:
        return self._call("DELETE", f"/groups/{group_id}", body={"userId": user_id}).ok

    def add_group_member(self, group_id: str, user_id: str, admin_id: str) -> bool:
        return self._call(
            "POST", f"/groups/{group_id}/members", body={"userId": user_id, "adminId": admin_id}
        ).ok

    def remove_group_member(self, group_id: str, user_id: str, admin_id: str) -> bool:
        return self._call(
            "DELETE", f"/groups/{group_id}/members", body={"userId": user_id, "adminId": admin_id}
        ).ok

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        try:
            return self._local_db.get_setting(key, default)
        except Exception as e:
            logger.error(f"Could not read setting {key}: {e}")
            return default

    def set_setting(self, key: str, value: Any) -> bool:
        try:
            self._local_db.set_setting(key, value)
            return True
        except Exception as e:
            logger.error(f"Could not write setting {key}: {e}")
            return False

    def delete_setting(self, key: str) -> bool:
        try:
            self._local_db.delete_setting(key)
            return True
        except Exception as e:
            logger.error(f"Could not delete setting {key}: {e}")
            return False

    def users_dataframe(self):
        """Local user mirror as a DataFrame (admin view)."""
        return self._local_db.to_dataframe("users")

    def close(self) -> None:
        self._adapter.close()
        self._local_db.close()
