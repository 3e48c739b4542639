# =============================================================================
# connect_core/offline/local_database.py
# Local SQLite Database for Offline Operations
# =============================================================================
"""
LocalDatabase - SQLite-backed mirror of users and messages.

Used by the SyncGateway whenever the remote store cannot answer. Groups are not
mirrored. Data lives in a file so offline sessions survive a restart.

Features:
- Automatic schema creation
- Users keyed by email (upsert)
- Messages keyed by (sender_id, receiver_id, timestamp), duplicates ignored
- sync_status per row: 'pending' (written offline) or 'synced' (mirrored)
- App settings (last-used base URL, session user)
- DataFrame export (pandas) for admin views
"""

from __future__ import annotations
import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
import logging

import pandas as pd

from connect_core.models import LOCAL_ID_PREFIX, Message, User

logger = logging.getLogger(__name__)

DIRECT_HISTORY_LIMIT = 500

MESSAGE_COLUMNS = (
    "id", "sender_id", "receiver_id", "type", "timestamp", "status",
    "text", "image_url", "audio_url", "file_url", "file_name", "file_type",
    "group_id",
)


def new_local_id() -> str:
    """Mint an id that can never be mistaken for a remote one."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex[:12]}"


class LocalDatabase:
    """
    Local SQLite database for offline data storage.

    Mirrors the remote users/messages collections for seamless online/offline switching.
    """

    # Default database location
    DEFAULT_DB_PATH = Path("local_data") / "connect.db"

    # Schema definitions matching the remote collections
    SCHEMA = {
        "users": """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT NOT NULL,
                username TEXT NOT NULL,
                email TEXT NOT NULL UNIQUE,
                avatar TEXT,
                status TEXT,
                last_seen INTEGER DEFAULT 0,
                is_admin INTEGER DEFAULT 0,
                is_banned INTEGER DEFAULT 0,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
                sync_status TEXT DEFAULT 'pending'
            )
        """,
        "messages": """
            CREATE TABLE IF NOT EXISTS messages (
                id TEXT NOT NULL,
                sender_id TEXT NOT NULL,
                receiver_id TEXT NOT NULL,
                type TEXT NOT NULL,
                timestamp INTEGER NOT NULL,
                status TEXT DEFAULT 'sent',
                text TEXT,
                image_url TEXT,
                audio_url TEXT,
                file_url TEXT,
                file_name TEXT,
                file_type TEXT,
                group_id TEXT,
                created_at TEXT DEFAULT CURRENT_TIMESTAMP,
                sync_status TEXT DEFAULT 'pending',
                UNIQUE(sender_id, receiver_id, timestamp)
            )
        """,
        "app_settings": """
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT DEFAULT CURRENT_TIMESTAMP
            )
        """,
    }

    INDEXES = (
        "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages (sender_id, receiver_id, timestamp)",
        "CREATE INDEX IF NOT EXISTS idx_messages_sync ON messages (sync_status, timestamp)",
    )

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize local database.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = Path(db_path) if db_path else self.DEFAULT_DB_PATH
        self._ensure_directory()
        self._local = threading.local()
        self._initialized = False

    def _ensure_directory(self) -> None:
        """Ensure database directory exists."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "connection", None) is None:
            self._local.connection = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
            )
            self._local.connection.row_factory = sqlite3.Row
        return self._local.connection

    @contextmanager
    def transaction(self):
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> LocalDatabase:
        """Initialize database schema."""
        if self._initialized:
            return self

        with self.transaction() as conn:
            for table_name, schema in self.SCHEMA.items():
                conn.execute(schema)
                logger.debug(f"Created/verified table: {table_name}")
            for statement in self.INDEXES:
                conn.execute(statement)

        self._initialized = True
        logger.info(f"Local database initialized at: {self.db_path}")
        return self

    def query(self, sql: str, params: Optional[List] = None) -> List[sqlite3.Row]:
        """Execute a raw SQL query."""
        conn = self._get_connection()
        cursor = conn.execute(sql, params or [])
        return cursor.fetchall()

    def execute(self, sql: str, params: Optional[List] = None) -> int:
        """Execute a raw SQL statement."""
        with self.transaction() as conn:
            cursor = conn.execute(sql, params or [])
            return cursor.rowcount

    # =========================================================================
    # USERS
    # =========================================================================

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        return User(
            id=row["id"],
            username=row["username"],
            email=row["email"],
            avatar=row["avatar"] or "",
            status=row["status"] or "",
            last_seen=row["last_seen"] or 0,
            is_admin=bool(row["is_admin"]),
            is_banned=bool(row["is_banned"]),
        )

    def upsert_user(self, user: User, sync_status: str = "pending") -> User:
        """
        Insert a user or overwrite the record with the same email.

        Args:
            user: User to store (its id is kept as given)
            sync_status: 'pending' for offline-minted users, 'synced' for mirrored ones

        Returns:
            The stored user
        """
        now = datetime.now().isoformat()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO users (id, username, email, avatar, status, last_seen,
                                   is_admin, is_banned, created_at, updated_at, sync_status)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(email) DO UPDATE SET
                    id = excluded.id,
                    username = excluded.username,
                    avatar = excluded.avatar,
                    status = excluded.status,
                    last_seen = excluded.last_seen,
                    is_admin = excluded.is_admin,
                    is_banned = excluded.is_banned,
                    updated_at = excluded.updated_at,
                    sync_status = excluded.sync_status
                """,
                [
                    user.id, user.username, user.email, user.avatar, user.status,
                    user.last_seen, int(user.is_admin), int(user.is_banned),
                    now, now, sync_status,
                ],
            )
        return user

    def upsert_users(self, users: Iterable[User], sync_status: str = "synced") -> int:
        """Mirror a batch of users. Returns the number stored."""
        count = 0
        for user in users:
            if user.email:
                self.upsert_user(user, sync_status=sync_status)
                count += 1
        return count

    def find_user_by_email(self, email: str) -> Optional[User]:
        """Get a user by email (the local natural key)."""
        rows = self.query("SELECT * FROM users WHERE email = ?", [email])
        return self._row_to_user(rows[0]) if rows else None

    def create_local_user(
        self,
        username: str,
        email: str,
        avatar: str = "",
        status: str = "",
        last_seen: int = 0,
    ) -> User:
        """
        Return the user with this email, minting a local one if none exists.

        Calling twice with the same email yields the same id.
        """
        existing = self.find_user_by_email(email)
        if existing is not None:
            return existing

        user = User(
            id=new_local_id(),
            username=username,
            email=email,
            avatar=avatar,
            status=status,
            last_seen=last_seen,
        )
        self.upsert_user(user, sync_status="pending")
        logger.info(f"Created local user {user.id} for {email}")
        return user

    def get_users(self) -> List[User]:
        """All mirrored users in insertion order."""
        rows = self.query("SELECT * FROM users ORDER BY rowid ASC")
        return [self._row_to_user(row) for row in rows]

    # =========================================================================
    # MESSAGES
    # =========================================================================

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(**{col: row[col] for col in MESSAGE_COLUMNS})

    @staticmethod
    def _message_values(message: Message) -> List[Any]:
        return [getattr(message, col) for col in MESSAGE_COLUMNS]

    def append_message(self, message: Message, sync_status: str = "pending") -> bool:
        """
        Append a message unless one with the same natural key exists.

        Returns:
            True if a row was inserted, False if it was a duplicate
        """
        if not message.id:
            message.id = new_local_id()

        columns = ", ".join(MESSAGE_COLUMNS + ("sync_status",))
        placeholders = ", ".join("?" for _ in range(len(MESSAGE_COLUMNS) + 1))
        with self.transaction() as conn:
            cursor = conn.execute(
                f"INSERT OR IGNORE INTO messages ({columns}) VALUES ({placeholders})",
                self._message_values(message) + [sync_status],
            )
            inserted = cursor.rowcount > 0

        if not inserted:
            logger.debug(f"Duplicate local message skipped: {message.natural_key}")
        return inserted

    def get_direct_messages(
        self,
        user1_id: str,
        user2_id: str,
        limit: int = DIRECT_HISTORY_LIMIT,
    ) -> List[Message]:
        """
        Messages between two users in either direction.

        Returns the most recent ``limit`` messages, oldest first.
        """
        rows = self.query(
            """
            SELECT * FROM (
                SELECT * FROM messages
                WHERE group_id IS NULL
                  AND ((sender_id = ? AND receiver_id = ?)
                    OR (sender_id = ? AND receiver_id = ?))
                ORDER BY timestamp DESC
                LIMIT ?
            ) ORDER BY timestamp ASC
            """,
            [user1_id, user2_id, user2_id, user1_id, limit],
        )
        return [self._row_to_message(row) for row in rows]

    def replace_synced_conversation(
        self,
        user1_id: str,
        user2_id: str,
        messages: Iterable[Message],
    ) -> int:
        """
        Replace the mirrored copy of a conversation with a fresh remote list.

        Pending (not yet delivered) rows survive unless the remote list now
        contains a message with the same natural key.

        Returns:
            Number of rows written
        """
        written = 0
        columns = ", ".join(MESSAGE_COLUMNS + ("sync_status",))
        placeholders = ", ".join("?" for _ in range(len(MESSAGE_COLUMNS) + 1))

        with self.transaction() as conn:
            conn.execute(
                """
                DELETE FROM messages
                WHERE sync_status = 'synced' AND group_id IS NULL
                  AND ((sender_id = ? AND receiver_id = ?)
                    OR (sender_id = ? AND receiver_id = ?))
                """,
                [user1_id, user2_id, user2_id, user1_id],
            )
            for message in messages:
                conn.execute(
                    "DELETE FROM messages WHERE sender_id = ? AND receiver_id = ? AND timestamp = ?",
                    list(message.natural_key),
                )
                conn.execute(
                    f"INSERT INTO messages ({columns}) VALUES ({placeholders})",
                    self._message_values(message) + ["synced"],
                )
                written += 1
        return written

    def get_pending_messages(self, limit: int = 100) -> List[Message]:
        """Messages written while offline, oldest first."""
        rows = self.query(
            """
            SELECT * FROM messages
            WHERE sync_status = 'pending'
            ORDER BY timestamp ASC
            LIMIT ?
            """,
            [limit],
        )
        return [self._row_to_message(row) for row in rows]

    def get_pending_count(self) -> int:
        """Get count of messages waiting to be delivered."""
        result = self.query("SELECT COUNT(*) AS count FROM messages WHERE sync_status = 'pending'")
        return result[0]["count"] if result else 0

    def mark_message_synced(self, message: Message, remote_id: Optional[str] = None) -> None:
        """Mark a pending message as delivered, adopting the remote id if known."""
        self.execute(
            """
            UPDATE messages SET sync_status = 'synced', id = COALESCE(?, id)
            WHERE sender_id = ? AND receiver_id = ? AND timestamp = ?
            """,
            [remote_id, *message.natural_key],
        )

    # =========================================================================
    # PANDAS INTEGRATION
    # =========================================================================

    def to_dataframe(self, table: str) -> pd.DataFrame:
        """
        Load a table into a pandas DataFrame.

        Args:
            table: Table name ('users' or 'messages')

        Returns:
            DataFrame with table data
        """
        if table not in self.SCHEMA:
            raise ValueError(f"Unknown table: {table}")
        conn = self._get_connection()
        return pd.read_sql_query(f"SELECT * FROM {table}", conn)

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get an app setting."""
        result = self.query(
            "SELECT value FROM app_settings WHERE key = ?",
            [key]
        )
        if result:
            try:
                return json.loads(result[0]["value"])
            except json.JSONDecodeError:
                return result[0]["value"]
        return default

    def set_setting(self, key: str, value: Any) -> None:
        """Set an app setting."""
        value_str = json.dumps(value) if not isinstance(value, str) else value
        self.execute(
            """
            INSERT OR REPLACE INTO app_settings (key, value, updated_at)
            VALUES (?, ?, ?)
            """,
            [key, value_str, datetime.now().isoformat()]
        )

    def delete_setting(self, key: str) -> None:
        """Remove an app setting."""
        self.execute("DELETE FROM app_settings WHERE key = ?", [key])

    def close(self) -> None:
        """Close database connection."""
        if getattr(self._local, "connection", None) is not None:
            self._local.connection.close()
            self._local.connection = None
