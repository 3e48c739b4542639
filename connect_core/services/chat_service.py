# =============================================================================
# connect_core/services/chat_service.py
# Chat Service - Client Rules on Top of the Sync Gateway
# =============================================================================
"""
Client-facing chat operations.

Features:
- Login / session restore / logout with the session persisted locally
- Profile updates
- Message composition (type derived from the payload, per-sender
  strictly increasing timestamps)
- Editing and deleting the session user's own messages
- File attachments sent inline as data URLs
- Group creation with the client-side membership rule
- Group administration (members, deletion)
- Read receipts for incoming messages

Every public method returns a ServiceResult and never raises.
"""

from __future__ import annotations
import base64
import re
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional

from connect_core.config import SETTING_SESSION_USER
from connect_core.errors import AuthorizationError, ConnectError, ValidationError
from connect_core.models import Group, Message, User, is_local_id, status_rank
from connect_core.offline.sync_gateway import SyncGateway
from connect_core.services.base_service import BaseService, ServiceResult

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

MAX_USERNAME_LENGTH = 50
MAX_STATUS_LENGTH = 200
MAX_TEXT_LENGTH = 5000
MIN_GROUP_MEMBERS = 3


def group_avatar(name: str) -> str:
    return f"https://api.dicebear.com/7.x/initials/svg?seed={name}"


def attachment_payload(file_name: str, mime_type: str, content: bytes) -> Dict[str, str]:
    """
    Turn an uploaded file into send() keywords.

    The content travels inline as a data URL. Images and audio become
    their own message types; anything else is a file message.
    """
    mime_type = mime_type or "application/octet-stream"
    data_url = f"data:{mime_type};base64,{base64.b64encode(content).decode('ascii')}"
    if mime_type.startswith("image/"):
        return {"image_url": data_url}
    if mime_type.startswith("audio/"):
        return {"audio_url": data_url}
    return {"file_url": data_url, "file_name": file_name, "file_type": mime_type}


class ChatService(BaseService):
    """
    Session-aware wrapper around SyncGateway.

    Usage:
        chat = ChatService(gateway)
        result = chat.login("Ana", "ana@x.com")
        if result:
            chat.send(receiver_id=bob.id, text="hi")
    """

    def __init__(
        self,
        gateway: SyncGateway,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__()
        self.gateway = gateway
        self._clock = clock
        self._session_user: Optional[User] = None
        self._last_timestamps: Dict[str, int] = {}
        self._timestamp_lock = threading.Lock()

    @property
    def session_user(self) -> Optional[User]:
        return self._session_user

    def _require_session(self) -> User:
        if self._session_user is None:
            raise AuthorizationError("Not logged in", allowed="logged-in user")
        return self._session_user

    def _rejected(self, action: str) -> ConnectError:
        failure = self.gateway.last_failure
        reason = failure.error if failure is not None else "no response"
        return ConnectError(f"{action} failed: {reason}", code="REMOTE_001")

    def _persist_session(self, user: Optional[User]) -> None:
        self._session_user = user
        if user is None:
            self.gateway.delete_setting(SETTING_SESSION_USER)
        else:
            self.gateway.set_setting(SETTING_SESSION_USER, user.to_dict())

    # =========================================================================
    # SESSION
    # =========================================================================

    def login(self, username: str, email: str) -> ServiceResult:
        """Register (or fetch) the user and make them the session user."""
        return self.safe_execute("Login", self._login, username, email)

    def _login(self, username: str, email: str) -> ServiceResult:
        username = (username or "").strip()
        email = (email or "").strip().lower()

        if not username:
            raise ValidationError("Username is required", field="username")
        if len(username) > MAX_USERNAME_LENGTH:
            raise ValidationError(
                f"Username must be at most {MAX_USERNAME_LENGTH} characters",
                field="username",
            )
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email address", field="email", expected="name@domain.tld")

        user = self.gateway.register_user(username, email)
        if user is None:
            raise self._rejected("Login")

        self._persist_session(user)
        return ServiceResult.ok(user, metadata={"offline": is_local_id(user.id)})

    def restore_session(self) -> ServiceResult:
        """Load the session user saved by a previous login."""
        saved = self.gateway.get_setting(SETTING_SESSION_USER)
        if not isinstance(saved, dict) or not saved.get("id"):
            return ServiceResult.fail("No saved session", error_code="NO_SESSION")

        self._session_user = User.from_dict(saved)
        self.logger.info(f"Restored session for {self._session_user.email}")
        return ServiceResult.ok(self._session_user)

    def adopt_session_user(self, user: User) -> None:
        """Replace the session user with a fresher copy (e.g. from a poll)."""
        current = self._session_user
        if current is not None and current.id == user.id and current != user:
            self._persist_session(user)

    def logout(self) -> ServiceResult:
        self._persist_session(None)
        return ServiceResult.ok()

    def update_profile(
        self,
        username: Optional[str] = None,
        avatar: Optional[str] = None,
        status: Optional[str] = None,
    ) -> ServiceResult:
        return self.safe_execute("Updating profile", self._update_profile, username, avatar, status)

    def _update_profile(
        self,
        username: Optional[str],
        avatar: Optional[str],
        status: Optional[str],
    ) -> ServiceResult:
        user = self._require_session()
        username = username.strip() or None if username else None
        # An empty status clears it
        status = status.strip() if status is not None else None

        if username is None and avatar is None and status is None:
            raise ValidationError("Nothing to update", field="username")
        if username and len(username) > MAX_USERNAME_LENGTH:
            raise ValidationError(
                f"Username must be at most {MAX_USERNAME_LENGTH} characters",
                field="username",
            )
        if status and len(status) > MAX_STATUS_LENGTH:
            raise ValidationError(
                f"Status must be at most {MAX_STATUS_LENGTH} characters",
                field="status",
            )

        updated = self.gateway.update_user(user.id, username=username, avatar=avatar, status=status)
        if updated is None:
            raise self._rejected("Profile update")

        self._persist_session(updated)
        return ServiceResult.ok(updated)

    # =========================================================================
    # MESSAGES
    # =========================================================================

    def next_timestamp(self, sender_id: str) -> int:
        """Wall-clock milliseconds, bumped so each sender's values strictly increase."""
        with self._timestamp_lock:
            now = int(self._clock() * 1000)
            last = self._last_timestamps.get(sender_id, 0)
            timestamp = now if now > last else last + 1
            self._last_timestamps[sender_id] = timestamp
            return timestamp

    def compose_message(
        self,
        receiver_id: Optional[str] = None,
        text: Optional[str] = None,
        image_url: Optional[str] = None,
        audio_url: Optional[str] = None,
        file_url: Optional[str] = None,
        file_name: Optional[str] = None,
        file_type: Optional[str] = None,
        group_id: Optional[str] = None,
    ) -> ServiceResult:
        """
        Build a Message from whichever payload is populated.

        Priority when several are given: file > audio > image > text. Only the
        winning payload is kept. For group messages the receiver is the group.
        """
        return self.safe_execute(
            "Composing message",
            self._compose_message,
            receiver_id, text, image_url, audio_url, file_url, file_name, file_type, group_id,
        )

    def _compose_message(
        self,
        receiver_id: Optional[str],
        text: Optional[str],
        image_url: Optional[str],
        audio_url: Optional[str],
        file_url: Optional[str],
        file_name: Optional[str],
        file_type: Optional[str],
        group_id: Optional[str],
    ) -> Message:
        sender = self._require_session()
        if sender.is_banned:
            raise AuthorizationError("Banned users cannot send messages", actor_id=sender.id)

        receiver_id = group_id or receiver_id
        if not receiver_id:
            raise ValidationError("A receiver or group is required", field="receiverId")

        fields = {}
        if file_url:
            message_type = "file"
            fields = {"file_url": file_url, "file_name": file_name, "file_type": file_type}
        elif audio_url:
            message_type = "audio"
            fields = {"audio_url": audio_url}
        elif image_url:
            message_type = "image"
            fields = {"image_url": image_url}
        elif text and text.strip():
            message_type = "text"
            if len(text) > MAX_TEXT_LENGTH:
                raise ValidationError(
                    f"Message text must be at most {MAX_TEXT_LENGTH} characters",
                    field="text",
                )
            fields = {"text": text}
        else:
            raise ValidationError("Message is empty", field="text")

        return Message(
            id="",
            sender_id=sender.id,
            receiver_id=receiver_id,
            type=message_type,
            timestamp=self.next_timestamp(sender.id),
            status="sent",
            group_id=group_id,
            **fields,
        )

    def send(self, **payload) -> ServiceResult:
        """Compose a message from keyword payload and deliver it."""
        composed = self.compose_message(**payload)
        if not composed:
            return composed
        return self.safe_execute("Sending message", self._send, composed.data)

    def _send(self, message: Message) -> ServiceResult:
        if not self.gateway.send_message(message):
            raise self._rejected("Send")
        return ServiceResult.ok(
            message,
            metadata={"queued": not self.gateway.is_remote_reachable()},
        )

    def edit_message(self, message: Message, text: str) -> ServiceResult:
        """Replace the text of one of the session user's delivered text messages."""
        return self.safe_execute("Editing message", self._edit_message, message, text)

    def _edit_message(self, message: Message, text: str) -> bool:
        user = self._own_delivered_message(message, "edit")
        if message.type != "text":
            raise ValidationError("Only text messages can be edited", field="text")

        text = (text or "").strip()
        if not text:
            raise ValidationError("Message is empty", field="text")
        if len(text) > MAX_TEXT_LENGTH:
            raise ValidationError(
                f"Message text must be at most {MAX_TEXT_LENGTH} characters",
                field="text",
            )

        if not self.gateway.edit_message(message.id, text, user.id):
            raise self._rejected("Edit")
        return True

    def delete_message(self, message: Message) -> ServiceResult:
        return self.safe_execute("Deleting message", self._delete_message, message)

    def _delete_message(self, message: Message) -> bool:
        user = self._own_delivered_message(message, "delete")
        if not self.gateway.delete_message(message.id, user.id):
            raise self._rejected("Delete")
        return True

    def _own_delivered_message(self, message: Message, action: str) -> User:
        user = self._require_session()
        if message.sender_id != user.id:
            raise AuthorizationError(
                f"You can only {action} your own messages",
                allowed="message sender",
                actor_id=user.id,
            )
        # Queued messages have no server copy yet
        if not message.id or is_local_id(message.id):
            raise ValidationError(
                "Message is still waiting to be delivered",
                field="id",
            )
        return user

    def mark_read(self, messages: Iterable[Message]) -> ServiceResult:
        """Mark incoming direct messages as read. Returns how many were updated."""
        return self.safe_execute("Marking messages read", self._mark_read, list(messages))

    def _mark_read(self, messages: List[Message]) -> int:
        user = self._require_session()
        updated = 0
        for message in messages:
            if message.receiver_id != user.id or is_local_id(message.id) or not message.id:
                continue
            if status_rank(message.status) >= status_rank("read"):
                continue
            if self.gateway.update_message_status(message.id, "read") is not None:
                updated += 1
        return updated

    # =========================================================================
    # GROUPS
    # =========================================================================

    def create_group(
        self,
        name: str,
        member_ids: Iterable[str],
        admin_id: Optional[str] = None,
        avatar: Optional[str] = None,
    ) -> ServiceResult:
        """
        Create a group containing the session user and the selected members.

        At least three members are required including the creator. The admin
        defaults to the creator and must be one of the members.
        """
        return self.safe_execute(
            "Creating group", self._create_group, name, list(member_ids), admin_id, avatar
        )

    def _create_group(
        self,
        name: str,
        member_ids: List[str],
        admin_id: Optional[str],
        avatar: Optional[str],
    ) -> Group:
        creator = self._require_session()
        name = (name or "").strip()
        if not name:
            raise ValidationError("Group name is required", field="name")

        members = [creator.id]
        for member_id in member_ids:
            if member_id and member_id not in members:
                members.append(member_id)

        if len(members) < MIN_GROUP_MEMBERS:
            raise ValidationError(
                f"A group needs at least {MIN_GROUP_MEMBERS} members including you",
                field="memberIds",
            )

        admin_id = admin_id or creator.id
        if admin_id not in members:
            raise ValidationError("Group admin must be a member", field="adminId")

        group = self.gateway.create_group(
            name=name,
            admin_id=admin_id,
            member_ids=members,
            avatar=avatar or group_avatar(name),
        )
        if group is None:
            raise self._rejected("Group creation")
        return group

    def add_group_member(self, group: Group, user_id: str) -> ServiceResult:
        """Group admin adds a member."""
        return self.safe_execute("Adding group member", self._add_group_member, group, user_id)

    def _add_group_member(self, group: Group, user_id: str) -> bool:
        admin = self._require_group_admin(group)
        if not user_id:
            raise ValidationError("Pick a user to add", field="userId")
        if group.is_member(user_id):
            raise ValidationError("User already in group", field="userId")
        if not self.gateway.add_group_member(group.id, user_id, admin.id):
            raise self._rejected("Adding member")
        return True

    def remove_group_member(self, group: Group, user_id: str) -> ServiceResult:
        """Group admin removes a member other than themselves."""
        return self.safe_execute(
            "Removing group member", self._remove_group_member, group, user_id
        )

    def _remove_group_member(self, group: Group, user_id: str) -> bool:
        admin = self._require_group_admin(group)
        if user_id == group.admin_id:
            raise ValidationError("Cannot remove group admin", field="userId")
        if not group.is_member(user_id):
            raise ValidationError("User is not a member of this group", field="userId")
        if not self.gateway.remove_group_member(group.id, user_id, admin.id):
            raise self._rejected("Removing member")
        return True

    def delete_group(self, group: Group) -> ServiceResult:
        """Delete a group and its messages. Allowed for its admin or an app admin."""
        return self.safe_execute("Deleting group", self._delete_group, group)

    def _delete_group(self, group: Group) -> bool:
        user = self._require_session()
        if user.id != group.admin_id and not user.is_admin:
            raise AuthorizationError(
                "Only the group admin can delete this group",
                allowed="group admin",
                actor_id=user.id,
            )
        if not self.gateway.delete_group(group.id, user.id):
            raise self._rejected("Group deletion")
        return True

    def _require_group_admin(self, group: Group) -> User:
        user = self._require_session()
        if user.id != group.admin_id:
            raise AuthorizationError(
                "Only the group admin can change members",
                allowed="group admin",
                actor_id=user.id,
            )
        return user
