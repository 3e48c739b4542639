# =============================================================================
# connect_core/models.py
# Client-side data objects for users, messages and groups
# =============================================================================
"""
Dataclasses shared by the gateway, the local store and the UI.

The remote API speaks camelCase JSON; ``from_dict`` / ``to_dict`` translate
between that wire format and these objects.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


MESSAGE_TYPES = ("text", "image", "audio", "file")
MESSAGE_STATUSES = ("sent", "delivered", "read")

# Payload field required by each message type
PAYLOAD_FIELD_BY_TYPE = {
    "text": "text",
    "image": "image_url",
    "audio": "audio_url",
    "file": "file_url",
}

LOCAL_ID_PREFIX = "local-"


def is_local_id(value: Optional[str]) -> bool:
    """True for ids minted by the local fallback store."""
    return bool(value) and value.startswith(LOCAL_ID_PREFIX)


def status_rank(status: str) -> int:
    """Position of a message status in the sent -> delivered -> read order."""
    return MESSAGE_STATUSES.index(status)


@dataclass
class User:
    id: str
    username: str
    email: str
    avatar: str = ""
    status: str = ""
    last_seen: int = 0
    is_admin: bool = False
    is_banned: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> User:
        return cls(
            id=str(data.get("id") or ""),
            username=data.get("username") or "",
            email=data.get("email") or "",
            avatar=data.get("avatar") or "",
            status=data.get("status") or "",
            last_seen=int(data.get("lastSeen") or 0),
            is_admin=bool(data.get("isAdmin") or False),
            is_banned=bool(data.get("isBanned") or False),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "avatar": self.avatar,
            "status": self.status,
            "lastSeen": self.last_seen,
            "isAdmin": self.is_admin,
            "isBanned": self.is_banned,
        }


@dataclass
class Message:
    id: str
    sender_id: str
    receiver_id: str
    type: str
    timestamp: int
    status: str = "sent"
    text: Optional[str] = None
    image_url: Optional[str] = None
    audio_url: Optional[str] = None
    file_url: Optional[str] = None
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    group_id: Optional[str] = None

    @property
    def natural_key(self) -> tuple:
        return (self.sender_id, self.receiver_id, self.timestamp)

    @property
    def is_group_message(self) -> bool:
        return bool(self.group_id)

    def payload_matches_type(self) -> bool:
        """Exactly the payload field named by the type tag is populated."""
        if self.type not in PAYLOAD_FIELD_BY_TYPE:
            return False
        populated = {
            name for name in PAYLOAD_FIELD_BY_TYPE.values()
            if getattr(self, name)
        }
        return populated == {PAYLOAD_FIELD_BY_TYPE[self.type]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Message:
        return cls(
            id=str(data.get("id") or ""),
            sender_id=data.get("senderId") or "",
            receiver_id=data.get("receiverId") or "",
            type=data.get("type") or "text",
            timestamp=int(data.get("timestamp") or 0),
            status=data.get("status") or "sent",
            text=data.get("text"),
            image_url=data.get("imageUrl"),
            audio_url=data.get("audioUrl"),
            file_url=data.get("fileUrl"),
            file_name=data.get("fileName"),
            file_type=data.get("fileType"),
            group_id=data.get("groupId"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out = {
            "id": self.id,
            "senderId": self.sender_id,
            "receiverId": self.receiver_id,
            "type": self.type,
            "timestamp": self.timestamp,
            "status": self.status,
            "text": self.text,
            "imageUrl": self.image_url,
            "audioUrl": self.audio_url,
            "fileUrl": self.file_url,
            "fileName": self.file_name,
            "fileType": self.file_type,
            "groupId": self.group_id,
        }
        # Optional payload fields are omitted rather than sent as null
        return {k: v for k, v in out.items() if v is not None}


@dataclass
class Group:
    id: str
    name: str
    admin_id: str
    member_ids: List[str] = field(default_factory=list)
    avatar: Optional[str] = None
    created_at: int = 0

    def is_member(self, user_id: str) -> bool:
        return user_id in self.member_ids

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Group:
        return cls(
            id=str(data.get("id") or ""),
            name=data.get("name") or "",
            admin_id=data.get("adminId") or "",
            member_ids=list(data.get("memberIds") or []),
            avatar=data.get("avatar"),
            created_at=int(data.get("createdAt") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "avatar": self.avatar,
            "adminId": self.admin_id,
            "memberIds": list(self.member_ids),
            "createdAt": self.created_at,
        }
