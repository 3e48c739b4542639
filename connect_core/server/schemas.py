"""
Request payloads for the Connect remote API.

Field names follow the camelCase wire format. Cross-field rules (a message
needs a receiver or a group, and exactly the payload field its type names)
are checked by ``check_message_payload`` so the error can name the field.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from connect_core.errors import ValidationError

MessageType = Literal["text", "image", "audio", "file"]
MessageStatus = Literal["sent", "delivered", "read"]

PAYLOAD_FIELDS = {
    "text": "text",
    "image": "imageUrl",
    "audio": "audioUrl",
    "file": "fileUrl",
}


class RegisterUserPayload(BaseModel):
    username: str = Field(..., min_length=1, max_length=50)
    email: str = Field(..., min_length=3)
    avatar: Optional[str] = None
    status: Optional[str] = Field(None, max_length=200)
    lastSeen: Optional[int] = None


class UpdateUserPayload(BaseModel):
    username: Optional[str] = Field(None, min_length=1, max_length=50)
    avatar: Optional[str] = None
    status: Optional[str] = Field(None, max_length=200)


class AdminActionPayload(BaseModel):
    adminId: str = Field(..., min_length=1)


class SendMessagePayload(BaseModel):
    senderId: str = Field(..., min_length=1)
    receiverId: Optional[str] = None
    groupId: Optional[str] = None
    type: MessageType
    timestamp: int = Field(..., gt=0)
    status: MessageStatus = "sent"
    text: Optional[str] = Field(None, max_length=5000)
    imageUrl: Optional[str] = None
    audioUrl: Optional[str] = None
    fileUrl: Optional[str] = None
    fileName: Optional[str] = None
    fileType: Optional[str] = None


class MessageStatusPayload(BaseModel):
    status: MessageStatus


class EditMessagePayload(BaseModel):
    text: str = Field(..., min_length=1, max_length=5000)
    userId: str = Field(..., min_length=1)


class ActingUserPayload(BaseModel):
    userId: str = Field(..., min_length=1)


class CreateGroupPayload(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    avatar: Optional[str] = None
    adminId: str = Field(..., min_length=1)
    memberIds: List[str] = Field(..., min_length=2)


class GroupMemberPayload(BaseModel):
    userId: str = Field(..., min_length=1)
    adminId: str = Field(..., min_length=1)


def check_message_payload(payload: SendMessagePayload) -> None:
    """Raise ValidationError unless the message is addressed and its payload matches its type."""
    if not payload.receiverId and not payload.groupId:
        raise ValidationError(
            "receiverId or groupId is required",
            field="receiverId",
        )

    required = PAYLOAD_FIELDS[payload.type]
    if not getattr(payload, required):
        raise ValidationError(
            f"{required} is required for {payload.type} messages",
            field=required,
        )

    for other in PAYLOAD_FIELDS.values():
        if other != required and getattr(payload, other):
            raise ValidationError(
                f"{other} is not allowed on {payload.type} messages",
                field=other,
                expected=required,
            )
