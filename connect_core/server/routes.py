# =============================================================================
# connect_core/server/routes.py
# HTTP routes for users, messages and groups
# =============================================================================

from __future__ import annotations
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from pymongo.errors import DuplicateKeyError

from connect_core.errors import AuthorizationError, NotFoundError, ValidationError
from connect_core.logging import get_logger
from connect_core.server.repositories import Repositories
from connect_core.server.schemas import (
    ActingUserPayload,
    AdminActionPayload,
    CreateGroupPayload,
    EditMessagePayload,
    GroupMemberPayload,
    MessageStatusPayload,
    RegisterUserPayload,
    SendMessagePayload,
    UpdateUserPayload,
    check_message_payload,
)

logger = get_logger(__name__)

DEFAULT_STATUS_TEXT = "Hey there! I am using Connect."

users_router = APIRouter(prefix="/users", tags=["users"])
messages_router = APIRouter(prefix="/messages", tags=["messages"])
groups_router = APIRouter(prefix="/groups", tags=["groups"])
health_router = APIRouter(tags=["health"])


def get_repositories(request: Request) -> Repositories:
    return request.app.state.repositories


def require_admin(repos: Repositories, admin_id: Optional[str], action: str) -> None:
    if not repos.users.is_admin(admin_id):
        raise AuthorizationError(f"Only admins can {action}", allowed="admin", actor_id=admin_id)


def remove_from_all_groups(repos: Repositories, user_id: str) -> int:
    """
    Pull a user out of every group. Groups they administered pass to the
    first remaining member; groups left empty are deleted with their messages.
    """
    touched = 0
    for group in repos.groups.list_for_user(user_id):
        repos.groups.remove_member(group["id"], user_id)
        remaining = [m for m in group["memberIds"] if m != user_id]
        if not remaining:
            repos.groups.delete(group["id"])
            repos.messages.delete_for_group(group["id"])
        elif group["adminId"] == user_id:
            repos.groups.set_admin(group["id"], remaining[0])
        touched += 1
    return touched


# =============================================================================
# HEALTH
# =============================================================================

@health_router.get("/health")
def health():
    return {"status": "ok"}


# =============================================================================
# USERS
# =============================================================================

@users_router.post("", status_code=status.HTTP_201_CREATED)
def register_user(
    payload: RegisterUserPayload,
    request: Request,
    response: Response,
    repos: Repositories = Depends(get_repositories),
):
    """
    Register a user, or return the existing one with this email.

    The configured admin email gets the admin role whenever it signs up or
    logs in.
    """
    admin_email = request.app.state.config.admin_email
    grants_admin = bool(admin_email) and payload.email == admin_email

    existing = repos.users.find_by_email(payload.email)
    if existing:
        # Banned users may still log in; the client shows them read-only
        response.status_code = status.HTTP_200_OK
        if grants_admin and not existing.get("isAdmin"):
            logger.info(f"Admin role granted to {payload.email}")
            return repos.users.update(existing["id"], {"isAdmin": True})
        return repos.users.touch(existing["id"])

    user = repos.users.create(
        username=payload.username,
        email=payload.email,
        avatar=payload.avatar or f"https://api.dicebear.com/7.x/avataaars/svg?seed={payload.email}",
        status=payload.status or DEFAULT_STATUS_TEXT,
        is_admin=grants_admin,
    )
    logger.info(f"Registered user {user['id']} ({payload.email})")
    return user


@users_router.get("")
def list_users(
    adminId: Optional[str] = None,
    repos: Repositories = Depends(get_repositories),
):
    """Visible users; the full list when ``adminId`` names an admin."""
    if adminId and repos.users.is_admin(adminId):
        return repos.users.list_all()
    return repos.users.list_visible()


@users_router.post("/cleanup")
def cleanup_all_data(
    payload: AdminActionPayload,
    repos: Repositories = Depends(get_repositories),
):
    """Delete every non-admin user, all messages and all groups."""
    require_admin(repos, payload.adminId, "cleanup data")

    users_deleted = repos.users.delete_all_except_admins()
    messages_deleted = repos.messages.delete_all()
    groups_deleted = repos.groups.delete_all()
    logger.warning(
        f"Cleanup by {payload.adminId}: {users_deleted} users, "
        f"{messages_deleted} messages, {groups_deleted} groups deleted"
    )
    return {
        "message": "Cleanup completed successfully",
        "usersDeleted": users_deleted,
        "messagesDeleted": messages_deleted,
        "groupsDeleted": groups_deleted,
    }


@users_router.put("/{user_id}")
def update_user(
    user_id: str,
    payload: UpdateUserPayload,
    repos: Repositories = Depends(get_repositories),
):
    updates = {k: v for k, v in payload.model_dump().items() if v is not None}
    if not updates:
        raise ValidationError(
            "At least one of username, avatar, or status must be provided",
            field="username",
        )

    user = repos.users.update(user_id, updates)
    if user is None:
        raise NotFoundError(f"No user found with id: {user_id}", resource="user", resource_id=user_id)
    return user


@users_router.delete("/{user_id}")
def delete_user(user_id: str, repos: Repositories = Depends(get_repositories)):
    """Soft delete: the user is marked banned."""
    if not repos.users.ban(user_id):
        raise NotFoundError("User not found", resource="user", resource_id=user_id)
    return {"message": "User deleted successfully"}


@users_router.post("/{user_id}/ban")
def ban_user(
    user_id: str,
    payload: AdminActionPayload,
    repos: Repositories = Depends(get_repositories),
):
    """Ban a user, delete their messages and remove them from every group."""
    require_admin(repos, payload.adminId, "ban users")

    if not repos.users.ban(user_id):
        raise NotFoundError("User not found", resource="user", resource_id=user_id)

    # Independent steps; a failure below leaves the ban in place
    messages_deleted = repos.messages.delete_for_user(user_id)
    groups_left = remove_from_all_groups(repos, user_id)
    logger.info(f"Banned {user_id}: {messages_deleted} messages deleted, removed from {groups_left} groups")
    return {"message": "User banned and all data removed successfully"}


@users_router.delete("/{user_id}/permanent")
def permanent_delete_user(
    user_id: str,
    payload: AdminActionPayload,
    repos: Repositories = Depends(get_repositories),
):
    require_admin(repos, payload.adminId, "permanently delete users")

    if not repos.users.delete(user_id):
        raise NotFoundError("User not found", resource="user", resource_id=user_id)

    repos.messages.delete_for_user(user_id)
    remove_from_all_groups(repos, user_id)
    logger.info(f"Permanently deleted user {user_id}")
    return {"message": "User permanently deleted"}


# =============================================================================
# MESSAGES
# =============================================================================

@messages_router.post("", status_code=status.HTTP_201_CREATED)
def send_message(
    payload: SendMessagePayload,
    response: Response,
    repos: Repositories = Depends(get_repositories),
):
    check_message_payload(payload)
    receiver_id = payload.groupId or payload.receiverId

    duplicate = repos.messages.find_by_natural_key(payload.senderId, receiver_id, payload.timestamp)
    if duplicate:
        response.status_code = status.HTTP_200_OK
        return duplicate

    if repos.users.is_banned(payload.senderId):
        raise AuthorizationError(
            "You are banned and cannot send messages",
            allowed="users that are not banned",
            actor_id=payload.senderId,
        )

    fields = payload.model_dump()
    fields["receiverId"] = receiver_id
    try:
        return repos.messages.create(fields)
    except DuplicateKeyError:
        # Lost a race with an identical send
        response.status_code = status.HTTP_200_OK
        return repos.messages.find_by_natural_key(payload.senderId, receiver_id, payload.timestamp)


@messages_router.get("")
def list_messages(
    u1: Optional[str] = None,
    u2: Optional[str] = None,
    groupId: Optional[str] = None,
    repos: Repositories = Depends(get_repositories),
):
    """Group history by ``groupId`` or direct history between ``u1`` and ``u2``."""
    if groupId:
        return repos.messages.list_group(groupId)
    if not u1 or not u2:
        raise ValidationError(
            "Provide (u1 and u2) OR (groupId)",
            field="u1" if not u1 else "u2",
        )
    return repos.messages.list_direct(u1, u2)


@messages_router.put("/{message_id}")
def update_message_status(
    message_id: str,
    payload: MessageStatusPayload,
    repos: Repositories = Depends(get_repositories),
):
    message = repos.messages.update_status(message_id, payload.status)
    if message is None:
        raise NotFoundError(
            f"No message found with id: {message_id}", resource="message", resource_id=message_id
        )
    return message


@messages_router.patch("/{message_id}")
def edit_message(
    message_id: str,
    payload: EditMessagePayload,
    repos: Repositories = Depends(get_repositories),
):
    message = repos.messages.find_by_id(message_id)
    if message is None:
        raise NotFoundError("Message not found", resource="message", resource_id=message_id)

    if message["senderId"] != payload.userId:
        raise AuthorizationError(
            "You can only edit your own messages",
            allowed="message sender",
            actor_id=payload.userId,
        )
    if message.get("type") != "text":
        raise ValidationError("Only text messages can be edited", field="text")

    return repos.messages.update_text(message_id, payload.text)


@messages_router.delete("/{message_id}")
def delete_message(
    message_id: str,
    payload: ActingUserPayload,
    repos: Repositories = Depends(get_repositories),
):
    message = repos.messages.find_by_id(message_id)
    if message is None:
        raise NotFoundError("Message not found", resource="message", resource_id=message_id)

    if message["senderId"] != payload.userId and not repos.users.is_admin(payload.userId):
        raise AuthorizationError(
            "You can only delete your own messages",
            allowed="message sender or admin",
            actor_id=payload.userId,
        )

    repos.messages.delete(message_id)
    return {"message": "Message deleted successfully"}


# =============================================================================
# GROUPS
# =============================================================================

@groups_router.post("", status_code=status.HTTP_201_CREATED)
def create_group(
    payload: CreateGroupPayload,
    repos: Repositories = Depends(get_repositories),
):
    members = list(dict.fromkeys(payload.memberIds))
    if len(members) < 2:
        raise ValidationError("Group must have at least 2 members", field="memberIds")
    if payload.adminId not in members:
        members.append(payload.adminId)

    group = repos.groups.create(
        name=payload.name,
        admin_id=payload.adminId,
        member_ids=members,
        avatar=payload.avatar or f"https://api.dicebear.com/7.x/initials/svg?seed={payload.name}",
    )
    logger.info(f"Created group {group['id']} with {len(members)} members")
    return group


@groups_router.get("")
def list_groups_for_user(
    userId: str = Query(..., min_length=1),
    repos: Repositories = Depends(get_repositories),
):
    return repos.groups.list_for_user(userId)


@groups_router.get("/all")
def list_all_groups(
    adminId: Optional[str] = None,
    repos: Repositories = Depends(get_repositories),
):
    require_admin(repos, adminId, "view all groups")
    return repos.groups.list_all()


@groups_router.delete("/{group_id}")
def delete_group(
    group_id: str,
    payload: ActingUserPayload,
    repos: Repositories = Depends(get_repositories),
):
    """Delete a group and every message in it (group admin or superuser)."""
    group = repos.groups.find_by_id(group_id)
    if group is None:
        raise NotFoundError("Group not found", resource="group", resource_id=group_id)

    if group["adminId"] != payload.userId and not repos.users.is_admin(payload.userId):
        raise AuthorizationError(
            "Not authorized to delete this group",
            allowed="group admin or admin",
            actor_id=payload.userId,
        )

    repos.groups.delete(group_id)
    deleted = repos.messages.delete_for_group(group_id)
    logger.info(f"Deleted group {group_id} and {deleted} messages")
    return {"message": "Group and all messages deleted"}


def _group_for_admin(repos: Repositories, group_id: str, admin_id: str, action: str) -> dict:
    group = repos.groups.find_by_id(group_id)
    if group is None:
        raise NotFoundError("Group not found", resource="group", resource_id=group_id)
    if group["adminId"] != admin_id:
        raise AuthorizationError(
            f"Only group admin can {action} members",
            allowed="group admin",
            actor_id=admin_id,
        )
    return group


@groups_router.post("/{group_id}/members")
def add_group_member(
    group_id: str,
    payload: GroupMemberPayload,
    repos: Repositories = Depends(get_repositories),
):
    _group_for_admin(repos, group_id, payload.adminId, "add")

    if not repos.groups.add_member(group_id, payload.userId):
        raise ValidationError("User already in group", field="userId")
    return {"message": "Member added successfully"}


@groups_router.delete("/{group_id}/members")
def remove_group_member(
    group_id: str,
    payload: GroupMemberPayload,
    repos: Repositories = Depends(get_repositories),
):
    group = _group_for_admin(repos, group_id, payload.adminId, "remove")

    if payload.userId == group["adminId"]:
        raise ValidationError("Cannot remove group admin", field="userId")
    if not repos.groups.remove_member(group_id, payload.userId):
        raise ValidationError("User is not a member of this group", field="userId")
    return {"message": "Member removed successfully"}
