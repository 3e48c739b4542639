# =============================================================================
# connect_core/server/repositories.py
# Collection access for users, messages and groups
# =============================================================================
"""
Repository classes over the three MongoDB collections.

Documents leave this module as camelCase dicts with ``_id`` renamed to
``id``. Unknown or malformed ids yield None / False instead of raising.
"""

from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from connect_core.models import MESSAGE_STATUSES, status_rank
from connect_core.server.database import GROUPS, MESSAGES, USERS


def now_ms() -> int:
    return int(time.time() * 1000)


def object_id(value: Any) -> Optional[ObjectId]:
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


def public(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Mongo document -> API dict."""
    if doc is None:
        return None
    out = {k: v for k, v in doc.items() if k != "_id"}
    out["id"] = str(doc["_id"])
    return out


class UserRepository:
    def __init__(self, db: Database):
        self.collection = db[USERS]

    def find_by_id(self, user_id: str) -> Optional[Dict[str, Any]]:
        oid = object_id(user_id)
        return public(self.collection.find_one({"_id": oid})) if oid else None

    def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return public(self.collection.find_one({"email": email}))

    def create(
        self, username: str, email: str, avatar: str, status: str, is_admin: bool = False
    ) -> Dict[str, Any]:
        doc = {
            "username": username,
            "email": email,
            "avatar": avatar,
            "status": status,
            "lastSeen": now_ms(),
            "isAdmin": is_admin,
            "isBanned": False,
        }
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return public(doc)

    def touch(self, user_id: str) -> Optional[Dict[str, Any]]:
        """Bump lastSeen and return the user."""
        return self.update(user_id, {})

    def update(self, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        oid = object_id(user_id)
        if oid is None:
            return None
        doc = self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {**updates, "lastSeen": now_ms()}},
            return_document=ReturnDocument.AFTER,
        )
        return public(doc)

    def list_visible(self) -> List[Dict[str, Any]]:
        """Users other clients may see: not admin, not banned."""
        cursor = self.collection.find({"isAdmin": {"$ne": True}, "isBanned": {"$ne": True}})
        return [public(doc) for doc in cursor]

    def list_all(self) -> List[Dict[str, Any]]:
        return [public(doc) for doc in self.collection.find()]

    def is_admin(self, user_id: Optional[str]) -> bool:
        user = self.find_by_id(user_id) if user_id else None
        return bool(user and user.get("isAdmin"))

    def is_banned(self, user_id: str) -> bool:
        user = self.find_by_id(user_id)
        return bool(user and user.get("isBanned"))

    def ban(self, user_id: str) -> bool:
        oid = object_id(user_id)
        if oid is None:
            return False
        return self.collection.update_one({"_id": oid}, {"$set": {"isBanned": True}}).matched_count > 0

    def delete(self, user_id: str) -> bool:
        oid = object_id(user_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count > 0

    def delete_all_except_admins(self) -> int:
        return self.collection.delete_many({"isAdmin": {"$ne": True}}).deleted_count


class MessageRepository:
    def __init__(self, db: Database, history_limit: int = 500):
        self.collection = db[MESSAGES]
        self.history_limit = history_limit

    def find_by_id(self, message_id: str) -> Optional[Dict[str, Any]]:
        oid = object_id(message_id)
        return public(self.collection.find_one({"_id": oid})) if oid else None

    def find_by_natural_key(
        self, sender_id: str, receiver_id: str, timestamp: int
    ) -> Optional[Dict[str, Any]]:
        return public(self.collection.find_one(
            {"senderId": sender_id, "receiverId": receiver_id, "timestamp": timestamp}
        ))

    def create(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a message; None-valued fields are not stored."""
        doc = {k: v for k, v in fields.items() if v is not None}
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return public(doc)

    def _recent(self, query: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Most recent ``history_limit`` matches, oldest first."""
        cursor = (
            self.collection.find(query)
            .sort("timestamp", DESCENDING)
            .limit(self.history_limit)
        )
        docs = [public(doc) for doc in cursor]
        docs.reverse()
        return docs

    def list_direct(self, user1_id: str, user2_id: str) -> List[Dict[str, Any]]:
        return self._recent({
            "groupId": {"$exists": False},
            "$or": [
                {"senderId": user1_id, "receiverId": user2_id},
                {"senderId": user2_id, "receiverId": user1_id},
            ],
        })

    def list_group(self, group_id: str) -> List[Dict[str, Any]]:
        return self._recent({"groupId": group_id})

    def update_status(self, message_id: str, status: str) -> Optional[Dict[str, Any]]:
        """
        Advance the delivery status. A status lower than the stored one
        leaves the record unchanged.
        """
        current = self.find_by_id(message_id)
        if current is None:
            return None
        if status_rank(status) <= status_rank(current.get("status", MESSAGE_STATUSES[0])):
            return current

        doc = self.collection.find_one_and_update(
            {"_id": object_id(message_id)},
            {"$set": {"status": status}},
            return_document=ReturnDocument.AFTER,
        )
        return public(doc)

    def update_text(self, message_id: str, text: str) -> Optional[Dict[str, Any]]:
        oid = object_id(message_id)
        if oid is None:
            return None
        doc = self.collection.find_one_and_update(
            {"_id": oid},
            {"$set": {"text": text}},
            return_document=ReturnDocument.AFTER,
        )
        return public(doc)

    def delete(self, message_id: str) -> bool:
        oid = object_id(message_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count > 0

    def delete_for_user(self, user_id: str) -> int:
        """Delete every message sent by or to the user."""
        return self.collection.delete_many(
            {"$or": [{"senderId": user_id}, {"receiverId": user_id}]}
        ).deleted_count

    def delete_for_group(self, group_id: str) -> int:
        return self.collection.delete_many({"groupId": group_id}).deleted_count

    def delete_all(self) -> int:
        return self.collection.delete_many({}).deleted_count


class GroupRepository:
    def __init__(self, db: Database):
        self.collection = db[GROUPS]

    def create(
        self, name: str, admin_id: str, member_ids: List[str], avatar: str
    ) -> Dict[str, Any]:
        doc = {
            "name": name,
            "avatar": avatar,
            "adminId": admin_id,
            "memberIds": member_ids,
            "createdAt": now_ms(),
        }
        result = self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return public(doc)

    def find_by_id(self, group_id: str) -> Optional[Dict[str, Any]]:
        oid = object_id(group_id)
        return public(self.collection.find_one({"_id": oid})) if oid else None

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        cursor = self.collection.find({"memberIds": user_id}).sort("createdAt", ASCENDING)
        return [public(doc) for doc in cursor]

    def list_all(self) -> List[Dict[str, Any]]:
        return [public(doc) for doc in self.collection.find().sort("createdAt", ASCENDING)]

    def delete(self, group_id: str) -> bool:
        oid = object_id(group_id)
        if oid is None:
            return False
        return self.collection.delete_one({"_id": oid}).deleted_count > 0

    def add_member(self, group_id: str, user_id: str) -> bool:
        """False if the user was already a member."""
        oid = object_id(group_id)
        if oid is None:
            return False
        result = self.collection.update_one({"_id": oid}, {"$addToSet": {"memberIds": user_id}})
        return result.modified_count > 0

    def remove_member(self, group_id: str, user_id: str) -> bool:
        """False if the user was not a member."""
        oid = object_id(group_id)
        if oid is None:
            return False
        result = self.collection.update_one({"_id": oid}, {"$pull": {"memberIds": user_id}})
        return result.modified_count > 0

    def set_admin(self, group_id: str, admin_id: str) -> bool:
        oid = object_id(group_id)
        if oid is None:
            return False
        return self.collection.update_one({"_id": oid}, {"$set": {"adminId": admin_id}}).matched_count > 0

    def delete_all(self) -> int:
        return self.collection.delete_many({}).deleted_count


@dataclass
class Repositories:
    users: UserRepository
    messages: MessageRepository
    groups: GroupRepository

    @classmethod
    def for_database(cls, db: Database, history_limit: int = 500) -> Repositories:
        return cls(
            users=UserRepository(db),
            messages=MessageRepository(db, history_limit=history_limit),
            groups=GroupRepository(db),
        )
