# =============================================================================
# connect_core/server/database.py
# MongoDB connection and collection setup
# =============================================================================

from __future__ import annotations
from typing import Optional

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from connect_core.config import ServerConfig
from connect_core.logging import get_logger

logger = get_logger(__name__)

USERS = "users"
MESSAGES = "messages"
GROUPS = "groups"


def get_database(config: ServerConfig, client: Optional[MongoClient] = None) -> Database:
    """Connect to MongoDB and return the configured database."""
    client = client or MongoClient(config.mongodb_uri, serverSelectionTimeoutMS=5000)
    logger.info(f"Using MongoDB database '{config.db_name}'")
    return client[config.db_name]


def init_collections(db: Database) -> None:
    """Create the uniqueness and lookup indexes. Safe to call repeatedly."""
    db[USERS].create_index([("email", ASCENDING)], unique=True)

    # Natural key for messages
    db[MESSAGES].create_index(
        [("senderId", ASCENDING), ("receiverId", ASCENDING), ("timestamp", ASCENDING)],
        unique=True,
    )
    db[MESSAGES].create_index([("groupId", ASCENDING), ("timestamp", ASCENDING)])

    db[GROUPS].create_index([("memberIds", ASCENDING)])
    logger.info("Collections and indexes ready")


def ensure_admin(db: Database, email: Optional[str]) -> bool:
    """
    Grant the admin role to the account with this email.

    Returns:
        True if a matching user exists (promoted now or already admin)
    """
    if not email:
        return False

    result = db[USERS].update_one({"email": email}, {"$set": {"isAdmin": True}})
    if result.matched_count:
        logger.info(f"Admin role ensured for {email}")
        return True

    logger.warning(f"Admin account {email} not registered yet")
    return False
