# =============================================================================
# connect_core/server/__init__.py
# Connect Remote API (FastAPI + MongoDB)
# =============================================================================
"""
Remote API for Connect.

Run with:
    python -m connect_core.server

Environment:
    MONGODB_URI, MONGODB_DB, CONNECT_ADMIN_EMAIL, PORT
"""

from .app import create_app
from .database import get_database, init_collections, ensure_admin

__all__ = [
    "create_app",
    "get_database",
    "init_collections",
    "ensure_admin",
]
