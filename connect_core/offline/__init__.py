# =============================================================================
# connect_core/offline/__init__.py
# Offline-Tolerant Client Layer for Connect
# =============================================================================
"""
Offline-Tolerant Client Layer

Every UI action goes through the SyncGateway. The remote API is always tried
first; when it cannot be reached, the operations that have a local answer
(register, list users, send, direct history) are served from SQLite.

Architecture:
------------
┌─────────────────────────────────────────────────────────────────┐
│                       CONNECT CLIENT LAYER                       │
├─────────────────────────────────────────────────────────────────┤
│                                                                  │
│   ┌──────────────────┐                                          │
│   │     PollLoop     │  every 2s: users, groups, open chat      │
│   └──────────────────┘                                          │
│            │                                                     │
│            ▼                                                     │
│   ┌──────────────────────────────────────────────────────────┐  │
│   │                      SyncGateway                          │  │
│   │          (Single API - UI actions use this only)          │  │
│   └──────────────────────────────────────────────────────────┘  │
│              │                           │                      │
│              ▼                           ▼                      │
│   ┌──────────────────┐        ┌──────────────────┐             │
│   │RemoteStoreAdapter│        │  LocalDatabase   │             │
│   │  (HTTP, timeout) │        │ (SQLite fallback)│             │
│   └──────────────────┘        └──────────────────┘             │
│              │                                                   │
│              ▼                                                   │
│   ┌──────────────────┐                                          │
│   │ ConnectionManager│  reachable = last call answered 2xx      │
│   └──────────────────┘                                          │
└─────────────────────────────────────────────────────────────────┘

Usage:
------
from connect_core.offline import SyncGateway, LocalDatabase, PollLoop

gateway = SyncGateway(config, LocalDatabase(config.local_db_path).initialize())
user = gateway.register_user("Ana", "ana@x.com")

loop = PollLoop(gateway)
loop.set_session_user(user)
view = loop.tick()

print(gateway.is_remote_reachable())  # True/False
print(gateway.pending_sync_count)     # Messages queued offline
"""

from connect_core.offline.connection_manager import (
    ConnectionManager,
    ConnectionState,
    ConnectionStatus,
)

from connect_core.offline.local_database import (
    LocalDatabase,
    new_local_id,
)

from connect_core.offline.sync_gateway import SyncGateway

from connect_core.offline.poll_loop import (
    PollLoop,
    ViewState,
)

__all__ = [
    # Connectivity
    "ConnectionManager",
    "ConnectionState",
    "ConnectionStatus",
    # Local Database
    "LocalDatabase",
    "new_local_id",
    # Gateway (Main API)
    "SyncGateway",
    # Poll Loop
    "PollLoop",
    "ViewState",
]
