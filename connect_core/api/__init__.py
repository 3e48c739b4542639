"""
Remote store access
Typed HTTP calls against the Connect remote API
"""

from .remote_store import RemoteStoreAdapter, RemoteResult, FailureKind

__all__ = [
    "RemoteStoreAdapter",
    "RemoteResult",
    "FailureKind",
]
