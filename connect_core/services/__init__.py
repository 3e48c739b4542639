# =============================================================================
# connect_core/services/__init__.py
# Service Layer for Connect
# Separates client rules from UI presentation
# =============================================================================
"""
Service Layer for Connect

Usage Example:
-------------
    from connect_core.services import ChatService

    chat = ChatService(gateway)
    result = chat.login("Ana", "ana@x.com")
    if result.success:
        print(f"Logged in as {result.data.username}")

    sent = chat.send(receiver_id=bob_id, text="hello")
    if sent.success and sent.metadata["queued"]:
        print("Queued locally, will be delivered when back online")
"""

from .base_service import BaseService, ServiceResult
from .chat_service import ChatService, attachment_payload

__all__ = [
    "BaseService",
    "ServiceResult",
    "ChatService",
    "attachment_payload",
]
