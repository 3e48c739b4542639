# =============================================================================
# connect_core/errors/__init__.py
# Centralized Error Handling for Connect
# =============================================================================
# UI helpers live in connect_core.errors.handlers (imports streamlit).

from .exceptions import (
    ConnectError,
    ValidationError,
    AuthorizationError,
    NotFoundError,
    ServerFault,
    ConfigurationError,
)

__all__ = [
    "ConnectError",
    "ValidationError",
    "AuthorizationError",
    "NotFoundError",
    "ServerFault",
    "ConfigurationError",
]
