# =============================================================================
# connect_core/errors/exceptions.py
# Custom Exception Hierarchy for Connect
# =============================================================================

from typing import Optional, Dict, Any


class ConnectError(Exception):
    """
    Base exception for all Connect errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "VAL_001")
        details: Additional context as a dictionary
        recoverable: Whether the error can be recovered from
        http_status: Status code the remote API answers with
    """

    http_status: int = 500

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "CONNECT_000"
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.details:
            base += f" | Details: {self.details}"
        return base

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization"""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# REQUEST EXCEPTIONS (never retried)
# =============================================================================

class ValidationError(ConnectError):
    """Raised when input is malformed or a required field is missing"""

    http_status = 400

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        expected: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if expected:
            details["expected"] = expected

        super().__init__(
            message=message,
            code="VAL_001",
            details=details,
            **kwargs,
        )


class AuthorizationError(ConnectError):
    """Raised when the acting user lacks the admin/owner/group-admin role"""

    http_status = 403

    def __init__(
        self,
        message: str,
        allowed: Optional[str] = None,
        actor_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if allowed:
            details["allowed"] = allowed
        if actor_id:
            details["actor_id"] = actor_id

        super().__init__(
            message=message,
            code="AUTH_001",
            details=details,
            **kwargs,
        )


class NotFoundError(ConnectError):
    """Raised when the target id does not exist"""

    http_status = 404

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if resource:
            details["resource"] = resource
        if resource_id:
            details["id"] = resource_id

        super().__init__(
            message=message,
            code="NOTFOUND_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# SERVER EXCEPTIONS (eligible for user-initiated retry)
# =============================================================================

class ServerFault(ConnectError):
    """Raised when the store fails while handling a valid request"""

    http_status = 500

    def __init__(self, message: str, operation: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if operation:
            details["operation"] = operation

        super().__init__(
            message=message,
            code="SERVER_001",
            details=details,
            **kwargs,
        )


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(ConnectError):
    """Raised when configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        expected_type: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if config_key:
            details["config_key"] = config_key
        if expected_type:
            details["expected_type"] = expected_type

        super().__init__(
            message=message,
            code="CONFIG_001",
            details=details,
            recoverable=False,
            **kwargs,
        )
