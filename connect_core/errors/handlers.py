# =============================================================================
# connect_core/errors/handlers.py
# Error Handling Utilities for the Connect UI
# =============================================================================

from __future__ import annotations
import functools
import traceback
from typing import Optional, Callable, TypeVar, Any
import streamlit as st

from connect_core.logging import get_logger
from connect_core.api.remote_store import FailureKind, RemoteResult
from .exceptions import ConnectError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    show_user_message: bool = True,
    log_error: bool = True,
    user_message: Optional[str] = None,
) -> None:
    """
    Centralized error handling function.

    Args:
        error: The exception to handle
        show_user_message: Whether to display error to user via st.error
        log_error: Whether to log the error
        user_message: Custom message to show user (uses error message if None)
    """
    if isinstance(error, ConnectError):
        message = user_message or error.message
        code = error.code
        details = error.details
        recoverable = error.recoverable
    else:
        message = user_message or str(error)
        code = "UNKNOWN"
        details = {"traceback": traceback.format_exc()}
        recoverable = True

    if log_error:
        logger.error(
            f"[{code}] {message}",
            extra={"details": details},
            exc_info=True,
        )

    if show_user_message:
        if recoverable:
            st.error(f"Error: {message}")
        else:
            st.error(f"Critical Error: {message}. Please check the configuration.")

        if details and st.session_state.get("debug_mode", False):
            with st.expander("Error Details", expanded=False):
                st.json(details)


def report_remote_failure(result: Optional[RemoteResult], action: str) -> None:
    """
    Tell the user why a gateway operation came back empty.

    Rejections carry the server's reason; network problems get a softer
    warning since the UI keeps working from the local store.
    """
    if result is None or result.ok:
        return

    if result.failure == FailureKind.REJECTED:
        st.error(f"{action} failed: {result.error}")
    else:
        st.warning(f"{action}: server unavailable ({result.error}). Working offline.")


class ErrorContext:
    """
    Context manager for error handling with automatic logging and user feedback.

    Usage:
        with ErrorContext("Creating group"):
            service.create_group(...)

        # On error, logs and shows: "Error during: Creating group"
    """

    def __init__(
        self,
        operation: str,
        recoverable: bool = True,
        show_success: bool = False,
        success_message: Optional[str] = None,
    ):
        self.operation = operation
        self.recoverable = recoverable
        self.show_success = show_success
        self.success_message = success_message

    def __enter__(self) -> ErrorContext:
        logger.info(f"Starting: {self.operation}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None:
            if isinstance(exc_val, ConnectError):
                handle_error(exc_val)
            else:
                handle_error(
                    exc_val,
                    user_message=f"Error during: {self.operation}",
                )

            # Suppress exception if recoverable
            return self.recoverable

        logger.info(f"Completed: {self.operation}")
        if self.show_success:
            st.success(self.success_message or f"{self.operation} completed")
        return False


def error_boundary(
    default_return: Any = None,
    error_message: Optional[str] = None,
    log: bool = True,
):
    """
    Decorator to wrap UI render functions with error handling.

    Usage:
        @error_boundary(error_message="Could not render chat")
        def render_chat(view):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(
                        f"Error in {func.__name__}: {e}",
                        exc_info=True,
                    )
                if error_message:
                    st.error(error_message)
                return default_return

        return wrapper

    return decorator
