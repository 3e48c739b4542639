# =============================================================================
# connect_core/config.py
# Client and server configuration
# =============================================================================
"""
Configuration objects for the client sync layer and the remote API.

Client base URL resolution order:
    explicit argument > persisted ``connect_api_url`` setting
    > Streamlit secrets ``[connect] base_url`` > ``BACKEND_URL`` env > default

Expected secrets.toml format:
    [connect]
    base_url = "https://connect-api.example.com"
    timeout_seconds = 3
"""

from __future__ import annotations
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from connect_core.errors import ConfigurationError
from connect_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_BASE_URL = "http://localhost:3001"
LOCAL_MOCK_URL = "LOCAL_MOCK"
DEFAULT_LOCAL_DB_PATH = Path("local_data") / "connect.db"

# Keys in the local app_settings table
SETTING_API_URL = "connect_api_url"
SETTING_SESSION_USER = "connect_session_user"


@dataclass
class ClientConfig:
    """Settings for the Remote Store Adapter, Sync Gateway and Poll Loop."""
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 3.0
    poll_interval_seconds: float = 2.0
    local_db_path: Path = DEFAULT_LOCAL_DB_PATH

    def __post_init__(self):
        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                "timeout_seconds must be positive",
                config_key="timeout_seconds",
                expected_type="float > 0",
            )
        if self.poll_interval_seconds <= 0:
            raise ConfigurationError(
                "poll_interval_seconds must be positive",
                config_key="poll_interval_seconds",
                expected_type="float > 0",
            )
        self.base_url = self.base_url.rstrip("/")
        self.local_db_path = Path(self.local_db_path)

    @property
    def is_local_mock(self) -> bool:
        return self.base_url == LOCAL_MOCK_URL


def _load_streamlit_secrets() -> Dict[str, Any]:
    """Read the [connect] table from Streamlit secrets, if any."""
    try:
        import streamlit as st

        if "connect" in st.secrets:
            return dict(st.secrets["connect"])
    except Exception as e:
        # No secrets file configured
        logger.debug(f"Streamlit secrets not available: {e}")
    return {}


def load_client_config(
    base_url: Optional[str] = None,
    persisted_url: Optional[str] = None,
    local_db_path: Optional[Path] = None,
) -> ClientConfig:
    """
    Build the client configuration.

    Args:
        base_url: Explicit backend URL (wins over everything else)
        persisted_url: Last-used URL read from the local settings table
        local_db_path: Override for the SQLite file location

    Returns:
        ClientConfig
    """
    secrets = _load_streamlit_secrets()

    resolved_url = (
        base_url
        or persisted_url
        or secrets.get("base_url")
        or os.getenv("BACKEND_URL")
        or DEFAULT_BASE_URL
    )

    config = ClientConfig(
        base_url=resolved_url,
        timeout_seconds=float(secrets.get("timeout_seconds", 3.0)),
        poll_interval_seconds=float(secrets.get("poll_interval_seconds", 2.0)),
        local_db_path=local_db_path or Path(
            os.getenv("CONNECT_LOCAL_DB", str(DEFAULT_LOCAL_DB_PATH))
        ),
    )
    logger.debug(f"Client config resolved: base_url={config.base_url}")
    return config


@dataclass
class ServerConfig:
    """Settings for the FastAPI remote API."""
    mongodb_uri: str = "mongodb://localhost:27017"
    db_name: str = "connect-messaging"
    admin_email: Optional[str] = None
    port: int = 3000
    message_history_limit: int = 500

    @classmethod
    def from_env(cls) -> ServerConfig:
        port = os.getenv("PORT", "3000")
        if not port.isdigit():
            raise ConfigurationError(
                f"PORT must be an integer, got {port!r}",
                config_key="PORT",
                expected_type="int",
            )
        return cls(
            mongodb_uri=os.getenv("MONGODB_URI", cls.mongodb_uri),
            db_name=os.getenv("MONGODB_DB", cls.db_name),
            admin_email=os.getenv("CONNECT_ADMIN_EMAIL") or None,
            port=int(port),
        )
