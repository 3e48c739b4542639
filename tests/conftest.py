# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import pytest
from typing import Any, Dict, Optional

from connect_core.api.remote_store import RemoteStoreAdapter
from connect_core.config import ClientConfig, ServerConfig
from connect_core.models import User
from connect_core.offline.connection_manager import ConnectionManager
from connect_core.offline.local_database import LocalDatabase
from connect_core.offline.sync_gateway import SyncGateway
from tests.helpers import ADMIN_EMAIL, ScriptedRemote


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def ana():
    """A user as the remote API returns it"""
    return User(
        id="64b000000000000000000001",
        username="Ana",
        email="ana@x.com",
        avatar="https://api.dicebear.com/7.x/avataaars/svg?seed=ana@x.com",
        status="Hey there! I am using Connect.",
        last_seen=1_700_000_000_000,
    )


@pytest.fixture
def bob():
    return User(
        id="64b000000000000000000002",
        username="Bob",
        email="bob@x.com",
        last_seen=1_700_000_000_000,
    )


# =============================================================================
# CLIENT FIXTURES
# =============================================================================

@pytest.fixture
def client_config(tmp_path):
    """Client config pointing at a host that is never contacted"""
    return ClientConfig(
        base_url="http://connect.test",
        timeout_seconds=3.0,
        local_db_path=tmp_path / "connect.db",
    )


@pytest.fixture
def local_db(tmp_path):
    """Fresh SQLite store per test"""
    db = LocalDatabase(tmp_path / "connect.db").initialize()
    yield db
    db.close()


@pytest.fixture
def connection():
    return ConnectionManager()


@pytest.fixture
def remote(connection):
    return ScriptedRemote(connection)


@pytest.fixture
def gateway(client_config, local_db, remote, connection):
    """SyncGateway over the scripted remote and a real SQLite store"""
    return SyncGateway(client_config, local_db, adapter=remote, connection=connection)


# =============================================================================
# SERVER FIXTURES
# =============================================================================

@pytest.fixture
def mongo_db():
    """In-memory MongoDB"""
    import mongomock

    return mongomock.MongoClient()["connect-test"]


@pytest.fixture
def server_config():
    return ServerConfig(admin_email=ADMIN_EMAIL)


@pytest.fixture
def api_client(mongo_db, server_config):
    """TestClient over the real FastAPI app"""
    from fastapi.testclient import TestClient
    from connect_core.server.app import create_app

    app = create_app(mongo_db, server_config)
    with TestClient(app, raise_server_exceptions=False) as client:
        yield client


@pytest.fixture
def register(api_client):
    """Register a user through the API and return its JSON"""
    def _register(username: str, email: Optional[str] = None) -> Dict[str, Any]:
        email = email or f"{username.lower()}@x.com"
        response = api_client.post("/users", json={"username": username, "email": email})
        assert response.status_code in (200, 201), response.text
        return response.json()

    return _register


@pytest.fixture
def admin_user(register):
    """The configured admin email, signed up after the app started"""
    return register("Admin", ADMIN_EMAIL)


@pytest.fixture
def live_gateway(api_client, local_db, connection):
    """SyncGateway whose real adapter talks to the in-process API"""
    config = ClientConfig(base_url="http://testserver", local_db_path=local_db.db_path)
    adapter = RemoteStoreAdapter(config, connection, session=api_client)
    return SyncGateway(config, local_db, adapter=adapter, connection=connection)
