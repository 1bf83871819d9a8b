"""
Shared fixtures.

Stores and registries run against a real libSQL file under tmp_path; push
transport is patched per test.
"""
import os
import tempfile

import pytest

# Set required environment variables for tests
os.environ.setdefault("JWT_SECRET", "test_jwt_secret_for_testing_only")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault(
    "DATABASE_PATH", os.path.join(tempfile.mkdtemp(prefix="tasksync-"), "global.db")
)

from fastapi.testclient import TestClient

from tasksync.auth.crypto import create_access_token
from tasksync.database import StorageManager
from tasksync.push.dispatcher import NotificationDispatcher, get_notification_dispatcher
from tasksync.push.registry import SubscriptionRegistry, get_subscription_registry
from tasksync.push.vapid import VapidKeyStore, get_vapid_key_store
from tasksync.sync.store import VersionedStore, get_versioned_store


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.value = start

    def __call__(self) -> int:
        return self.value

    def advance(self, ms: int) -> None:
        self.value += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage(tmp_path):
    manager = StorageManager(str(tmp_path / "tasksync.db"))
    yield manager
    manager.close_connection()


@pytest.fixture
def store(storage, clock):
    return VersionedStore(storage, clock=clock)


@pytest.fixture
def registry(storage):
    return SubscriptionRegistry(storage)


@pytest.fixture
def key_store(storage):
    return VapidKeyStore(storage)


@pytest.fixture
def dispatcher(registry, key_store):
    return NotificationDispatcher(registry, key_store, timeout=1.0)


@pytest.fixture
def auth_headers():
    """Bearer header factory for an account."""
    def _headers(account: str = "alice") -> dict:
        return {"Authorization": f"Bearer {create_access_token(account)}"}
    return _headers


@pytest.fixture
def client(store, registry, key_store, dispatcher):
    """TestClient wired to the per-test storage."""
    from tasksync.main import app

    app.dependency_overrides[get_versioned_store] = lambda: store
    app.dependency_overrides[get_subscription_registry] = lambda: registry
    app.dependency_overrides[get_vapid_key_store] = lambda: key_store
    app.dependency_overrides[get_notification_dispatcher] = lambda: dispatcher

    yield TestClient(app)

    app.dependency_overrides.clear()
