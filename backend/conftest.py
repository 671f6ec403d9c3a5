# backend/conftest.py
import os
import sys
from pathlib import Path

import pytest

# Add backend root to PYTHONPATH
BACKEND_ROOT = Path(__file__).resolve().parent
if str(BACKEND_ROOT.parent) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT.parent))

# Settings are read at import time; keep the suite off any developer .env database
os.environ.setdefault("ENV", "test")
os.environ.pop("DATABASE_URL", None)
os.environ.pop("TEST_DATABASE_URL", None)

TEST_JWT_SECRET = "test-secret-" + "x" * 40
START_TIME = 1_780_000_000.0  # 2026-05-28T20:26:40Z


class FakeTime:
    def __init__(self, start: float = START_TIME):
        self.current = start

    def advance(self, seconds: float):
        self.current += seconds

    def __call__(self):
        return self.current


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def test_settings():
    from backend.core.config import Settings

    return Settings(
        _env_file=None,
        ENV="test",
        JWT_SECRET=TEST_JWT_SECRET,
        ALLOWED_ORIGINS="http://localhost:3000",
        FREE_STORY_LIMIT=3,
        RATE_LIMIT_API_ENABLED=False,
        BOOTSTRAP_ADMIN_EMAIL=None,
        BOOTSTRAP_ADMIN_PASSWORD=None,
    )


@pytest.fixture
def memory_store():
    from backend.storage.memory import InMemoryStore

    return InMemoryStore()


@pytest.fixture
def sql_store():
    """SqlStore over a private in-memory SQLite database (StaticPool)."""
    from backend.core.database import create_db_engine
    from backend.storage.sql import SqlStore

    engine = create_db_engine("sqlite://")
    store = SqlStore(engine)
    yield store
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Run the test once per store implementation."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def credentials():
    from backend.core.security import CredentialStore

    return CredentialStore(TEST_JWT_SECRET)


@pytest.fixture
def app(memory_store, test_settings, credentials, fake_time):
    from backend.main import create_app

    return create_app(memory_store, settings_obj=test_settings, credentials=credentials, clock=fake_time)


@pytest.fixture
def client(app):
    from fastapi.testclient import TestClient

    return TestClient(app)


@pytest.fixture
def register_user(client):
    """Register through the API; returns the auth payload (userId, token, ...)."""
    counter = {"n": 0}

    def _register(email=None, password="secret123", name="Test Parent"):
        counter["n"] += 1
        email = email or f"parent{counter['n']}@example.com"
        resp = client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
        assert resp.status_code == 200, resp.text
        return resp.json()

    return _register


@pytest.fixture
def make_admin(memory_store):
    """Flip is_admin directly in the store (the only way to mint the first admin besides bootstrap)."""
    from backend.models.user import UserUpdate

    def _make_admin(user_id: str, is_admin: bool = True):
        with memory_store.unit_of_work() as uow:
            return uow.users.update(user_id, UserUpdate(is_admin=is_admin))

    return _make_admin


@pytest.fixture
def admin_user(register_user, make_admin):
    payload = register_user(email="admin@example.com", name="Admin Person")
    make_admin(payload["userId"])
    return payload
