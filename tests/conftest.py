"""Test fixtures — a fresh SQLite database per test, real auth pipeline.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own SQLite file under tmp_path (aiosqlite, NullPool),
   with the schema created from the ORM metadata. Nothing leaks between
   tests and no PostgreSQL server is needed.
2. get_db is overridden to open a new session from that database per
   request, exactly like production: services really commit, and tests
   can observe committed state from a separate session.
3. Object storage is an in-memory fake injected through
   app.dependency_overrides[get_storage], so tests can count writes and
   inject failures or delays.

Environment is set before anything from warden is imported, because the
settings singleton is built at import time.
"""

import asyncio
import os
import tempfile
import uuid

os.environ["WARDEN_ENVIRONMENT"] = "test"
os.environ["WARDEN_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["WARDEN_REDIS_URL"] = "redis://127.0.0.1:1/0"
os.environ["WARDEN_JWT_SECRET"] = "test-secret-0123456789abcdef0123456789abcdef"
os.environ["WARDEN_BCRYPT_ROUNDS"] = "4"
os.environ["WARDEN_AUTH_COOKIES"] = "false"
os.environ["WARDEN_AVATAR_RETRY_BACKOFF_SECONDS"] = "0"
os.environ["WARDEN_STORAGE_LOCAL_DIR"] = tempfile.mkdtemp(prefix="warden-test-")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from warden.auth.tiers import Tier  # noqa: E402
from warden.db.engine import enable_sqlite_foreign_keys, get_db  # noqa: E402
from warden.db.models import Base  # noqa: E402
from warden.main import app  # noqa: E402
from warden.services.user_service import UserService  # noqa: E402
from warden.storage import ObjectStorage, StorageError, StoredObject, get_storage  # noqa: E402

PASSWORD = "correct-horse-battery"


class MemoryStorage(ObjectStorage):
    """In-memory object store with failure and latency injection."""

    name = "memory"

    def __init__(self):
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.puts = 0
        self.deletes = 0
        self.fail_puts = 0
        self.fail_deletes = False
        self.put_delay = 0.0

    async def put(self, key, data, content_type):
        self.puts += 1
        if self.put_delay:
            await asyncio.sleep(self.put_delay)
        if self.fail_puts > 0:
            self.fail_puts -= 1
            raise StorageError("injected put failure")
        self.objects[key] = (data, content_type)
        return StoredObject(key=key, size=len(data), content_type=content_type)

    async def delete(self, key):
        self.deletes += 1
        if self.fail_deletes:
            raise StorageError("injected delete failure")
        return self.objects.pop(key, None) is not None

    async def exists(self, key):
        return key in self.objects


@pytest_asyncio.fixture()
async def engine(tmp_path):
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'warden-test.db'}",
        poolclass=NullPool,
    )
    enable_sqlite_foreign_keys(eng)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for driving services directly and inspecting state."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def storage():
    return MemoryStorage()


@pytest_asyncio.fixture()
async def client(session_factory, storage):
    """HTTP client over the real app, with the test database and fake storage.

    Learn: Only infrastructure is overridden. Authentication and the
    policy table run for real, so tests log in and send bearer tokens.
    """

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture()
def make_user(session_factory):
    """Create an account directly through the service layer."""

    async def _make(email=None, *, tier=Tier.STANDARD, password=PASSWORD, name="Test User"):
        email = email or f"user-{uuid.uuid4().hex[:8]}@example.com"
        async with session_factory() as db:
            return await UserService(db).create_user(email, name, password, tier=tier)

    return _make


@pytest.fixture()
def login(client):
    """Log in over HTTP and return the token response body."""

    async def _login(email, password=PASSWORD):
        r = await client.post(
            "/api/v1/auth/login", json={"email": email, "password": password}
        )
        assert r.status_code == 200, r.text
        return r.json()

    return _login


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers():
    return bearer
