"""
Test infrastructure for the CampusNet API.

Strategy
--------
- SQLite in-memory via aiosqlite eliminates the need for a running Postgres
  instance in CI, keeping the suite fast and self-contained.
- StaticPool forces all async tasks to share the same in-memory database
  connection, which is required because SQLite in-memory databases are
  connection-scoped; a new connection would see an empty database.
- ``get_db`` and ``get_sessionmaker`` are overridden so request handlers,
  websocket handlers and the advisor stream all use the test database.
- All tables are created fresh before each test and dropped after, giving
  each test a clean isolated state without needing transactions or truncation.
- The Redis cache is disabled by setting cache._redis = None; the CacheManager
  already handles a None _redis gracefully (no-op reads and writes), so tests
  exercise real service logic without any Redis infrastructure.
- Sibling services are never contacted.  The ``ServiceClient`` handed to
  routers talks to ``SiblingServices`` through ``httpx.MockTransport``:
  it answers profile, post and engagement lookups from in-test registries
  and records every notification and cascade-delete call.
- Mail goes to an in-memory outbox and the LLM is a scripted fake.
"""
import json
import re

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from campusnet.cache import cache
from campusnet.clients import ServiceClient, get_service_client
from campusnet.database import Base, get_db, get_sessionmaker
from campusnet.gemini import LLMError, get_llm
from campusnet.mailer import Mailer, get_mailer
from campusnet.main import app
from campusnet.middleware import install_query_counter
from campusnet.security import create_access_token

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Register the per-request SQL query counter on the test engine.
install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Dependency overrides: replace the production session factory
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def override_get_sessionmaker() -> async_sessionmaker:
    return async_session_test


app.dependency_overrides[get_db] = override_get_db
app.dependency_overrides[get_sessionmaker] = override_get_sessionmaker


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class SiblingServices:
    """
    In-process stand-in for the other services a ServiceClient calls.

    Set ``down = True`` to make every call fail with 503.
    """

    def __init__(self) -> None:
        self.profiles: dict[int, dict] = {}
        self.posts: dict[int, dict] = {}
        self.likes: dict[int, list] = {}
        self.comments: dict[int, list] = {}
        self.shares: dict[int, list] = {}
        self.notifications: list[dict] = []
        self.requests: list[httpx.Request] = []
        self.down = False

    def add_profile(self, user_id: int, first_name: str, last_name: str, **fields) -> dict:
        profile = {
            "user_id": user_id,
            "first_name": first_name,
            "last_name": last_name,
            "avatar": f"https://avatars.test/{user_id}.png",
            "title": "",
            "bio": "",
            "role": "student",
            **fields,
        }
        self.profiles[user_id] = profile
        return profile

    def add_post(self, post_id: int, author_id: int, content: str) -> dict:
        post = {"id": post_id, "author_id": author_id, "content": content}
        self.posts[post_id] = post
        return post

    def calls(self, method: str, path_prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path.startswith(path_prefix)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.down:
            return httpx.Response(503, json={"detail": "unavailable"})

        path = request.url.path
        if request.method == "GET":
            if path == "/api/users/all":
                return httpx.Response(200, json=list(self.profiles.values()))
            m = re.fullmatch(r"/api/users/profile/(\d+)", path)
            if m:
                profile = self.profiles.get(int(m.group(1)))
                return httpx.Response(200, json=profile) if profile else httpx.Response(404, json={})
            m = re.fullmatch(r"/api/feed/posts/(\d+)", path)
            if m:
                post = self.posts.get(int(m.group(1)))
                return httpx.Response(200, json=post) if post else httpx.Response(404, json={})
            m = re.fullmatch(r"/api/engagement/(likes|comments|shares)/(\d+)", path)
            if m:
                registry = getattr(self, m.group(1))
                return httpx.Response(200, json=registry.get(int(m.group(2)), []))
        if request.method == "POST" and path == "/api/notifications":
            payload = json.loads(request.content)
            self.notifications.append(payload)
            return httpx.Response(201, json={"id": len(self.notifications), **payload})
        if request.method == "DELETE":
            return httpx.Response(200, json={"message": "deleted"})
        return httpx.Response(404, json={"detail": "Not Found"})


class FakeLLM:
    """Scripted replacement for GeminiClient."""

    def __init__(self, chunks=("Hello", ", world")) -> None:
        self.chunks = list(chunks)
        self.prompts: list[str] = []
        self.configured = True
        self.fail_after: int | None = None

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.fail_after is not None:
            raise LLMError("model unavailable")
        return "".join(self.chunks)

    async def stream(self, prompt: str):
        self.prompts.append(prompt)
        for i, chunk in enumerate(self.chunks):
            if self.fail_after is not None and i >= self.fail_after:
                raise LLMError("stream interrupted")
            yield chunk
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise LLMError("stream interrupted")


class FakeSocket:
    """Records what a ConnectionManager pushes to it."""

    def __init__(self, broken: bool = False) -> None:
        self.accepted = False
        self.broken = broken
        self.sent: list[dict] = []

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: dict) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(data)

    def events(self, name: str) -> list:
        return [frame["data"] for frame in self.sent if frame["event"] == name]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """
    Yield a live AsyncSession for tests that need to interact with the
    database directly (e.g. seeding data, asserting ORM state).
    """
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def siblings():
    """Sibling-service registry wired into the app's ServiceClient."""
    services = SiblingServices()
    client = ServiceClient(httpx.AsyncClient(transport=httpx.MockTransport(services.handler)))
    app.dependency_overrides[get_service_client] = lambda: client
    yield services
    app.dependency_overrides.pop(get_service_client, None)
    await client.aclose()


@pytest.fixture
def outbox():
    """In-memory mailer; yields its outbox list."""
    mailer = Mailer("memory")
    app.dependency_overrides[get_mailer] = lambda: mailer
    yield mailer.outbox
    app.dependency_overrides.pop(get_mailer, None)


@pytest.fixture
def llm():
    fake = FakeLLM()
    app.dependency_overrides[get_llm] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_llm, None)


@pytest_asyncio.fixture
async def async_client(siblings, outbox, llm) -> AsyncClient:
    """
    Yield an httpx.AsyncClient wired to the FastAPI app via ASGITransport.

    Redis is disabled by setting cache._redis = None before each request so
    that tests are deterministic and do not depend on external infrastructure.
    """
    cache._redis = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    """Return a factory building ``Authorization`` headers for a user id."""
    def make(user_id: int, email: str | None = None, role: str = "student") -> dict:
        token = create_access_token(
            user_id=user_id, email=email or f"user{user_id}@campus.test", role=role,
        )
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def fake_socket():
    """The FakeSocket class, for tests that drive a ConnectionManager directly."""
    return FakeSocket


@pytest_asyncio.fixture
async def connect_socket():
    """
    Register FakeSockets with a hub for the duration of a test.

    Usage: ``sock = await connect_socket(message_hub, user_id)``.
    """
    registered = []

    async def connect(hub, user_id: int, **kwargs) -> FakeSocket:
        sock = FakeSocket(**kwargs)
        await hub.connect(user_id, sock)
        registered.append((hub, user_id, sock))
        return sock

    yield connect
    for hub, user_id, sock in registered:
        hub.disconnect(user_id, sock)


@pytest.fixture
def internal_headers():
    from campusnet.config import settings
    return {"X-API-Key": settings.INTERNAL_API_KEY}
