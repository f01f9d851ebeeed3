"""Test fixtures — a fresh in-memory database and a fake GitHub per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI + httpx:

1. Each test gets its own in-memory SQLite engine (aiosqlite). StaticPool
   keeps the single connection alive, so every session sees the same DB.
   The schema is created from the models; nothing leaks between tests.
2. GitHub is an httpx.MockTransport backed by FakeGitHub, which records
   every call (method, path, token) so tests can assert on call counts.
3. The API client overrides get_db and get_github_client_factory, so
   routes run against the same DB and fake GitHub as the test body.
"""

import json
import re
from typing import Optional

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from hookwarden.config import settings
from hookwarden.db.engine import get_db
from hookwarden.db.models import Base
from hookwarden.github.client import GitHubClient, get_github_client_factory
from hookwarden.main import app

TEST_DB_URL = "sqlite+aiosqlite://"
GITHUB_TEST_URL = "https://github.test"
WEBHOOK_URL_PREFIX = "https://hooks.example.test"

_HOOK_PATH = re.compile(r"/organizations/(\d+)/hooks(?:/(\d+))?")


class FakeGitHub:
    """In-memory stand-in for the GitHub org hooks API.

    Set create_status / get_status to make those endpoints answer with an
    error, or create_exc to make the create call fail at transport level.
    """

    def __init__(self):
        self.hooks: dict[int, dict] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.next_hook_id = 1000
        self.scopes = "admin:org_hook, repo"
        self.create_status: Optional[int] = None
        self.get_status: Optional[int] = None
        self.create_exc: Optional[Exception] = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def creates(self) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] == "POST"]

    def reads(self) -> list[tuple[str, str, str]]:
        return [c for c in self.calls if c[0] == "GET" and c[1] != "/user"]

    def add_hook(self, org_id: int, *, active: bool = True) -> dict:
        self.next_hook_id += 1
        hook = {"id": self.next_hook_id, "org_id": org_id, "active": active, "config": {}}
        self.hooks[hook["id"]] = hook
        return hook

    def handler(self, request: httpx.Request) -> httpx.Response:
        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        path = request.url.path
        self.calls.append((request.method, path, token))

        if request.method == "GET" and path == "/user":
            return httpx.Response(
                200, json={"login": "octocat"}, headers={"X-OAuth-Scopes": self.scopes}
            )

        match = _HOOK_PATH.fullmatch(path)
        if not match:
            return httpx.Response(404, json={"message": "Not Found"})
        org_id, hook_id = int(match.group(1)), match.group(2)

        if request.method == "POST" and hook_id is None:
            if self.create_exc is not None:
                raise self.create_exc
            if self.create_status is not None:
                return httpx.Response(self.create_status, json={"message": "Server Error"})
            body = json.loads(request.content)
            self.next_hook_id += 1
            hook = {
                "id": self.next_hook_id,
                "org_id": org_id,
                "active": body["active"],
                "events": body["events"],
                "config": body["config"],
            }
            self.hooks[hook["id"]] = hook
            return httpx.Response(201, json=hook)

        if request.method == "GET" and hook_id is not None:
            if self.get_status is not None:
                return httpx.Response(self.get_status, json={"message": "Bad credentials"})
            hook = self.hooks.get(int(hook_id))
            if hook is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=hook)

        return httpx.Response(405, json={"message": "Method Not Allowed"})


@pytest.fixture()
def github():
    return FakeGitHub()


@pytest.fixture()
def client_factory(github):
    """Token -> GitHubClient wired to the fake."""
    def factory(token: str) -> GitHubClient:
        return GitHubClient(token, base_url=GITHUB_TEST_URL, transport=github.transport)
    return factory


@pytest.fixture()
def webhook_prefix(monkeypatch):
    """Configure the callback URL prefix on the global settings."""
    monkeypatch.setattr(settings, "webhook_url_prefix", WEBHOOK_URL_PREFIX)
    return WEBHOOK_URL_PREFIX


@pytest_asyncio.fixture()
async def engine():
    engine = create_async_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """Per-test session on the fresh in-memory database."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def client(db_session, client_factory):
    """HTTP client with get_db and the GitHub client factory overridden.

    Learn: Operator auth stays on; HOOKWARDEN_OPERATOR_API_KEY is empty in
    development, so requests pass without X-API-Key unless a test sets it.
    """
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_github_client_factory] = lambda: client_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
