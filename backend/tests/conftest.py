"""Shared test fixtures."""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUTH_JWT_SECRET"] = "test-secret"
os.environ["AUTH_JWT_AUDIENCE"] = "authenticated"
os.environ["MESSAGE_SECRET_KEY"] = "test-message-key"
os.environ["COMPLETION_PROVIDER"] = "query"
os.environ["COMPLETION_BASE_URL"] = "http://llm.test"
os.environ["COMPLETION_INCLUDE_PERSONA"] = "true"

import json  # noqa: E402
import time  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from jose import jwt  # noqa: E402

from chatbot.api.deps import get_backend  # noqa: E402
from chatbot.core.database import async_session_factory, engine  # noqa: E402
from chatbot.core.rate_limit import limiter  # noqa: E402
from chatbot.main import app  # noqa: E402
from chatbot.models import Base  # noqa: E402
from chatbot.services.completion_client import QueryCompletionBackend  # noqa: E402


def make_token(sub: str, email: str = "", **claims) -> str:
    payload = {
        "sub": sub,
        "email": email,
        "aud": "authenticated",
        "exp": int(time.time()) + 3600,
        **claims,
    }
    return jwt.encode(payload, "test-secret", algorithm="HS256")


class FakeCompletionService:
    """Stands in for the LLM gateway behind ``httpx.MockTransport``."""

    def __init__(self):
        self.status_code = 200
        self.payload: dict = {"content": "Kyoto is lovely in autumn."}
        self.requests: list[dict] = []
        self.raise_error: Exception | None = None

    def reply(self, payload: dict, status_code: int = 200) -> None:
        self.payload = payload
        self.status_code = status_code

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.raise_error is not None:
            raise self.raise_error
        if request.method == "GET":
            return httpx.Response(200, json={"status": "ok"})
        self.requests.append(json.loads(request.content))
        return httpx.Response(self.status_code, json=self.payload)

    def backend(self) -> QueryCompletionBackend:
        return QueryCompletionBackend(transport=httpx.MockTransport(self.handler))

    @property
    def last_messages(self) -> list[dict]:
        return self.requests[-1]["messages"]


@pytest.fixture(autouse=True)
async def database():
    """Fresh schema for every test (shared in-memory SQLite connection)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.store.clear()
    yield
    limiter.store.clear()


@pytest.fixture(autouse=True)
def completion():
    """Fake completion service wired into the app for every test."""
    fake = FakeCompletionService()
    app.dependency_overrides[get_backend] = fake.backend
    yield fake
    app.dependency_overrides.pop(get_backend, None)


@pytest.fixture
async def db_session():
    async with async_session_factory() as session:
        yield session


@pytest.fixture
async def client():
    """Async test client for the FastAPI app (no credentials)."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


def _authed_client(sub: str, email: str) -> AsyncClient:
    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"Authorization": f"Bearer {make_token(sub, email)}"},
    )


@pytest.fixture
async def alice():
    async with _authed_client("user-alice", "alice@example.com") as ac:
        yield ac


@pytest.fixture
async def bob():
    async with _authed_client("user-bob", "bob@example.com") as ac:
        yield ac


async def create_conversation(ac: AsyncClient, topic: str = "New Conversation") -> dict:
    response = await ac.post("/api/conversations", json={"topic": topic})
    assert response.status_code == 201, response.text
    return response.json()["conversation"]
