"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from thunt.config import get_settings
from thunt.database import close_db, get_engine, get_session_factory, init_db
from thunt.db import models  # noqa: F401
from thunt.db.base import Base
from thunt.db.models import Clue, Hunt

TEST_JWT_SECRET = "thunt-test-secret-0123456789abcdef0123456789"


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """HS256 tokens, fast retries; settings and JWT key caches cleared."""
    monkeypatch.setenv("THUNT_JWT_ALGORITHM", "HS256")
    monkeypatch.setenv("THUNT_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("THUNT_CONFLICT_BACKOFF_SECONDS", "0.001")
    monkeypatch.setenv("THUNT_CONFLICT_MAX_RETRIES", "10")
    monkeypatch.setenv("THUNT_LOG_FORMAT", "console")
    get_settings.cache_clear()
    from thunt.auth.jwt import reset_keys

    reset_keys()
    yield
    get_settings.cache_clear()
    reset_keys()


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """File-backed SQLite database so concurrent sessions use separate connections."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'thunt_test.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield get_session_factory()
    await close_db()


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """Get a direct database session for test setup and assertions."""
    async with session_factory() as session:
        yield session


HuntFactory = Callable[..., Awaitable[Hunt]]


@pytest_asyncio.fixture
async def hunt_factory(db_session: AsyncSession) -> HuntFactory:
    """Create a hunt with clues. Defaults: active, open window, easy, 3 riddle clues."""

    async def _create(
        *,
        status: str = "active",
        difficulty: str = "easy",
        clues: list[dict[str, Any]] | None = None,
        starts_at: datetime | None = None,
        ends_at: datetime | None = None,
        max_participants: int | None = None,
        prize_pool: int = 0,
        name: str = "Spring Hunt",
    ) -> Hunt:
        now = datetime.now(timezone.utc)
        hunt = Hunt(
            name=name,
            description="Find the hidden items",
            status=status,
            difficulty=difficulty,
            starts_at=starts_at or now - timedelta(hours=1),
            ends_at=ends_at or now + timedelta(hours=1),
            max_participants=max_participants,
            prize_pool=prize_pool,
        )
        db_session.add(hunt)
        await db_session.flush()

        if clues is None:
            clues = [
                {"kind": "riddle", "answer": f"answer {i}", "hints": [f"hint {i}.1", f"hint {i}.2"]}
                for i in range(3)
            ]
        for order, clue in enumerate(clues):
            db_session.add(Clue(
                hunt_id=hunt.id,
                clue_order=order,
                kind=clue.get("kind", "riddle"),
                clue_text=clue.get("clue_text", f"Clue number {order + 1}"),
                answer=clue.get("answer"),
                target_ref=clue.get("target_ref"),
                qr_secret=clue.get("qr_secret"),
                image_url=clue.get("image_url"),
                hints=clue.get("hints", []),
            ))
        await db_session.commit()
        return hunt

    return _create


def make_token(user_id: int, role: str | None = None, **claims: Any) -> str:
    """Bearer token as the marketplace auth service would issue it."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(hours=1),
        "iss": settings.jwt_issuer,
    }
    if role:
        payload["role"] = role
    payload.update(claims)
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Build Authorization headers for a user id (and optional role)."""

    def _headers(user_id: int, role: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(user_id, role)}"}

    return _headers


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client. No Redis: rate limiting and events degrade to no-ops."""
    from thunt.main import create_app

    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
