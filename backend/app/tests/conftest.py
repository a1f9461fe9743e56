from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import datetime

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models import UsageRecord, User
from app.services.usage_tracker import build_usage_record

AddUsage = Callable[..., Awaitable[UsageRecord]]


@pytest_asyncio.fixture
async def session_maker(tmp_path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


async def _create_user(session_maker: async_sessionmaker[AsyncSession], email: str, name: str) -> User:
    async with session_maker() as session:
        user = User(email=email, password_hash="not-a-real-hash", name=name, role="user", is_active=True)
        session.add(user)
        await session.commit()
        await session.refresh(user)
        return user


@pytest_asyncio.fixture
async def user(session_maker) -> User:
    return await _create_user(session_maker, "ana@example.com", "Ana")


@pytest_asyncio.fixture
async def other_user(session_maker) -> User:
    return await _create_user(session_maker, "ben@example.com", "Ben")


@pytest.fixture
def add_usage(session_maker) -> AddUsage:
    async def _add(
        user: User,
        created_at: datetime,
        model_id: str = "gpt-4o",
        prompt_tokens: int = 1000,
        completion_tokens: int = 500,
        request_type: str = "chat_completion",
    ) -> UsageRecord:
        record = build_usage_record(
            user_id=user.id,
            request_type=request_type,
            model_id=model_id,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
        )
        record.created_at = created_at
        async with session_maker() as session:
            session.add(record)
            await session.commit()
        return record

    return _add


@pytest_asyncio.fixture
async def client(session_maker) -> AsyncIterator[httpx.AsyncClient]:
    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()


def bearer_headers(user: User) -> dict[str, str]:
    token, _ = create_access_token(str(user.id), user.email, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers(user) -> dict[str, str]:
    return bearer_headers(user)


@pytest.fixture
def other_auth_headers(other_user) -> dict[str, str]:
    return bearer_headers(other_user)
