"""Shared test fixtures.

Tests run against a throwaway SQLite database per test (aiosqlite) with the
schema created from model metadata, and with Redis disabled.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from wagerbook.auth.jwt import create_access_token, reset_keys
from wagerbook.config import get_settings
from wagerbook.database import close_db, get_engine, get_session_factory, init_db
from wagerbook.db import models  # noqa: F401
from wagerbook.db.base import Base
from wagerbook.predictions import registry
from wagerbook.redis_client import close_redis, init_redis

ADMIN_ID = "admin-1"


def _write_test_keys() -> tuple[str, str]:
    """Generate an RSA key pair for signing test tokens."""
    tmpdir = tempfile.mkdtemp(prefix="wagerbook_test_keys_")
    private_path = os.path.join(tmpdir, "jwt_private.pem")
    public_path = os.path.join(tmpdir, "jwt_public.pem")

    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    Path(private_path).write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    Path(public_path).write_bytes(
        key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )
    return private_path, public_path


_PRIVATE_KEY_PATH, _PUBLIC_KEY_PATH = _write_test_keys()
os.environ["WB_JWT_PRIVATE_KEY_PATH"] = _PRIVATE_KEY_PATH
os.environ["WB_JWT_PUBLIC_KEY_PATH"] = _PUBLIC_KEY_PATH
os.environ["WB_REDIS_URL"] = ""
os.environ["WB_LOG_FORMAT"] = "console"
get_settings.cache_clear()
reset_keys()


def auth_headers(user_id: str, *, is_admin: bool = False) -> dict[str, str]:
    """Bearer header for a caller, as issued by the identity service."""
    return {"Authorization": f"Bearer {create_access_token(user_id, is_admin=is_admin)}"}


@pytest_asyncio.fixture
async def database(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[str, None]:
    """Fresh SQLite database with all tables created."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'wagerbook.db'}"
    monkeypatch.setenv("WB_DATABASE_URL", url)
    get_settings.cache_clear()

    await init_db(url)
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield url
    await close_db()
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def db_session(database: str) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for service-level tests."""
    async with get_session_factory()() as session:
        yield session


@pytest_asyncio.fixture
async def session_factory(database: str):
    """Session factory for tests that need several concurrent sessions."""
    return get_session_factory()


@pytest_asyncio.fixture
async def client(database: str) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client against the app, with the database initialised."""
    from wagerbook.main import create_app

    app = create_app()
    await init_redis(get_settings().redis_url)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await close_redis()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers(ADMIN_ID, is_admin=True)


@pytest_asyncio.fixture
async def open_prediction(db_session: AsyncSession) -> models.Prediction:
    """An open two-option prediction with no betting window."""
    return await registry.create_prediction(
        db_session,
        title="Will it rain on Saturday?",
        options=["Yes", "No"],
        created_by=ADMIN_ID,
    )


@pytest.fixture
def headers_for():
    """Factory for caller headers: ``headers_for("u1")`` or ``headers_for("a", is_admin=True)``."""
    return auth_headers
