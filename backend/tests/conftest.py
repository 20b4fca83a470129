"""
OpenBlind Backend — Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Environment variables are set before any openblind import, so the
       module-level `settings` object is built with test values. Each test
       that touches the database gets a fresh in-memory SQLite database
       (aiosqlite, StaticPool) with the schema created from the ORM models.

Fixture Hierarchy (all function-scoped):
    ├── cipher / closed_cipher / foreign_cipher: CipherEngine variants
    ├── mock_db_session: AsyncMock session for failure injection
    ├── db_engine → db_session: real async session on in-memory SQLite
    ├── make_legacy_profile / make_account: seed helpers (commit immediately)
    └── test_client: HTTPX AsyncClient against the FastAPI app, with the
        session and cipher dependencies overridden
"""

import os

# Override settings for testing BEFORE any openblind imports
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENCRYPTION_KEY"] = "test-encryption-secret-0123456789"
os.environ["ENCRYPTION_KDF_ITERATIONS"] = "1000"
os.environ["ENCRYPTION_FAIL_MODE"] = "open"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["RETRY_MIN_WAIT_MS"] = "0"
os.environ["RETRY_MAX_WAIT_MS"] = "1"
os.environ["RATE_LIMIT_REQUESTS"] = "10000"
os.environ["RATE_LIMIT_AUTH_REQUESTS"] = "10000"
os.environ["LOG_LEVEL"] = "WARNING"

from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from openblind.config import settings  # noqa: E402
from openblind.database import Base, get_db_session  # noqa: E402
from openblind.models.account import Account  # noqa: E402
from openblind.models.profile import UserProfile, default_preferences, utcnow  # noqa: E402
from openblind.services.cipher import (  # noqa: E402
    CipherEngine,
    FailMode,
    build_cipher_engine,
    derive_key,
    hash_password,
)



# ══════════════════════════════════════════════════════════════════════════
# Cipher Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def cipher() -> CipherEngine:
    """Fail-open engine built from the test settings."""
    return build_cipher_engine(settings)


@pytest.fixture
def closed_cipher() -> CipherEngine:
    """Same key as `cipher`, but transform failures raise."""
    key = derive_key(
        settings.encryption_key, settings.encryption_kdf_salt, settings.encryption_kdf_iterations
    )
    return CipherEngine(key, fail_mode=FailMode.CLOSED)


@pytest.fixture
def foreign_cipher() -> CipherEngine:
    """Engine holding a different key; its envelopes do not decrypt with `cipher`."""
    key = derive_key("another-secret-entirely", settings.encryption_kdf_salt, 1000)
    return CipherEngine(key)


# ══════════════════════════════════════════════════════════════════════════
# Database Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def mock_db_session():
    """
    Mock async database session for failure injection.

    Usage:
        mock_db_session.execute.side_effect = OperationalError("...", {}, None)
    """
    session = AsyncMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    session.close = AsyncMock()
    session.add = MagicMock()
    session.begin_nested = MagicMock(return_value=MagicMock())
    return session


@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database with the full schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine):
    factory = async_sessionmaker(db_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def make_legacy_profile(db_session):
    """
    Insert a profile the way the pre-encryption code stored it: plaintext
    sensitive fields and no version tag.
    """

    async def _make(user_id: int, given_name: str, family_name: str, **extra) -> UserProfile:
        profile = UserProfile(
            user_id=user_id,
            given_name=given_name,
            family_name=family_name,
            phone=extra.pop("phone", None),
            profile_image_url=extra.pop("profile_image_url", None),
            preferences=default_preferences(),
            encryption_version=extra.pop("encryption_version", None),
            last_profile_update=utcnow(),
            revision=1,
        )
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest.fixture
def make_account(db_session, cipher):
    """Insert an account; `legacy=True` stores the email in plaintext without a blind index."""

    async def _make(email: str, password: str = "correct-horse", legacy: bool = False) -> Account:
        account = Account(
            email=email if legacy else cipher.encrypt(email),
            email_hash=None if legacy else cipher.blind_index(email),
            password_hash=hash_password(password, rounds=4),
        )
        db_session.add(account)
        await db_session.commit()
        return account

    return _make


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(db_engine, cipher):
    """
    HTTPX AsyncClient routed straight into the FastAPI app.

    ASGITransport does not run the lifespan, so the cipher engine is put on
    app.state and injected through dependency overrides.

    Usage:
        async def test_health(test_client):
            response = await test_client.get("/health")
    """
    from openblind.main import app
    from openblind.routes.dependencies import get_cipher_engine

    factory = async_sessionmaker(db_engine, expire_on_commit=False)

    async def override_session():
        async with factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_cipher_engine] = lambda: cipher
    app.state.cipher_engine = cipher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()
