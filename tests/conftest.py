"""
Shared fixtures: in-memory database, ASGI client, users and provider HTTP mocks.

Environment is set before any application module is imported so the
settings singleton picks it up.
"""

import os

os.environ.update(
    {
        "DATABASE_URL": "sqlite+aiosqlite://",
        "APP_URL": "http://dashboard.test",
        "OAUTH_REDIRECT_BASE": "http://api.test",
        "GOOGLE_CLIENT_ID": "google-id",
        "GOOGLE_CLIENT_SECRET": "google-secret",
        "MICROSOFT_CLIENT_ID": "ms-id",
        "MICROSOFT_CLIENT_SECRET": "ms-secret",
        "SALESFORCE_CLIENT_ID": "sf-id",
        "SALESFORCE_CLIENT_SECRET": "sf-secret",
        "HUBSPOT_CLIENT_ID": "hs-id",
        "HUBSPOT_CLIENT_SECRET": "hs-secret",
        "MONDAY_CLIENT_ID": "monday-id",
        "MONDAY_CLIENT_SECRET": "monday-secret",
        "JWT_SECRET": "test-jwt-secret",
        "OAUTH_STATE_SECRET": "test-state-secret",
        "TOKEN_ENCRYPTION_KEY": "YWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWE=",
        "BCRYPT_ROUNDS": "4",
    }
)

from unittest.mock import patch  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from auth.jwt import create_token  # noqa: E402
from auth.password import hash_password  # noqa: E402
from connectors.registry import ConnectorRegistry  # noqa: E402
from database.models import Base, Organization, User  # noqa: E402
from database.session import get_db_session  # noqa: E402


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest_asyncio.fixture
async def client(session_factory):
    from main import app

    async def _session_override():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_db_session] = _session_override
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


# ── Users ──────────────────────────────────────────────────────────────


async def _make_user(session, email, *, role="member", organization=None, password="s3cret-pw"):
    user = User(
        email=email,
        full_name=email.split("@")[0].title(),
        role=role,
        organization_id=organization.id if organization else None,
        password_hash=hash_password(password),
    )
    session.add(user)
    await session.commit()
    return user


@pytest_asyncio.fixture
async def org(session):
    organization = Organization(name="Acme Corp")
    session.add(organization)
    await session.commit()
    return organization


@pytest_asyncio.fixture
async def member(session, org):
    return await _make_user(session, "rep@acme.test", organization=org)


@pytest_asyncio.fixture
async def teammate(session, org):
    return await _make_user(session, "second.rep@acme.test", organization=org)


@pytest_asyncio.fixture
async def admin(session, org):
    return await _make_user(session, "admin@acme.test", role="org_admin", organization=org)


@pytest_asyncio.fixture
async def solo_user(session):
    return await _make_user(session, "solo@freelance.test")


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token(str(user.id))}"}

    return _headers


# ── Provider HTTP ──────────────────────────────────────────────────────


@pytest.fixture
def mock_http():
    """
    Route one connector's outgoing HTTP to *handler*::

        mock_http("gmail", lambda request: httpx.Response(200, json={...}))
    """
    patches = []

    def _install(provider, handler):
        connector = ConnectorRegistry().require(provider)
        p = patch.object(
            connector,
            "http_client",
            lambda: httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        p.start()
        patches.append(p)
        return connector

    yield _install
    for p in reversed(patches):
        p.stop()
