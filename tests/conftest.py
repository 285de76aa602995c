"""Pytest configuration and fixtures."""

import asyncio
import os
import sys
from datetime import date
from uuid import uuid4

# Must be set before config/db are imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import config
import models  # noqa: F401
from auth.jwt import create_access_token
from auth.principal import Principal, Role
from db import Base
from main import app
from models.client import ClientCreate
from models.project import ProjectCreate
from models.user import User
from services import clients_service, projects_service

# Fix Windows asyncio event loop
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_session():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )
    async with session_factory() as session:
        yield session
        await session.rollback()

    await engine.dispose()


@pytest.fixture(autouse=True)
def upload_dir(tmp_path, monkeypatch):
    """Point the blob store at a per-test directory."""
    path = tmp_path / "uploads"
    path.mkdir()
    monkeypatch.setattr(config.settings, "UPLOAD_DIR", str(path))
    return path


async def _make_principal(db_session, *, role: Role, email: str, name: str) -> Principal:
    user = User(id=uuid4(), email=email, name=name, role=role.value, is_active=True)
    db_session.add(user)
    await db_session.commit()
    # Principals are plain values, safe to use after a rolled-back service call
    return Principal(id=user.id, role=role)


@pytest_asyncio.fixture
async def admin(db_session) -> Principal:
    return await _make_principal(db_session, role=Role.ADMIN, email="admin@example.com", name="Admin")


@pytest_asyncio.fixture
async def em(db_session) -> Principal:
    return await _make_principal(
        db_session, role=Role.ENGAGEMENT_MANAGER, email="em1@example.com", name="Erin Manager"
    )


@pytest_asyncio.fixture
async def other_em(db_session) -> Principal:
    return await _make_principal(
        db_session, role=Role.ENGAGEMENT_MANAGER, email="em2@example.com", name="Frank Manager"
    )


@pytest_asyncio.fixture
async def pm(db_session) -> Principal:
    return await _make_principal(
        db_session, role=Role.RESOURCE_MANAGER, email="pm@example.com", name="Pat Projects"
    )


@pytest_asyncio.fixture
async def rm(db_session) -> Principal:
    return await _make_principal(
        db_session, role=Role.RESOURCE_MANAGER, email="rm@example.com", name="Riley Resource"
    )


@pytest.fixture
def client_payload_factory():
    """Factory for ClientCreate payloads."""

    def _make(code: str = "ACME01", **overrides) -> ClientCreate:
        data = {"name": "Acme", "code": code, "currency": "USD"}
        data.update(overrides)
        return ClientCreate(**data)

    return _make


@pytest_asyncio.fixture
async def acme(db_session, em, client_payload_factory):
    """Client ACME01 owned by ``em``; returns its id."""
    client = await clients_service.create_client(
        db_session, principal=em, payload=client_payload_factory()
    )
    return client.id


@pytest_asyncio.fixture
async def acme_project(db_session, em, pm, acme):
    """Project on ACME01 created by ``em`` and managed by ``pm``; returns its id."""
    project = await projects_service.create_project(
        db_session,
        principal=em,
        payload=ProjectCreate(
            name="Website Revamp",
            client_id=acme,
            project_manager_id=pm.id,
            start_date=date(2024, 1, 1),
            end_date=date(2024, 6, 1),
        ),
    )
    return project.id


@pytest.fixture
def override_get_db(db_session):
    """Override get_db dependency for testing."""
    from api.deps import get_db

    async def _get_db():
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    yield
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def api_client(override_get_db):
    """HTTP client bound to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


@pytest.fixture
def auth_headers():
    """Factory building the Authorization header for a principal."""

    def _headers(principal: Principal) -> dict:
        token = create_access_token(user_id=principal.id, role=principal.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _headers
