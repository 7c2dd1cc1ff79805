"""
tests/conftest.py -- Shared test fixtures for TrainingCRM tests.

This module provides:
  - Course: a minimal AuditableEntity used to exercise the save pipeline
  - clock / session_factory: an audited in-memory session factory with a
    controllable clock
  - token_service / credential_store / auth_service: auth building blocks
  - _patch_lifespan(): wires test objects into app.state, bypassing real startup
  - api_client: TestClient against the real app with isolated in-memory stores

Design: plain "sqlite://" URLs are safe here because core.database.make_engine
gives them a StaticPool, so the worker threads used by asyncio.to_thread and
TestClient all see the same in-memory database.

SECRET_KEY and LOGIN_RATE_LIMIT must be set before any api/auth/core import so
get_settings() builds a valid Settings and the login limit does not trip
during the suite.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before importing anything that calls get_settings().
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-trainingcrm-suite-0123456789")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi import APIRouter, Depends
from fastapi.testclient import TestClient
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from api.main import app
from auth.dependencies import get_unit_of_work, require_role
from auth.flows import AuthService
from auth.store import CredentialStore
from auth.tokens import TokenService
from core.actor import Actor
from core.config import JwtSettings
from core.database import make_engine
from persistence.database import create_schema, make_sessionmaker
from persistence.entities import AuditableEntity
from persistence.interceptor import AuditableEntityInterceptor
from persistence.unit_of_work import UnitOfWork

# ---------------------------------------------------------------------------
# Test entity
# ---------------------------------------------------------------------------


class Course(AuditableEntity):
    __tablename__ = "test_courses"

    title: Mapped[str] = mapped_column(String(200), unique=True)


class FakeClock:
    """Callable clock the interceptor and token service can be pointed at."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


TEST_JWT = JwtSettings(
    secret="unit-test-signing-key-0123456789abcdef",
    issuer="trainingcrm-tests",
    audience="trainingcrm-tests-clients",
    expiry_minutes=60,
    refresh_expiry_days=7,
)

# ---------------------------------------------------------------------------
# Routes that drive the audit pipeline over HTTP
# ---------------------------------------------------------------------------

_course_router = APIRouter()


@_course_router.post("/test/courses")
async def _create_course(body: dict, uow: UnitOfWork = Depends(get_unit_of_work)) -> dict:
    course = uow.repository(Course).add(Course(title=body["title"]))
    await uow.save_changes_async()
    return {"id": str(course.id), "created_by": course.created_by}


@_course_router.delete("/test/courses/{title}")
async def _delete_course(title: str, uow: UnitOfWork = Depends(get_unit_of_work)) -> dict:
    repo = uow.repository(Course)
    course = next(c for c in await repo.list_async() if c.title == title)
    repo.remove(course)
    await uow.save_changes_async()
    return {"is_deleted": course.is_deleted, "deleted_by": course.deleted_by}


@_course_router.get("/test/admin")
async def _admin_only(actor: Actor = Depends(require_role("Admin"))) -> dict:
    return {"user_id": actor.user_id}


app.include_router(_course_router, prefix="/api/v1")

# ---------------------------------------------------------------------------
# Persistence fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def session_factory(clock: FakeClock) -> Generator[sessionmaker, None, None]:
    """Audited session factory over a fresh in-memory database."""
    engine = make_engine("sqlite://")
    create_schema(engine)
    yield make_sessionmaker(engine, AuditableEntityInterceptor(clock=clock))
    engine.dispose()


# ---------------------------------------------------------------------------
# Auth fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def token_service() -> TokenService:
    return TokenService(TEST_JWT)


@pytest.fixture
def credential_store() -> Generator[CredentialStore, None, None]:
    store = CredentialStore(db_url="sqlite://")
    yield store
    store.close()


@pytest.fixture
def auth_service(credential_store: CredentialStore, token_service: TokenService) -> AuthService:
    return AuthService(credential_store, token_service)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: CredentialStore, tokens: TokenService, factory: sessionmaker):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see
    isolated in-memory databases rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.token_service = tokens
        app.state.credential_store = store
        app.state.session_factory = factory
        app.state.auth_service = AuthService(store, tokens)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient for API integration tests.

    The client uses the real FastAPI app with a patched lifespan so tests hit
    real route handlers and dependencies, but use isolated in-memory stores.
    One client per test module keeps the suite fast.
    """
    store = CredentialStore(db_url="sqlite://")
    engine = make_engine("sqlite://")
    create_schema(engine)
    factory = make_sessionmaker(engine)

    app.router.lifespan_context = _patch_lifespan(store, TokenService(TEST_JWT), factory)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    store.close()
    engine.dispose()
