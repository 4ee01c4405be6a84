"""Shared fixtures.

The environment is set before any application module is imported, since
settings are read once and cached. Each test gets its own SQLite file; the
schema is created with a sync engine and the app talks to the same file
through aiosqlite.
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ACCESS_TOKEN_SECRET"] = "test-access-secret"
os.environ["REFRESH_TOKEN_SECRET"] = "test-refresh-secret"
os.environ["ENVIRONMENT"] = "test"

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import Session, SQLModel

from database import get_session
from main import app, get_media_store
from models import User
from services.media_service import LocalMediaStore


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def sync_engine(db_path):
    engine = create_engine(f"sqlite:///{db_path}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def async_engine(db_path, sync_engine):
    return create_async_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)


@pytest_asyncio.fixture
async def session(async_engine):
    async with AsyncSession(async_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def media(tmp_path):
    return LocalMediaStore(tmp_path / "media", "/media")


@pytest.fixture
def client(async_engine, media):
    session_local = async_sessionmaker(async_engine, expire_on_commit=False)

    async def override_get_session():
        async with session_local() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_media_store] = lambda: media
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def seed(sync_engine):
    """Insert rows directly. Returns the row, or a tuple for several rows."""

    def _seed(*rows):
        with Session(sync_engine, expire_on_commit=False) as db:
            for row in rows:
                db.add(row)
                db.commit()
                db.refresh(row)
        return rows if len(rows) > 1 else rows[0]

    return _seed


@pytest.fixture
def fetch_user(sync_engine):
    """Read a user row straight from the database, bypassing the app."""

    def _fetch(user_id):
        with Session(sync_engine) as db:
            user = db.get(User, user_id)
            if user is not None:
                db.expunge(user)
            return user

    return _fetch
