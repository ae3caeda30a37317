"""Shared fixtures: throwaway sqlite database, users with sessions, fake blob store."""

import io
import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="gitchat-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DIR}/test.db"
os.environ["KEEPALIVE_URL"] = ""
os.environ["STORAGE_ENDPOINT"] = ""

import pytest
from fastapi.testclient import TestClient

import gitchat.models  # noqa: F401  (registers tables)
from gitchat.db import Base, async_session_maker, engine
from gitchat.deps import get_storage
from gitchat.main import app
from gitchat.models import User, UserSession


async def reset_database() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


async def add_user(db, username: str, name: str = "") -> tuple[User, str]:
    """Create a user with a valid session; returns (user, session_token)."""
    user = User(
        username=username,
        display_name=name or username.title(),
        profile_url=f"https://github.com/{username}",
    )
    db.add(user)
    await db.flush()
    session = UserSession.create_session(user.id)
    db.add(session)
    await db.commit()
    return user, session.session_token


async def _create_user(username: str) -> str:
    async with async_session_maker() as db:
        _, token = await add_user(db, username)
        return token


class FakeStorage:
    """In-memory stand-in for the S3 blob store."""

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []

    def upload_image(self, file, filename, content_type, conversation_id):
        data = file.read()
        key = f"chat-images/{conversation_id}/{len(self.objects)}_{filename}"
        self.objects[key] = data
        return key, f"https://cdn.example.test/{key}", len(data)

    def delete_file(self, storage_key: str) -> bool:
        self.deleted.append(storage_key)
        return self.objects.pop(storage_key, None) is not None

    def get_public_url(self, storage_key: str) -> str:
        return f"https://cdn.example.test/{storage_key}"


def cookie(token: str) -> dict[str, str]:
    """Request headers for an API call made with ``token``'s session."""
    return {"Cookie": f"session_token={token}", "Accept": "application/json"}


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(storage):
    app.dependency_overrides[get_storage] = lambda: storage
    with TestClient(app) as test_client:
        test_client.portal.call(reset_database)
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(client):
    """Create a user with a session through the app's event loop; returns the token."""
    def _make(username: str) -> str:
        return client.portal.call(_create_user, username)
    return _make


@pytest.fixture
async def db():
    await reset_database()
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def png_bytes():
    return io.BytesIO(b"\x89PNG\r\n\x1a\n" + b"\x00" * 128)
