"""Pytest configuration and fixtures."""

import base64
import io
import os
import tempfile

# Point settings at a throwaway SQLite database before anything imports src
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("IMAGES_DIR", os.path.join(tempfile.gettempdir(), "feed-test-images"))

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient

from src.database import Base, SessionLocal, engine, get_db
from src.main import app
from src.models.user import User
from src.services.assets import ImageStore, get_image_store
from src.services.realtime import BroadcastHub

# 1x1 transparent PNG
PNG_BYTES = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


class AuthHeaders(dict):
    """Dict subclass that also stores user_id and email."""

    def __init__(self, *args, user_id: int | None = None, email: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.user_id = user_id
        self.email = email


class RecordingHub(BroadcastHub):
    """In-memory hub that also remembers everything published."""

    def __init__(self) -> None:
        super().__init__()
        self.published: list[tuple[str, dict]] = []

    def publish(self, topic: str, payload: dict) -> int:
        self.published.append((topic, payload))
        return super().publish(topic, payload)

    @property
    def actions(self) -> list[str]:
        return [payload["action"] for _, payload in self.published]


def _make_upload(filename: str = "photo.png", data: bytes = PNG_BYTES) -> UploadFile:
    return UploadFile(file=io.BytesIO(data), filename=filename)


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create test database schema once at the start of the test session."""
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(scope="function", autouse=True)
def db():
    """Create a fresh database session for each test with cleanup."""
    session = SessionLocal()

    yield session

    # Clean up all data after test
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture
def hub():
    return RecordingHub()


@pytest.fixture
def image_store(tmp_path):
    return ImageStore(tmp_path / "images", max_bytes=1024 * 1024)


@pytest.fixture
def make_user(db):
    """Insert a user row directly, skipping bcrypt."""
    counter = iter(range(1, 1000))

    def _make_user(name: str = "User") -> User:
        user = User(email=f"user{next(counter)}@example.com", name=name, password_hash="hash")
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture(scope="function")
def client(db, hub, image_store):
    """Create a test client with database, image store and hub overrides."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_image_store] = lambda: image_store
    with TestClient(app) as test_client:
        app.state.broadcast_hub = hub
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    """Sign up and log in a user, returning auth headers."""

    def _register(email: str = "test@example.com", name: str = "Test User") -> AuthHeaders:
        response = client.post(
            "/api/v1/auth/signup",
            json={"email": email, "password": "testpass123", "name": name},
        )
        assert response.status_code == 201
        response = client.post(
            "/api/v1/auth/login", json={"email": email, "password": "testpass123"}
        )
        assert response.status_code == 200
        data = response.json()
        return AuthHeaders(
            {"Authorization": f"Bearer {data['access_token']}"},
            user_id=data["user_id"],
            email=email,
        )

    return _register


@pytest.fixture
def auth_headers(register):
    """Create a user and return auth headers with user info."""
    return register()


@pytest.fixture
def make_upload():
    """Factory for in-memory image uploads."""
    return _make_upload


@pytest.fixture
def png_bytes():
    return PNG_BYTES
