from __future__ import annotations

import io
import os
import time
from datetime import datetime, timezone
from typing import Any, Callable, Generator

# Must be set before the app modules read them
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("REDIS_URL", None)

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from elmify import models
from elmify.auth import JwtVerifier, get_jwt_verifier
from elmify.db import Base, SessionLocal, engine
from elmify.deps import get_storage
from elmify.errors import ResourceNotFoundError
from elmify.main import app
from elmify.services.identity_provider import get_clerk_client
from elmify.services.rate_limit import rate_limiter
from elmify.services.storage import ObjectMetadata

TEST_ISSUER = "https://clerk.test.elmify.app"


class FakeStorage:
    """In-memory stand-in for StorageService."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str | None]] = {}
        self.presigned: list[tuple[str, int | None]] = []

    def put(self, key: str, data: bytes, content_type: str | None = "audio/mpeg") -> None:
        self.objects[key] = (data, content_type)

    def generate_presigned_url(self, key: str, expires_in: int | None = None) -> str:
        self.presigned.append((key, expires_in))
        return f"https://storage.test/elmify-audio/{key}?X-Amz-Expires={expires_in or 3600}"

    def presign_or_passthrough(self, path: str | None) -> str | None:
        if not path:
            return None
        if path.startswith(("http://", "https://")):
            return path
        return self.generate_presigned_url(path)

    def object_exists(self, key: str) -> bool:
        return key in self.objects

    def get_object_metadata(self, key: str) -> ObjectMetadata:
        if key not in self.objects:
            raise ResourceNotFoundError("Audio file", key)
        data, content_type = self.objects[key]
        return ObjectMetadata(
            key=key,
            size=len(data),
            content_type=content_type,
            last_modified=datetime(2026, 1, 1, tzinfo=timezone.utc),
        )

    def list_objects(self, prefix: str = "") -> list[ObjectMetadata]:
        return [
            ObjectMetadata(key=key, size=len(data), content_type=None, last_modified=None)
            for key, (data, _) in sorted(self.objects.items())
            if key.startswith(prefix)
        ]

    def read_text(self, key: str, encoding: str = "utf-8") -> str:
        return self.objects[key][0].decode(encoding)

    def get_object_stream(self, key: str):
        return io.BytesIO(self.objects[key][0])

    def get_object_stream_range(self, key: str, start: int, end: int | None = None):
        data = self.objects[key][0]
        return io.BytesIO(data[start : (end + 1) if end is not None else None])


class FakeClerkClient:
    def __init__(self) -> None:
        self.deleted: list[str] = []

    def delete_user(self, clerk_id: str) -> None:
        self.deleted.append(clerk_id)


@pytest.fixture(scope="session", autouse=True)
def bootstrap() -> None:
    Base.metadata.create_all(bind=engine)


@pytest.fixture(autouse=True)
def clean_state() -> Generator[None, None, None]:
    yield
    with engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())
    rate_limiter.reset()
    app.dependency_overrides.clear()


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture()
def verifier(rsa_key) -> JwtVerifier:
    return JwtVerifier(TEST_ISSUER, signing_key=rsa_key.public_key())


@pytest.fixture()
def make_token(rsa_key) -> Callable[..., str]:
    def _make(sub: str = "user_test", expires_in: int = 300, **claims: Any) -> str:
        now = int(time.time())
        payload = {
            "sub": sub,
            "iss": TEST_ISSUER,
            "iat": now,
            "nbf": now,
            "exp": now + expires_in,
            **claims,
        }
        return jwt.encode(payload, rsa_key, algorithm="RS256")

    return _make


@pytest.fixture()
def auth_headers(make_token) -> Callable[..., dict[str, str]]:
    def _headers(sub: str = "user_test", **claims: Any) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(sub, **claims)}"}

    return _headers


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def clerk() -> FakeClerkClient:
    return FakeClerkClient()


@pytest.fixture()
def client(verifier, storage, clerk) -> Generator[TestClient, None, None]:
    app.dependency_overrides[get_jwt_verifier] = lambda: verifier
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_clerk_client] = lambda: clerk
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Create a database session for testing."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def catalog(db: Session) -> dict[str, Any]:
    """A free and a premium speaker, one collection each, a few lectures."""
    free = models.Speaker(name="Free Speaker", is_premium=False, image_url="speakers/free.jpg")
    premium = models.Speaker(name="Premium Speaker", is_premium=True)
    db.add_all([free, premium])
    db.flush()

    free_collection = models.Collection(
        speaker_id=free.id,
        title="Foundations",
        year=2020,
        cover_image_url="Free Speaker/Foundations/collection.jpg",
    )
    premium_collection = models.Collection(speaker_id=premium.id, title="Advanced Topics")
    db.add_all([free_collection, premium_collection])
    db.flush()

    lectures = [
        models.Lecture(
            title="Second Steps",
            file_name="02 - Second Steps.mp3",
            file_path="Free Speaker/Foundations/02 - Second Steps.mp3",
            duration=600,
            lecture_number=2,
            play_count=5,
            speaker_id=free.id,
            collection_id=free_collection.id,
        ),
        models.Lecture(
            title="First Steps",
            file_name="01 - First Steps.mp3",
            file_path="Free Speaker/Foundations/01 - First Steps.mp3",
            duration=1200,
            lecture_number=1,
            play_count=1,
            speaker_id=free.id,
            collection_id=free_collection.id,
        ),
        models.Lecture(
            title="Deep Dive",
            file_name="01 - Deep Dive.mp3",
            file_path="Premium Speaker/Advanced Topics/01 - Deep Dive.mp3",
            duration=3600,
            lecture_number=1,
            play_count=50,
            speaker_id=premium.id,
            collection_id=premium_collection.id,
        ),
    ]
    db.add_all(lectures)
    db.commit()

    return {
        "free_speaker": free.id,
        "premium_speaker": premium.id,
        "free_collection": free_collection.id,
        "premium_collection": premium_collection.id,
        "second": lectures[0].id,
        "first": lectures[1].id,
        "premium_lecture": lectures[2].id,
    }


@pytest.fixture()
def premium_user(db: Session) -> models.User:
    user = models.User(clerk_id="user_premium", email="premium@example.com", is_premium=True)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user
