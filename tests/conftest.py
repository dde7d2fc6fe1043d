# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime
from itertools import count

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MESSAGE_ENCRYPTION_KEY", "test-message-encryption-key")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from parley.api.v1.dependencies import get_encryption_service_dep, get_media_service_dep
from parley.core.security import create_access_token
from parley.db.session import Base
from parley.db.session import get_db as app_get_session
from parley.main import app as fastapi_app
from parley.models import Message, User
from parley.services.encryption import EncryptionService
from parley.services.media import MediaService

TEST_DB_URL = "sqlite://"
TEST_MESSAGE_KEY = "test-message-encryption-key"

_USERNAME_COUNTER = count(1)


class MemoryBlobStore:
    """In-memory blob store used to observe media writes and releases."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}

    def put(self, key: str, data: bytes) -> None:
        self.blobs[key] = data

    def exists(self, key: str) -> bool:
        return key in self.blobs

    def delete(self, key: str) -> None:
        self.blobs.pop(key, None)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    # Service commits release savepoints; the outer transaction is rolled back.
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=True,
        join_transaction_mode="create_savepoint",
    )
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture()
def encryption() -> EncryptionService:
    return EncryptionService(TEST_MESSAGE_KEY)


@pytest.fixture()
def blob_store() -> MemoryBlobStore:
    return MemoryBlobStore()


@pytest.fixture()
def media_service(blob_store: MemoryBlobStore) -> MediaService:
    return MediaService(blob_store, url_prefix="/uploads/media", max_bytes=1024)


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_dependencies(
    app: FastAPI,
    db_session: Session,
    encryption: EncryptionService,
    media_service: MediaService,
) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_encryption_service_dep] = lambda: encryption
    app.dependency_overrides[get_media_service_dep] = lambda: media_service
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_encryption_service_dep, None)
        app.dependency_overrides.pop(get_media_service_dep, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    """Return a factory that persists users with unique usernames."""

    def _make_user(username: str | None = None, user_image: str | None = None) -> User:
        user = User(
            username=username or f"user{next(_USERNAME_COUNTER)}",
            display_name=(username or "User").title(),
            user_image=user_image,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture()
def alice(make_user: Callable[..., User]) -> User:
    return make_user("alice", user_image="/avatars/alice.png")


@pytest.fixture()
def bob(make_user: Callable[..., User]) -> User:
    return make_user("bob")


@pytest.fixture()
def carol(make_user: Callable[..., User]) -> User:
    return make_user("carol")


@pytest.fixture()
def make_message(
    db_session: Session,
    encryption: EncryptionService,
) -> Callable[..., Message]:
    """Return a factory that inserts messages directly, bypassing the service."""

    def _make_message(
        sender: User,
        receiver: User,
        content: str | None = "hello",
        *,
        created_at: datetime | None = None,
        media_url: str | None = None,
        media_type: str | None = None,
        read: bool = False,
        store_plaintext: bool = True,
        reply_to_id: int | None = None,
    ) -> Message:
        message = Message(
            sender_id=sender.id,
            receiver_id=receiver.id,
            media_url=media_url,
            media_type=media_type or ("image" if media_url else None),
            read=read,
            reply_to_id=reply_to_id,
            created_at=created_at or datetime.now(UTC),
        )
        if content is not None:
            bundle = encryption.encrypt(content, sender.id, receiver.id)
            message.encrypted_content = bundle.ciphertext
            message.iv = bundle.iv
            message.auth_tag = bundle.auth_tag
            message.algorithm = bundle.algorithm
            if store_plaintext:
                message.content = content
        db_session.add(message)
        db_session.commit()
        db_session.refresh(message)
        return message

    return _make_message


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    """Return a helper building authorization headers for a user."""

    def _headers(user: User) -> dict[str, str]:
        token = create_access_token(user.id)
        return {"Authorization": f"Bearer {token}"}

    return _headers
