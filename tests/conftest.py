"""Pytest fixtures for service and API tests."""

import os
from collections.abc import AsyncGenerator, Generator

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LEVEL_PROGRESS_MODE", "inline")

import httpx
import pytest
import pytest_asyncio
import redis
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from flashbox.core.security import create_access_token
from flashbox.core.srs.leitner import TrainingType
from flashbox.db.base import Base
from flashbox.db.models import (
    Level,
    LevelProgressSnapshot,
    StudyHistoryEntry,
    StudyStatus,
    User,
    VocabularyItem,
)
from flashbox.db.session import get_db
from flashbox.main import create_app
from flashbox.utils.cache import cache_backend

TABLES = [
    User.__table__,
    Level.__table__,
    VocabularyItem.__table__,
    StudyStatus.__table__,
    StudyHistoryEntry.__table__,
    LevelProgressSnapshot.__table__,
]


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine, tables=list(reversed(TABLES)))
        engine.dispose()


@pytest.fixture()
def db_session(db_engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=db_engine, expire_on_commit=False
    )
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def clear_cache(monkeypatch) -> Generator[None, None, None]:
    # sessions stay in process memory during tests
    monkeypatch.setattr(cache_backend, "_redis", None)
    cache_backend.clear()
    try:
        yield
    finally:
        cache_backend.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    app = create_app()

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client


@pytest_asyncio.fixture()
async def async_client(db_session: Session) -> AsyncGenerator[httpx.AsyncClient, None]:
    app = create_app()

    async def override_get_db() -> AsyncGenerator[Session, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


def make_user(db: Session, email: str, *, is_active: bool = True) -> User:
    user = User(email=email, display_name=email.split("@")[0], is_active=is_active)
    db.add(user)
    db.commit()
    return user


def auth_headers_for(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture()
def user_factory(db_session):
    def create(email: str, *, is_active: bool = True) -> User:
        return make_user(db_session, email, is_active=is_active)

    return create


@pytest.fixture()
def learner(db_session) -> User:
    return make_user(db_session, "learner@example.com")


@pytest.fixture()
def other_learner(db_session) -> User:
    return make_user(db_session, "other@example.com")


@pytest.fixture()
def auth_headers(learner) -> dict[str, str]:
    return auth_headers_for(learner)


@pytest.fixture()
def level(db_session) -> Level:
    level = Level(code="A1-1", title="Everyday words", training_type=TrainingType.VOCABULARY)
    db_session.add(level)
    db_session.commit()
    return level


@pytest.fixture()
def level_items(db_session, level) -> list[VocabularyItem]:
    items = [
        VocabularyItem(
            text="apple",
            part_of_speech="noun",
            meanings=["a round fruit"],
            examples=[{"source": "An apple a day.", "target": "Ein Apfel am Tag."}],
            synonyms=[],
            level_id=level.id,
        ),
        VocabularyItem(
            text="run",
            part_of_speech="verb",
            meanings=["to move fast on foot"],
            examples=[],
            synonyms=["sprint", "dash"],
            level_id=level.id,
        ),
        VocabularyItem(
            text="quiet",
            part_of_speech="adjective",
            meanings=["making little noise"],
            examples=[],
            synonyms=["silent"],
            level_id=level.id,
        ),
    ]
    db_session.add_all(items)
    db_session.commit()
    return items


@pytest.fixture()
def headers_for():
    return auth_headers_for


class FakeRedis:
    """Dictionary-backed stand-in for the redis-py calls the session store makes.

    ``failures`` is the number of upcoming calls that raise a connection error.
    """

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.failures = 0

    def _check(self) -> None:
        if self.failures:
            self.failures -= 1
            raise redis.ConnectionError("Connection reset by peer")

    def get(self, key: str) -> str | None:
        self._check()
        return self.values.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self._check()
        self.values[key] = value
        return True

    def delete(self, key: str) -> int:
        self._check()
        return int(self.values.pop(key, None) is not None)


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()
