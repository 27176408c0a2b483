import random
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  註冊所有資料表
from database import Base
from core.change_feed import ChangeFeed
from core.repository import SqlGameRepository
from core.session_controller import SessionRegistry

# 固定盤面：第 0 列是 1, 16, 31, 46, 61
FIXED_MATRIX = [
    [1, 16, 31, 46, 61],
    [2, 17, 32, 47, 62],
    [3, 18, 0, 48, 63],
    [4, 19, 33, 49, 64],
    [5, 20, 34, 50, 65],
]

BASE_TIME = datetime(2026, 1, 1, 12, 0, 0)


def at(seconds: int) -> datetime:
    return BASE_TIME + timedelta(seconds=seconds)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def feed():
    return ChangeFeed(backlog_size=1000)


@pytest.fixture
def repository(session_factory, feed):
    return SqlGameRepository(session_factory, feed)


@pytest.fixture
def rng():
    return random.Random(20260101)


@pytest.fixture
def registry(repository, rng):
    return SessionRegistry(repository, rng=rng)


@pytest.fixture
def client(repository, registry):
    from main import app
    from api.deps import get_repository, get_registry

    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()
