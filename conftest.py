# conftest.py
from __future__ import annotations

import os
from collections.abc import Generator, Iterator

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OPENAI_API_KEY", "")

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from chatroom.crypto.kdf import KdfParams
from chatroom.db.base import Base
from chatroom.db.init_db import init_db
from chatroom.db.store import SqlChatStore, get_store
from chatroom.main import app as fastapi_app

TEST_DB_URL = "sqlite://"

# Cheap derivation for engine tests; the crypto tests use the real defaults.
FAST_KDF = KdfParams(iterations=1_000)


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def store(session_factory: sessionmaker) -> SqlChatStore:
    return SqlChatStore(session_factory)


@pytest.fixture()
def fast_kdf() -> KdfParams:
    return FAST_KDF


@pytest.fixture()
def app(store: SqlChatStore) -> Iterator[FastAPI]:
    fastapi_app.dependency_overrides[get_store] = lambda: store
    try:
        yield fastapi_app
    finally:
        fastapi_app.dependency_overrides.pop(get_store, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client
