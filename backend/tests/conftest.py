# backend/tests/conftest.py
from __future__ import annotations

import os

# must be set before rentledger.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("STORAGE_BACKEND", "sql")

import pytest
from sqlalchemy.orm import sessionmaker

from rentledger.db import init_db, make_engine
from rentledger.storage import MemoryStorage, SqlStorage


@pytest.fixture
def sql_store():
    """Fresh in-memory SQLite database per test."""
    engine = make_engine("sqlite:///:memory:")
    init_db(engine)
    db = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)()
    try:
        yield SqlStorage(db)
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def memory_store():
    return MemoryStorage()


@pytest.fixture(params=["sql", "memory"])
def store(request):
    """Runs the test once against each storage backend."""
    return request.getfixturevalue(f"{request.param}_store")
