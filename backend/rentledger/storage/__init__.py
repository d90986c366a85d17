from __future__ import annotations

import abc
from contextlib import AbstractContextManager, contextmanager
from typing import Iterator, Optional

from sqlalchemy.orm import sessionmaker

from ..config import Settings
from .base import Storage
from .memory import MemoryStorage
from .sql import SqlStorage


class StorageProvider(abc.ABC):
    """Hands out one Storage per unit of work (HTTP request, task, CLI command)."""

    @abc.abstractmethod
    def session(self) -> AbstractContextManager[Storage]: ...


class SqlStorageProvider(StorageProvider):
    def __init__(self, factory: sessionmaker) -> None:
        self.factory = factory

    @contextmanager
    def session(self) -> Iterator[Storage]:
        db = self.factory()
        try:
            yield SqlStorage(db)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class MemoryStorageProvider(StorageProvider):
    def __init__(self, store: Optional[MemoryStorage] = None) -> None:
        self.store = store or MemoryStorage()

    @contextmanager
    def session(self) -> Iterator[Storage]:
        yield self.store


def build_storage_provider(cfg: Settings) -> StorageProvider:
    """
    The one place a backend is chosen. Called at process start (create_app,
    Celery worker, CLI) and the result is passed down explicitly.
    """
    backend = (cfg.storage_backend or "sql").strip().lower()
    if backend == "memory":
        return MemoryStorageProvider()

    from ..db import SessionLocal, engine, init_db, make_engine

    if cfg.database_url == engine.url.render_as_string(hide_password=False):
        init_db(engine)
        return SqlStorageProvider(SessionLocal)

    other = make_engine(cfg.database_url)
    init_db(other)
    return SqlStorageProvider(sessionmaker(bind=other, autoflush=False, expire_on_commit=False, future=True))


__all__ = [
    "Storage",
    "SqlStorage",
    "MemoryStorage",
    "StorageProvider",
    "SqlStorageProvider",
    "MemoryStorageProvider",
    "build_storage_provider",
]
