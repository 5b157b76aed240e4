"""Engine and session management for the relational store."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


logger = logging.getLogger(__name__)


def _build_engine(db_url: str, echo: bool = False) -> Engine:
    url = make_url(db_url)
    kwargs = {"echo": echo, "future": True}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        database = url.database or ""
        if database in ("", ":memory:"):
            # One shared connection, otherwise each checkout sees an empty database.
            kwargs["poolclass"] = StaticPool
        else:
            Path(database).parent.mkdir(parents=True, exist_ok=True)
    else:
        kwargs["pool_pre_ping"] = True
    return create_engine(url, **kwargs)


class Database:
    """Owns the engine and hands out short-lived sessions."""

    def __init__(self, db_url: str, *, echo: bool = False, auto_create_schema: bool = True):
        self.db_url = db_url
        self.engine = _build_engine(db_url, echo=echo)
        self._sessionmaker = sessionmaker(bind=self.engine, expire_on_commit=False)
        if auto_create_schema:
            self.create_schema()

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def supports_skip_locked(self) -> bool:
        return self.dialect == "postgresql"

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.debug("Schema ensured on %s", self.dialect)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session scope; callers commit explicitly, anything uncommitted is rolled back."""
        session = self._sessionmaker()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()

