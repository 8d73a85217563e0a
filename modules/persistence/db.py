from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.engine import Engine

from .models import Base


def default_db_url() -> str:
    # Local dev/tests without Postgres
    os.makedirs("db", exist_ok=True)
    return "sqlite+pysqlite:///db/dev.sqlite3"


class Database:
    """Engine plus session factory, built once at startup and passed to whoever needs it."""

    def __init__(self, url: str | None = None, *, create_schema: bool | None = None) -> None:
        self.url = url or default_db_url()
        self.engine: Engine = create_engine(self.url, future=True)
        self._sessions = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            future=True,
            expire_on_commit=False,
            class_=Session,
        )
        # SQLite has no migrations step; create tables in place
        if create_schema is None:
            create_schema = self.engine.url.get_backend_name().startswith("sqlite")
        if create_schema:
            Base.metadata.create_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:  # noqa: BLE001
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
