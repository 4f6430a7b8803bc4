"""Database utilities."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from .exceptions import DependencyUnavailableError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Base model for SQLAlchemy mappings."""


def _enable_immediate_transactions(engine: Engine) -> None:
    """Make SQLite take the write lock when a transaction begins.

    pysqlite defers BEGIN until the first write, so two sessions that read
    the same row can both try to upgrade their lock and one fails with
    "database is locked". Starting every transaction with BEGIN IMMEDIATE
    makes writers queue on the busy timeout instead. Connections opened with
    the ``deferred_begin`` option only read, and keep a plain deferred BEGIN
    so they never wait for the write lock.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):  # type: ignore[no-untyped-def]
        if conn.get_execution_options().get("deferred_begin"):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_database_engine(url: str, *, echo: bool = False) -> Engine:
    """Create an engine, applying SQLite specific connection settings."""

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": 30},
            future=True,
        )
        _enable_immediate_transactions(engine)
        return engine
    return create_engine(url, echo=echo, pool_pre_ping=True, future=True)


class Database:
    """Owns an engine and the session factory bound to it."""

    def __init__(self, url: str, *, echo: bool = False, engine: Optional[Engine] = None) -> None:
        self.url = url
        self.engine = engine or create_database_engine(url, echo=echo)
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, autocommit=False, expire_on_commit=False
        )
        self._read_engine = self.engine.execution_options(deferred_begin=True)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations."""

        session: Session = self.session_factory()
        try:
            yield session
            session.commit()
        except OperationalError as exc:
            session.rollback()
            logger.error("Database unavailable: %s", exc)
            raise DependencyUnavailableError("order ledger store unavailable") from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @contextmanager
    def read_scope(self) -> Iterator[Session]:
        """Provide a session for queries only; nothing it does is committed."""

        session: Session = self.session_factory(bind=self._read_engine)
        try:
            yield session
        except OperationalError as exc:
            logger.error("Database unavailable: %s", exc)
            raise DependencyUnavailableError("order ledger store unavailable") from exc
        finally:
            session.close()

    def init_schema(self) -> None:
        """Ensure that the database schema exists."""

        from . import models  # noqa: F401 - ensure models are imported

        Base.metadata.create_all(bind=self.engine)

    def drop_schema(self) -> None:
        from . import models  # noqa: F401

        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()
