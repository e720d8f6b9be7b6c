"""
Relational Storage for Envelope Ledger

DESIGN DECISION: Every mutating operation runs inside exactly one database
transaction opened by `Database.transaction()`. Rows whose values feed a
precondition (account balances, category assignments, recurring templates)
are locked with SELECT ... FOR UPDATE before the precondition is re-checked.

TRADEOFFS:
- SQLite ignores FOR UPDATE; a file database opens every transaction with
  BEGIN IMMEDIATE instead, so transactions run one at a time
- In-memory SQLite shares one connection and is for single-threaded tests only
- PostgreSQL gets the configured isolation level and statement timeout
"""

from contextlib import contextmanager
from typing import Iterable, Iterator, Optional, TypeVar

import structlog
from sqlalchemy import create_engine, event, select, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from tenacity import Retrying, stop_after_attempt, wait_exponential

from envelope_ledger.config import DatabaseSettings, get_settings
from envelope_ledger.services.storage.interface import ConnectionError
from envelope_ledger.services.storage.tables import Base


logger = structlog.get_logger(__name__)

RowT = TypeVar("RowT")


class Database:
    """
    Owns the SQLAlchemy engine and hands out transactional sessions.

    Usage:
        db = Database()
        db.create_schema()
        with db.transaction() as session:
            ...
    """

    def __init__(
        self,
        url: Optional[str] = None,
        settings: Optional[DatabaseSettings] = None,
    ):
        self._settings = settings or get_settings().database
        self._url = make_url(url or self._settings.url)
        self._engine = self._build_engine()
        self._session_factory = sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
        )

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def is_sqlite(self) -> bool:
        return self._url.get_backend_name() == "sqlite"

    def _build_engine(self) -> Engine:
        kwargs: dict = {"echo": self._settings.echo}
        backend = self._url.get_backend_name()

        if backend == "sqlite":
            kwargs["connect_args"] = {"check_same_thread": False}
            if self._url.database in (None, "", ":memory:"):
                # One shared connection, otherwise every session sees an empty database
                kwargs["poolclass"] = StaticPool
        else:
            if self._settings.isolation_level:
                kwargs["isolation_level"] = self._settings.isolation_level
            kwargs["pool_pre_ping"] = True
            if backend == "postgresql" and self._settings.statement_timeout_ms:
                kwargs["connect_args"] = {
                    "options": f"-c statement_timeout={self._settings.statement_timeout_ms}"
                }

        engine = create_engine(self._url, **kwargs)

        if backend == "sqlite":
            shared_connection = kwargs.get("poolclass") is StaticPool

            @event.listens_for(engine, "connect")
            def _configure_connection(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
                if not shared_connection:
                    # SQLAlchemy emits BEGIN itself, see _begin_immediate
                    dbapi_connection.isolation_level = None

            if not shared_connection:
                @event.listens_for(engine, "begin")
                def _begin_immediate(conn):
                    # Stands in for FOR UPDATE: the write lock is taken before the first read
                    conn.exec_driver_sql("BEGIN IMMEDIATE")

        return engine

    def connect(self) -> None:
        """
        Verify the database is reachable.

        Retries with exponential backoff; raises ConnectionError
        once the configured attempts are exhausted.
        """
        retrying = Retrying(
            stop=stop_after_attempt(self._settings.connect_attempts),
            wait=wait_exponential(multiplier=1, min=2, max=10),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    with self._engine.connect() as conn:
                        conn.execute(text("SELECT 1"))
        except OperationalError as e:
            raise ConnectionError(f"Failed to connect to ledger database: {e}") from e
        logger.info("database_connected", backend=self._url.get_backend_name())

    def create_schema(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self._engine)

    def drop_schema(self) -> None:
        Base.metadata.drop_all(self._engine)

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        One database transaction.

        Commits when the block exits normally; rolls back everything
        when it raises, so no partial write is ever visible.
        """
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        finally:
            session.close()

    @contextmanager
    def read_session(self) -> Iterator[Session]:
        """A session for display reads; nothing it does is committed."""
        session = self._session_factory()
        try:
            yield session
        finally:
            session.rollback()
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()


def lock_rows(session: Session, model: type[RowT], ids: Iterable) -> dict:
    """
    Lock rows of `model` by primary key and return them keyed by id.

    All rows are locked in one statement ordered by id, so two
    operations touching the same rows always lock them in the same order.
    Missing ids are simply absent from the result.
    """
    wanted = {row_id for row_id in ids if row_id is not None}
    if not wanted:
        return {}
    stmt = (
        select(model)
        .where(model.id.in_(wanted))
        .order_by(model.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return {row.id: row for row in session.scalars(stmt)}
