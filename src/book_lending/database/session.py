"""
Database session management for the book lending service.

Every lending operation runs inside one ``session_scope()``: a single database
transaction that either commits in full or rolls back in full. Engine setup
differs per backend:

1. SQLite: foreign keys are switched on per connection and every transaction
   starts with ``BEGIN IMMEDIATE``, so writers are serialized database-wide and
   two requests can never both observe a book as available.
2. PostgreSQL (or other servers): a regular connection pool; the engine takes
   ``SELECT ... FOR UPDATE`` row locks on the books and transactions it touches.

Errors coming out of the driver are translated to ``InfrastructureError``,
except ``StaleDataError`` and ``IntegrityError`` which the transaction engine
handles itself (retry and conflict reporting respectively).
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from typing import TypeVar

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from ..config import get_config
from ..errors import InfrastructureError, LendingError
from .schema import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the SQLAlchemy engine and hands out transactional sessions.

    One instance is shared by the HTTP app, the MCP tools and the engine.
    """

    def __init__(self, database_url: str | None = None, lock_timeout: float | None = None):
        """
        Initialize the database manager.

        Args:
            database_url: SQLAlchemy database URL. If None, built from configuration.
            lock_timeout: Seconds a writer waits on a locked SQLite database.
        """
        config = get_config()
        if database_url is None:
            database_url = config.get_database_url()
            if not config.database_url:
                config.database_path.parent.mkdir(exist_ok=True, parents=True)
            logger.info("Using database: %s", database_url)

        self.database_url = database_url
        self.lock_timeout = lock_timeout if lock_timeout is not None else config.lock_timeout_seconds
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def engine(self) -> Engine:
        """Get or create the database engine."""
        if self._engine is None:
            if self.is_sqlite:
                in_memory = ":memory:" in self.database_url or self.database_url in (
                    "sqlite://",
                    "sqlite:///",
                )
                engine_kwargs = {
                    "connect_args": {
                        "check_same_thread": False,
                        "timeout": self.lock_timeout,
                    },
                    "echo": False,
                }
                if in_memory:
                    # A single shared connection keeps the in-memory database alive
                    engine_kwargs["poolclass"] = StaticPool
                self._engine = create_engine(self.database_url, **engine_kwargs)
                _install_sqlite_hooks(self._engine)
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                    echo=False,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        """Create a new session; prefer session_scope()."""
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for database operations.

        ```python
        with db_manager.session_scope() as session:
            book = session.get(Book, book_id)
        # committed on success, rolled back on any error
        ```

        Raises:
            LendingError: re-raised unchanged after rollback
            StaleDataError, IntegrityError: re-raised for the caller to interpret
            InfrastructureError: for any other database failure
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
            logger.debug("Database transaction committed")
        except LendingError:
            session.rollback()
            raise
        except (StaleDataError, IntegrityError):
            session.rollback()
            raise
        except SQLAlchemyError as e:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise InfrastructureError(f"Database operation failed: {e!s}") from e
        except Exception:
            logger.exception("Unexpected error, rolling back")
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """
        Create the schema.

        Args:
            drop_existing: If True, drop all tables before creating
        """
        engine = self.engine

        if drop_existing:
            logger.warning("Dropping all existing tables...")
            Base.metadata.drop_all(bind=engine)

        logger.info("Creating database tables...")
        Base.metadata.create_all(bind=engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Return True if a trivial query succeeds (used by /health)."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


def _install_sqlite_hooks(engine: Engine) -> None:
    """Enable foreign keys and take the write lock at transaction start."""

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
        # Hand transaction control to SQLAlchemy so the "begin" hook below decides
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


_db_manager: DatabaseManager | None = None


def get_db_manager(database_url: str | None = None) -> DatabaseManager:
    """
    Get the global database manager instance.

    Args:
        database_url: Database URL (only used on first call)
    """
    global _db_manager  # noqa: PLW0603 - Singleton pattern for database manager

    if _db_manager is None:
        _db_manager = DatabaseManager(database_url)

    return _db_manager


def reset_db_manager() -> None:
    """Close and forget the global database manager (used by tests)."""
    global _db_manager  # noqa: PLW0603

    if _db_manager is not None:
        _db_manager.close()
    _db_manager = None


T = TypeVar("T")


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Run a read and translate driver failures.

    Args:
        session: The database session
        query_func: Function that performs the query
        error_msg: Message prefix for the InfrastructureError

    Raises:
        InfrastructureError: If the query fails at the database level
    """
    try:
        return query_func(session)
    except StaleDataError:
        raise
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise InfrastructureError(f"{error_msg}: database query failed") from e


def safe_flush(session: Session, operation: str) -> None:
    """
    Flush pending changes so constraint and version conflicts surface here.

    Raises:
        StaleDataError: a concurrent transaction changed a row we are updating
        IntegrityError: a constraint rejected the change
        InfrastructureError: any other database failure
    """
    try:
        session.flush()
    except (StaleDataError, IntegrityError):
        raise
    except SQLAlchemyError as e:
        logger.exception("Flush failed during %s", operation)
        raise InfrastructureError(f"Database operation '{operation}' failed: {e!s}") from e
