"""Test configuration and fixtures for the book lending service.

Every test gets its own SQLite file under ``tmp_path`` with the full schema, a
``DatabaseManager`` bound to it, and three members:

- owner: lists the books that get requested
- requester / other: members who request (and offer) books

Seeding goes through ``session_scope`` so each fixture commits before the code
under test opens its own transaction.
"""

from collections.abc import Callable, Generator
from pathlib import Path

import logfire
import pytest
from fastapi.testclient import TestClient

from book_lending.api import create_app
from book_lending.config import LendingConfig, reset_config
from book_lending.database import (
    BookRepository,
    DatabaseManager,
    MemberRepository,
    TransactionRecord,
    TransactionRepository,
    reset_db_manager,
)
from book_lending.engine import TransactionEngine
from book_lending.models import Book, BookCreate, BookStatus, LendingMode, Member, MemberCreate


@pytest.fixture(scope="session", autouse=True)
def local_only_tracing():
    """Keep spans in-process for the whole run."""
    logfire.configure(send_to_logfire=False, console=False)


# === Test Database Fixtures ===


@pytest.fixture
def test_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test_lending.db"


@pytest.fixture
def test_config(test_db_path: Path) -> Generator[LendingConfig, None, None]:
    """Test-specific configuration with an isolated database."""
    reset_config()

    config = LendingConfig(
        server_name="test-book-lending",
        server_version="0.0.1-test",
        database_path=test_db_path,
        debug=True,
        log_level="DEBUG",
        enable_tracing=False,
        max_conflict_retries=2,
        lock_timeout_seconds=2.0,
    )

    yield config

    reset_config()


@pytest.fixture
def db_manager(test_config: LendingConfig) -> Generator[DatabaseManager, None, None]:
    manager = DatabaseManager(
        test_config.get_database_url(), lock_timeout=test_config.lock_timeout_seconds
    )
    manager.init_database()
    yield manager
    manager.close()


@pytest.fixture
def engine(db_manager: DatabaseManager, test_config: LendingConfig) -> TransactionEngine:
    return TransactionEngine(db_manager, max_retries=test_config.max_conflict_retries)


# === Test Data Fixtures ===


@pytest.fixture
def members(db_manager: DatabaseManager) -> dict[str, Member]:
    with db_manager.session_scope() as session:
        repo = MemberRepository(session)
        return {
            "owner": repo.create(MemberCreate(name="Olivia Owner", email="olivia@books.org")),
            "requester": repo.create(MemberCreate(name="Ravi Requester", email="ravi@books.org")),
            "other": repo.create(MemberCreate(name="Carmen Other", email="carmen@books.org")),
        }


@pytest.fixture
def make_book(db_manager: DatabaseManager) -> Callable[..., Book]:
    """Factory that lists a book for a member and returns it."""

    def _make_book(
        owner_id: int,
        mode: LendingMode = LendingMode.FREE,
        title: str = "The Dispossessed",
    ) -> Book:
        with db_manager.session_scope() as session:
            return BookRepository(session).create(
                owner_id,
                BookCreate(
                    title=title,
                    author="Ursula K. Le Guin",
                    genre="Science Fiction",
                    age_group="Adult",
                    cover_image="https://covers.books.org/dispossessed.jpg",
                    availability_mode=mode,
                ),
            )

    return _make_book


@pytest.fixture
def free_book(members, make_book) -> Book:
    return make_book(members["owner"].id, LendingMode.FREE, "Free Book")


@pytest.fixture
def exchange_book(members, make_book) -> Book:
    return make_book(members["owner"].id, LendingMode.EXCHANGE, "Exchange Book")


@pytest.fixture
def offered_book(members, make_book) -> Book:
    """A book the requester can offer in exchange."""
    return make_book(members["requester"].id, LendingMode.FREE, "Offered Book")


@pytest.fixture
def book_status(db_manager: DatabaseManager) -> Callable[[int], BookStatus]:
    def _book_status(book_id: int) -> BookStatus:
        with db_manager.session_scope() as session:
            return BookRepository(session).get_status(book_id)

    return _book_status


@pytest.fixture
def seed_pending(db_manager: DatabaseManager) -> Callable[..., int]:
    """
    Insert a pending transaction directly, bypassing the engine's checks.

    Used to build states the engine no longer produces (e.g. several pending
    requests for one book). The offered book, if any, is marked pending.
    """

    def _seed_pending(
        requester_id: int,
        book: Book,
        mode: LendingMode = LendingMode.FREE,
        offered_item_id: int | None = None,
        mark_requested_pending: bool = True,
    ) -> int:
        with db_manager.session_scope() as session:
            transaction = TransactionRepository(session).create(
                TransactionRecord(
                    requester_id=requester_id,
                    requested_item_id=book.id,
                    owner_id=book.owner_id,
                    mode=mode,
                    offered_item_id=offered_item_id,
                )
            )
            books = BookRepository(session)
            if mark_requested_pending:
                books.set_status(book.id, BookStatus.PENDING)
            if offered_item_id is not None:
                books.set_status(offered_item_id, BookStatus.PENDING)
            return transaction.id

    return _seed_pending


# === HTTP Fixtures ===


@pytest.fixture
def client(test_config, db_manager) -> Generator[TestClient, None, None]:
    with TestClient(create_app(test_config, db_manager)) as test_client:
        yield test_client


@pytest.fixture
def auth(test_config) -> Callable[[int], dict[str, str]]:
    """Headers the upstream authenticator would add for a member."""

    def _auth(member_id: int) -> dict[str, str]:
        return {test_config.identity_header: str(member_id)}

    return _auth


# === Cleanup Fixtures ===


@pytest.fixture(autouse=True)
def cleanup_after_test():
    yield

    reset_config()
    reset_db_manager()
