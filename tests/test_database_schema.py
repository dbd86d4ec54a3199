"""
Tests for database schema and session management.

These tests verify:
1. Database tables are created correctly
2. Constraints back the lending invariants
3. Optimistic version checks detect concurrent writes
4. Session management translates driver errors
"""

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from book_lending.database import Book, Member, Transaction, get_db_manager, reset_db_manager
from book_lending.database.session import safe_query
from book_lending.engine import _error_from_integrity_error
from book_lending.errors import ConflictError, InfrastructureError, NotFoundError
from book_lending.models import BookStatus, LendingMode, TransactionStatus


@pytest.fixture
def shelf(db_manager):
    """Two members and a book owned by the first, committed."""
    with db_manager.session_scope() as session:
        owner = Member(name="Owner", email="owner@books.org")
        reader = Member(name="Reader", email="reader@books.org")
        session.add_all([owner, reader])
        session.flush()
        book = Book(
            title="Kindred",
            author="Octavia E. Butler",
            genre="Fiction",
            age_group="Adult",
            cover_image="https://covers.books.org/kindred.jpg",
            availability_mode=LendingMode.FREE,
            owner_id=owner.id,
        )
        session.add(book)
        session.flush()
        return {"owner": owner.id, "reader": reader.id, "book": book.id}


def _pending(shelf, **overrides) -> Transaction:
    values = {
        "requester_id": shelf["reader"],
        "requested_item_id": shelf["book"],
        "owner_id": shelf["owner"],
        "mode": LendingMode.FREE,
        "status": TransactionStatus.PENDING,
    }
    values.update(overrides)
    return Transaction(**values)


class TestDatabaseSchema:
    def test_tables_created(self, db_manager):
        tables = inspect(db_manager.engine).get_table_names()

        assert set(tables) == {"members", "books", "transactions"}

    def test_book_defaults(self, db_manager, shelf):
        with db_manager.session_scope() as session:
            book = session.get(Book, shelf["book"])
            assert book.status == BookStatus.AVAILABLE
            assert book.version == 1
            assert book.created_at is not None

    def test_one_pending_request_per_requester_and_book(self, db_manager, shelf):
        with db_manager.session_scope() as session:
            session.add(_pending(shelf))

        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(_pending(shelf))

    def test_resolved_requests_do_not_count_as_duplicates(self, db_manager, shelf):
        with db_manager.session_scope() as session:
            session.add(_pending(shelf, status=TransactionStatus.REJECTED))
            session.add(_pending(shelf, status=TransactionStatus.REJECTED))
            session.add(_pending(shelf))

    def test_requester_cannot_be_owner(self, db_manager, shelf):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(_pending(shelf, requester_id=shelf["owner"]))

    def test_exchange_requires_offer(self, db_manager, shelf):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(_pending(shelf, mode=LendingMode.EXCHANGE))

    def test_offer_differs_from_request(self, db_manager, shelf):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(
                _pending(shelf, mode=LendingMode.EXCHANGE, offered_item_id=shelf["book"])
            )

    def test_foreign_keys_enforced(self, db_manager, shelf):
        with pytest.raises(IntegrityError), db_manager.session_scope() as session:
            session.add(_pending(shelf, requested_item_id=9999))

    def test_duplicate_pending_reported_as_conflict(self, db_manager, shelf):
        with db_manager.session_scope() as session:
            session.add(_pending(shelf))

        with pytest.raises(IntegrityError) as exc_info, db_manager.session_scope() as session:
            session.add(_pending(shelf))

        error = _error_from_integrity_error(exc_info.value)
        assert isinstance(error, ConflictError)
        assert error.message == "You already have a pending request for this book"
        assert error.field == "requestedItemId"


class TestVersioning:
    def test_update_bumps_version(self, db_manager, shelf):
        with db_manager.session_scope() as session:
            session.get(Book, shelf["book"]).status = BookStatus.PENDING

        with db_manager.session_scope() as session:
            assert session.get(Book, shelf["book"]).version == 2

    def test_concurrent_write_detected(self, db_manager, shelf):
        with pytest.raises(StaleDataError), db_manager.session_scope() as session:
            book = session.get(Book, shelf["book"])
            # Another writer commits in between our read and our write
            session.execute(
                text("UPDATE books SET version = version + 1 WHERE id = :id"),
                {"id": shelf["book"]},
            )
            book.status = BookStatus.PENDING
            session.flush()

        with db_manager.session_scope() as session:
            assert session.get(Book, shelf["book"]).status == BookStatus.AVAILABLE


class TestSessionManagement:
    def test_commits_on_success(self, db_manager):
        with db_manager.session_scope() as session:
            session.add(Member(name="Saved", email="saved@books.org"))

        with db_manager.session_scope() as session:
            assert session.query(Member).filter_by(email="saved@books.org").count() == 1

    def test_rolls_back_lending_errors(self, db_manager):
        with pytest.raises(NotFoundError), db_manager.session_scope() as session:
            session.add(Member(name="Discarded", email="discarded@books.org"))
            session.flush()
            raise NotFoundError("Book 1 not found")

        with db_manager.session_scope() as session:
            assert session.query(Member).count() == 0

    def test_driver_errors_become_infrastructure_errors(self, db_manager):
        with pytest.raises(InfrastructureError) as exc_info, db_manager.session_scope() as session:
            session.execute(text("SELECT * FROM no_such_table"))

        assert exc_info.value.retryable is True

    def test_safe_query_translates_errors(self, db_manager):
        with pytest.raises(InfrastructureError, match="Lookup failed"):
            with db_manager.session_scope() as session:
                safe_query(
                    session,
                    lambda s: s.execute(text("SELECT * FROM no_such_table")).all(),
                    "Lookup failed",
                )

    def test_verify_connection(self, db_manager):
        assert db_manager.verify_connection() is True

    def test_global_manager(self, tmp_path):
        reset_db_manager()
        manager = get_db_manager(f"sqlite:///{tmp_path / 'global.db'}")

        assert get_db_manager() is manager
        assert manager.is_sqlite
