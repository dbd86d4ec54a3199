"""
Transaction engine - the lending state machine.

The engine is the only writer of ``books.status`` and ``transactions.status``.
Each public operation:

1. Opens one database transaction (``DatabaseManager.session_scope``)
2. Locks the rows it will touch (books in ascending id order)
3. Validates the request fail-fast, first violated rule wins
4. Applies every effect, flushes, and commits as a unit

If another writer changes a row between our read and our write, the ORM's
version check raises ``StaleDataError``; the whole operation is then retried
from a fresh snapshot, up to ``max_conflict_retries`` times.
"""

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .config import get_config
from .database.book_repository import BookRepository
from .database.session import DatabaseManager, safe_flush
from .database.transaction_repository import TransactionRecord, TransactionRepository
from .errors import (
    ConflictError,
    ForbiddenError,
    InfrastructureError,
    LendingError,
    NotFoundError,
    ValidationError,
)
from .models.book import BookStatus, LendingMode
from .models.transaction import RESOLUTION_DECISIONS, Transaction, TransactionStatus
from .observability import trace_lending_operation

logger = logging.getLogger(__name__)

T = TypeVar("T")

# What happens to the books of a transaction when it is resolved. Approved
# books change hands; rejected ones go back on the shelf.
BOOK_STATUS_ON_RESOLUTION: dict[TransactionStatus, BookStatus] = {
    TransactionStatus.APPROVED: BookStatus.APPROVED,
    TransactionStatus.REJECTED: BookStatus.AVAILABLE,
}

PENDING_UNIQUE_INDEX = "uq_transaction_pending_per_requester"
DUPLICATE_REQUEST_MESSAGE = "You already have a pending request for this book"


class TransactionEngine:
    """Creates and resolves lending transactions."""

    def __init__(self, db_manager: DatabaseManager, max_retries: int | None = None):
        self.db_manager = db_manager
        self.max_retries = (
            max_retries if max_retries is not None else get_config().max_conflict_retries
        )

    def create_request(
        self,
        requester_id: int,
        requested_item_id: int,
        owner_id: int,
        mode: LendingMode | str,
        offered_item_id: int | None = None,
    ) -> Transaction:
        """
        Ask the owner of a book to hand it over.

        On success the new transaction is pending, and so are the requested book
        and (for Exchange) the offered book.

        Raises:
            NotFoundError: requested or offered book does not exist
            ConflictError: a book is not available, or the requester already has
                a pending request for this book
            ValidationError: owner, mode or offered book do not fit the request
            ForbiddenError: the offered book belongs to someone else
            InfrastructureError: the datastore failed or stayed too contended
        """
        try:
            mode = LendingMode(mode)
        except ValueError:
            raise ValidationError("Mode must be 'Free' or 'Exchange'", field="mode") from None

        with trace_lending_operation(
            "create_request",
            requester_id=requester_id,
            requested_item_id=requested_item_id,
            mode=mode.value,
        ):
            transaction = self._run(
                "create_request",
                lambda session: self._create_request(
                    session, requester_id, requested_item_id, owner_id, mode, offered_item_id
                ),
            )

        logger.info(
            "Member %s requested book %s from member %s (%s, transaction %s)",
            requester_id,
            requested_item_id,
            owner_id,
            mode.value,
            transaction.id,
        )
        return transaction

    def resolve_request(
        self, transaction_id: int, actor_id: int, decision: TransactionStatus | str
    ) -> Transaction:
        """
        Approve or reject a pending transaction as the owner of the requested book.

        Approving also rejects every other pending transaction for the same book
        and releases the books those transactions offered. Rejecting releases the
        offered book; the requested book becomes available again unless other
        requests for it are still pending.

        Raises:
            NotFoundError: the transaction does not exist
            ForbiddenError: the actor is not the owner
            ConflictError: the transaction is already resolved
            ValidationError: the decision is not approved/rejected
            InfrastructureError: the datastore failed or stayed too contended
        """
        with trace_lending_operation(
            "resolve_request",
            transaction_id=transaction_id,
            actor_id=actor_id,
            decision=str(getattr(decision, "value", decision)),
        ):
            transaction = self._run(
                "resolve_request",
                lambda session: self._resolve_request(session, transaction_id, actor_id, decision),
            )

        logger.info(
            "Member %s %s transaction %s", actor_id, transaction.status.value, transaction_id
        )
        return transaction

    def get_transaction(self, transaction_id: int, actor_id: int) -> Transaction:
        """
        Read a transaction as one of its two parties.

        Raises:
            NotFoundError: the transaction does not exist
            ForbiddenError: the actor is neither requester nor owner
        """
        with self.db_manager.session_scope() as session:
            transaction = TransactionRepository(session).get(transaction_id)
        if transaction is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if actor_id not in (transaction.requester_id, transaction.owner_id):
            raise ForbiddenError("You are not a party to this transaction")
        return transaction

    # ------------------------------------------------------------------
    # Attempt loop
    # ------------------------------------------------------------------

    def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in its own database transaction, retrying on version conflicts."""
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                with self.db_manager.session_scope() as session:
                    return work(session)
            except StaleDataError:
                logger.warning(
                    "%s lost a race with a concurrent update (attempt %d of %d)",
                    operation,
                    attempt,
                    attempts,
                )
            except IntegrityError as e:
                raise _error_from_integrity_error(e) from e
            except InfrastructureError:
                raise
            except LendingError as e:
                logger.info("%s rejected: %s", operation, e.message)
                raise

        raise InfrastructureError(
            f"{operation} could not complete because of concurrent updates, please retry"
        )

    # ------------------------------------------------------------------
    # Single attempts
    # ------------------------------------------------------------------

    def _create_request(
        self,
        session: Session,
        requester_id: int,
        requested_item_id: int,
        owner_id: int,
        mode: LendingMode,
        offered_item_id: int | None,
    ) -> Transaction:
        books = BookRepository(session)
        transactions = TransactionRepository(session)

        book_ids = {requested_item_id}
        if offered_item_id is not None:
            book_ids.add(offered_item_id)
        locked = books.lock_many(book_ids)

        requested = locked.get(requested_item_id)
        if requested is None:
            raise NotFoundError("Requested book not found", field="requestedItemId")
        if requested.status != BookStatus.AVAILABLE:
            raise ConflictError("Book is not available for request", field="requestedItemId")
        if owner_id != requested.owner_id:
            raise ValidationError("Owner does not match the book's owner", field="ownerId")
        if requester_id == requested.owner_id:
            raise ValidationError("You cannot request your own book", field="requestedItemId")
        if mode != requested.availability_mode:
            raise ValidationError(
                f"This book is only available for {requested.availability_mode.value} requests",
                field="mode",
            )

        if mode == LendingMode.EXCHANGE:
            if offered_item_id is None:
                raise ValidationError(
                    "An offered book is required for Exchange requests", field="offeredItemId"
                )
            if offered_item_id == requested_item_id:
                raise ValidationError(
                    "You cannot offer the book you are requesting", field="offeredItemId"
                )
            offered = locked.get(offered_item_id)
            if offered is None:
                raise NotFoundError("Offered book not found", field="offeredItemId")
            if offered.owner_id != requester_id:
                raise ForbiddenError("You can only offer your own books", field="offeredItemId")
            if offered.status != BookStatus.AVAILABLE:
                raise ConflictError("Offered book is not available", field="offeredItemId")
        elif offered_item_id is not None:
            raise ValidationError(
                "Free requests cannot include an offered book", field="offeredItemId"
            )

        if transactions.find_pending_by_requester_and_book(requester_id, requested_item_id):
            raise ConflictError(DUPLICATE_REQUEST_MESSAGE, field="requestedItemId")

        transaction = transactions.create(
            TransactionRecord(
                requester_id=requester_id,
                requested_item_id=requested_item_id,
                owner_id=requested.owner_id,
                mode=mode,
                offered_item_id=offered_item_id,
            )
        )
        books.set_status(requested_item_id, BookStatus.PENDING)
        if offered_item_id is not None:
            books.set_status(offered_item_id, BookStatus.PENDING)
        safe_flush(session, "create request")
        return transaction

    def _resolve_request(
        self,
        session: Session,
        transaction_id: int,
        actor_id: int,
        decision: TransactionStatus | str,
    ) -> Transaction:
        books = BookRepository(session)
        transactions = TransactionRepository(session)

        target = transactions.get_row(transaction_id, for_update=True)
        if target is None:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if target.owner_id != actor_id:
            raise ForbiddenError("Only the owner of the requested book can resolve this request")
        if target.status != TransactionStatus.PENDING:
            raise ConflictError(
                f"Transaction has already been {TransactionStatus(target.status).value}",
                field="status",
            )
        decision = _parse_decision(decision)
        if decision not in RESOLUTION_DECISIONS:
            raise ValidationError("Status must be 'approved' or 'rejected'", field="status")

        siblings = [
            row
            for row in transactions.find_all_by_requested_book(target.requested_item_id, lock=True)
            if row.id != target.id and row.status == TransactionStatus.PENDING
        ]

        book_ids = {target.requested_item_id}
        for row in (target, *siblings):
            if row.offered_item_id is not None:
                book_ids.add(row.offered_item_id)
        books.lock_many(book_ids)

        book_status = BOOK_STATUS_ON_RESOLUTION[decision]
        transactions.set_status(target, decision)
        if target.offered_item_id is not None:
            books.set_status(target.offered_item_id, book_status)

        if decision == TransactionStatus.APPROVED:
            books.set_status(target.requested_item_id, book_status)
            for sibling in siblings:
                logger.info(
                    "Transaction %s rejected because transaction %s was approved",
                    sibling.id,
                    target.id,
                )
                transactions.set_status(sibling, TransactionStatus.REJECTED)
                if sibling.offered_item_id is not None:
                    books.set_status(
                        sibling.offered_item_id,
                        BOOK_STATUS_ON_RESOLUTION[TransactionStatus.REJECTED],
                    )
        elif not siblings:
            books.set_status(target.requested_item_id, book_status)
        # else: other requests for the book are still pending, so it stays pending

        safe_flush(session, "resolve request")
        return transactions.to_model(target)


def _parse_decision(decision: TransactionStatus | str) -> TransactionStatus | None:
    try:
        return TransactionStatus(decision)
    except ValueError:
        return None


def _error_from_integrity_error(error: IntegrityError) -> LendingError:
    """Report a constraint violation raised at flush time in the error taxonomy."""
    detail = str(error.orig)
    # Books are locked and checked before any insert, so a dangling reference
    # can only be the requesting member
    if "FOREIGN KEY" in detail.upper():
        logger.info("Request from a member without a mirror row")
        return NotFoundError("Requesting member not found", field="requesterId")
    # PostgreSQL names the index; SQLite names the indexed columns
    if PENDING_UNIQUE_INDEX in detail or (
        "transactions.requester_id" in detail and "transactions.requested_item_id" in detail
    ):
        logger.info("Duplicate pending request rejected by the database")
        return ConflictError(DUPLICATE_REQUEST_MESSAGE, field="requestedItemId")
    logger.warning("Constraint violation: %s", detail)
    return ConflictError("Request conflicts with existing data")
