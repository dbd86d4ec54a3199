"""
Transaction repository - the request store.

Pure data access for lending transactions: insert, lookup, the two queries the
transaction engine needs (duplicate detection and sibling enumeration), and the
per-member listing behind ``GET /user/transactions``. Business rules live in
``book_lending.engine``.
"""

import logging
from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import and_, desc, or_, select
from sqlalchemy.orm import joinedload

from ..database.schema import Transaction as TransactionDB
from ..database.session import safe_flush, safe_query
from ..models.book import Book as BookModel
from ..models.book import LendingMode
from ..models.member import Member as MemberModel
from ..models.transaction import MemberTransaction, TransactionDirection, TransactionStatus
from ..models.transaction import Transaction as TransactionModel
from .repository import BaseRepository

logger = logging.getLogger(__name__)


class TransactionRecord(BaseModel):
    """Fields of a new transaction; it is always inserted as pending."""

    requester_id: int
    requested_item_id: int
    owner_id: int
    mode: LendingMode
    offered_item_id: int | None = None


class TransactionRepository(BaseRepository[TransactionDB, TransactionModel]):
    """Repository for lending transactions."""

    @property
    def model_class(self):
        return TransactionDB

    @property
    def response_schema(self):
        return TransactionModel

    def create(self, record: TransactionRecord) -> TransactionModel:
        """
        Insert a pending transaction.

        Raises:
            IntegrityError: If a constraint rejects the row (e.g. a second pending
                request by the same requester for the same book)
        """
        now = datetime.now()
        transaction = TransactionDB(
            requester_id=record.requester_id,
            requested_item_id=record.requested_item_id,
            owner_id=record.owner_id,
            mode=record.mode,
            offered_item_id=record.offered_item_id,
            status=TransactionStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        self.session.add(transaction)
        safe_flush(self.session, "create transaction")
        self.session.refresh(transaction)
        return self.to_model(transaction)

    def get(self, transaction_id: int) -> TransactionModel | None:
        return self.get_by_id(transaction_id)

    def set_status(self, transaction: TransactionDB, new_status: TransactionStatus) -> None:
        """Overwrite a transaction's status on a row the caller already holds."""
        transaction.status = new_status
        transaction.updated_at = datetime.now()

    def find_pending_by_requester_and_book(
        self, requester_id: int, book_id: int
    ) -> TransactionModel | None:
        """The requester's pending transaction for a book, if there is one."""
        query = select(TransactionDB).where(
            and_(
                TransactionDB.requester_id == requester_id,
                TransactionDB.requested_item_id == book_id,
                TransactionDB.status == TransactionStatus.PENDING,
            )
        )
        row = safe_query(
            self.session,
            lambda s: s.execute(query.limit(1)).scalar_one_or_none(),
            "Failed to check for a pending transaction",
        )
        return self.to_model(row) if row else None

    def find_all_by_requested_book(
        self, book_id: int, lock: bool = False
    ) -> list[TransactionDB]:
        """
        Every transaction that requests ``book_id``, in id order.

        Args:
            book_id: The requested book
            lock: Hold row locks until commit (used by the approve cascade)
        """
        query = (
            select(TransactionDB)
            .where(TransactionDB.requested_item_id == book_id)
            .order_by(TransactionDB.id)
        )
        if lock:
            query = query.with_for_update()
        return list(
            safe_query(
                self.session,
                lambda s: s.execute(query).scalars().all(),
                "Failed to list transactions for book",
            )
        )

    def list_for_member(self, member_id: int) -> list[MemberTransaction]:
        """Transactions where the member is requester or owner, newest first."""
        query = (
            select(TransactionDB)
            .where(
                or_(
                    TransactionDB.owner_id == member_id,
                    TransactionDB.requester_id == member_id,
                )
            )
            .options(
                joinedload(TransactionDB.requested_book),
                joinedload(TransactionDB.requester),
            )
            .order_by(desc(TransactionDB.created_at), desc(TransactionDB.id))
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(query).unique().scalars().all(),
            "Failed to list transactions for member",
        )
        return [
            MemberTransaction(
                transaction=self.to_model(row),
                requested_book=BookModel.model_validate(row.requested_book),
                requester=MemberModel.model_validate(row.requester),
                direction=(
                    TransactionDirection.INCOMING
                    if row.owner_id == member_id
                    else TransactionDirection.OUTGOING
                ),
            )
            for row in rows
        ]
