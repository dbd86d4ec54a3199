"""
SQLAlchemy database schema for the book lending service.

Three tables:
- members: the people who own and request books
- books: the item ledger; each row carries its lending status
- transactions: the request store; one row per lending request

Integrity rules that can be stated per row live here as CHECK constraints,
and "one pending request per requester and book" is a partial unique index.
Both ``books`` and ``transactions`` carry a ``version`` column used by the
ORM for optimistic locking: an UPDATE that finds a different version than the
one it read raises ``StaleDataError`` and the engine retries.
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from ..models.book import BookStatus, LendingMode
from ..models.transaction import TransactionStatus

Base = declarative_base()


def _enum_column_type(enum_cls, name: str) -> Enum:
    """Store enum values ("pending"), not member names ("PENDING")."""
    return Enum(
        enum_cls,
        name=name,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


LendingModeType = _enum_column_type(LendingMode, "lending_mode")
BookStatusType = _enum_column_type(BookStatus, "book_status")
TransactionStatusType = _enum_column_type(TransactionStatus, "transaction_status")


class Member(Base):
    """Members table - owners and requesters of books."""

    __tablename__ = "members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False, unique=True)

    created_at = Column(DateTime, nullable=False, default=func.now())

    books = relationship("Book", back_populates="owner")


class Book(Base):
    """
    Books table - the item ledger.

    ``status`` is written only by the transaction engine; book CRUD never
    touches it.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    author = Column(String(255), nullable=False)
    genre = Column(String(255), nullable=False)
    age_group = Column(String(255), nullable=False)
    cover_image = Column(String(255), nullable=False)
    availability_mode = Column(LendingModeType, nullable=False)
    status = Column(BookStatusType, nullable=False, default=BookStatus.AVAILABLE)
    owner_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    owner = relationship("Member", back_populates="books")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_book_owner", "owner_id"),
        Index("idx_book_status", "status"),
    )


class Transaction(Base):
    """
    Transactions table - the request store.

    ``owner_id`` duplicates the requested book's owner at creation time so
    authorization checks on resolve need only this row.
    """

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    requester_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    requested_item_id = Column(Integer, ForeignKey("books.id"), nullable=False)
    owner_id = Column(Integer, ForeignKey("members.id"), nullable=False)
    mode = Column(LendingModeType, nullable=False)
    offered_item_id = Column(Integer, ForeignKey("books.id"), nullable=True)
    status = Column(TransactionStatusType, nullable=False, default=TransactionStatus.PENDING)
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    requested_book = relationship("Book", foreign_keys=[requested_item_id])
    offered_book = relationship("Book", foreign_keys=[offered_item_id])
    requester = relationship("Member", foreign_keys=[requester_id])

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_transaction_requested_item", "requested_item_id"),
        Index("idx_transaction_offered_item", "offered_item_id"),
        Index("idx_transaction_requester", "requester_id"),
        Index("idx_transaction_owner", "owner_id"),
        Index(
            "uq_transaction_pending_per_requester",
            "requester_id",
            "requested_item_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        CheckConstraint("requester_id <> owner_id", name="check_requester_not_owner"),
        CheckConstraint(
            "(mode = 'Exchange' AND offered_item_id IS NOT NULL)"
            " OR (mode = 'Free' AND offered_item_id IS NULL)",
            name="check_offer_matches_mode",
        ),
        CheckConstraint(
            "offered_item_id IS NULL OR offered_item_id <> requested_item_id",
            name="check_offer_differs_from_request",
        ),
    )
