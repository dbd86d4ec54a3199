"""
Transaction models for the book lending service.

A transaction is one member's request to receive a book from its owner,
optionally offering one of their own books in exchange. It is created
``pending`` and resolved exactly once to ``approved`` or ``rejected``.
"""

from datetime import datetime
from enum import Enum

from pydantic import Field

from .book import Book, CamelModel, LendingMode
from .member import Member


class TransactionStatus(str, Enum):
    """Status of a transaction. Only PENDING is non-terminal."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


# Decisions an owner may take on a pending transaction.
RESOLUTION_DECISIONS = frozenset({TransactionStatus.APPROVED, TransactionStatus.REJECTED})


class TransactionDirection(str, Enum):
    """Whether a member is receiving or sending a request."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"


class TransactionCreate(CamelModel):
    """
    Body of ``POST /transactions``.

    Field-level checks only. Whether an offer fits the mode, and the
    cross-record rules (availability, ownership, duplicates), are checked by the
    transaction engine so that each failure names its field.
    """

    requested_item_id: int = Field(..., description="Book being requested", ge=1)
    owner_id: int = Field(..., description="Owner of the requested book", ge=1)
    mode: LendingMode = Field(..., description="Free or Exchange")
    offered_item_id: int | None = Field(
        default=None,
        description="Book offered in exchange; required for Exchange, absent for Free",
        ge=1,
    )


class TransactionUpdate(CamelModel):
    """
    Body of ``PATCH /transactions/{id}``.

    Any transaction status parses here; the engine rejects values other than
    approved/rejected with a field-level validation error.
    """

    status: TransactionStatus


class Transaction(CamelModel):
    """A transaction record."""

    id: int = Field(..., ge=1)
    requester_id: int = Field(..., ge=1)
    requested_item_id: int = Field(..., ge=1)
    owner_id: int = Field(..., ge=1)
    mode: LendingMode
    offered_item_id: int | None = None
    status: TransactionStatus = TransactionStatus.PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_exchange(self) -> bool:
        return self.mode == LendingMode.EXCHANGE


class MemberTransaction(CamelModel):
    """A transaction as seen by one of its two parties."""

    transaction: Transaction
    requested_book: Book
    requester: Member
    direction: TransactionDirection
