"""
Pydantic models for the book lending service.

- Book: a shareable item with a lending mode and a lending status
- Transaction: a member's request for a book, optionally offering another
- Member: the minimal record books and transactions point at
"""

from .book import Book, BookCreate, BookStatus, BookUpdate, LendingMode
from .member import BookWithOwner, Member, MemberCreate
from .transaction import (
    RESOLUTION_DECISIONS,
    MemberTransaction,
    Transaction,
    TransactionCreate,
    TransactionDirection,
    TransactionStatus,
    TransactionUpdate,
)

__all__ = [
    "RESOLUTION_DECISIONS",
    "Book",
    "BookCreate",
    "BookStatus",
    "BookUpdate",
    "BookWithOwner",
    "LendingMode",
    "Member",
    "MemberCreate",
    "MemberTransaction",
    "Transaction",
    "TransactionCreate",
    "TransactionDirection",
    "TransactionStatus",
    "TransactionUpdate",
]
