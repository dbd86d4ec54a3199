"""
Database package for the book lending service.

- schema.py: SQLAlchemy tables (members, books, transactions)
- session.py: engine/session management and the per-operation transaction scope
- book_repository.py: the item ledger
- transaction_repository.py: the request store
- member_repository.py: local mirror of members
"""

from .book_repository import BookRepository
from .member_repository import MemberRepository
from .repository import BaseRepository
from .schema import Base, Book, Member, Transaction
from .session import (
    DatabaseManager,
    get_db_manager,
    reset_db_manager,
    safe_flush,
    safe_query,
)
from .transaction_repository import TransactionRecord, TransactionRepository

__all__ = [
    "Base",
    "BaseRepository",
    "Book",
    "BookRepository",
    "DatabaseManager",
    "Member",
    "MemberRepository",
    "Transaction",
    "TransactionRecord",
    "TransactionRepository",
    "get_db_manager",
    "reset_db_manager",
    "safe_flush",
    "safe_query",
]
