"""HTTP routes for transactions, books and the member's own views.

Every success response is wrapped as ``{success: true, message, data}``; errors
are rendered by the handlers registered in ``book_lending.api.app``. Handlers are
plain ``def`` functions because the database layer is synchronous; FastAPI runs
them in its threadpool.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from ..database.book_repository import BookRepository
from ..database.member_repository import MemberRepository
from ..database.session import DatabaseManager
from ..database.transaction_repository import TransactionRepository
from ..engine import TransactionEngine
from ..errors import NotFoundError
from ..models.book import BookCreate, BookUpdate, LendingMode
from ..models.transaction import TransactionCreate, TransactionUpdate
from .dependencies import current_member_id, get_database, get_engine

transactions_router = APIRouter(prefix="/transactions", tags=["Transactions"])
books_router = APIRouter(prefix="/books", tags=["Books"])
user_router = APIRouter(prefix="/user", tags=["User"])


def _dump(value: BaseModel | list[BaseModel] | None) -> Any:
    if value is None:
        return None
    if isinstance(value, list):
        return [item.model_dump(by_alias=True, mode="json") for item in value]
    return value.model_dump(by_alias=True, mode="json")


def success(message: str, data: BaseModel | list[BaseModel] | None = None) -> dict[str, Any]:
    return {"success": True, "message": message, "data": _dump(data)}


# ============================================================================
# Transactions
# ============================================================================


@transactions_router.post("", status_code=status.HTTP_201_CREATED)
def create_transaction(
    body: TransactionCreate,
    member_id: int = Depends(current_member_id),
    engine: TransactionEngine = Depends(get_engine),
):
    """Request a book from its owner."""
    transaction = engine.create_request(
        requester_id=member_id,
        requested_item_id=body.requested_item_id,
        owner_id=body.owner_id,
        mode=body.mode,
        offered_item_id=body.offered_item_id,
    )
    return success("Transaction request created successfully", transaction)


@transactions_router.patch("/{transaction_id}")
def update_transaction(
    transaction_id: int,
    body: TransactionUpdate,
    member_id: int = Depends(current_member_id),
    engine: TransactionEngine = Depends(get_engine),
):
    """Approve or reject a request for one of the caller's books."""
    transaction = engine.resolve_request(transaction_id, member_id, body.status)
    return success(f"Transaction {transaction.status.value} successfully", transaction)


@transactions_router.get("/{transaction_id}")
def get_transaction(
    transaction_id: int,
    member_id: int = Depends(current_member_id),
    engine: TransactionEngine = Depends(get_engine),
):
    transaction = engine.get_transaction(transaction_id, member_id)
    return success("Transaction fetched successfully", transaction)


# ============================================================================
# Books
# ============================================================================


@books_router.post("", status_code=status.HTTP_201_CREATED)
def create_book(
    body: BookCreate,
    member_id: int = Depends(current_member_id),
    db: DatabaseManager = Depends(get_database),
):
    """List a book owned by the caller. It starts out available."""
    with db.session_scope() as session:
        book = BookRepository(session).create(member_id, body)
    return success("Book created successfully", book)


@books_router.get("")
def list_books(
    availability_type: LendingMode | None = Query(None, alias="availabilityType"),
    genre: str | None = Query(None),
    age_group: str | None = Query(None, alias="ageGroup"),
    member_id: int = Depends(current_member_id),  # noqa: ARG001
    db: DatabaseManager = Depends(get_database),
):
    """Browse listed books with their owners, optionally filtered."""
    with db.session_scope() as session:
        books = BookRepository(session).list_all(
            mode=availability_type, genre=genre, age_group=age_group
        )
    return success("Books retrieved successfully", books)


@books_router.get("/{book_id}")
def get_book(
    book_id: int,
    member_id: int = Depends(current_member_id),  # noqa: ARG001
    db: DatabaseManager = Depends(get_database),
):
    with db.session_scope() as session:
        book = BookRepository(session).get_with_owner(book_id)
    return success("Book fetched successfully", book)


@books_router.patch("/{book_id}")
def update_book(
    book_id: int,
    body: BookUpdate,
    member_id: int = Depends(current_member_id),
    db: DatabaseManager = Depends(get_database),
):
    """Update descriptive fields of one of the caller's books."""
    with db.session_scope() as session:
        book = BookRepository(session).update(book_id, member_id, body)
    return success("Book updated successfully", book)


@books_router.delete("/{book_id}")
def delete_book(
    book_id: int,
    member_id: int = Depends(current_member_id),
    db: DatabaseManager = Depends(get_database),
):
    with db.session_scope() as session:
        BookRepository(session).delete(book_id, member_id)
    return success("Book deleted successfully")


# ============================================================================
# Member views
# ============================================================================


@user_router.get("")
def get_profile(
    member_id: int = Depends(current_member_id),
    db: DatabaseManager = Depends(get_database),
):
    with db.session_scope() as session:
        member = MemberRepository(session).get_by_id(member_id)
    if member is None:
        raise NotFoundError("Member not found")
    return success("User profile retrieved successfully", member)


@user_router.get("/books")
def list_my_books(
    member_id: int = Depends(current_member_id),
    db: DatabaseManager = Depends(get_database),
):
    with db.session_scope() as session:
        books = BookRepository(session).list_by_owner(member_id)
    return success("Books fetched successfully", books)


@user_router.get("/transactions")
def list_my_transactions(
    member_id: int = Depends(current_member_id),
    db: DatabaseManager = Depends(get_database),
):
    """Incoming and outgoing requests of the caller, newest first."""
    with db.session_scope() as session:
        transactions = TransactionRepository(session).list_for_member(member_id)
    return success("Transactions fetched successfully", transactions)


all_routers = [transactions_router, books_router, user_router]
