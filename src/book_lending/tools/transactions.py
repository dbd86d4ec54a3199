"""Transaction Tools - lending workflow over MCP

Expose the two state-changing operations of the transaction engine to MCP
clients. The acting member is passed explicitly because MCP sessions carry no
verified identity of their own; deploy the server only behind a client that
fills these ids in from its own authentication.

Tools:
- request_book: Ask an owner for one of their books, optionally offering one
- resolve_request: Approve or reject a pending request as the owner
"""

import logging
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as SchemaValidationError

from ..database.session import get_db_manager
from ..engine import TransactionEngine
from ..errors import (
    ConflictError,
    ForbiddenError,
    InfrastructureError,
    LendingError,
    NotFoundError,
)
from ..models.book import LendingMode
from ..models.transaction import Transaction, TransactionStatus
from ..observability import trace_tool

logger = logging.getLogger(__name__)


def _format_error_response(error_type: str, details: str) -> dict[str, Any]:
    """Format error responses consistently across all tools."""
    return {"isError": True, "content": [{"type": "text", "text": f"{error_type}: {details}"}]}


def _lending_error_response(error: LendingError) -> dict[str, Any]:
    if isinstance(error, NotFoundError):
        error_type = "Not found"
    elif isinstance(error, ForbiddenError):
        error_type = "Forbidden"
    elif isinstance(error, ConflictError):
        error_type = "Conflict"
    elif isinstance(error, InfrastructureError):
        error_type = "Database error"
    else:
        error_type = "Invalid request"

    details = error.message
    if error.field:
        details += f" (field: {error.field})"
    return _format_error_response(error_type, details)


def _transaction_response(message: str, transaction: Transaction) -> dict[str, Any]:
    return {
        "content": [{"type": "text", "text": message}],
        "data": {"transaction": transaction.model_dump(mode="json")},
    }


def get_engine() -> TransactionEngine:
    return TransactionEngine(get_db_manager())


class RequestBookInput(BaseModel):
    """Input schema for requesting a book."""

    requester_id: int = Field(..., description="Member making the request", ge=1, examples=[2])

    requested_item_id: int = Field(..., description="Book being requested", ge=1, examples=[10])

    owner_id: int = Field(
        ..., description="Owner of the requested book", ge=1, examples=[1]
    )

    mode: LendingMode = Field(
        ...,
        description="Must match the book's availability mode",
        examples=["Free", "Exchange"],
    )

    offered_item_id: int | None = Field(
        default=None,
        description="One of the requester's own available books; required for Exchange",
        ge=1,
        examples=[12],
    )


@trace_tool("request_book")
async def request_book_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Create a pending lending request.

    Client calls: tool.call("request_book", {"requester_id": 2, "requested_item_id": 10, ...})
    """
    try:
        params = RequestBookInput.model_validate(arguments)
    except SchemaValidationError as e:
        logger.warning("Invalid request_book parameters: %s", e)
        return _format_error_response("Invalid parameters", str(e))

    try:
        transaction = get_engine().create_request(
            requester_id=params.requester_id,
            requested_item_id=params.requested_item_id,
            owner_id=params.owner_id,
            mode=params.mode,
            offered_item_id=params.offered_item_id,
        )
    except LendingError as e:
        return _lending_error_response(e)
    except Exception as e:
        logger.exception("Unexpected error in request_book tool")
        return _format_error_response("Unexpected error", str(e))

    message = (
        f"Request {transaction.id} created: member {transaction.requester_id} asked member "
        f"{transaction.owner_id} for book {transaction.requested_item_id}"
    )
    if transaction.offered_item_id is not None:
        message += f", offering book {transaction.offered_item_id} in exchange"
    return _transaction_response(message, transaction)


class ResolveRequestInput(BaseModel):
    """Input schema for approving or rejecting a request."""

    transaction_id: int = Field(..., description="Request to resolve", ge=1, examples=[5])

    actor_id: int = Field(
        ..., description="Member resolving the request; must own the requested book", ge=1
    )

    decision: TransactionStatus = Field(
        ..., description="approved or rejected", examples=["approved", "rejected"]
    )


@trace_tool("resolve_request")
async def resolve_request_handler(arguments: dict[str, Any]) -> dict[str, Any]:
    """Approve or reject a pending request.

    Approving also rejects every other pending request for the same book.

    Client calls: tool.call("resolve_request", {"transaction_id": 5, "actor_id": 1, "decision": "approved"})
    """
    try:
        params = ResolveRequestInput.model_validate(arguments)
    except SchemaValidationError as e:
        logger.warning("Invalid resolve_request parameters: %s", e)
        return _format_error_response("Invalid parameters", str(e))

    try:
        transaction = get_engine().resolve_request(
            params.transaction_id, params.actor_id, params.decision
        )
    except LendingError as e:
        return _lending_error_response(e)
    except Exception as e:
        logger.exception("Unexpected error in resolve_request tool")
        return _format_error_response("Unexpected error", str(e))

    return _transaction_response(
        f"Request {transaction.id} {transaction.status.value}", transaction
    )


request_book = {
    "name": "request_book",
    "description": (
        "Request a book from its owner. Free books are requested as-is; Exchange books "
        "require offering one of your own available books. The requested (and offered) "
        "book is held as pending until the owner resolves the request."
    ),
    "inputSchema": RequestBookInput.model_json_schema(),
    "handler": request_book_handler,
}

resolve_request = {
    "name": "resolve_request",
    "description": (
        "Approve or reject a pending book request. Only the owner of the requested book "
        "may resolve it. Approval hands over the books and rejects competing requests; "
        "rejection makes the books available again."
    ),
    "inputSchema": ResolveRequestInput.model_json_schema(),
    "handler": resolve_request_handler,
}
