"""
Tests for the request_book and resolve_request tools.

These tests verify:
1. Input validation
2. The handlers drive the transaction engine
3. Errors come back in the MCP tool-error format
"""

import pytest
from pydantic import ValidationError

from book_lending.models import BookStatus
from book_lending.tools import all_tools
from book_lending.tools.transactions import (
    RequestBookInput,
    ResolveRequestInput,
    request_book_handler,
    resolve_request_handler,
)

# =============================================================================
# INPUT VALIDATION TESTS
# =============================================================================


class TestRequestBookInput:
    def test_free_request(self):
        params = RequestBookInput(requester_id=2, requested_item_id=10, owner_id=1, mode="Free")
        assert params.offered_item_id is None

    def test_rejects_unknown_mode(self):
        with pytest.raises(ValidationError):
            RequestBookInput(requester_id=2, requested_item_id=10, owner_id=1, mode="Loan")

    def test_rejects_non_positive_ids(self):
        with pytest.raises(ValidationError):
            RequestBookInput(requester_id=0, requested_item_id=10, owner_id=1, mode="Free")


class TestResolveRequestInput:
    def test_decision_must_be_a_status(self):
        with pytest.raises(ValidationError):
            ResolveRequestInput(transaction_id=1, actor_id=1, decision="maybe")


def test_tools_registered():
    names = {tool["name"] for tool in all_tools}
    assert names == {"request_book", "resolve_request"}
    for tool in all_tools:
        assert tool["inputSchema"]["type"] == "object"
        assert callable(tool["handler"])


# =============================================================================
# HANDLER TESTS
# =============================================================================


@pytest.fixture
def tool_db(db_manager, monkeypatch):
    """Point the tools at the test database."""
    monkeypatch.setattr("book_lending.tools.transactions.get_db_manager", lambda: db_manager)
    return db_manager


async def test_request_then_approve(tool_db, members, free_book, book_status):
    result = await request_book_handler(
        {
            "requester_id": members["requester"].id,
            "requested_item_id": free_book.id,
            "owner_id": members["owner"].id,
            "mode": "Free",
        }
    )

    assert "isError" not in result
    transaction = result["data"]["transaction"]
    assert transaction["status"] == "pending"
    assert book_status(free_book.id) == BookStatus.PENDING

    result = await resolve_request_handler(
        {
            "transaction_id": transaction["id"],
            "actor_id": members["owner"].id,
            "decision": "approved",
        }
    )

    assert "isError" not in result
    assert result["data"]["transaction"]["status"] == "approved"
    assert "approved" in result["content"][0]["text"]
    assert book_status(free_book.id) == BookStatus.APPROVED


async def test_exchange_message_mentions_offer(tool_db, members, exchange_book, offered_book):
    result = await request_book_handler(
        {
            "requester_id": members["requester"].id,
            "requested_item_id": exchange_book.id,
            "owner_id": members["owner"].id,
            "mode": "Exchange",
            "offered_item_id": offered_book.id,
        }
    )

    assert f"offering book {offered_book.id}" in result["content"][0]["text"]


async def test_invalid_parameters(tool_db):
    result = await request_book_handler({"requester_id": "nobody"})

    assert result["isError"] is True
    assert result["content"][0]["text"].startswith("Invalid parameters")


async def test_business_rule_error_names_field(tool_db, members, exchange_book):
    result = await request_book_handler(
        {
            "requester_id": members["requester"].id,
            "requested_item_id": exchange_book.id,
            "owner_id": members["owner"].id,
            "mode": "Exchange",
        }
    )

    assert result["isError"] is True
    assert "(field: offeredItemId)" in result["content"][0]["text"]


async def test_not_owner_is_forbidden(tool_db, members, free_book):
    created = await request_book_handler(
        {
            "requester_id": members["requester"].id,
            "requested_item_id": free_book.id,
            "owner_id": members["owner"].id,
            "mode": "Free",
        }
    )

    result = await resolve_request_handler(
        {
            "transaction_id": created["data"]["transaction"]["id"],
            "actor_id": members["other"].id,
            "decision": "rejected",
        }
    )

    assert result["isError"] is True
    assert result["content"][0]["text"].startswith("Forbidden")


async def test_missing_transaction(tool_db, members):
    result = await resolve_request_handler(
        {"transaction_id": 9999, "actor_id": members["owner"].id, "decision": "approved"}
    )

    assert result["isError"] is True
    assert result["content"][0]["text"].startswith("Not found")


async def test_unknown_requester(tool_db, members, free_book, book_status):
    result = await request_book_handler(
        {
            "requester_id": 9999,
            "requested_item_id": free_book.id,
            "owner_id": members["owner"].id,
            "mode": "Free",
        }
    )

    assert result["isError"] is True
    assert result["content"][0]["text"] == "Not found: Requesting member not found (field: requesterId)"
    assert book_status(free_book.id) == BookStatus.AVAILABLE
