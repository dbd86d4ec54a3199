"""
Member model.

Members are created and authenticated elsewhere; the lending service keeps a
minimal record so books and transactions can reference their owners and
requesters.
"""

from datetime import datetime

from pydantic import EmailStr, Field

from .book import Book, CamelModel


class MemberCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr


class Member(MemberCreate):
    id: int = Field(..., ge=1)
    created_at: datetime | None = None


class BookWithOwner(Book):
    """A book together with the member who owns it (``GET /books/{id}``)."""

    owner: Member
