"""
Book models for the book lending service.

A book is the shareable item of the system. Its ``availability_mode`` says how
it may be requested (freely or in exchange for another book) and its
``status`` is the current lending state, which only the transaction engine
changes.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from pydantic.alias_generators import to_camel


class LendingMode(str, Enum):
    """How a book may be requested, and how a transaction requests it."""

    FREE = "Free"
    EXCHANGE = "Exchange"


class BookStatus(str, Enum):
    """Lending state of a book."""

    AVAILABLE = "available"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class CamelModel(BaseModel):
    """Base for models exchanged over the API: snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class BookBase(CamelModel):
    """Descriptive fields shared by create and read models."""

    title: str = Field(
        ...,
        description="Title of the book",
        min_length=2,
        max_length=100,
        examples=["The Left Hand of Darkness"],
    )

    author: str = Field(
        ...,
        description="Author name",
        min_length=2,
        max_length=100,
        examples=["Ursula K. Le Guin"],
    )

    genre: str = Field(
        ...,
        description="Genre of the book",
        min_length=2,
        max_length=50,
        examples=["Science Fiction"],
    )

    age_group: str = Field(
        ...,
        description="Intended reader age group",
        min_length=2,
        max_length=10,
        examples=["Adult", "8-12"],
    )

    cover_image: str = Field(
        ...,
        description="URL of the cover image",
        max_length=255,
        examples=["https://covers.example.org/lhod.jpg"],
    )

    availability_mode: LendingMode = Field(
        ...,
        description="Whether the book is given away freely or only in exchange",
    )


class BookCreate(BookBase):
    """Payload for listing a new book. The owner is the authenticated member."""

    cover_image: HttpUrl = Field(  # type: ignore[assignment]
        ...,
        description="URL of the cover image",
    )


class BookUpdate(CamelModel):
    """Partial update of a book's descriptive fields. Status is not writable."""

    title: str | None = Field(default=None, min_length=2, max_length=100)
    author: str | None = Field(default=None, min_length=2, max_length=100)
    genre: str | None = Field(default=None, min_length=2, max_length=50)
    age_group: str | None = Field(default=None, min_length=2, max_length=10)
    cover_image: HttpUrl | None = None
    availability_mode: LendingMode | None = None


class Book(BookBase):
    """A book as stored in the ledger."""

    id: int = Field(..., description="Book identifier", ge=1)

    status: BookStatus = Field(
        default=BookStatus.AVAILABLE,
        description="Current lending state",
    )

    owner_id: int = Field(..., description="Member who owns the book", ge=1)

    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_requestable(self) -> bool:
        return self.status == BookStatus.AVAILABLE
