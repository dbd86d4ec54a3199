"""
Book repository - the item ledger.

Two kinds of access live here:

1. **Status register** (used by the transaction engine): ``get_status``,
   ``set_status`` and the locking reads ``lock``/``lock_many``. No transition
   rules are checked; the engine decides what the next status is.
2. **Book management** (used by the HTTP layer): create, owner-only update and
   delete, browsing and per-owner listing. These never change ``status``.
"""

import logging
from datetime import datetime

from sqlalchemy import desc, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import joinedload

from ..database.schema import Book as BookDB
from ..database.schema import Transaction as TransactionDB
from ..database.session import safe_flush, safe_query
from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..models.book import Book as BookModel
from ..models.book import BookCreate, BookStatus, BookUpdate, LendingMode
from ..models.member import BookWithOwner
from .repository import BaseRepository

logger = logging.getLogger(__name__)


class BookRepository(BaseRepository[BookDB, BookModel]):
    """Repository for books and their lending status."""

    @property
    def model_class(self):
        return BookDB

    @property
    def response_schema(self):
        return BookModel

    # ------------------------------------------------------------------
    # Status register
    # ------------------------------------------------------------------

    def get_status(self, book_id: int) -> BookStatus:
        """
        Current lending status of a book.

        Raises:
            NotFoundError: If the book does not exist
        """
        book = self.get_row(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        return BookStatus(book.status)

    def set_status(self, book_id: int, new_status: BookStatus) -> None:
        """
        Overwrite a book's status. The write is flushed with the caller's
        transaction and checked against the row version.

        Raises:
            NotFoundError: If the book does not exist
        """
        book = self.get_row(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        if book.status != new_status:
            logger.debug("Book %s status %s -> %s", book_id, book.status, new_status.value)
            book.status = new_status
            book.updated_at = datetime.now()

    def lock(self, book_id: int) -> BookDB | None:
        """Fetch a book row and hold a row lock on it until commit."""
        return self.get_row(book_id, for_update=True)

    def lock_many(self, book_ids: set[int]) -> dict[int, BookDB]:
        """
        Lock several books at once, in ascending id order.

        A fixed lock order means two operations touching the same pair of
        books cannot deadlock each other.
        """
        if not book_ids:
            return {}
        query = (
            select(BookDB).where(BookDB.id.in_(sorted(book_ids))).order_by(BookDB.id).with_for_update()
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to lock books",
        )
        return {row.id: row for row in rows}

    # ------------------------------------------------------------------
    # Book management
    # ------------------------------------------------------------------

    def create(self, owner_id: int, data: BookCreate) -> BookModel:
        """
        List a new book for ``owner_id``. It starts out available.

        Raises:
            NotFoundError: If the owner has no member record
        """
        book = BookDB(
            title=data.title,
            author=data.author,
            genre=data.genre,
            age_group=data.age_group,
            cover_image=str(data.cover_image),
            availability_mode=data.availability_mode,
            status=BookStatus.AVAILABLE,
            owner_id=owner_id,
        )
        self.session.add(book)
        try:
            safe_flush(self.session, "create book")
        except IntegrityError as e:
            # The only reference on a new book is its owner
            raise NotFoundError(f"Member {owner_id} not found", field="ownerId") from e
        self.session.refresh(book)
        logger.info("Member %s listed book %s (%s)", owner_id, book.id, data.availability_mode.value)
        return self.to_model(book)

    def update(self, book_id: int, actor_id: int, data: BookUpdate) -> BookModel:
        """
        Update descriptive fields of a book owned by ``actor_id``.

        Raises:
            NotFoundError: If the book does not exist
            ForbiddenError: If the actor does not own the book
            ConflictError: If the lending mode changes while the book is not available
        """
        book = self.lock(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        if book.owner_id != actor_id:
            raise ForbiddenError("You can only update your own books")

        changes = data.model_dump(exclude_unset=True)
        if "cover_image" in changes and changes["cover_image"] is not None:
            changes["cover_image"] = str(changes["cover_image"])

        new_mode = changes.get("availability_mode")
        if (
            new_mode is not None
            and new_mode != book.availability_mode
            and book.status != BookStatus.AVAILABLE
        ):
            raise ConflictError(
                "Lending mode can only change while the book is available",
                field="availabilityMode",
            )

        for field, value in changes.items():
            if value is not None:
                setattr(book, field, value)
        book.updated_at = datetime.now()

        safe_flush(self.session, "update book")
        self.session.refresh(book)
        return self.to_model(book)

    def delete(self, book_id: int, actor_id: int) -> None:
        """
        Delete a book owned by ``actor_id``.

        Raises:
            NotFoundError: If the book does not exist
            ForbiddenError: If the actor does not own the book
            ConflictError: If any transaction references the book
        """
        book = self.lock(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        if book.owner_id != actor_id:
            raise ForbiddenError("You can only delete your own books")

        references = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count())
                .select_from(TransactionDB)
                .where(
                    or_(
                        TransactionDB.requested_item_id == book_id,
                        TransactionDB.offered_item_id == book_id,
                    )
                )
            ).scalar(),
            "Failed to count transactions for book",
        )
        if references:
            raise ConflictError("Book is part of a lending transaction and cannot be deleted")

        self.session.delete(book)
        safe_flush(self.session, "delete book")
        logger.info("Member %s deleted book %s", actor_id, book_id)

    def get_with_owner(self, book_id: int) -> BookWithOwner:
        """
        A book with its owner's member record.

        Raises:
            NotFoundError: If the book does not exist
        """
        book = safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB).where(BookDB.id == book_id).options(joinedload(BookDB.owner))
            ).scalar_one_or_none(),
            f"Failed to get book {book_id}",
        )
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        return BookWithOwner.model_validate(book)

    def list_all(
        self,
        mode: LendingMode | None = None,
        genre: str | None = None,
        age_group: str | None = None,
    ) -> list[BookWithOwner]:
        """
        Browse every listed book with its owner, newest first.

        Filters are exact matches and combine with AND; books in any status are
        listed so members can see what is already spoken for.
        """
        query = select(BookDB).options(joinedload(BookDB.owner))
        if mode is not None:
            query = query.where(BookDB.availability_mode == mode)
        if genre is not None:
            query = query.where(BookDB.genre == genre)
        if age_group is not None:
            query = query.where(BookDB.age_group == age_group)
        query = query.order_by(desc(BookDB.created_at), desc(BookDB.id))

        rows = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to list books",
        )
        return [BookWithOwner.model_validate(row) for row in rows]

    def list_by_owner(self, owner_id: int) -> list[BookModel]:
        """All books owned by a member, newest first."""
        query = (
            select(BookDB)
            .where(BookDB.owner_id == owner_id)
            .order_by(desc(BookDB.created_at), desc(BookDB.id))
        )
        rows = safe_query(
            self.session,
            lambda s: s.execute(query).scalars().all(),
            "Failed to list books for owner",
        )
        return [self.to_model(row) for row in rows]
