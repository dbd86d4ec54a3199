"""
Repository base class for the book lending service.

Repositories are thin data-access objects bound to one session. They never
commit: the caller (the transaction engine or an API handler) owns the
transaction through ``DatabaseManager.session_scope()``, so several repository
calls can form one atomic unit.
"""

from abc import ABC, abstractmethod
from typing import Generic, TypeVar

from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..database.schema import Base
from ..database.session import safe_query

ModelType = TypeVar("ModelType", bound=Base)
ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)


class BaseRepository(ABC, Generic[ModelType, ResponseSchemaType]):
    """
    Common lookups shared by the member, book and transaction repositories.

    Subclasses declare the SQLAlchemy model and the Pydantic response schema;
    reads come back as Pydantic models, and ``lock``/``get_row`` return ORM rows
    for callers that need to modify them.
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    @abstractmethod
    def model_class(self) -> type[ModelType]:
        """Return the SQLAlchemy model class."""

    @property
    @abstractmethod
    def response_schema(self) -> type[ResponseSchemaType]:
        """Return the Pydantic response schema."""

    def to_model(self, db_obj: ModelType) -> ResponseSchemaType:
        """Convert database row to Pydantic response model."""
        return self.response_schema.model_validate(db_obj, from_attributes=True)

    def get_row(self, id: int, for_update: bool = False) -> ModelType | None:
        """
        Fetch an ORM row by primary key.

        Args:
            id: Primary key
            for_update: Take a row lock (``SELECT ... FOR UPDATE``) until commit
        """
        query = select(self.model_class).where(self.model_class.id == id)
        if for_update:
            query = query.with_for_update()
        return safe_query(
            self.session,
            lambda s: s.execute(query).scalar_one_or_none(),
            f"Failed to get {self.model_class.__name__} {id}",
        )

    def get_by_id(self, id: int) -> ResponseSchemaType | None:
        """Get entity by ID as a Pydantic model, or None."""
        db_obj = self.get_row(id)
        if db_obj is None:
            return None
        return self.to_model(db_obj)
