"""
Member repository.

Members are registered by the identity service; this repository only mirrors
them locally so books and transactions have a foreign-key target. The mirror
row is created the first time the authenticator forwards a member, keyed by
the member's upstream id.
"""

import logging

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from ..database.schema import Member as MemberDB
from ..database.session import safe_flush, safe_query
from ..errors import AuthenticationError, ConflictError
from ..models.member import Member as MemberModel
from ..models.member import MemberCreate
from .repository import BaseRepository

logger = logging.getLogger(__name__)


class MemberRepository(BaseRepository[MemberDB, MemberModel]):
    @property
    def model_class(self):
        return MemberDB

    @property
    def response_schema(self):
        return MemberModel

    def create(self, data: MemberCreate, member_id: int | None = None) -> MemberModel:
        """
        Add a member record.

        Args:
            data: Name and email
            member_id: Upstream id to mirror; allocated locally when omitted

        Raises:
            ConflictError: If the email is already registered
        """
        member = MemberDB(id=member_id, name=data.name, email=str(data.email))
        self.session.add(member)
        try:
            safe_flush(self.session, "create member")
        except IntegrityError as e:
            raise ConflictError(f"Member with email {data.email} already exists", field="email") from e
        self.session.refresh(member)
        return self.to_model(member)

    def ensure(self, member_id: int, name: str | None = None, email: str | None = None) -> MemberModel:
        """
        Make sure the verified member ``member_id`` has a mirror row.

        Known members are returned as they are, with name and email refreshed
        when the authenticator sends new values. Unknown members are created
        from the profile, which must carry at least an email.

        Raises:
            AuthenticationError: If the member is unknown and no email was forwarded
            ConflictError: If the email belongs to another member
        """
        profile = None
        if email:
            try:
                profile = MemberCreate(name=name or email.split("@")[0], email=email)
            except SchemaValidationError:
                raise AuthenticationError("Forwarded member profile is invalid") from None

        member = self.get_row(member_id)
        if member is None:
            if profile is None:
                raise AuthenticationError("Member is not registered")
            logger.info("Mirroring new member %s", member_id)
            return self.create(profile, member_id=member_id)

        changed = False
        if name and name != member.name:
            member.name = name
            changed = True
        if profile is not None and str(profile.email) != member.email:
            member.email = str(profile.email)
            changed = True
        if changed:
            try:
                safe_flush(self.session, "refresh member")
            except IntegrityError as e:
                raise ConflictError(f"Member with email {email} already exists", field="email") from e
            logger.debug("Refreshed mirror of member %s", member_id)
        return self.to_model(member)

    def get_by_email(self, email: str) -> MemberModel | None:
        member = safe_query(
            self.session,
            lambda s: s.execute(select(MemberDB).where(MemberDB.email == email)).scalar_one_or_none(),
            "Failed to get member by email",
        )
        return self.to_model(member) if member else None
