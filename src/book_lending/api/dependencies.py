"""FastAPI dependencies: identity and access to the app-wide database and engine."""

import logging

from fastapi import Request

from ..database.session import DatabaseManager
from ..engine import TransactionEngine
from ..database.member_repository import MemberRepository
from ..errors import AuthenticationError

logger = logging.getLogger(__name__)


def get_database(request: Request) -> DatabaseManager:
    return request.app.state.db_manager


def get_engine(request: Request) -> TransactionEngine:
    return request.app.state.engine


def current_member_id(request: Request) -> int:
    """
    Id of the verified member making the request.

    The authenticator in front of the service checks the session and forwards
    the member id in ``identity_header``. A missing or malformed value means the
    request never passed authentication. The member's local mirror row is
    created (or refreshed) from the name and email headers on the way through.

    Raises:
        AuthenticationError: If no usable member id is present, or the member is
            unknown and no profile was forwarded
    """
    config = request.app.state.config
    header = config.identity_header
    raw = request.headers.get(header)
    if not raw:
        raise AuthenticationError("Authentication required")
    try:
        member_id = int(raw)
    except ValueError:
        logger.warning("Rejected malformed %s header", header)
        raise AuthenticationError("Authentication required") from None
    if member_id < 1:
        raise AuthenticationError("Authentication required")

    with request.app.state.db_manager.session_scope() as session:
        MemberRepository(session).ensure(
            member_id,
            name=request.headers.get(config.identity_name_header),
            email=request.headers.get(config.identity_email_header),
        )
    return member_id
