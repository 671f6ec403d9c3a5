"""
Authorization gate.

Every route declares a minimum tier through one of these dependencies:

    Public         no dependency
    Authenticated  Depends(require_authenticated)
    Admin          Depends(require_admin)

A caller below the required tier is rejected before the handler (and so
before any side effect) runs. Token claims are trusted for identity only;
the Admin tier re-reads the user record, so a token minted before a demotion
stops working as soon as the record changes.
"""

import logging
from typing import Optional

from fastapi import Request

from backend.core.errors import AuthenticationError, AuthorizationError
from backend.core.security import CredentialStore, TokenClaims
from backend.models.user import User

logger = logging.getLogger("socialstory.auth")

Principal = TokenClaims


def get_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_principal(request: Request) -> Optional[Principal]:
    """Decode the caller's token. None means unauthenticated; never raises."""
    credentials: CredentialStore = request.app.state.credentials
    return credentials.verify_token(get_bearer_token(request))


def require_authenticated(request: Request) -> Principal:
    principal = get_principal(request)
    if principal is None:
        raise AuthenticationError()
    request.state.user_id = principal.user_id
    return principal


def require_admin(request: Request) -> User:
    """Resolve the caller's current record and require is_admin on it."""
    principal = require_authenticated(request)
    store = request.app.state.store
    with store.unit_of_work() as uow:
        user = uow.users.get(principal.user_id)
    if user is None or not user.is_admin:
        logger.warning(
            "auth.admin_denied",
            extra={"user_id": principal.user_id, "claimed_admin": principal.is_admin},
        )
        raise AuthorizationError()
    return user
