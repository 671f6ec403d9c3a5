"""
Credential store: password hashing and session tokens.

Passwords are bcrypt-hashed; tokens are HS256 JWTs carrying
{userId, email, isAdmin} plus issuer, issued-at and expiry claims.
verify_token never raises: every failure (expired, forged, tampered, wrong
issuer) collapses to None so callers cannot tell them apart.
"""

import logging
import secrets
import time
from typing import Callable, Optional

import bcrypt
import jwt
from pydantic import BaseModel, ConfigDict

from backend.core.config import settings

logger = logging.getLogger("socialstory.security")

JWT_ALGORITHM = "HS256"
BCRYPT_ROUNDS = 10

# Verified against when the email is unknown so both failure paths cost one bcrypt check
_DUMMY_HASH = bcrypt.hashpw(b"socialstory-dummy-password", bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")


class TokenClaims(BaseModel):
    """Identity asserted by a verified token. A routing hint, not proof of privilege."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    is_admin: bool = False


class CredentialStore:
    def __init__(
        self,
        secret: Optional[str] = None,
        *,
        issuer: str = "socialstoryai",
        expires_days: int = 7,
        time_fn: Callable[[], float] = time.time,
    ):
        if not secret:
            # Never run with auth disabled: sign with a throwaway key instead
            logger.warning("JWT_SECRET not set; using an ephemeral random secret, tokens will not survive restart")
            secret = secrets.token_hex(64)
        self._secret = secret
        self.issuer = issuer
        self.expires_seconds = int(expires_days) * 24 * 60 * 60
        self.time_fn = time_fn

    def hash_password(self, plain: str) -> str:
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS)).decode("utf-8")

    def verify_password(self, plain: str, hashed: Optional[str]) -> bool:
        """Compare with bcrypt's own comparator. A missing or corrupt hash is a mismatch."""
        if not hashed:
            bcrypt.checkpw(plain.encode("utf-8"), _DUMMY_HASH.encode("utf-8"))
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            logger.warning("stored password hash is not a valid bcrypt hash")
            return False

    def issue_token(self, user_id: str, email: str, is_admin: bool) -> str:
        now = int(self.time_fn())
        payload = {
            "userId": user_id,
            "email": email,
            "isAdmin": bool(is_admin),
            "iss": self.issuer,
            "iat": now,
            "exp": now + self.expires_seconds,
        }
        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: Optional[str]) -> Optional[TokenClaims]:
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iss"]},
            )
        except jwt.InvalidTokenError as exc:
            logger.debug("token rejected", extra={"reason": type(exc).__name__})
            return None

        user_id = payload.get("userId")
        email = payload.get("email")
        if not isinstance(user_id, str) or not isinstance(email, str):
            return None
        return TokenClaims(user_id=user_id, email=email, is_admin=bool(payload.get("isAdmin", False)))


def build_credential_store(settings_obj=None, *, time_fn: Callable[[], float] = time.time) -> CredentialStore:
    cfg = settings_obj or settings
    return CredentialStore(
        getattr(cfg, "JWT_SECRET", None),
        issuer=getattr(cfg, "JWT_ISSUER", "socialstoryai"),
        expires_days=getattr(cfg, "JWT_EXPIRES_DAYS", 7),
        time_fn=time_fn,
    )
