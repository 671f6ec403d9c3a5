"""
User domain service.
- register / login (rate limited, token issuing)
- profile reads and updates, password change
- self-service upgrade and cancellation
- ensure_admin for bootstrap seeding
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from backend.core.errors import (
    AuthenticationError,
    InvalidCredentialsError,
    MaintenanceModeError,
    RegistrationDisabledError,
    ValidationError,
)
from backend.core.logging import fingerprint
from backend.core.ratelimit import RateLimiter
from backend.core.security import CredentialStore
from backend.features.entitlements.service import grant_premium, revoke_premium
from backend.features.settings.service import get_platform_settings
from backend.models.rate_limit import RateLimitAction
from backend.models.user import NewUser, User, UserUpdate, normalize_email

logger = logging.getLogger("socialstory.users")

MIN_PASSWORD_LENGTH = 6
MIN_NAME_LENGTH = 2
UPGRADE_MONTHS = 1
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_email(email: str) -> str:
    normalized = normalize_email(email or "")
    if not _EMAIL_RE.match(normalized):
        raise ValidationError("Invalid email address")
    return normalized


def validate_password(password: str) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    return password


def validate_name(name: str) -> str:
    cleaned = (name or "").strip()
    if len(cleaned) < MIN_NAME_LENGTH:
        raise ValidationError(f"Name must be at least {MIN_NAME_LENGTH} characters")
    return cleaned


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AuthResult:
    user: User
    token: str


class UserService:
    def __init__(
        self,
        store,
        credentials: CredentialStore,
        rate_limiter: RateLimiter,
        *,
        now_fn: Callable[[], datetime] = _utcnow,
        settings_obj=None,
    ):
        self.store = store
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.now_fn = now_fn
        self.settings_obj = settings_obj

    def _issue(self, user: User) -> AuthResult:
        return AuthResult(user=user, token=self.credentials.issue_token(user.id, user.email, user.is_admin))

    def _require_user(self, uow, user_id: str) -> User:
        user = uow.users.get(user_id)
        if user is None:
            # Token outlived its account
            raise AuthenticationError()
        return user

    def register(self, email: str, password: str, name: str) -> AuthResult:
        email = validate_email(email)
        validate_password(password)
        name = validate_name(name)

        self.rate_limiter.enforce(email, RateLimitAction.REGISTER)

        password_hash = self.credentials.hash_password(password)
        with self.store.unit_of_work() as uow:
            platform = get_platform_settings(uow, now=self.now_fn(), settings_obj=self.settings_obj)
            if platform.maintenance_mode:
                raise MaintenanceModeError()
            if not platform.enable_registration:
                raise RegistrationDisabledError()
            user = uow.users.create(
                NewUser(email=email, name=name, password_hash=password_hash),
                now=self.now_fn(),
            )

        logger.info("user.registered", extra={"user_id": user.id, "email_fp": fingerprint(email)})
        return self._issue(user)

    def login(self, email: str, password: str) -> AuthResult:
        email = normalize_email(email or "")
        self.rate_limiter.enforce(email, RateLimitAction.LOGIN)

        with self.store.unit_of_work() as uow:
            user = uow.users.get_by_email(email)

        # Unknown email and wrong password take the same path and the same error
        password_ok = self.credentials.verify_password(password or "", user.password_hash if user else None)
        if user is None or not password_ok:
            logger.info("user.login_failed", extra={"email_fp": fingerprint(email)})
            raise InvalidCredentialsError()

        with self.store.unit_of_work() as uow:
            user = uow.users.update(user.id, UserUpdate(last_login_at=self.now_fn())) or user

        logger.info("user.login", extra={"user_id": user.id})
        return self._issue(user)

    def get_profile(self, user_id: str) -> User:
        with self.store.unit_of_work() as uow:
            return self._require_user(uow, user_id)

    def update_profile(self, user_id: str, *, name: Optional[str] = None, email: Optional[str] = None) -> User:
        fields = {}
        if name is not None:
            fields["name"] = validate_name(name)
        if email is not None:
            fields["email"] = validate_email(email)

        with self.store.unit_of_work() as uow:
            user = self._require_user(uow, user_id)
            if not fields:
                return user
            return uow.users.update(user_id, UserUpdate(**fields))

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        validate_password(new_password)
        with self.store.unit_of_work() as uow:
            user = self._require_user(uow, user_id)

        if not self.credentials.verify_password(current_password or "", user.password_hash):
            raise ValidationError("Current password is incorrect")

        new_hash = self.credentials.hash_password(new_password)
        with self.store.unit_of_work() as uow:
            self._require_user(uow, user_id)
            uow.users.update(user_id, UserUpdate(password_hash=new_hash))
        logger.info("user.password_changed", extra={"user_id": user_id})

    def upgrade(self, user_id: str) -> User:
        with self.store.unit_of_work() as uow:
            user = uow.users.get_for_update(user_id)
            if user is None:
                raise AuthenticationError()
            updated = uow.users.update(user_id, grant_premium(user, UPGRADE_MONTHS, self.now_fn()))
        logger.info("user.upgraded", extra={"user_id": user_id, "subscription_end_date": updated.subscription_end_date})
        return updated

    def cancel_subscription(self, user_id: str) -> User:
        with self.store.unit_of_work() as uow:
            user = uow.users.get_for_update(user_id)
            if user is None:
                raise AuthenticationError()
            updated = uow.users.update(user_id, revoke_premium(user))
        logger.info("user.subscription_cancelled", extra={"user_id": user_id})
        return updated

    def ensure_admin(self, email: str, password: str, name: str = "Administrator") -> User:
        """Create the account as an admin, or promote it if it already exists."""
        email = validate_email(email)
        validate_password(password)
        with self.store.unit_of_work() as uow:
            existing = uow.users.get_by_email(email)
            if existing is not None:
                if existing.is_admin:
                    return existing
                promoted = uow.users.update(existing.id, UserUpdate(is_admin=True))
                logger.info("user.admin_promoted", extra={"user_id": promoted.id})
                return promoted

        password_hash = self.credentials.hash_password(password)
        with self.store.unit_of_work() as uow:
            user = uow.users.create(
                NewUser(email=email, name=name, password_hash=password_hash, is_admin=True),
                now=self.now_fn(),
            )
        logger.info("user.admin_bootstrapped", extra={"user_id": user.id, "email_fp": fingerprint(email)})
        return user
