"""
backend/features/entitlements/service.py

Entitlement engine.

Decisions are pure functions over a User snapshot; transitions return a
UserUpdate for the caller to write inside its unit of work. The one exception
is record_story_created, which must go through the repository's conditional
increment so that two concurrent creations at the quota boundary cannot both
pass.
"""

import calendar
import logging
from datetime import datetime, timezone
from typing import Optional

from backend.core.errors import QuotaExceededError, ValidationError
from backend.models.user import User, UserUpdate

logger = logging.getLogger(__name__)

MIN_SUBSCRIPTION_MONTHS = 1
MAX_SUBSCRIPTION_MONTHS = 12
TOGGLE_PREMIUM_MONTHS = 1


def _normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def add_months(value: datetime, months: int) -> datetime:
    """Calendar-month addition; Jan 31 + 1 month is the last day of February."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def validate_months(months: int) -> int:
    if isinstance(months, bool) or not isinstance(months, int):
        raise ValidationError("months must be an integer")
    if not MIN_SUBSCRIPTION_MONTHS <= months <= MAX_SUBSCRIPTION_MONTHS:
        raise ValidationError(f"months must be between {MIN_SUBSCRIPTION_MONTHS} and {MAX_SUBSCRIPTION_MONTHS}")
    return months


def can_create_story(user: User, free_story_limit: int) -> bool:
    return user.is_premium or user.stories_generated < free_story_limit


def can_generate_video(user: User) -> bool:
    return user.is_premium


def record_story_created(users, user: User, free_story_limit: int) -> None:
    """Consume one unit of story quota for user, atomically with respect to other writers.

    `users` is the UserRepository of the unit of work that also writes the
    story, so quota and story commit or roll back together.
    """
    if not can_create_story(user, free_story_limit):
        raise QuotaExceededError()
    if not users.consume_story_quota(user.id, free_story_limit):
        # Lost the race against a concurrent creation
        logger.info(
            "[entitlements] quota consumed concurrently",
            extra={"user_id": user.id, "free_story_limit": free_story_limit},
        )
        raise QuotaExceededError()


def premium_end_date(user: User, months: int, now: Optional[datetime] = None) -> datetime:
    """Extend an active subscription; restart an absent or lapsed one from now."""
    current_now = _normalize_now(now)
    current_end = user.subscription_end_date
    if current_end is not None and current_end.tzinfo is None:
        current_end = current_end.replace(tzinfo=timezone.utc)
    if current_end is not None and current_end > current_now:
        return add_months(current_end, months)
    return add_months(current_now, months)


def grant_premium(user: User, months: int, now: Optional[datetime] = None) -> UserUpdate:
    return UserUpdate(is_premium=True, subscription_end_date=premium_end_date(user, months, now))


def revoke_premium(user: User) -> UserUpdate:
    """Drop premium and the end date; stories_generated is left alone."""
    return UserUpdate(is_premium=False, subscription_end_date=None)


def toggle_premium(user: User, now: Optional[datetime] = None) -> UserUpdate:
    """Flip premium. Switching on always starts a fresh one-month term from now."""
    if user.is_premium:
        return revoke_premium(user)
    return UserUpdate(
        is_premium=True,
        subscription_end_date=add_months(_normalize_now(now), TOGGLE_PREMIUM_MONTHS),
    )
