"""Entitlement engine: quota decisions and subscription transitions."""

from datetime import datetime, timedelta, timezone

import pytest

from backend.core.errors import QuotaExceededError, ValidationError
from backend.features.entitlements.service import (
    add_months,
    can_create_story,
    can_generate_video,
    grant_premium,
    premium_end_date,
    record_story_created,
    revoke_premium,
    toggle_premium,
    validate_months,
)
from backend.models.user import NewUser, User

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_user(**overrides) -> User:
    fields = dict(
        id="user_1",
        email="parent@example.com",
        name="Parent",
        password_hash="x",
        created_at=NOW,
    )
    fields.update(overrides)
    return User(**fields)


@pytest.mark.parametrize("generated", [0, 1, 2, 3, 4, 10])
def test_free_user_can_create_iff_below_limit(generated):
    user = make_user(stories_generated=generated)
    assert can_create_story(user, 3) is (generated < 3)


def test_premium_user_is_unlimited():
    user = make_user(is_premium=True, stories_generated=500)
    assert can_create_story(user, 3) is True


def test_zero_limit_blocks_all_free_users():
    assert can_create_story(make_user(stories_generated=0), 0) is False


def test_video_is_a_binary_premium_gate():
    assert can_generate_video(make_user(is_premium=True)) is True
    assert can_generate_video(make_user(is_premium=False, stories_generated=0)) is False


def test_grant_extends_active_subscription():
    user = make_user(is_premium=True, subscription_end_date=NOW + timedelta(days=10))

    update = grant_premium(user, 1, NOW)

    assert update.is_premium is True
    assert update.subscription_end_date == datetime(2026, 4, 20, 12, 0, tzinfo=timezone.utc)
    assert update.subscription_end_date != add_months(NOW, 1)


def test_grant_restarts_expired_subscription():
    user = make_user(is_premium=True, subscription_end_date=NOW - timedelta(days=3))
    assert grant_premium(user, 2, NOW).subscription_end_date == datetime(2026, 5, 10, 12, 0, tzinfo=timezone.utc)


def test_grant_starts_absent_subscription_from_now():
    user = make_user()
    assert premium_end_date(user, 2, NOW) == add_months(NOW, 2)


def test_grant_accepts_naive_stored_end_date():
    user = make_user(subscription_end_date=datetime(2026, 3, 20, 12, 0))
    assert premium_end_date(user, 1, NOW) == datetime(2026, 4, 20, 12, 0, tzinfo=timezone.utc)


def test_revoke_clears_end_date_but_not_usage():
    user = make_user(is_premium=True, stories_generated=7, subscription_end_date=NOW + timedelta(days=5))

    update = revoke_premium(user)

    assert update.changes() == {"is_premium": False, "subscription_end_date": None}
    assert update.apply_to(user).stories_generated == 7


def test_toggle_premium_round_trip():
    user = make_user()

    on = toggle_premium(user, NOW).apply_to(user)
    assert on.is_premium is True
    assert on.subscription_end_date == datetime(2026, 4, 10, 12, 0, tzinfo=timezone.utc)

    off = toggle_premium(on, NOW).apply_to(on)
    assert off.is_premium is False
    assert off.subscription_end_date is None


@pytest.mark.parametrize(
    "start, months, expected",
    [
        (datetime(2026, 1, 31, tzinfo=timezone.utc), 1, datetime(2026, 2, 28, tzinfo=timezone.utc)),
        (datetime(2028, 1, 31, tzinfo=timezone.utc), 1, datetime(2028, 2, 29, tzinfo=timezone.utc)),
        (datetime(2026, 11, 15, tzinfo=timezone.utc), 3, datetime(2027, 2, 15, tzinfo=timezone.utc)),
        (datetime(2026, 5, 31, tzinfo=timezone.utc), 12, datetime(2027, 5, 31, tzinfo=timezone.utc)),
    ],
)
def test_add_months_clamps_to_month_end(start, months, expected):
    assert add_months(start, months) == expected


@pytest.mark.parametrize("months", [0, 13, -1, True, 1.5])
def test_validate_months_rejects_out_of_range(months):
    with pytest.raises(ValidationError):
        validate_months(months)


def test_validate_months_accepts_bounds():
    assert validate_months(1) == 1
    assert validate_months(12) == 12


def _seed_user(store, stories_generated=0):
    from backend.models.user import UserUpdate

    with store.unit_of_work() as uow:
        user = uow.users.create(NewUser(email="quota@example.com", name="Quota", password_hash="x"), now=NOW)
        return uow.users.update(user.id, UserUpdate(stories_generated=stories_generated))


def test_record_story_created_increments_once(store):
    user = _seed_user(store, stories_generated=1)

    with store.unit_of_work() as uow:
        record_story_created(uow.users, user, 3)

    with store.unit_of_work() as uow:
        assert uow.users.get(user.id).stories_generated == 2


def test_record_story_created_rejects_stale_snapshot_at_boundary(store):
    """Two writers both read stories_generated == limit - 1; only the first may consume."""
    stale = _seed_user(store, stories_generated=2)

    with store.unit_of_work() as uow:
        record_story_created(uow.users, stale, 3)

    with pytest.raises(QuotaExceededError):
        with store.unit_of_work() as uow:
            record_story_created(uow.users, stale, 3)

    with store.unit_of_work() as uow:
        assert uow.users.get(stale.id).stories_generated == 3
