"""
Platform settings singleton.

The row is seeded from configuration (FREE_STORY_LIMIT, PREMIUM_PRICE) the
first time it is read; after that only admin.updateSettings changes it.
The api-keys singleton follows the same pattern, starting out empty.
"""

from datetime import datetime, timezone
from typing import Optional

from backend.core.config import settings as app_settings
from backend.models.admin_settings import AdminSettings, AdminSettingsUpdate
from backend.models.api_keys import API_KEY_FIELDS, SECRET_API_KEY_FIELDS, ApiKeys, ApiKeysUpdate

MASK_VISIBLE_CHARS = 4


def default_settings(now: datetime, settings_obj=None) -> AdminSettings:
    cfg = settings_obj or app_settings
    return AdminSettings(
        free_story_limit=cfg.FREE_STORY_LIMIT,
        enable_registration=True,
        maintenance_mode=False,
        premium_price=cfg.PREMIUM_PRICE,
        updated_at=now,
    )


def get_platform_settings(uow, *, now: Optional[datetime] = None, settings_obj=None) -> AdminSettings:
    current = uow.settings.get()
    if current is not None:
        return current
    return uow.settings.save(default_settings(now or datetime.now(timezone.utc), settings_obj))


def update_platform_settings(uow, changes: AdminSettingsUpdate, *, now: datetime, settings_obj=None) -> AdminSettings:
    get_platform_settings(uow, now=now, settings_obj=settings_obj)
    return uow.settings.update(changes, now=now)


def get_api_keys(uow, *, now: Optional[datetime] = None) -> ApiKeys:
    current = uow.api_keys.get()
    if current is not None:
        return current
    return uow.api_keys.save(ApiKeys(updated_at=now or datetime.now(timezone.utc)))


def update_api_keys(uow, changes: ApiKeysUpdate, *, now: datetime) -> ApiKeys:
    get_api_keys(uow, now=now)
    return uow.api_keys.update(changes, now=now)


def mask_secret(value: Optional[str]) -> str:
    """'' for unset; otherwise only the last few characters survive."""
    if not value:
        return ""
    if len(value) <= MASK_VISIBLE_CHARS * 2:
        return "*" * len(value)
    return "*" * (len(value) - MASK_VISIBLE_CHARS) + value[-MASK_VISIBLE_CHARS:]


def masked_api_keys(keys: ApiKeys) -> dict:
    return {
        name: mask_secret(getattr(keys, name)) if name in SECRET_API_KEY_FIELDS else (getattr(keys, name) or "")
        for name in API_KEY_FIELDS
    }
