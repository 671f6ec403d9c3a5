"""
Admin operations.

Callers reach this service only through the Admin tier of the authorization
gate, which hands over the freshly loaded actor record. Every mutation writes
its ledger entry in the same unit of work, so a failed entry undoes the change.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from backend.core.errors import NotFoundError, ValidationError
from backend.core.security import CredentialStore
from backend.features.audit.service import ActivityLedger
from backend.features.entitlements.service import grant_premium, toggle_premium, validate_months
from backend.features.settings.service import (
    get_api_keys,
    get_platform_settings,
    masked_api_keys,
    update_api_keys,
    update_platform_settings,
)
from backend.features.users.service import validate_password
from backend.models.activity_log import ActivityAction
from backend.models.admin_settings import AdminSettings, AdminSettingsUpdate
from backend.models.api_keys import ApiKeysUpdate
from backend.models.story import Story
from backend.models.user import User, UserUpdate

logger = logging.getLogger("socialstory.admin")

RECENT_STORIES_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AdminService:
    def __init__(
        self,
        store,
        credentials: CredentialStore,
        ledger: ActivityLedger,
        *,
        now_fn: Callable[[], datetime] = _utcnow,
        settings_obj=None,
    ):
        self.store = store
        self.credentials = credentials
        self.ledger = ledger
        self.now_fn = now_fn
        self.settings_obj = settings_obj

    def _target(self, uow, user_id: str) -> User:
        user = uow.users.get_for_update(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    # Reads

    def analytics(self) -> Dict[str, Any]:
        with self.store.unit_of_work() as uow:
            all_users = uow.users.list_all()
            all_stories = uow.stories.list_all()

        total_users = len(all_users)
        premium_users = sum(1 for u in all_users if u.is_premium)
        per_day = Counter(s.created_at.astimezone(timezone.utc).date().isoformat() for s in all_stories)
        return {
            "total_users": total_users,
            "premium_users": premium_users,
            "free_users": total_users - premium_users,
            "total_stories": len(all_stories),
            "average_stories_per_user": round(len(all_stories) / total_users, 2) if total_users else 0.0,
            "recent_stories": all_stories[:RECENT_STORIES_LIMIT],
            "stories_per_day": dict(sorted(per_day.items())),
        }

    def list_users(self) -> List[User]:
        with self.store.unit_of_work() as uow:
            return uow.users.list_all()

    def list_stories(self) -> List[Story]:
        with self.store.unit_of_work() as uow:
            return uow.stories.list_all()

    def get_settings(self) -> AdminSettings:
        with self.store.unit_of_work() as uow:
            return get_platform_settings(uow, now=self.now_fn(), settings_obj=self.settings_obj)

    def get_api_keys(self) -> Dict[str, str]:
        """Current keys with secrets masked; unset keys are empty strings."""
        with self.store.unit_of_work() as uow:
            return masked_api_keys(get_api_keys(uow, now=self.now_fn()))

    def activity_logs(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self.store.unit_of_work() as uow:
            return self.ledger.list_with_actors(uow, limit)

    # Mutations

    def toggle_premium(self, actor: User, user_id: str) -> User:
        with self.store.unit_of_work() as uow:
            target = self._target(uow, user_id)
            updated = uow.users.update(user_id, toggle_premium(target, self.now_fn()))
            self.ledger.append(
                uow,
                ActivityAction.TOGGLE_PREMIUM,
                actor.id,
                f"Changed premium status for {target.email} to {str(updated.is_premium).lower()}",
            )
        logger.info("admin.toggle_premium", extra={"user_id": actor.id, "target_user_id": user_id, "is_premium": updated.is_premium})
        return updated

    def extend_subscription(self, actor: User, user_id: str, months: int) -> User:
        validate_months(months)
        with self.store.unit_of_work() as uow:
            target = self._target(uow, user_id)
            updated = uow.users.update(user_id, grant_premium(target, months, self.now_fn()))
            self.ledger.append(
                uow,
                ActivityAction.EXTEND_SUBSCRIPTION,
                actor.id,
                f"Extended subscription for {target.email} by {months} months",
            )
        logger.info("admin.extend_subscription", extra={"user_id": actor.id, "target_user_id": user_id, "months": months})
        return updated

    def reset_password(self, actor: User, user_id: str, new_password: str) -> None:
        validate_password(new_password)
        new_hash = self.credentials.hash_password(new_password)
        with self.store.unit_of_work() as uow:
            target = self._target(uow, user_id)
            uow.users.update(user_id, UserUpdate(password_hash=new_hash))
            self.ledger.append(uow, ActivityAction.RESET_PASSWORD, actor.id, f"Reset password for {target.email}")
        logger.info("admin.reset_password", extra={"user_id": actor.id, "target_user_id": user_id})

    def toggle_admin(self, actor: User, user_id: str) -> User:
        if user_id == actor.id:
            raise ValidationError("Admins cannot change their own admin status")
        with self.store.unit_of_work() as uow:
            target = self._target(uow, user_id)
            updated = uow.users.update(user_id, UserUpdate(is_admin=not target.is_admin))
            self.ledger.append(
                uow,
                ActivityAction.TOGGLE_ADMIN,
                actor.id,
                f"Changed admin status for {target.email} to {str(updated.is_admin).lower()}",
            )
        logger.info("admin.toggle_admin", extra={"user_id": actor.id, "target_user_id": user_id, "is_admin": updated.is_admin})
        return updated

    def delete_user(self, actor: User, user_id: str) -> None:
        if user_id == actor.id:
            raise ValidationError("Admins cannot delete their own account")
        with self.store.unit_of_work() as uow:
            target = self._target(uow, user_id)
            uow.users.delete(user_id)
            self.ledger.append(uow, ActivityAction.DELETE_USER, actor.id, f"Deleted user {target.email}")
        logger.info("admin.delete_user", extra={"user_id": actor.id, "target_user_id": user_id})

    def delete_story(self, actor: User, story_id: str) -> None:
        with self.store.unit_of_work() as uow:
            if not uow.stories.delete(story_id):
                raise NotFoundError("Story not found")
            self.ledger.append(uow, ActivityAction.DELETE_STORY, actor.id, f"Deleted story {story_id}")
        logger.info("admin.delete_story", extra={"user_id": actor.id, "story_id": story_id})

    def update_settings(self, actor: User, changes: AdminSettingsUpdate) -> AdminSettings:
        with self.store.unit_of_work() as uow:
            updated = update_platform_settings(uow, changes, now=self.now_fn(), settings_obj=self.settings_obj)
            self.ledger.append(uow, ActivityAction.UPDATE_SETTINGS, actor.id, "Updated app settings")
        logger.info("admin.update_settings", extra={"user_id": actor.id, "fields": sorted(changes.changes())})
        return updated

    def update_api_keys(self, actor: User, changes: ApiKeysUpdate) -> Dict[str, str]:
        with self.store.unit_of_work() as uow:
            updated = update_api_keys(uow, changes, now=self.now_fn())
            self.ledger.append(uow, ActivityAction.UPDATE_API_KEYS, actor.id, "Updated API keys configuration")
        # Field names only; values never reach the logs
        logger.info("admin.update_api_keys", extra={"user_id": actor.id, "fields": sorted(changes.changes())})
        return masked_api_keys(updated)
