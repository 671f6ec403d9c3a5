"""
Repository protocols for the storage layer.

Services depend on these capabilities, never on a concrete store. A Store
hands out units of work; every repository reached through one unit of work
shares its transaction, so a check-then-write sequence either commits as a
whole or not at all.
"""

from contextlib import AbstractContextManager
from datetime import datetime
from typing import List, Optional, Protocol

from backend.models.activity_log import ActivityLogEntry
from backend.models.api_keys import ApiKeys, ApiKeysUpdate
from backend.models.admin_settings import AdminSettings, AdminSettingsUpdate
from backend.models.rate_limit import RateLimitAction, RateLimitPolicy, RateLimitRecord
from backend.models.story import NewStory, Story, StoryUpdate
from backend.models.user import NewUser, User, UserUpdate


class UserRepository(Protocol):
    def get(self, user_id: str) -> Optional[User]:
        ...

    def get_for_update(self, user_id: str) -> Optional[User]:
        """Fetch a user and hold a row lock until the unit of work ends."""
        ...

    def get_by_email(self, email: str) -> Optional[User]:
        ...

    def list_all(self) -> List[User]:
        ...

    def create(self, new_user: NewUser, *, now: datetime) -> User:
        """Insert a user. Raises ConflictError if the email is taken."""
        ...

    def update(self, user_id: str, changes: UserUpdate) -> Optional[User]:
        ...

    def consume_story_quota(self, user_id: str, free_story_limit: int) -> bool:
        """Atomically increment stories_generated if the user is premium or below the limit.

        Returns False, without writing, when the quota is exhausted or the user is gone.
        """
        ...

    def delete(self, user_id: str) -> bool:
        """Delete a user and, by cascade, their stories."""
        ...


class StoryRepository(Protocol):
    def get(self, story_id: str) -> Optional[Story]:
        ...

    def list_for_user(self, user_id: str) -> List[Story]:
        ...

    def list_all(self) -> List[Story]:
        ...

    def create(self, user_id: str, new_story: NewStory, *, now: datetime) -> Story:
        ...

    def update(self, story_id: str, changes: StoryUpdate, *, now: datetime) -> Optional[Story]:
        ...

    def delete(self, story_id: str) -> bool:
        ...


class RateLimitRepository(Protocol):
    def hit(self, identifier: str, action: RateLimitAction, policy: RateLimitPolicy, now: float) -> bool:
        """Record one attempt and report whether it is allowed.

        Expired window: reset to count=1 and allow. Count at the max: reject
        without incrementing. Otherwise increment and allow.
        """
        ...

    def get(self, identifier: str, action: RateLimitAction) -> Optional[RateLimitRecord]:
        ...

    def delete_expired(self, now: float) -> int:
        ...


class ActivityLogRepository(Protocol):
    def append(self, entry: ActivityLogEntry) -> None:
        ...

    def prune(self, keep: int) -> int:
        """Delete the oldest entries so that at most `keep` remain."""
        ...

    def list_recent(self, limit: int) -> List[ActivityLogEntry]:
        """Newest first."""
        ...

    def count(self) -> int:
        ...


class SettingsRepository(Protocol):
    def get(self) -> Optional[AdminSettings]:
        ...

    def save(self, settings_obj: AdminSettings) -> AdminSettings:
        ...

    def update(self, changes: AdminSettingsUpdate, *, now: datetime) -> AdminSettings:
        ...


class ApiKeysRepository(Protocol):
    def get(self) -> Optional[ApiKeys]:
        ...

    def save(self, keys: ApiKeys) -> ApiKeys:
        ...

    def update(self, changes: ApiKeysUpdate, *, now: datetime) -> ApiKeys:
        ...


class UnitOfWork(Protocol):
    users: UserRepository
    stories: StoryRepository
    rate_limits: RateLimitRepository
    activity: ActivityLogRepository
    settings: SettingsRepository
    api_keys: ApiKeysRepository


class Store(Protocol):
    name: str

    def unit_of_work(self) -> AbstractContextManager[UnitOfWork]:
        """Commit when the block exits normally, roll back on any exception."""
        ...

    def ping(self) -> bool:
        ...
