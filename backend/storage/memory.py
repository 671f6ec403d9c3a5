"""
In-memory store.

Test double and local-development fallback. Not durable and not shared across
processes, so it is refused in production (see build_store). Units of work are
serialised by one re-entrant lock; state is snapshotted on entry and restored
if the block raises.
"""

import itertools
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

from backend.core.errors import ConflictError
from backend.models.activity_log import ActivityLogEntry
from backend.models.admin_settings import AdminSettings, AdminSettingsUpdate
from backend.models.api_keys import ApiKeys, ApiKeysUpdate
from backend.models.rate_limit import RateLimitAction, RateLimitPolicy, RateLimitRecord
from backend.models.story import NewStory, Story, StoryUpdate
from backend.models.user import NewUser, User, UserUpdate, normalize_email


class _State:
    def __init__(self):
        self.users: Dict[str, User] = {}
        self.stories: Dict[str, Tuple[int, Story]] = {}
        self.rate_limits: Dict[Tuple[str, str], RateLimitRecord] = {}
        self.activity: List[Tuple[int, ActivityLogEntry]] = []
        self.settings: Optional[AdminSettings] = None
        self.api_keys: Optional[ApiKeys] = None

    def snapshot(self) -> "_State":
        copy = _State()
        copy.users = dict(self.users)
        copy.stories = dict(self.stories)
        copy.rate_limits = dict(self.rate_limits)
        copy.activity = list(self.activity)
        copy.settings = self.settings
        copy.api_keys = self.api_keys
        return copy


class InMemoryUserRepository:
    def __init__(self, state: _State):
        self._state = state

    def get(self, user_id: str) -> Optional[User]:
        return self._state.users.get(user_id)

    def get_for_update(self, user_id: str) -> Optional[User]:
        # The store lock already serialises units of work.
        return self.get(user_id)

    def get_by_email(self, email: str) -> Optional[User]:
        wanted = normalize_email(email)
        for user in self._state.users.values():
            if user.email == wanted:
                return user
        return None

    def list_all(self) -> List[User]:
        return sorted(self._state.users.values(), key=lambda u: u.created_at)

    def create(self, new_user: NewUser, *, now: datetime) -> User:
        email = normalize_email(new_user.email)
        if self.get_by_email(email):
            raise ConflictError("User already exists")
        user = User(
            id=f"user_{uuid4().hex}",
            email=email,
            name=new_user.name,
            password_hash=new_user.password_hash,
            is_premium=new_user.is_premium,
            is_admin=new_user.is_admin,
            stories_generated=0,
            created_at=now,
        )
        self._state.users[user.id] = user
        return user

    def update(self, user_id: str, changes: UserUpdate) -> Optional[User]:
        user = self._state.users.get(user_id)
        if user is None:
            return None
        if changes.email is not None:
            email = normalize_email(changes.email)
            other = self.get_by_email(email)
            if other and other.id != user_id:
                raise ConflictError("Email already in use")
            changes = changes.model_copy(update={"email": email})
        updated = changes.apply_to(user)
        self._state.users[user_id] = updated
        return updated

    def consume_story_quota(self, user_id: str, free_story_limit: int) -> bool:
        user = self._state.users.get(user_id)
        if user is None:
            return False
        if not (user.is_premium or user.stories_generated < free_story_limit):
            return False
        self._state.users[user_id] = user.model_copy(update={"stories_generated": user.stories_generated + 1})
        return True

    def delete(self, user_id: str) -> bool:
        if self._state.users.pop(user_id, None) is None:
            return False
        owned = [sid for sid, (_, story) in self._state.stories.items() if story.user_id == user_id]
        for sid in owned:
            del self._state.stories[sid]
        return True


class InMemoryStoryRepository:
    def __init__(self, state: _State, seq: Iterator[int]):
        self._state = state
        self._seq = seq

    def get(self, story_id: str) -> Optional[Story]:
        found = self._state.stories.get(story_id)
        return found[1] if found else None

    def _sorted(self, items) -> List[Story]:
        ordered = sorted(items, key=lambda pair: (pair[1].created_at, pair[0]), reverse=True)
        return [story for _, story in ordered]

    def list_for_user(self, user_id: str) -> List[Story]:
        return self._sorted(pair for pair in self._state.stories.values() if pair[1].user_id == user_id)

    def list_all(self) -> List[Story]:
        return self._sorted(self._state.stories.values())

    def create(self, user_id: str, new_story: NewStory, *, now: datetime) -> Story:
        story = Story(
            id=f"story_{uuid4().hex}",
            user_id=user_id,
            created_at=now,
            updated_at=now,
            **new_story.model_dump(),
        )
        self._state.stories[story.id] = (next(self._seq), story)
        return story

    def update(self, story_id: str, changes: StoryUpdate, *, now: datetime) -> Optional[Story]:
        found = self._state.stories.get(story_id)
        if found is None:
            return None
        seq, story = found
        if changes.is_empty():
            return story
        updated = story.model_copy(update={**changes.changes(), "updated_at": now})
        self._state.stories[story_id] = (seq, updated)
        return updated

    def delete(self, story_id: str) -> bool:
        return self._state.stories.pop(story_id, None) is not None


class InMemoryRateLimitRepository:
    def __init__(self, state: _State):
        self._state = state

    def hit(self, identifier: str, action: RateLimitAction, policy: RateLimitPolicy, now: float) -> bool:
        key = (identifier, action.value)
        record = self._state.rate_limits.get(key)
        if record is None or record.is_expired(now):
            self._state.rate_limits[key] = RateLimitRecord(
                identifier=identifier, action=action, count=1, reset_at=now + policy.window_seconds
            )
            return True
        if record.count >= policy.max_attempts:
            return False
        self._state.rate_limits[key] = record.model_copy(update={"count": record.count + 1})
        return True

    def get(self, identifier: str, action: RateLimitAction) -> Optional[RateLimitRecord]:
        return self._state.rate_limits.get((identifier, action.value))

    def delete_expired(self, now: float) -> int:
        expired = [key for key, record in self._state.rate_limits.items() if record.is_expired(now)]
        for key in expired:
            del self._state.rate_limits[key]
        return len(expired)


class InMemoryActivityLogRepository:
    def __init__(self, state: _State, seq: Iterator[int]):
        self._state = state
        self._seq = seq

    def append(self, entry: ActivityLogEntry) -> None:
        self._state.activity.append((next(self._seq), entry))

    def _oldest_first(self) -> List[Tuple[int, ActivityLogEntry]]:
        return sorted(self._state.activity, key=lambda pair: (pair[1].timestamp, pair[0]))

    def prune(self, keep: int) -> int:
        ordered = self._oldest_first()
        excess = len(ordered) - keep
        if excess <= 0:
            return 0
        self._state.activity = ordered[excess:]
        return excess

    def list_recent(self, limit: int) -> List[ActivityLogEntry]:
        return [entry for _, entry in reversed(self._oldest_first())][:limit]

    def count(self) -> int:
        return len(self._state.activity)


class InMemorySettingsRepository:
    def __init__(self, state: _State):
        self._state = state

    def get(self) -> Optional[AdminSettings]:
        return self._state.settings

    def save(self, settings_obj: AdminSettings) -> AdminSettings:
        self._state.settings = settings_obj
        return settings_obj

    def update(self, changes: AdminSettingsUpdate, *, now: datetime) -> AdminSettings:
        current = self._state.settings
        if current is None:
            raise LookupError("admin settings not initialised")
        updated = current.model_copy(update={**changes.changes(), "updated_at": now})
        self._state.settings = updated
        return updated


class InMemoryApiKeysRepository:
    def __init__(self, state: _State):
        self._state = state

    def get(self) -> Optional[ApiKeys]:
        return self._state.api_keys

    def save(self, keys: ApiKeys) -> ApiKeys:
        self._state.api_keys = keys
        return keys

    def update(self, changes: ApiKeysUpdate, *, now: datetime) -> ApiKeys:
        current = self._state.api_keys
        if current is None:
            raise LookupError("api keys not initialised")
        updated = current.model_copy(update={**changes.changes(), "updated_at": now})
        self._state.api_keys = updated
        return updated


class InMemoryUnitOfWork:
    def __init__(self, state: _State, seq: Iterator[int]):
        self.users = InMemoryUserRepository(state)
        self.stories = InMemoryStoryRepository(state, seq)
        self.rate_limits = InMemoryRateLimitRepository(state)
        self.activity = InMemoryActivityLogRepository(state, seq)
        self.settings = InMemorySettingsRepository(state)
        self.api_keys = InMemoryApiKeysRepository(state)


class InMemoryStore:
    name = "memory"

    def __init__(self):
        self._state = _State()
        self._lock = threading.RLock()
        self._seq = itertools.count(1)

    @contextmanager
    def unit_of_work(self):
        with self._lock:
            snapshot = self._state.snapshot()
            try:
                yield InMemoryUnitOfWork(self._state, self._seq)
            except BaseException:
                self._restore(snapshot)
                raise

    def _restore(self, snapshot: _State) -> None:
        self._state.users = snapshot.users
        self._state.stories = snapshot.stories
        self._state.rate_limits = snapshot.rate_limits
        self._state.activity = snapshot.activity
        self._state.settings = snapshot.settings
        self._state.api_keys = snapshot.api_keys

    def ping(self) -> bool:
        return True
