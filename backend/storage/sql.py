"""
SQLAlchemy-backed store (managed Postgres in production, SQLite in tests).

One session per unit of work. Quota consumption and rate-limit increments are
single conditional UPDATE statements so concurrent instances agree on counts;
SELECT ... FOR UPDATE is used where a read must be followed by a write (it is
a no-op on SQLite, whose writers are serialised anyway).
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import and_, delete, func, insert, or_, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.core.database import (
    activity_logs,
    admin_settings,
    api_keys,
    check_connection,
    create_all_tables,
    rate_limits,
    stories,
    users,
)
from backend.core.errors import AppError, ConflictError, StorageUnavailableError
from backend.models.activity_log import ActivityLogEntry
from backend.models.admin_settings import AdminSettings, AdminSettingsUpdate
from backend.models.api_keys import API_KEY_FIELDS, ApiKeys, ApiKeysUpdate
from backend.models.rate_limit import RateLimitAction, RateLimitPolicy, RateLimitRecord
from backend.models.story import NewStory, Story, StoryUpdate
from backend.models.user import NewUser, User, UserUpdate, normalize_email

logger = logging.getLogger("socialstory.storage")

SETTINGS_ROW_ID = "default"
_RATE_LIMIT_MAX_RETRIES = 3


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything we store is UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        is_premium=bool(row.is_premium),
        stories_generated=row.stories_generated,
        is_admin=bool(row.is_admin),
        created_at=_utc(row.created_at),
        subscription_end_date=_utc(row.subscription_end_date),
        last_login_at=_utc(row.last_login_at),
    )


def _row_to_story(row) -> Story:
    return Story(
        id=row.id,
        user_id=row.user_id,
        child_name=row.child_name,
        situation=row.situation,
        complexity=row.complexity,
        tone=row.tone,
        image_style=row.image_style,
        content=row.content,
        images=list(row.images or []),
        video_url=row.video_url,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def _row_to_entry(row) -> ActivityLogEntry:
    return ActivityLogEntry(
        id=row.id,
        timestamp=_utc(row.timestamp),
        action=row.action,
        actor_user_id=row.actor_user_id,
        details=row.details,
    )


def _row_to_settings(row) -> AdminSettings:
    return AdminSettings(
        free_story_limit=row.free_story_limit,
        enable_registration=bool(row.enable_registration),
        maintenance_mode=bool(row.maintenance_mode),
        premium_price=row.premium_price,
        updated_at=_utc(row.updated_at),
    )


def _row_to_api_keys(row) -> ApiKeys:
    return ApiKeys(updated_at=_utc(row.updated_at), **{name: getattr(row, name) for name in API_KEY_FIELDS})


class SqlUserRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, user_id: str) -> Optional[User]:
        row = self.session.execute(select(users).where(users.c.id == user_id)).first()
        return _row_to_user(row) if row else None

    def get_for_update(self, user_id: str) -> Optional[User]:
        row = self.session.execute(
            select(users).where(users.c.id == user_id).with_for_update()
        ).first()
        return _row_to_user(row) if row else None

    def get_by_email(self, email: str) -> Optional[User]:
        row = self.session.execute(
            select(users).where(users.c.email == normalize_email(email))
        ).first()
        return _row_to_user(row) if row else None

    def list_all(self) -> List[User]:
        rows = self.session.execute(select(users).order_by(users.c.created_at)).all()
        return [_row_to_user(row) for row in rows]

    def create(self, new_user: NewUser, *, now: datetime) -> User:
        email = normalize_email(new_user.email)
        if self.get_by_email(email):
            raise ConflictError("User already exists")
        user_id = f"user_{uuid4().hex}"
        try:
            with self.session.begin_nested():
                self.session.execute(
                    insert(users).values(
                        id=user_id,
                        email=email,
                        name=new_user.name,
                        password_hash=new_user.password_hash,
                        is_premium=new_user.is_premium,
                        is_admin=new_user.is_admin,
                        stories_generated=0,
                        created_at=now,
                    )
                )
        except IntegrityError:
            # Concurrent registration won the unique(email) race
            raise ConflictError("User already exists")
        return self.get(user_id)

    def update(self, user_id: str, changes: UserUpdate) -> Optional[User]:
        values = changes.changes()
        if "email" in values and values["email"] is not None:
            values["email"] = normalize_email(values["email"])
            other = self.get_by_email(values["email"])
            if other and other.id != user_id:
                raise ConflictError("Email already in use")
        if values:
            try:
                with self.session.begin_nested():
                    self.session.execute(update(users).where(users.c.id == user_id).values(**values))
            except IntegrityError:
                raise ConflictError("Email already in use")
        return self.get(user_id)

    def consume_story_quota(self, user_id: str, free_story_limit: int) -> bool:
        result = self.session.execute(
            update(users)
            .where(users.c.id == user_id)
            .where(or_(users.c.is_premium.is_(True), users.c.stories_generated < free_story_limit))
            .values(stories_generated=users.c.stories_generated + 1)
        )
        return result.rowcount == 1

    def delete(self, user_id: str) -> bool:
        self.session.execute(delete(stories).where(stories.c.user_id == user_id))
        result = self.session.execute(delete(users).where(users.c.id == user_id))
        return result.rowcount > 0


class SqlStoryRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self, story_id: str) -> Optional[Story]:
        row = self.session.execute(select(stories).where(stories.c.id == story_id)).first()
        return _row_to_story(row) if row else None

    def list_for_user(self, user_id: str) -> List[Story]:
        rows = self.session.execute(
            select(stories)
            .where(stories.c.user_id == user_id)
            .order_by(stories.c.created_at.desc(), stories.c.id.desc())
        ).all()
        return [_row_to_story(row) for row in rows]

    def list_all(self) -> List[Story]:
        rows = self.session.execute(
            select(stories).order_by(stories.c.created_at.desc(), stories.c.id.desc())
        ).all()
        return [_row_to_story(row) for row in rows]

    def create(self, user_id: str, new_story: NewStory, *, now: datetime) -> Story:
        story_id = f"story_{uuid4().hex}"
        self.session.execute(
            insert(stories).values(
                id=story_id,
                user_id=user_id,
                child_name=new_story.child_name,
                situation=new_story.situation,
                complexity=new_story.complexity.value,
                tone=new_story.tone.value,
                image_style=new_story.image_style.value,
                content=new_story.content,
                images=list(new_story.images),
                video_url=None,
                created_at=now,
                updated_at=now,
            )
        )
        return self.get(story_id)

    def update(self, story_id: str, changes: StoryUpdate, *, now: datetime) -> Optional[Story]:
        values = changes.changes()
        if values:
            values["updated_at"] = now
            self.session.execute(update(stories).where(stories.c.id == story_id).values(**values))
        return self.get(story_id)

    def delete(self, story_id: str) -> bool:
        result = self.session.execute(delete(stories).where(stories.c.id == story_id))
        return result.rowcount > 0


class SqlRateLimitRepository:
    def __init__(self, session: Session):
        self.session = session

    def _key(self, identifier: str, action: RateLimitAction):
        return and_(rate_limits.c.identifier == identifier, rate_limits.c.action == action.value)

    def hit(self, identifier: str, action: RateLimitAction, policy: RateLimitPolicy, now: float) -> bool:
        key = self._key(identifier, action)
        for _ in range(_RATE_LIMIT_MAX_RETRIES):
            # Fast path: live window with room left
            bumped = self.session.execute(
                update(rate_limits)
                .where(key)
                .where(rate_limits.c.reset_at >= now)
                .where(rate_limits.c.count < policy.max_attempts)
                .values(count=rate_limits.c.count + 1)
            )
            if bumped.rowcount == 1:
                return True

            row = self.session.execute(select(rate_limits).where(key).with_for_update()).first()
            if row is not None and not now > row.reset_at:
                return False

            if row is not None:
                # Expired window: restart it, guarded on the reset_at we saw
                restarted = self.session.execute(
                    update(rate_limits)
                    .where(rate_limits.c.id == row.id)
                    .where(rate_limits.c.reset_at == row.reset_at)
                    .values(count=1, reset_at=now + policy.window_seconds)
                )
                if restarted.rowcount == 1:
                    return True
                continue

            try:
                with self.session.begin_nested():
                    self.session.execute(
                        insert(rate_limits).values(
                            identifier=identifier,
                            action=action.value,
                            count=1,
                            reset_at=now + policy.window_seconds,
                        )
                    )
                return True
            except IntegrityError:
                # Another instance created the record first; go round again
                continue

        logger.warning("rate limit contention unresolved", extra={"action": action.value})
        return False

    def get(self, identifier: str, action: RateLimitAction) -> Optional[RateLimitRecord]:
        row = self.session.execute(select(rate_limits).where(self._key(identifier, action))).first()
        if row is None:
            return None
        return RateLimitRecord(
            identifier=row.identifier,
            action=RateLimitAction(row.action),
            count=row.count,
            reset_at=row.reset_at,
        )

    def delete_expired(self, now: float) -> int:
        result = self.session.execute(delete(rate_limits).where(rate_limits.c.reset_at < now))
        return result.rowcount or 0


class SqlActivityLogRepository:
    def __init__(self, session: Session):
        self.session = session

    def append(self, entry: ActivityLogEntry) -> None:
        self.session.execute(
            insert(activity_logs).values(
                id=entry.id,
                timestamp=entry.timestamp,
                action=entry.action,
                actor_user_id=entry.actor_user_id,
                details=entry.details,
            )
        )

    def count(self) -> int:
        return self.session.execute(select(func.count()).select_from(activity_logs)).scalar() or 0

    def prune(self, keep: int) -> int:
        excess = self.count() - keep
        if excess <= 0:
            return 0
        oldest = self.session.execute(
            select(activity_logs.c.seq)
            .order_by(activity_logs.c.timestamp.asc(), activity_logs.c.seq.asc())
            .limit(excess)
        ).scalars().all()
        result = self.session.execute(delete(activity_logs).where(activity_logs.c.seq.in_(oldest)))
        return result.rowcount or 0

    def list_recent(self, limit: int) -> List[ActivityLogEntry]:
        rows = self.session.execute(
            select(activity_logs)
            .order_by(activity_logs.c.timestamp.desc(), activity_logs.c.seq.desc())
            .limit(limit)
        ).all()
        return [_row_to_entry(row) for row in rows]


class SqlSettingsRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self) -> Optional[AdminSettings]:
        row = self.session.execute(
            select(admin_settings).where(admin_settings.c.id == SETTINGS_ROW_ID)
        ).first()
        return _row_to_settings(row) if row else None

    def save(self, settings_obj: AdminSettings) -> AdminSettings:
        values = settings_obj.model_dump()
        if self.get() is None:
            self.session.execute(insert(admin_settings).values(id=SETTINGS_ROW_ID, **values))
        else:
            self.session.execute(
                update(admin_settings).where(admin_settings.c.id == SETTINGS_ROW_ID).values(**values)
            )
        return self.get()

    def update(self, changes: AdminSettingsUpdate, *, now: datetime) -> AdminSettings:
        values = {**changes.changes(), "updated_at": now}
        result = self.session.execute(
            update(admin_settings).where(admin_settings.c.id == SETTINGS_ROW_ID).values(**values)
        )
        if result.rowcount == 0:
            raise LookupError("admin settings not initialised")
        return self.get()


class SqlApiKeysRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self) -> Optional[ApiKeys]:
        row = self.session.execute(select(api_keys).where(api_keys.c.id == SETTINGS_ROW_ID)).first()
        return _row_to_api_keys(row) if row else None

    def save(self, keys: ApiKeys) -> ApiKeys:
        values = keys.model_dump()
        if self.get() is None:
            self.session.execute(insert(api_keys).values(id=SETTINGS_ROW_ID, **values))
        else:
            self.session.execute(update(api_keys).where(api_keys.c.id == SETTINGS_ROW_ID).values(**values))
        return self.get()

    def update(self, changes: ApiKeysUpdate, *, now: datetime) -> ApiKeys:
        values = {**changes.changes(), "updated_at": now}
        result = self.session.execute(update(api_keys).where(api_keys.c.id == SETTINGS_ROW_ID).values(**values))
        if result.rowcount == 0:
            raise LookupError("api keys not initialised")
        return self.get()


class SqlUnitOfWork:
    def __init__(self, session: Session):
        self.session = session
        self.users = SqlUserRepository(session)
        self.stories = SqlStoryRepository(session)
        self.rate_limits = SqlRateLimitRepository(session)
        self.activity = SqlActivityLogRepository(session)
        self.settings = SqlSettingsRepository(session)
        self.api_keys = SqlApiKeysRepository(session)


class SqlStore:
    name = "sql"

    def __init__(self, engine: Engine, *, create_tables: bool = True):
        self.engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
        if create_tables:
            create_all_tables(engine)

    @contextmanager
    def unit_of_work(self):
        session = self._session_factory()
        try:
            yield SqlUnitOfWork(session)
            session.commit()
        except AppError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("storage.error", exc_info=True, extra={"error_type": type(exc).__name__})
            raise StorageUnavailableError() from exc
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        return check_connection(self.engine)
