"""
Story service.

Stories arrive already generated (text and image URLs come from external
generators); this service owns quota, ownership and the video hand-off.
A story owned by someone else is reported as not found.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from backend.core.config import settings
from backend.core.errors import AuthenticationError, MaintenanceModeError, NotFoundError, PremiumRequiredError
from backend.features.entitlements.service import can_generate_video, record_story_created
from backend.features.settings.service import get_platform_settings
from backend.models.story import NewStory, Story, StoryUpdate

logger = logging.getLogger("socialstory.stories")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StoryService:
    def __init__(self, store, *, now_fn: Callable[[], datetime] = _utcnow, video_base_url: Optional[str] = None, settings_obj=None):
        self.store = store
        self.now_fn = now_fn
        self.settings_obj = settings_obj
        self.video_base_url = (video_base_url or (settings_obj or settings).VIDEO_BASE_URL).rstrip("/")

    def _owned(self, uow, user_id: str, story_id: str) -> Story:
        story = uow.stories.get(story_id)
        if story is None or story.user_id != user_id:
            raise NotFoundError("Story not found")
        return story

    def create(self, user_id: str, new_story: NewStory) -> Story:
        with self.store.unit_of_work() as uow:
            platform = get_platform_settings(uow, now=self.now_fn(), settings_obj=self.settings_obj)
            user = uow.users.get_for_update(user_id)
            if user is None:
                raise AuthenticationError()
            if platform.maintenance_mode and not user.is_admin:
                raise MaintenanceModeError()
            record_story_created(uow.users, user, platform.free_story_limit)
            story = uow.stories.create(user_id, new_story, now=self.now_fn())

        logger.info("story.created", extra={"user_id": user_id, "story_id": story.id})
        return story

    def list_for_user(self, user_id: str) -> List[Story]:
        with self.store.unit_of_work() as uow:
            return uow.stories.list_for_user(user_id)

    def get(self, user_id: str, story_id: str) -> Story:
        with self.store.unit_of_work() as uow:
            return self._owned(uow, user_id, story_id)

    def update(self, user_id: str, story_id: str, changes: StoryUpdate) -> Story:
        with self.store.unit_of_work() as uow:
            story = self._owned(uow, user_id, story_id)
            if changes.is_empty():
                return story
            return uow.stories.update(story_id, changes, now=self.now_fn())

    def delete(self, user_id: str, story_id: str) -> None:
        with self.store.unit_of_work() as uow:
            self._owned(uow, user_id, story_id)
            uow.stories.delete(story_id)
        logger.info("story.deleted", extra={"user_id": user_id, "story_id": story_id})

    def generate_video(self, user_id: str, story_id: str) -> str:
        with self.store.unit_of_work() as uow:
            platform = get_platform_settings(uow, now=self.now_fn(), settings_obj=self.settings_obj)
            user = uow.users.get(user_id)
            if user is None:
                raise AuthenticationError()
            if platform.maintenance_mode and not user.is_admin:
                raise MaintenanceModeError()
            if not can_generate_video(user):
                raise PremiumRequiredError()
            self._owned(uow, user_id, story_id)
            video_url = f"{self.video_base_url}/{story_id}.mp4"
            uow.stories.update(story_id, StoryUpdate(video_url=video_url), now=self.now_fn())

        logger.info("story.video_requested", extra={"user_id": user_id, "story_id": story_id})
        return video_url
