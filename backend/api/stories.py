"""
Stories API. Every route requires an authenticated caller and acts only on
the caller's own stories.
"""

from typing import List

from fastapi import APIRouter, Depends

from backend.api.deps import get_story_service
from backend.api.schemas import StoryCreateIn, StoryOut, StoryUpdateIn, SuccessOut, VideoOut
from backend.core.auth import Principal, require_authenticated
from backend.features.stories.service import StoryService

router = APIRouter()


@router.post("", response_model=StoryOut, status_code=201)
def create_story(
    data: StoryCreateIn,
    principal: Principal = Depends(require_authenticated),
    stories: StoryService = Depends(get_story_service),
):
    return StoryOut.from_story(stories.create(principal.user_id, data.to_new_story()))


@router.get("", response_model=List[StoryOut])
def list_stories(
    principal: Principal = Depends(require_authenticated),
    stories: StoryService = Depends(get_story_service),
):
    return [StoryOut.from_story(s) for s in stories.list_for_user(principal.user_id)]


@router.get("/{story_id}", response_model=StoryOut)
def get_story(
    story_id: str,
    principal: Principal = Depends(require_authenticated),
    stories: StoryService = Depends(get_story_service),
):
    return StoryOut.from_story(stories.get(principal.user_id, story_id))


@router.patch("/{story_id}", response_model=StoryOut)
def update_story(
    story_id: str,
    data: StoryUpdateIn,
    principal: Principal = Depends(require_authenticated),
    stories: StoryService = Depends(get_story_service),
):
    return StoryOut.from_story(stories.update(principal.user_id, story_id, data.to_update()))


@router.delete("/{story_id}", response_model=SuccessOut)
def delete_story(
    story_id: str,
    principal: Principal = Depends(require_authenticated),
    stories: StoryService = Depends(get_story_service),
):
    stories.delete(principal.user_id, story_id)
    return SuccessOut()


@router.post("/{story_id}/video", response_model=VideoOut)
def generate_video(
    story_id: str,
    principal: Principal = Depends(require_authenticated),
    stories: StoryService = Depends(get_story_service),
):
    return VideoOut(video_url=stories.generate_video(principal.user_id, story_id))
