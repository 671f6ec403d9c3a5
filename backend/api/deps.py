from fastapi import Request

from backend.features.admin.service import AdminService
from backend.features.stories.service import StoryService
from backend.features.users.service import UserService


def get_user_service(request: Request) -> UserService:
    return request.app.state.user_service


def get_story_service(request: Request) -> StoryService:
    return request.app.state.story_service


def get_admin_service(request: Request) -> AdminService:
    return request.app.state.admin_service
