"""
Wire schemas for the HTTP API.

JSON is camelCase on the wire; inputs also accept snake_case. Output schemas
are built from domain records field by field, so password hashes never reach
a response.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from backend.features.entitlements.service import MAX_SUBSCRIPTION_MONTHS, MIN_SUBSCRIPTION_MONTHS
from backend.features.users.service import MIN_NAME_LENGTH, MIN_PASSWORD_LENGTH
from backend.models.activity_log import ActivityLogEntry
from backend.models.admin_settings import AdminSettings, AdminSettingsUpdate
from backend.models.api_keys import API_KEY_FIELDS, ApiKeysUpdate
from backend.models.story import Complexity, ImageStyle, NewStory, Story, StoryUpdate, Tone
from backend.models.user import User


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InputModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


# ============================================================================
# Auth
# ============================================================================

class LoginIn(InputModel):
    email: str
    password: str


class RegisterIn(InputModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)
    name: str = Field(..., min_length=MIN_NAME_LENGTH)


class ProfileUpdateIn(InputModel):
    name: Optional[str] = Field(default=None, min_length=MIN_NAME_LENGTH)
    email: Optional[str] = None


class ChangePasswordIn(InputModel):
    current_password: str
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)


class ProfileOut(CamelModel):
    user_id: str
    email: str
    name: str
    is_premium: bool
    stories_generated: int
    is_admin: bool
    subscription_end_date: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "ProfileOut":
        return cls(
            user_id=user.id,
            email=user.email,
            name=user.name,
            is_premium=user.is_premium,
            stories_generated=user.stories_generated,
            is_admin=user.is_admin,
            subscription_end_date=user.subscription_end_date,
        )


class AuthOut(ProfileOut):
    token: str

    @classmethod
    def from_result(cls, user: User, token: str) -> "AuthOut":
        return cls(token=token, **ProfileOut.from_user(user).model_dump())


class SuccessOut(CamelModel):
    success: bool = True


# ============================================================================
# Stories
# ============================================================================

class StoryCreateIn(InputModel):
    child_name: str = Field(..., min_length=1)
    situation: str = Field(..., min_length=1)
    complexity: Complexity
    tone: Tone
    image_style: ImageStyle
    content: str
    images: List[str] = []

    def to_new_story(self) -> NewStory:
        return NewStory(**self.model_dump())


class StoryUpdateIn(InputModel):
    content: Optional[str] = None
    images: Optional[List[str]] = None

    @field_validator("content", "images")
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null")
        return value

    def to_update(self) -> StoryUpdate:
        return StoryUpdate(**{name: getattr(self, name) for name in self.model_fields_set})


class StoryOut(CamelModel):
    id: str
    user_id: str
    child_name: str
    situation: str
    complexity: Complexity
    tone: Tone
    image_style: ImageStyle
    content: str
    images: List[str]
    video_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_story(cls, story: Story) -> "StoryOut":
        return cls(**story.model_dump())


class VideoOut(CamelModel):
    video_url: str


# ============================================================================
# Admin
# ============================================================================

class ExtendSubscriptionIn(InputModel):
    months: int = Field(..., ge=MIN_SUBSCRIPTION_MONTHS, le=MAX_SUBSCRIPTION_MONTHS)


class ResetPasswordIn(InputModel):
    new_password: str = Field(..., min_length=MIN_PASSWORD_LENGTH)


class AdminUserOut(ProfileOut):
    created_at: datetime
    last_login_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "AdminUserOut":
        return cls(
            created_at=user.created_at,
            last_login_at=user.last_login_at,
            **ProfileOut.from_user(user).model_dump(),
        )


class AnalyticsOut(CamelModel):
    total_users: int
    premium_users: int
    free_users: int
    total_stories: int
    average_stories_per_user: float
    recent_stories: List[StoryOut]
    stories_per_day: Dict[str, int]


class SettingsOut(CamelModel):
    free_story_limit: int
    enable_registration: bool
    maintenance_mode: bool
    premium_price: float
    updated_at: datetime

    @classmethod
    def from_settings(cls, settings_obj: AdminSettings) -> "SettingsOut":
        return cls(**settings_obj.model_dump())


class SettingsUpdateIn(InputModel):
    free_story_limit: Optional[int] = Field(default=None, ge=0)
    enable_registration: Optional[bool] = None
    maintenance_mode: Optional[bool] = None
    premium_price: Optional[float] = Field(default=None, ge=0)

    def to_update(self) -> AdminSettingsUpdate:
        return AdminSettingsUpdate(**{name: getattr(self, name) for name in self.model_fields_set})


class ApiKeysOut(CamelModel):
    """Secret keys arrive masked; unset keys are empty strings."""
    openai_key: str
    gemini_key: str
    stripe_secret_key: str
    stripe_publishable_key: str
    google_oauth_web_client_id: str = Field(alias="googleOAuthWebClientId")
    google_oauth_ios_client_id: str = Field(alias="googleOAuthIosClientId")
    google_oauth_android_client_id: str = Field(alias="googleOAuthAndroidClientId")


class ApiKeysUpdateIn(InputModel):
    openai_key: Optional[str] = None
    gemini_key: Optional[str] = None
    stripe_secret_key: Optional[str] = None
    stripe_publishable_key: Optional[str] = None
    google_oauth_web_client_id: Optional[str] = Field(default=None, alias="googleOAuthWebClientId")
    google_oauth_ios_client_id: Optional[str] = Field(default=None, alias="googleOAuthIosClientId")
    google_oauth_android_client_id: Optional[str] = Field(default=None, alias="googleOAuthAndroidClientId")

    @field_validator(*API_KEY_FIELDS)
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null; send an empty string to clear")
        return value

    def to_update(self) -> ApiKeysUpdate:
        return ApiKeysUpdate(**{name: getattr(self, name) for name in self.model_fields_set})


class ActivityLogOut(CamelModel):
    id: str
    timestamp: datetime
    action: str
    actor_user_id: str
    details: str
    actor_name: str
    actor_email: str

    @classmethod
    def from_row(cls, entry: ActivityLogEntry, actor_name: str, actor_email: str) -> "ActivityLogOut":
        return cls(actor_name=actor_name, actor_email=actor_email, **entry.model_dump())
