from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, field_validator


class Complexity(str, Enum):
    VERY_SIMPLE = "very-simple"
    SIMPLE = "simple"
    MODERATE = "moderate"


class Tone(str, Enum):
    FRIENDLY = "friendly"
    CALM = "calm"
    ENCOURAGING = "encouraging"
    STRAIGHTFORWARD = "straightforward"


class ImageStyle(str, Enum):
    CARTOON = "cartoon"
    REALISTIC = "realistic"
    MINIMAL = "minimal"
    ILLUSTRATED = "illustrated"


class Story(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    child_name: str
    situation: str
    complexity: Complexity
    tone: Tone
    image_style: ImageStyle
    content: str
    images: List[str] = []
    video_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class NewStory(BaseModel):
    """Fields supplied by the client when saving a generated story."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    child_name: str
    situation: str
    complexity: Complexity
    tone: Tone
    image_style: ImageStyle
    content: str
    images: List[str] = []


class StoryUpdate(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    content: Optional[str] = None
    images: Optional[List[str]] = None
    video_url: Optional[str] = None

    @field_validator("content", "images")
    @classmethod
    def _not_null(cls, value):
        # Omit a field to leave it alone; the columns are NOT NULL
        if value is None:
            raise ValueError("may not be null")
        return value

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set
