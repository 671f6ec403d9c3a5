from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class AdminSettings(BaseModel):
    """Platform-wide settings singleton."""
    model_config = ConfigDict(frozen=True)

    free_story_limit: int
    enable_registration: bool = True
    maintenance_mode: bool = False
    premium_price: float
    updated_at: datetime


class AdminSettingsUpdate(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    free_story_limit: Optional[int] = Field(default=None, ge=0)
    enable_registration: Optional[bool] = None
    maintenance_mode: Optional[bool] = None
    premium_price: Optional[float] = Field(default=None, ge=0)

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set if getattr(self, name) is not None}
