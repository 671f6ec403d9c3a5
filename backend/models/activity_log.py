from datetime import datetime
from enum import Enum
from pydantic import BaseModel, ConfigDict


class ActivityAction(str, Enum):
    TOGGLE_PREMIUM = "toggle_premium"
    EXTEND_SUBSCRIPTION = "extend_subscription"
    RESET_PASSWORD = "reset_password"
    TOGGLE_ADMIN = "toggle_admin"
    DELETE_USER = "delete_user"
    DELETE_STORY = "delete_story"
    UPDATE_SETTINGS = "update_settings"
    UPDATE_API_KEYS = "update_api_keys"


class ActivityLogEntry(BaseModel):
    """Immutable audit record of an admin mutation."""
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    action: str
    actor_user_id: str
    details: str
