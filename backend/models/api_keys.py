from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

API_KEY_FIELDS = (
    "openai_key",
    "gemini_key",
    "stripe_secret_key",
    "stripe_publishable_key",
    "google_oauth_web_client_id",
    "google_oauth_ios_client_id",
    "google_oauth_android_client_id",
)

# Credentials that must never be returned in full; the rest are public identifiers
SECRET_API_KEY_FIELDS = frozenset({"openai_key", "gemini_key", "stripe_secret_key"})


class ApiKeys(BaseModel):
    """Third-party credentials singleton, edited from the admin dashboard."""
    model_config = ConfigDict(frozen=True)

    openai_key: Optional[str] = Field(default=None, repr=False)
    gemini_key: Optional[str] = Field(default=None, repr=False)
    stripe_secret_key: Optional[str] = Field(default=None, repr=False)
    stripe_publishable_key: Optional[str] = None
    google_oauth_web_client_id: Optional[str] = None
    google_oauth_ios_client_id: Optional[str] = None
    google_oauth_android_client_id: Optional[str] = None
    updated_at: datetime


class ApiKeysUpdate(BaseModel):
    """Partial update. An empty string clears a key; null is rejected."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    openai_key: Optional[str] = Field(default=None, repr=False)
    gemini_key: Optional[str] = Field(default=None, repr=False)
    stripe_secret_key: Optional[str] = Field(default=None, repr=False)
    stripe_publishable_key: Optional[str] = None
    google_oauth_web_client_id: Optional[str] = None
    google_oauth_ios_client_id: Optional[str] = None
    google_oauth_android_client_id: Optional[str] = None

    @field_validator(*API_KEY_FIELDS)
    @classmethod
    def _not_null(cls, value):
        if value is None:
            raise ValueError("may not be null; send an empty string to clear")
        return value

    def changes(self) -> dict:
        return {name: getattr(self, name).strip() or None for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set
