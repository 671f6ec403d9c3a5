from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


def normalize_email(email: str) -> str:
    """Emails are unique case-insensitively; store and look up the lowercased form."""
    return email.strip().lower()


class User(BaseModel):
    """Identity and entitlement record.

    password_hash stays inside the storage and credential layers; API schemas
    never copy it.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    name: str
    password_hash: str = Field(repr=False)
    is_premium: bool = False
    stories_generated: int = 0
    is_admin: bool = False
    created_at: datetime
    subscription_end_date: Optional[datetime] = None
    last_login_at: Optional[datetime] = None


class NewUser(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    email: str
    name: str
    password_hash: str = Field(repr=False)
    is_premium: bool = False
    is_admin: bool = False


class UserUpdate(BaseModel):
    """Partial update of a user record.

    Only fields explicitly passed are written. Passing subscription_end_date=None
    clears the end date; omitting it leaves the stored value alone. Unknown
    fields are rejected.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    email: Optional[str] = None
    name: Optional[str] = None
    password_hash: Optional[str] = Field(default=None, repr=False)
    is_premium: Optional[bool] = None
    stories_generated: Optional[int] = None
    is_admin: Optional[bool] = None
    subscription_end_date: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    def changes(self) -> dict:
        return {name: getattr(self, name) for name in self.model_fields_set}

    def is_empty(self) -> bool:
        return not self.model_fields_set

    def apply_to(self, user: User) -> User:
        return user.model_copy(update=self.changes())
