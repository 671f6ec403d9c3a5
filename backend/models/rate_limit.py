"""
Rate limit records and per-action policies.

Actions form a closed set; every action must be registered with an explicit
policy, there is no silent fallback to a default bucket.
"""

from dataclasses import dataclass
from enum import Enum
from pydantic import BaseModel, ConfigDict


class RateLimitAction(str, Enum):
    LOGIN = "login"
    REGISTER = "register"
    API_DEFAULT = "api-default"


@dataclass(frozen=True)
class RateLimitPolicy:
    max_attempts: int
    window_seconds: float
    # When the backing store is unavailable: True lets the request through,
    # False rejects it.
    fail_open: bool = False


class RateLimitRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    identifier: str
    action: RateLimitAction
    count: int
    reset_at: float  # epoch seconds

    def is_expired(self, now: float) -> bool:
        return now > self.reset_at


class RateLimitInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit: int
    remaining: int
    reset_at: float
