"""
Fixed-window rate limiter backed by the shared store.

- One record per (identifier, action); counts live in the store so every
  instance sees the same numbers.
- Every action needs an explicit policy; an unregistered action is a
  programming error, not a silent default bucket.
- When the store is unavailable the action's policy decides: fail open lets
  the request through, fail closed rejects it.
"""

import logging
import time
from typing import Callable, Dict, Optional

from backend.core.config import settings
from backend.core.errors import RateLimitError, StorageUnavailableError
from backend.core.logging import fingerprint
from backend.models.rate_limit import RateLimitAction, RateLimitInfo, RateLimitPolicy

logger = logging.getLogger("socialstory.ratelimit")

DEFAULT_MESSAGES = {
    RateLimitAction.LOGIN: "Too many login attempts. Please try again later.",
    RateLimitAction.REGISTER: "Too many registration attempts. Please try again later.",
    RateLimitAction.API_DEFAULT: "Too many requests. Please slow down.",
}


def normalize_identifier(identifier: str) -> str:
    return (identifier or "").strip().lower()


class RateLimiter:
    def __init__(
        self,
        store,
        policies: Dict[RateLimitAction, RateLimitPolicy],
        time_fn: Callable[[], float] = time.time,
    ):
        self.store = store
        self.policies = dict(policies)
        self.time_fn = time_fn

    def policy_for(self, action: RateLimitAction) -> RateLimitPolicy:
        try:
            return self.policies[action]
        except KeyError:
            raise ValueError(f"No rate limit policy registered for action '{action}'")

    def check_and_consume(self, identifier: str, action: RateLimitAction) -> bool:
        """Count one attempt; True if it is within the action's window budget."""
        policy = self.policy_for(action)
        key = normalize_identifier(identifier)
        now = self.time_fn()
        try:
            with self.store.unit_of_work() as uow:
                allowed = uow.rate_limits.hit(key, action, policy, now)
        except StorageUnavailableError:
            logger.error(
                "ratelimit.store_unavailable",
                extra={"action": action.value, "fail_open": policy.fail_open, "identifier_fp": fingerprint(key)},
            )
            return policy.fail_open

        if not allowed:
            logger.warning(
                "ratelimit.blocked",
                extra={"action": action.value, "identifier_fp": fingerprint(key)},
            )
        return allowed

    def enforce(self, identifier: str, action: RateLimitAction, message: Optional[str] = None) -> None:
        """check_and_consume, raising RateLimitError with a Retry-After hint on rejection."""
        if self.check_and_consume(identifier, action):
            return
        retry_after = None
        try:
            info = self.get_info(identifier, action)
            retry_after = max(1, int(info.reset_at - self.time_fn()))
        except StorageUnavailableError:
            pass
        raise RateLimitError(message or DEFAULT_MESSAGES.get(action), retry_after=retry_after)

    def get_info(self, identifier: str, action: RateLimitAction) -> RateLimitInfo:
        policy = self.policy_for(action)
        now = self.time_fn()
        with self.store.unit_of_work() as uow:
            record = uow.rate_limits.get(normalize_identifier(identifier), action)
        if record is None or record.is_expired(now):
            return RateLimitInfo(limit=policy.max_attempts, remaining=policy.max_attempts, reset_at=now + policy.window_seconds)
        return RateLimitInfo(
            limit=policy.max_attempts,
            remaining=max(0, policy.max_attempts - record.count),
            reset_at=record.reset_at,
        )

    def sweep_expired(self) -> int:
        """Delete records whose window has passed. Idempotent and safe to run concurrently."""
        now = self.time_fn()
        with self.store.unit_of_work() as uow:
            removed = uow.rate_limits.delete_expired(now)
        if removed:
            logger.info("ratelimit.swept", extra={"removed": removed})
        return removed


def build_rate_limit_policies(settings_obj=None) -> Dict[RateLimitAction, RateLimitPolicy]:
    cfg = settings_obj or settings
    return {
        RateLimitAction.LOGIN: RateLimitPolicy(
            max_attempts=cfg.RATE_LIMIT_LOGIN_MAX,
            window_seconds=cfg.RATE_LIMIT_LOGIN_WINDOW_SECONDS,
            fail_open=False,
        ),
        RateLimitAction.REGISTER: RateLimitPolicy(
            max_attempts=cfg.RATE_LIMIT_REGISTER_MAX,
            window_seconds=cfg.RATE_LIMIT_REGISTER_WINDOW_SECONDS,
            fail_open=False,
        ),
        RateLimitAction.API_DEFAULT: RateLimitPolicy(
            max_attempts=cfg.RATE_LIMIT_API_MAX,
            window_seconds=cfg.RATE_LIMIT_API_WINDOW_SECONDS,
            fail_open=True,
        ),
    }
