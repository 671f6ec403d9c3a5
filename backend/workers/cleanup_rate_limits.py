"""Periodic cleanup: expired rate-limit windows and activity log overflow.

Both passes are idempotent and only remove rows that are already dead (a
window whose reset time has passed, log entries beyond the retention cap), so
several instances may run this concurrently.
"""
import logging
import time
from typing import Callable, Optional

from backend.core.config import settings
from backend.core.ratelimit import RateLimiter, build_rate_limit_policies
from backend.storage.factory import build_store

logger = logging.getLogger("socialstory.cleanup.rate_limits")


def cleanup_rate_limits(
    store=None,
    *,
    retention: Optional[int] = None,
    time_fn: Callable[[], float] = time.time,
) -> dict:
    store = store if store is not None else build_store()
    keep = retention if retention is not None else int(settings.ACTIVITY_LOG_RETENTION)

    limiter = RateLimiter(store, build_rate_limit_policies(), time_fn=time_fn)
    expired = limiter.sweep_expired()

    with store.unit_of_work() as uow:
        pruned = uow.activity.prune(keep)

    logger.info(
        "[cleanup] rate limits and activity log",
        extra={"rate_limits_deleted": expired, "activity_pruned": pruned, "retention": keep},
    )
    return {"rate_limits_deleted": expired, "activity_pruned": pruned, "retention": keep}


if __name__ == "__main__":
    result = cleanup_rate_limits()
    print(result)
