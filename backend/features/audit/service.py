"""
Activity ledger for admin mutations.

Entries are written inside the unit of work of the change they describe and
are pruned to the newest `retention` rows on every append.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from backend.core.errors import LedgerWriteError
from backend.models.activity_log import ActivityAction, ActivityLogEntry

logger = logging.getLogger("socialstory.audit")

DEFAULT_RETENTION = 100
DETAILS_LIMIT = 1000
TRUNCATION_MARKER = "...<truncated>"


def _clip_details(details: str) -> str:
    if len(details) <= DETAILS_LIMIT:
        return details
    return details[: DETAILS_LIMIT - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActivityLedger:
    """Append-only record of admin mutations, capped at `retention` entries.

    append() writes through the caller's unit of work, so the entry commits
    with the mutation it describes. Any failure is raised as LedgerWriteError,
    which rolls that unit of work back.
    """

    def __init__(self, retention: int = DEFAULT_RETENTION, now_fn: Callable[[], datetime] = _utcnow):
        if retention < 1:
            raise ValueError("retention must be at least 1")
        self.retention = retention
        self.now_fn = now_fn

    def append(self, uow, action: ActivityAction, actor_user_id: str, details: str) -> ActivityLogEntry:
        entry = ActivityLogEntry(
            id=f"log_{uuid4().hex}",
            timestamp=self.now_fn(),
            action=ActivityAction(action).value,
            actor_user_id=actor_user_id,
            details=_clip_details(str(details)),
        )
        try:
            uow.activity.append(entry)
            pruned = uow.activity.prune(self.retention)
        except Exception as exc:
            logger.error(
                "audit.write_failed",
                exc_info=True,
                extra={"action": entry.action, "user_id": actor_user_id},
            )
            raise LedgerWriteError() from exc

        logger.info(
            "audit.appended",
            extra={"action": entry.action, "user_id": actor_user_id, "pruned": pruned},
        )
        return entry

    def list_recent(self, uow, limit: Optional[int] = None) -> List[ActivityLogEntry]:
        return uow.activity.list_recent(min(limit or self.retention, self.retention))

    def list_with_actors(self, uow, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest-first entries joined with the actor's current name and email."""
        actors = {user.id: user for user in uow.users.list_all()}
        rows = []
        for entry in self.list_recent(uow, limit):
            actor = actors.get(entry.actor_user_id)
            rows.append({
                "entry": entry,
                "actor_name": actor.name if actor else "Unknown",
                "actor_email": actor.email if actor else "Unknown",
            })
        return rows
