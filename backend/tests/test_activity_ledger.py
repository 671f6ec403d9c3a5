"""Activity ledger: append-only, capped, committed with the mutation it records."""

from datetime import datetime, timedelta, timezone

import pytest

from backend.core.errors import LedgerWriteError
from backend.features.audit.service import DETAILS_LIMIT, ActivityLedger
from backend.models.activity_log import ActivityAction
from backend.models.user import NewUser, UserUpdate

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class SteppingClock:
    def __init__(self, start=T0, step=timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self):
        self.current += self.step
        return self.current


def test_append_records_entry(store):
    ledger = ActivityLedger(now_fn=SteppingClock())
    with store.unit_of_work() as uow:
        entry = ledger.append(uow, ActivityAction.DELETE_STORY, "admin_1", "Deleted story story_9")

    with store.unit_of_work() as uow:
        [stored] = ledger.list_recent(uow)
    assert stored == entry
    assert stored.action == "delete_story"
    assert stored.actor_user_id == "admin_1"


def test_ledger_never_exceeds_cap_and_keeps_most_recent(store):
    ledger = ActivityLedger(retention=100, now_fn=SteppingClock())
    for i in range(130):
        with store.unit_of_work() as uow:
            ledger.append(uow, ActivityAction.UPDATE_SETTINGS, "admin_1", f"change {i}")
            assert uow.activity.count() <= 100

    with store.unit_of_work() as uow:
        entries = ledger.list_recent(uow)

    assert len(entries) == 100
    assert [e.details for e in entries] == [f"change {i}" for i in range(129, 29, -1)]


def test_prune_orders_by_timestamp_not_insertion(store):
    """An entry stamped earlier is evicted first even if it was inserted later."""
    times = iter([T0 + timedelta(seconds=10), T0 + timedelta(seconds=20), T0 + timedelta(seconds=5)])
    ledger = ActivityLedger(retention=2, now_fn=lambda: next(times))

    with store.unit_of_work() as uow:
        ledger.append(uow, ActivityAction.TOGGLE_ADMIN, "a", "ten")
        ledger.append(uow, ActivityAction.TOGGLE_ADMIN, "a", "twenty")
        ledger.append(uow, ActivityAction.TOGGLE_ADMIN, "a", "five")

    with store.unit_of_work() as uow:
        assert [e.details for e in ledger.list_recent(uow)] == ["twenty", "ten"]


def test_list_with_actors_resolves_names(store):
    ledger = ActivityLedger(now_fn=SteppingClock())
    with store.unit_of_work() as uow:
        admin = uow.users.create(NewUser(email="boss@example.com", name="Boss", password_hash="x"), now=T0)
        ledger.append(uow, ActivityAction.TOGGLE_PREMIUM, admin.id, "by a live admin")
        ledger.append(uow, ActivityAction.TOGGLE_PREMIUM, "user_gone", "by a deleted admin")

    with store.unit_of_work() as uow:
        rows = ledger.list_with_actors(uow)

    assert [(r["actor_name"], r["actor_email"]) for r in rows] == [("Unknown", "Unknown"), ("Boss", "boss@example.com")]


def test_failed_append_rolls_back_the_mutation(store, monkeypatch):
    ledger = ActivityLedger(now_fn=SteppingClock())
    with store.unit_of_work() as uow:
        user = uow.users.create(NewUser(email="target@example.com", name="Target", password_hash="x"), now=T0)

    def broken_append(self, entry):
        raise RuntimeError("disk full")

    with pytest.raises(LedgerWriteError):
        with store.unit_of_work() as uow:
            monkeypatch.setattr(type(uow.activity), "append", broken_append)
            uow.users.update(user.id, UserUpdate(is_premium=True))
            ledger.append(uow, ActivityAction.TOGGLE_PREMIUM, "admin_1", "should not stick")

    monkeypatch.undo()
    with store.unit_of_work() as uow:
        assert uow.users.get(user.id).is_premium is False
        assert uow.activity.count() == 0


def test_details_are_truncated():
    class Recorder:
        def __init__(self):
            self.entries = []

        def append(self, entry):
            self.entries.append(entry)

        def prune(self, keep):
            return 0

    class FakeUow:
        activity = Recorder()

    ledger = ActivityLedger(now_fn=SteppingClock())
    entry = ledger.append(FakeUow(), ActivityAction.UPDATE_SETTINGS, "admin_1", "x" * 5000)
    assert len(entry.details) == DETAILS_LIMIT
    assert entry.details.endswith("...<truncated>")


def test_retention_must_be_positive():
    with pytest.raises(ValueError):
        ActivityLedger(retention=0)
