"""Stories routes: quota, ownership, ordering and premium video gating."""

import threading

import pytest

from backend.features.stories.service import StoryService
from backend.models.story import NewStory
from backend.models.user import UserUpdate


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def story_payload(**overrides):
    payload = {
        "childName": "Sam",
        "situation": "Going to the dentist",
        "complexity": "simple",
        "tone": "calm",
        "imageStyle": "cartoon",
        "content": "Sam goes to the dentist.",
        "images": ["https://img.example.com/1.png"],
    }
    payload.update(overrides)
    return payload


def test_create_story_returns_201_and_counts(client, register_user):
    user = register_user()
    resp = client.post("/api/stories", headers=auth(user["token"]), json=story_payload())

    assert resp.status_code == 201
    body = resp.json()
    assert body["userId"] == user["userId"]
    assert body["childName"] == "Sam"
    assert body["imageStyle"] == "cartoon"
    assert body["videoUrl"] is None

    me = client.get("/api/auth/me", headers=auth(user["token"])).json()
    assert me["storiesGenerated"] == 1


def test_create_story_requires_auth(client):
    resp = client.post("/api/stories", json=story_payload())
    assert resp.status_code == 401


def test_create_story_rejects_unknown_enum(client, register_user):
    user = register_user()
    resp = client.post("/api/stories", headers=auth(user["token"]), json=story_payload(tone="angry"))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_free_quota_blocks_fourth_story(client, register_user):
    user = register_user()
    headers = auth(user["token"])
    for _ in range(3):
        assert client.post("/api/stories", headers=headers, json=story_payload()).status_code == 201

    resp = client.post("/api/stories", headers=headers, json=story_payload())

    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "quota_exceeded"
    assert len(client.get("/api/stories", headers=headers).json()) == 3


def test_premium_user_has_no_quota(client, register_user):
    user = register_user()
    headers = auth(user["token"])
    client.post("/api/auth/upgrade", headers=headers)

    for _ in range(5):
        assert client.post("/api/stories", headers=headers, json=story_payload()).status_code == 201
    assert client.get("/api/auth/me", headers=headers).json()["storiesGenerated"] == 5


def test_list_is_newest_first_and_scoped_to_owner(client, register_user, fake_time):
    alice = register_user(email="alice@example.com")
    bob = register_user(email="bob@example.com")
    client.post("/api/stories", headers=auth(alice["token"]), json=story_payload(childName="First"))
    fake_time.advance(60)
    client.post("/api/stories", headers=auth(alice["token"]), json=story_payload(childName="Second"))
    client.post("/api/stories", headers=auth(bob["token"]), json=story_payload(childName="Bobs"))

    names = [s["childName"] for s in client.get("/api/stories", headers=auth(alice["token"])).json()]

    assert names == ["Second", "First"]


def test_other_users_story_is_not_found(client, register_user):
    owner = register_user(email="owner@example.com")
    intruder = register_user(email="intruder@example.com")
    story = client.post("/api/stories", headers=auth(owner["token"]), json=story_payload()).json()
    path = f"/api/stories/{story['id']}"

    for method in ("get", "delete"):
        resp = getattr(client, method)(path, headers=auth(intruder["token"]))
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Story not found"
    resp = client.patch(path, headers=auth(intruder["token"]), json={"content": "hijacked"})
    assert resp.status_code == 404

    assert client.get(path, headers=auth(owner["token"])).json()["content"] == "Sam goes to the dentist."


def test_update_and_delete_own_story(client, register_user, fake_time):
    user = register_user()
    headers = auth(user["token"])
    story = client.post("/api/stories", headers=headers, json=story_payload()).json()

    fake_time.advance(30)
    updated = client.patch(f"/api/stories/{story['id']}", headers=headers, json={"content": "Edited."})
    assert updated.status_code == 200
    assert updated.json()["content"] == "Edited."
    assert updated.json()["images"] == story["images"]
    assert updated.json()["updatedAt"] != story["updatedAt"]

    # Only content and images are editable
    assert client.patch(f"/api/stories/{story['id']}", headers=headers, json={"childName": "X"}).status_code == 400

    assert client.delete(f"/api/stories/{story['id']}", headers=headers).json() == {"success": True}
    assert client.get(f"/api/stories/{story['id']}", headers=headers).status_code == 404


def test_deleting_story_does_not_refund_quota(client, register_user):
    user = register_user()
    headers = auth(user["token"])
    story = client.post("/api/stories", headers=headers, json=story_payload()).json()
    client.delete(f"/api/stories/{story['id']}", headers=headers)

    assert client.get("/api/auth/me", headers=headers).json()["storiesGenerated"] == 1


def test_video_requires_premium(client, register_user):
    user = register_user()
    headers = auth(user["token"])
    story = client.post("/api/stories", headers=headers, json=story_payload()).json()

    resp = client.post(f"/api/stories/{story['id']}/video", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "premium_required"

    client.post("/api/auth/upgrade", headers=headers)
    resp = client.post(f"/api/stories/{story['id']}/video", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["videoUrl"] == f"https://storage.socialstoryai.com/videos/{story['id']}.mp4"
    assert client.get(f"/api/stories/{story['id']}", headers=headers).json()["videoUrl"] == resp.json()["videoUrl"]


def test_maintenance_blocks_story_creation_for_non_admins(client, register_user, admin_user):
    user = register_user()
    client.patch("/api/admin/settings", headers=auth(admin_user["token"]), json={"maintenanceMode": True})

    resp = client.post("/api/stories", headers=auth(user["token"]), json=story_payload())
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "maintenance"

    assert client.post("/api/stories", headers=auth(admin_user["token"]), json=story_payload()).status_code == 201


def test_admin_quota_setting_applies(client, register_user, admin_user):
    user = register_user()
    client.patch("/api/admin/settings", headers=auth(admin_user["token"]), json={"freeStoryLimit": 1})

    assert client.post("/api/stories", headers=auth(user["token"]), json=story_payload()).status_code == 201
    assert client.post("/api/stories", headers=auth(user["token"]), json=story_payload()).status_code == 403


@pytest.fixture(params=["memory", "sqlite-file"])
def race_store(request, tmp_path):
    """Stores that let two threads hold their own unit of work at once."""
    if request.param == "memory":
        yield request.getfixturevalue("memory_store")
        return

    from backend.core.database import create_db_engine
    from backend.storage.sql import SqlStore

    engine = create_db_engine(f"sqlite:///{tmp_path / 'race.db'}")
    yield SqlStore(engine)
    engine.dispose()


def test_concurrent_creates_at_last_free_slot(race_store, test_settings, fake_time):
    from datetime import datetime, timezone

    from backend.core.errors import QuotaExceededError
    from backend.models.user import NewUser

    now = datetime.fromtimestamp(fake_time(), tz=timezone.utc)
    with race_store.unit_of_work() as uow:
        user = uow.users.create(NewUser(email="race@example.com", name="Racer", password_hash="x"), now=now)
        uow.users.update(user.id, UserUpdate(stories_generated=2))

    service = StoryService(race_store, now_fn=lambda: now, settings_obj=test_settings)
    new_story = NewStory(**{
        "child_name": "Sam",
        "situation": "Bedtime",
        "complexity": "simple",
        "tone": "calm",
        "image_style": "minimal",
        "content": "Sam goes to bed.",
    })

    barrier = threading.Barrier(4)
    outcomes = []

    def attempt():
        barrier.wait()
        try:
            service.create(user.id, new_story)
            outcomes.append("created")
        except QuotaExceededError:
            outcomes.append("quota")

    threads = [threading.Thread(target=attempt) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(outcomes) == ["created", "quota", "quota", "quota"]
    with race_store.unit_of_work() as uow:
        assert uow.users.get(user.id).stories_generated == 3
        assert len(uow.stories.list_for_user(user.id)) == 1


@pytest.mark.parametrize("body", [{"content": None}, {"images": None}, {"content": "Kept", "images": None}])
def test_null_story_fields_are_rejected_before_any_write(store, test_settings, credentials, fake_time, body):
    from fastapi.testclient import TestClient

    from backend.main import create_app

    client = TestClient(create_app(store, settings_obj=test_settings, credentials=credentials, clock=fake_time))
    user = client.post(
        "/api/auth/register", json={"email": "nulls@example.com", "password": "secret123", "name": "Null Tester"}
    ).json()
    headers = auth(user["token"])
    story = client.post("/api/stories", headers=headers, json=story_payload()).json()

    resp = client.patch(f"/api/stories/{story['id']}", headers=headers, json=body)

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"
    after = client.get(f"/api/stories/{story['id']}", headers=headers)
    assert after.status_code == 200
    assert after.json()["content"] == story["content"]
    assert after.json()["images"] == story["images"]
