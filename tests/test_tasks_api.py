from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from tasklist.errors import StorageError
from tasklist.main import create_app
from tasklist.settings import Settings

BASE = "/api/v1/todos"


@pytest.fixture()
def client(tmp_path):
    settings = Settings(persistence_backend="json", data_path=str(tmp_path / "tasks.json"))
    with TestClient(create_app(settings)) as c:
        yield c


def create_task(client, title="Test Task", description="Do something"):
    res = client.post(f"{BASE}/", json={"title": title, "description": description})
    assert res.status_code == 201
    return res.json()


def assert_task_shape(task: dict):
    for key in ["id", "title", "description", "completed", "created_at", "updated_at"]:
        assert key in task
    assert isinstance(task["id"], int)
    assert isinstance(task["title"], str)
    assert isinstance(task["description"], str)
    assert isinstance(task["completed"], bool)
    # Timestamps are ISO8601 strings parseable by datetime.fromisoformat
    created = datetime.fromisoformat(task["created_at"].replace("Z", "+00:00"))
    updated = datetime.fromisoformat(task["updated_at"].replace("Z", "+00:00"))
    assert updated >= created


def assert_error(res, status_code, kind):
    assert res.status_code == status_code
    body = res.json()
    assert body["error"] == kind
    assert isinstance(body["message"], str)
    assert isinstance(body["detail"], list)


class TestHealth:
    def test_health_check(self, client):
        res = client.get("/")
        assert res.status_code == 200
        assert res.json() == {"message": "Healthy", "backend": "json"}


class TestTasksCRUD:
    def test_create_task_minimal(self, client):
        res = client.post(f"{BASE}/", json={"title": "Buy milk"})
        assert res.status_code == 201
        task = res.json()
        assert_task_shape(task)
        assert task["id"] == 1
        assert task["title"] == "Buy milk"
        assert task["description"] == ""
        assert task["completed"] is False
        assert task["created_at"] == task["updated_at"]

    def test_get_task_and_not_found(self, client):
        tid = create_task(client, title="Read book")["id"]

        res_get = client.get(f"{BASE}/{tid}")
        assert res_get.status_code == 200
        assert res_get.json()["title"] == "Read book"

        res_404 = client.get(f"{BASE}/999999")
        assert_error(res_404, 404, "NotFound")
        assert res_404.json()["message"] == "Task with id 999999 not found"

    def test_put_replace_task(self, client):
        tid = create_task(client, title="Initial", description="A")["id"]

        res_put = client.put(f"{BASE}/{tid}", json={"title": "Replaced"})
        assert res_put.status_code == 200
        updated = res_put.json()
        assert updated["id"] == tid
        assert updated["title"] == "Replaced"
        assert updated["description"] == ""

        assert_error(client.put(f"{BASE}/424242", json={"title": "X"}), 404, "NotFound")

    def test_patch_partial_update(self, client):
        tid = create_task(client, title="Partial", description="X")["id"]

        res_patch = client.patch(f"{BASE}/{tid}", json={"title": "Partial Updated"})
        assert res_patch.status_code == 200
        patched = res_patch.json()
        assert patched["title"] == "Partial Updated"
        # description should remain unchanged
        assert patched["description"] == "X"

        assert_error(client.patch(f"{BASE}/123456", json={"title": "Nope"}), 404, "NotFound")

    def test_toggle_and_set_completed(self, client):
        task = create_task(client, title="Flip")
        tid = task["id"]

        toggled = client.post(f"{BASE}/{tid}/toggle").json()
        assert toggled["completed"] is True

        res_set = client.put(f"{BASE}/{tid}/completed", json={"completed": True})
        assert res_set.status_code == 200
        # already completed: nothing changes
        assert res_set.json() == toggled

        reopened = client.put(f"{BASE}/{tid}/completed", json={"completed": False}).json()
        assert reopened["completed"] is False

        assert_error(client.post(f"{BASE}/777/toggle"), 404, "NotFound")

    def test_delete_task(self, client):
        tid = create_task(client, title="ToDelete")["id"]

        res_del = client.delete(f"{BASE}/{tid}")
        assert res_del.status_code == 204
        assert res_del.text == ""

        assert_error(client.get(f"{BASE}/{tid}"), 404, "NotFound")
        assert_error(client.delete(f"{BASE}/{tid}"), 404, "NotFound")

    def test_buy_milk_scenario(self, client):
        task = create_task(client, title="Buy milk", description="")
        assert task["id"] == 1

        toggled = client.post(f"{BASE}/1/toggle").json()
        assert toggled["completed"] is True

        renamed = client.patch(f"{BASE}/1", json={"title": "Buy oat milk"}).json()
        assert renamed["title"] == "Buy oat milk"
        assert renamed["completed"] is True

        assert client.delete(f"{BASE}/1").status_code == 204
        assert client.get(f"{BASE}/1").status_code == 404


class TestList:
    def seed(self, client, count=6):
        ids = []
        for i in range(count):
            ids.append(create_task(client, title=f"Task {i}", description=f"Desc {i}")["id"])
        # complete the even ones
        for tid in ids[::2]:
            client.post(f"{BASE}/{tid}/toggle")
        return ids

    def test_list_in_creation_order(self, client):
        ids = self.seed(client, 3)
        res = client.get(f"{BASE}/")
        assert res.status_code == 200
        page = res.json()
        assert [t["id"] for t in page["items"]] == ids
        assert page["total"] == 3
        assert page["limit"] is None
        assert page["offset"] == 0

    def test_list_pagination(self, client):
        ids = self.seed(client, 7)
        page1 = client.get(f"{BASE}/?limit=3&offset=0").json()
        page2 = client.get(f"{BASE}/?limit=3&offset=3").json()
        assert [t["id"] for t in page1["items"]] == ids[:3]
        assert [t["id"] for t in page2["items"]] == ids[3:6]
        assert page1["total"] == page2["total"] == 7
        assert page1["limit"] == 3

    def test_list_filter_completed(self, client):
        self.seed(client, 6)
        done = client.get(f"{BASE}/?completed=true").json()
        assert done["total"] == 3
        assert all(item["completed"] is True for item in done["items"])
        pending = client.get(f"{BASE}/?completed=false").json()
        assert pending["total"] == 3
        assert all(item["completed"] is False for item in pending["items"])

    def test_list_sort_descending(self, client):
        ids = self.seed(client, 4)
        items = client.get(f"{BASE}/?sort=-created_at").json()["items"]
        assert [t["id"] for t in items] == list(reversed(ids))

    def test_list_invalid_sort(self, client):
        assert_error(client.get(f"{BASE}/?sort=title"), 422, "ValidationError")


class TestValidationErrors:
    def test_create_title_empty(self, client):
        res = client.post(f"{BASE}/", json={"title": "  ", "description": "x"})
        assert_error(res, 422, "ValidationError")
        assert res.json()["message"] == "Request validation failed"
        assert client.get(f"{BASE}/").json()["total"] == 0

    def test_create_title_too_long(self, client):
        assert_error(client.post(f"{BASE}/", json={"title": "x" * 201}), 422, "ValidationError")

    def test_patch_title_empty(self, client):
        tid = create_task(client, title="Valid")["id"]
        assert_error(client.patch(f"{BASE}/{tid}", json={"title": ""}), 422, "ValidationError")
        assert client.get(f"{BASE}/{tid}").json()["title"] == "Valid"


class TestPersistence:
    def test_tasks_survive_app_restart(self, tmp_path):
        settings = Settings(persistence_backend="sqlite", data_path=str(tmp_path / "tasks.db"))
        with TestClient(create_app(settings)) as first:
            create_task(first, title="Survivor")

        with TestClient(create_app(settings)) as second:
            items = second.get(f"{BASE}/").json()["items"]
        assert [t["title"] for t in items] == ["Survivor"]


def test_storage_failure_maps_to_503(client, monkeypatch):
    service = client.app.state.task_service

    def broken(*args, **kwargs):
        raise StorageError("disk full")

    monkeypatch.setattr(service._repo, "_persist", broken)
    res = client.post(f"{BASE}/", json={"title": "Will fail"})
    assert_error(res, 503, "StorageError")
    assert "disk full" in res.json()["message"]
