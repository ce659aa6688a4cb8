"""API tests for the flow editor endpoints."""

import jwt
import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_catalog, get_flow_api, get_registry
from app.db.session import SessionLocal
from app.flow_builder.errors import FlowApiError
from app.flow_builder.graph import TemplateContent
from app.flow_builder.session import LEAVE_PROMPT
from app.main import app
from app.models.editor_snapshot import EditorSnapshotRecord
from app.services.session_registry import SessionRegistry

from tests.conftest import published_record

BASE = "/api/cta-flow-editor"
HEADERS = {"X-Tenant-Id": "tenant-a"}
DIWALI = {"id": "c-1", "name": "Diwali Sale", "status": "active"}
CONFIRM = {
    "name": "confirm",
    "body": "Continue?",
    "buttons": [{"text": "Yes", "parameter_value": "yes"}, {"text": "No"}],
}


class FakeCatalog:
    def __init__(self):
        self.fail = False

    async def list_templates(self):
        if self.fail:
            raise FlowApiError("Failed to load templates", status_code=500)
        return [TemplateContent.model_validate(CONFIRM), TemplateContent(name="thanks", body="Thank you!")]


def _clear_snapshots():
    db = SessionLocal()
    try:
        db.query(EditorSnapshotRecord).delete()
        db.commit()
    finally:
        db.close()


@pytest.fixture
def catalog():
    return FakeCatalog()


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def client(fake_api, catalog, registry):
    _clear_snapshots()
    app.dependency_overrides[get_flow_api] = lambda: fake_api
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()
    _clear_snapshots()


def _open(client, flow_id=None, **extra):
    response = client.post(f"{BASE}/sessions", json={"flow_id": flow_id, **extra}, headers=HEADERS)
    assert response.status_code == 201, response.text
    return response.json()


class TestAuth:
    def test_requires_credentials(self, client):
        assert client.get(f"{BASE}/sessions").status_code == 401

    def test_jwt(self, client):
        token = jwt.encode({"tenant_id": "tenant-jwt", "user_id": "u-1"}, "test-secret", algorithm="HS256")

        response = client.get("/api/auth/verify", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 200
        assert response.json()["tenant_id"] == "tenant-jwt"
        assert response.json()["auth_type"] == "jwt"

    def test_bad_jwt_falls_back_to_header(self, client):
        response = client.get(
            "/api/auth/verify",
            headers={"Authorization": "Bearer nonsense", **HEADERS},
        )
        assert response.json()["auth_type"] == "development"

    def test_sessions_are_tenant_scoped(self, client):
        session = _open(client)
        other = {"X-Tenant-Id": "tenant-b"}

        assert client.get(f"{BASE}/sessions/{session['session_id']}", headers=other).status_code == 404
        assert client.get(f"{BASE}/sessions", headers=other).json()["total"] == 0
        assert client.get(f"{BASE}/sessions", headers=HEADERS).json()["total"] == 1


class TestSessions:
    def test_open_new_flow(self, client):
        state = _open(client)

        assert state["tenant_id"] == "tenant-a"
        assert state["lifecycle"]["state"] == "new"
        assert state["lifecycle"]["read_only"] is False
        assert state["flow"]["steps"] == []
        assert state["dirty"] is False

    def test_open_missing_flow(self, client):
        response = client.post(f"{BASE}/sessions", json={"flow_id": "ghost"}, headers=HEADERS)
        assert response.status_code == 404

    def test_open_when_api_fails(self, client, fake_api):
        fake_api.fail = "load"
        response = client.post(f"{BASE}/sessions", json={"flow_id": "flow-1"}, headers=HEADERS)
        assert response.status_code == 502

    def test_open_unreadable_flow(self, client, fake_api):
        fake_api.records["bad"] = {"nodes": [{"templateName": "no id"}]}
        response = client.post(f"{BASE}/sessions", json={"flow_id": "bad"}, headers=HEADERS)
        assert response.status_code == 502

    def test_leave_confirmation(self, client, registry):
        sid = _open(client)["session_id"]
        client.post(f"{BASE}/sessions/{sid}/steps", json={"template": CONFIRM}, headers=HEADERS)

        response = client.delete(f"{BASE}/sessions/{sid}", headers=HEADERS)
        assert response.status_code == 409
        assert response.json()["detail"] == LEAVE_PROMPT

        response = client.delete(f"{BASE}/sessions/{sid}", params={"force": True}, headers=HEADERS)
        assert response.status_code == 200
        assert registry.count() == 0

    def test_unsaved_draft_restored(self, client, fake_api):
        fake_api.records["flow-1"] = published_record()
        sid = _open(client, "flow-1")["session_id"]
        client.put(f"{BASE}/sessions/{sid}/name", json={"name": "Diwali v2"}, headers=HEADERS)
        client.patch(f"{BASE}/sessions/{sid}/view", json={"show_minimap": False}, headers=HEADERS)

        again = _open(client, "flow-1")

        assert again["flow"]["name"] == "Diwali v2"
        assert again["dirty"] is True
        assert again["view"]["show_minimap"] is False

        fresh = _open(client, "flow-1", restore=False)
        assert fresh["flow"]["name"] == "Diwali Flow"


class TestEditing:
    def test_build_and_connect(self, client):
        sid = _open(client)["session_id"]

        first = client.post(f"{BASE}/sessions/{sid}/steps", json={"template": CONFIRM}, headers=HEADERS)
        second = client.post(
            f"{BASE}/sessions/{sid}/steps",
            json={"template": {"name": "thanks"}, "position": {"x": 500, "y": 100}},
            headers=HEADERS,
        )
        assert first.status_code == 201
        a, b = first.json()["step_id"], second.json()["step_id"]

        connected = client.post(
            f"{BASE}/sessions/{sid}/transitions",
            json={"source": a, "source_handle": "Yes", "target": b},
            headers=HEADERS,
        ).json()
        assert connected["accepted"] is True
        assert connected["transition"]["button_id"] == f"{a}#0"

        duplicate = client.post(
            f"{BASE}/sessions/{sid}/transitions",
            json={"source": a, "source_handle": "Yes", "target": b},
            headers=HEADERS,
        ).json()
        assert duplicate["accepted"] is False
        assert len(duplicate["session"]["flow"]["transitions"]) == 1

        steps = {s["id"]: s for s in duplicate["session"]["flow"]["steps"]}
        assert steps[a]["has_no_incoming"] is True
        assert steps[b]["has_no_incoming"] is False
        assert steps[b]["position"] == {"x": 500, "y": 100}

    def test_update_and_rename(self, client):
        sid = _open(client)["session_id"]
        step_id = client.post(f"{BASE}/sessions/{sid}/steps", json={"template": CONFIRM}, headers=HEADERS).json()["step_id"]

        updated = client.patch(
            f"{BASE}/sessions/{sid}/steps/{step_id}",
            json={"message_body": "Hi {{1}}", "use_profile_name": True, "profile_name_slot": 4},
            headers=HEADERS,
        ).json()
        step = updated["session"]["flow"]["steps"][0]
        assert step["use_profile_name"] is True
        assert step["profile_name_slot"] == 1

        renamed = client.put(f"{BASE}/sessions/{sid}/steps/{step_id}/buttons/0", json={"text": "Sure"}, headers=HEADERS)
        assert renamed.json()["session"]["flow"]["steps"][0]["trigger_button_text"] == "Sure"

        missing = client.put(f"{BASE}/sessions/{sid}/steps/{step_id}/buttons/9", json={"text": "x"}, headers=HEADERS)
        assert missing.status_code == 404

    def test_unknown_step(self, client):
        sid = _open(client)["session_id"]
        response = client.put(f"{BASE}/sessions/{sid}/steps/nope/position", json={"x": 1, "y": 2}, headers=HEADERS)
        assert response.status_code == 404

    def test_remove_is_idempotent(self, client, fake_api):
        fake_api.records["flow-1"] = published_record()
        sid = _open(client, "flow-1")["session_id"]

        first = client.delete(f"{BASE}/sessions/{sid}/steps/s2", headers=HEADERS).json()
        second = client.delete(f"{BASE}/sessions/{sid}/steps/s2", headers=HEADERS).json()

        assert first["changed"] is True
        assert first["session"]["flow"]["transitions"] == []
        assert second["changed"] is False

    def test_layout_and_validation(self, client, fake_api):
        fake_api.records["flow-1"] = published_record()
        sid = _open(client, "flow-1")["session_id"]

        laid_out = client.post(f"{BASE}/sessions/{sid}/layout", json={"direction": "TB"}, headers=HEADERS).json()
        assert laid_out["session"]["view"]["layout_direction"] == "TB"

        report = client.get(f"{BASE}/sessions/{sid}/validation", headers=HEADERS).json()
        assert report["is_valid"] is True
        assert report["incoming"] == {"s1": True, "s2": False}

    def test_invalid_layout_direction(self, client):
        sid = _open(client)["session_id"]
        response = client.post(f"{BASE}/sessions/{sid}/layout", json={"direction": "RL"}, headers=HEADERS)
        assert response.status_code == 422

    def test_null_field_answers_422(self, client):
        sid = _open(client)["session_id"]
        step_id = client.post(f"{BASE}/sessions/{sid}/steps", json={"template": CONFIRM}, headers=HEADERS).json()["step_id"]

        response = client.patch(f"{BASE}/sessions/{sid}/steps/{step_id}", json={"template_name": None}, headers=HEADERS)
        assert response.status_code == 422

        state = client.get(f"{BASE}/sessions/{sid}", headers=HEADERS).json()
        assert state["flow"]["steps"][0]["template_name"] == "confirm"

    def test_too_many_buttons_answers_422(self, client):
        sid = _open(client)["session_id"]
        step_id = client.post(f"{BASE}/sessions/{sid}/steps", json={"template": CONFIRM}, headers=HEADERS).json()["step_id"]
        buttons = [{"text": f"Option {i}", "index": i} for i in range(4)]

        response = client.patch(f"{BASE}/sessions/{sid}/steps/{step_id}", json={"buttons": buttons}, headers=HEADERS)
        assert response.status_code == 422

    def test_button_label_clash_answers_409(self, client):
        sid = _open(client)["session_id"]
        a = client.post(f"{BASE}/sessions/{sid}/steps", json={"template": CONFIRM}, headers=HEADERS).json()["step_id"]
        b = client.post(f"{BASE}/sessions/{sid}/steps", json={"template": {"name": "thanks"}}, headers=HEADERS).json()["step_id"]
        c = client.post(f"{BASE}/sessions/{sid}/steps", json={"template": {"name": "bye"}}, headers=HEADERS).json()["step_id"]
        for handle, target in (("Yes", b), ("No", c)):
            client.post(
                f"{BASE}/sessions/{sid}/transitions",
                json={"source": a, "source_handle": handle, "target": target},
                headers=HEADERS,
            )

        response = client.put(f"{BASE}/sessions/{sid}/steps/{a}/buttons/1", json={"text": "Yes"}, headers=HEADERS)
        assert response.status_code == 409

        transitions = client.get(f"{BASE}/sessions/{sid}", headers=HEADERS).json()["flow"]["transitions"]
        assert sorted(t["source_handle"] for t in transitions) == ["No", "Yes"]


class TestLifecycle:
    def test_save_then_publish(self, client, fake_api):
        sid = _open(client)["session_id"]
        client.post(f"{BASE}/sessions/{sid}/steps", json={"template": CONFIRM}, headers=HEADERS)

        saved = client.post(f"{BASE}/sessions/{sid}/save", headers=HEADERS)
        assert saved.status_code == 200
        body = saved.json()
        assert body["result"]["flow_id"] == "flow-101"
        assert body["result"]["message"] == "Flow saved successfully"
        assert body["session"]["dirty"] is False

        published = client.post(f"{BASE}/sessions/{sid}/publish", headers=HEADERS).json()
        assert published["result"]["state"] == "published_unlocked"
        assert fake_api.actions() == ["create", "update", "publish"]

    def test_save_failure_is_502(self, client, fake_api):
        sid = _open(client)["session_id"]
        fake_api.fail = "create"

        response = client.post(f"{BASE}/sessions/{sid}/save", headers=HEADERS)

        assert response.status_code == 502
        assert response.json()["result"]["error_kind"] == "save_failed"

    def test_locked_flow(self, client, fake_api):
        fake_api.records["flow-1"] = published_record()
        fake_api.usage["flow-1"] = [DIWALI]

        state = _open(client, "flow-1")
        sid = state["session_id"]
        assert state["lifecycle"]["state"] == "published_locked"
        assert state["lifecycle"]["read_only"] is True
        assert state["lifecycle"]["fork_prompt_open"] is True
        assert state["lifecycle"]["campaigns"][0]["name"] == "Diwali Sale"

        edit = client.post(f"{BASE}/sessions/{sid}/steps", json={"template": CONFIRM}, headers=HEADERS)
        assert edit.status_code == 409
        assert "Fork it" in edit.json()["detail"]

        saved = client.post(f"{BASE}/sessions/{sid}/save", headers=HEADERS)
        assert saved.status_code == 409
        assert saved.json()["result"]["error_kind"] == "flow_locked"

        view = client.patch(f"{BASE}/sessions/{sid}/view", json={"sidebar_collapsed": True}, headers=HEADERS)
        assert view.status_code == 200

        dismissed = client.post(f"{BASE}/sessions/{sid}/fork-prompt/dismiss", headers=HEADERS).json()
        assert dismissed["lifecycle"]["fork_prompt_open"] is False
        assert dismissed["lifecycle"]["read_only"] is True

    def test_fork_opens_new_draft(self, client, fake_api, registry):
        fake_api.records["flow-1"] = published_record()
        fake_api.usage["flow-1"] = [DIWALI]
        sid = _open(client, "flow-1")["session_id"]

        response = client.post(f"{BASE}/sessions/{sid}/fork", params={"open_fork": True}, headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        new_id = body["result"]["new_flow_id"]
        assert new_id != "flow-1"
        assert body["session"]["lifecycle"]["state"] == "published_locked"

        forked = client.get(f"{BASE}/sessions/{body['forked_session_id']}", headers=HEADERS).json()
        assert forked["flow"]["id"] == new_id
        assert forked["lifecycle"]["state"] == "draft_unpublished"
        assert forked["lifecycle"]["read_only"] is False
        assert registry.count("tenant-a") == 2

    def test_fork_unlocked_flow_refused(self, client, fake_api):
        fake_api.records["flow-1"] = published_record()
        sid = _open(client, "flow-1")["session_id"]

        response = client.post(f"{BASE}/sessions/{sid}/fork", headers=HEADERS)

        assert response.status_code == 409
        assert response.json()["result"]["error_kind"] == "invalid_transition"

    def test_delete_in_use(self, client, fake_api):
        fake_api.records["flow-1"] = published_record()
        fake_api.usage["flow-1"] = [DIWALI]
        sid = _open(client, "flow-1", mode="view")["session_id"]

        response = client.delete(f"{BASE}/sessions/{sid}/flow", headers=HEADERS)

        assert response.status_code == 409
        assert response.json()["result"]["campaigns"][0]["name"] == "Diwali Sale"
        assert "flow-1" in fake_api.records

    def test_delete(self, client, fake_api):
        fake_api.records["flow-1"] = published_record()
        sid = _open(client, "flow-1")["session_id"]

        response = client.delete(f"{BASE}/sessions/{sid}/flow", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["session"]["lifecycle"]["deleted"] is True
        assert "flow-1" not in fake_api.records


class TestLookups:
    def test_templates(self, client):
        body = client.get(f"{BASE}/templates", headers=HEADERS).json()
        assert body["total"] == 2
        assert body["templates"][0]["buttons"][0]["text"] == "Yes"

    def test_templates_unavailable(self, client, catalog):
        catalog.fail = True
        assert client.get(f"{BASE}/templates", headers=HEADERS).status_code == 502

    def test_flows(self, client, fake_api):
        fake_api.records["flow-1"] = published_record()
        fake_api.records["flow-2"] = {"flowName": "Draft", "isPublished": False}

        published = client.get(f"{BASE}/flows", headers=HEADERS).json()
        drafts = client.get(f"{BASE}/flows", params={"published": False}, headers=HEADERS).json()

        assert [f["id"] for f in published["flows"]] == ["flow-1"]
        assert [f["flow_name"] for f in drafts["flows"]] == ["Draft"]


def test_websocket_state(client):
    sid = _open(client)["session_id"]

    with client.websocket_connect(f"{BASE}/sessions/{sid}/ws?tenant_id=tenant-a") as ws:
        message = ws.receive_json()
        assert message["event"] == "session_state"
        assert message["data"]["session_id"] == sid

        ws.send_text("ping")
        assert ws.receive_text() == "pong"
