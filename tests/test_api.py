"""HTTP and WebSocket API tests against the full app."""

import pytest
from fastapi.testclient import TestClient

from formdesk.factory import create_app


@pytest.fixture
def client():
    with TestClient(create_app()) as c:
        yield c


class TestHealthAndForms:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "service": "formdesk"}

    def test_list_forms(self, client):
        forms = client.get("/v1/forms").json()
        assert [f["id"] for f in forms] == ["PAN001", "PSP001", "DL001", "INS001"]

    def test_get_form(self, client):
        form = client.get("/v1/forms/pan001").json()
        assert form["id"] == "PAN001"
        assert len(form["fields"]) == 8

    def test_handlers(self, client):
        names = {h["name"] for h in client.get("/v1/handlers").json()}
        assert names == {"general_assistant", "status_tracker", "field_collector", "submission_finalizer"}

    def test_unknown_form(self, client):
        assert client.get("/v1/forms/NOPE01").status_code == 404


class TestChat:
    def test_chat_turn_and_session(self, client):
        resp = client.post("/v1/chat", json={"session_id": "api-1", "content": "What forms are available?"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["type"] == "message"
        assert body["session_id"] == "api-1"
        assert body["agent"] == "general_assistant"
        assert body["form_status"] == "not_started"
        assert "PAN Card Application" in body["content"]

        session = client.get("/v1/sessions/api-1").json()
        assert [t["role"] for t in session["history"]] == ["user", "assistant"]

        assert client.delete("/v1/sessions/api-1").status_code == 204
        assert client.get("/v1/sessions/api-1").status_code == 404

    def test_chat_assigns_session_id(self, client):
        body = client.post("/v1/chat", json={"content": "What forms are available?"}).json()
        assert body["session_id"]

    def test_chat_requires_content(self, client):
        assert client.post("/v1/chat", json={"session_id": "x"}).status_code == 422

    def test_submit_and_check_status(self, client):
        sid = "api-flow"
        turns = [
            "I want to apply for a passport", "yes",
            "John", "Doe", "15/08/1990", "12 Main Street, Mumbai",
        ]
        for text in turns:
            client.post("/v1/chat", json={"session_id": sid, "content": text})

        body = client.post("/v1/chat", json={"session_id": sid, "content": "yes"}).json()
        assert body["agent"] == "submission_finalizer"
        assert "Form Submitted Successfully" in body["content"]

        submission_id = client.get(f"/v1/sessions/{sid}").json()["last_submission_id"]
        record = client.get(f"/v1/submissions/{submission_id}").json()
        assert record["form_id"] == "PSP001"
        assert record["status_label"] == "Under Review"
        assert record["field_values"]["first_name"] == "John"
        assert record["has_document"] is False
        assert client.get(f"/v1/submissions/{submission_id}/document").status_code == 404

        listed = client.get(f"/v1/sessions/{sid}/submissions").json()
        assert [s["id"] for s in listed] == [submission_id]

    def test_unknown_submission(self, client):
        assert client.get("/v1/submissions/0000ABCD").status_code == 404


class TestWebSocket:
    def test_message_flow(self, client):
        with client.websocket_connect("/v1/chat/ws?session_id=ws-1") as ws:
            hello = ws.receive_json()
            assert hello["type"] == "connection"
            assert hello["session_id"] == "ws-1"

            ws.send_json({"content": "What forms are available?"})
            assert ws.receive_json() == {"type": "typing", "is_typing": True}
            message = ws.receive_json()
            assert message["type"] == "message"
            assert message["agent"] == "general_assistant"
            assert "PAN Card Application" in message["content"]

    def test_bad_frame_gets_error(self, client):
        with client.websocket_connect("/v1/chat/ws") as ws:
            session_id = ws.receive_json()["session_id"]
            ws.send_text("not json")
            error = ws.receive_json()
            assert error["type"] == "error"
            assert error["session_id"] == session_id
            assert "error" in error
