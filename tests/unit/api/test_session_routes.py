"""Tests for the edit, chat, assistant, entity, ledger and feedback routes."""

import json

import pytest
from fastapi.testclient import TestClient

from gameshaper.main import create_app
from gameshaper.session import GameShaperSession
from tests.fakes.fake_clients import (
    ACTIONS_MARKER,
    ASSISTANT_MARKER,
    ASSISTANT_REVIEW_MARKER,
    CHAT_MARKER,
    EDIT_MARKER,
    FEEDBACK_MARKER,
    FakeChatCompletionClient,
    InMemorySnapshotStore,
)


# =============================================================================
# Edits
# =============================================================================

class TestSubmitEdit:
    """Tests for POST /v1/edits."""

    def test_edit_is_applied_and_image_regenerated(self, client: TestClient) -> None:
        response = client.post("/v1/edits", json={"prompt": "Make the sword gleam"})

        assert response.status_code == 200
        body = response.json()
        assert body["patch"]["u_nodes"]["sword"]["img_upd"] is True
        assert body["quarantined"] == 0
        assert body["entity_count"] == 3

        sword = next(e for e in client.get("/v1/entities").json()["entities"] if e["id"] == "sword")
        assert sword["longDescription"] == "a gleaming sword"
        assert sword["image"] == "fake://image/1"
        assert sword["updateImage"] is False

    def test_edit_call_is_ledgered(self, client: TestClient) -> None:
        client.post("/v1/edits", json={"prompt": "Make the sword gleam"})

        calls = client.get("/v1/ledger").json()["calls"]

        edit = next(call for call in calls if call["call_type"] == "node_edition")
        assert edit["status"] == "completed"

    def test_empty_prompt_is_rejected(self, client: TestClient) -> None:
        response = client.post("/v1/edits", json={"prompt": ""})

        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"


class TestMalformedEdit:
    @pytest.fixture
    def api_chat(self) -> FakeChatCompletionClient:
        return FakeChatCompletionClient(routes={EDIT_MARKER: "Sorry, I can only chat."})

    def test_malformed_answer_maps_to_502(self, client: TestClient) -> None:
        response = client.post("/v1/edits", json={"prompt": "Make the sword gleam"})

        assert response.status_code == 502
        assert response.json()["code"] == "MALFORMED_RESPONSE"
        calls = client.get("/v1/ledger").json()["calls"]
        assert calls[0]["status"] == "failed"
        assert calls[0]["response"] == "Sorry, I can only chat."


# =============================================================================
# Chat and Assistant
# =============================================================================

class TestChat:
    """Tests for POST /v1/chat and GET /v1/chat/history."""

    @pytest.fixture
    def api_chat(self) -> FakeChatCompletionClient:
        return FakeChatCompletionClient(routes={
            FEEDBACK_MARKER: json.dumps({"feedback": "Vivid."}),
            CHAT_MARKER: "The blade catches the light.",
            ACTIONS_MARKER: json.dumps({"actions": ["Test the edge", "Sheathe it"]}),
            EDIT_MARKER: json.dumps({"u_nodes": {"sword": {"name": {"rpl": "Drawn Sword"}, "img_upd": True}}}),
        })

    def test_chat_returns_narration_actions_and_edit(self, client: TestClient) -> None:
        response = client.post("/v1/chat", json={"input": "I draw the sword"})

        assert response.status_code == 200
        body = response.json()
        assert body["chat_text"] == "The blade catches the light."
        assert body["actions"] == ["Test the edge", "Sheathe it"]
        assert body["patch"]["u_nodes"]["sword"]["img_upd"] is True
        assert body["summary"]["updated"] == ["sword"]

        turns = client.get("/v1/chat/history").json()["turns"]
        assert [(turn["role"], turn["content"]) for turn in turns] == [
            ("user", "I draw the sword"),
            ("assistant", "The blade catches the light."),
        ]

    def test_empty_input_is_rejected(self, client: TestClient) -> None:
        response = client.post("/v1/chat", json={"input": ""})

        assert response.status_code == 422


class TestAssistant:
    @pytest.fixture
    def api_chat(self) -> FakeChatCompletionClient:
        return FakeChatCompletionClient(routes={
            ASSISTANT_REVIEW_MARKER: json.dumps({"feedback": "Fine."}),
            ASSISTANT_MARKER: json.dumps({"d_nodes": ["sword"]}),
        })

    def test_request_is_applied(self, client: TestClient) -> None:
        response = client.post("/v1/assistant", json={"prompt": "Remove every weapon"})

        assert response.status_code == 200
        assert response.json()["summary"]["deleted"] == ["sword"]
        ids = {e["id"] for e in client.get("/v1/entities").json()["entities"]}
        assert ids == {"village", "smith"}


class TestManualEdit:
    def test_hand_edit_is_applied_and_recorded(self, client: TestClient) -> None:
        before = client.get("/v1/entities").json()["entities"]
        sword = next(e for e in before if e["id"] == "sword")

        response = client.post("/v1/edits/manual", json={
            "before": [sword],
            "after": [{**sword, "name": "Oathkeeper"}],
        })

        assert response.status_code == 200
        assert response.json()["updated"] == ["sword"]
        names = {e["id"]: e["name"] for e in client.get("/v1/entities").json()["entities"]}
        assert names["sword"] == "Oathkeeper"
        call_types = [call["call_type"] for call in client.get("/v1/ledger").json()["calls"]]
        assert "internal_manual_edit" in call_types


# =============================================================================
# Entities, Ledger, Feedback
# =============================================================================

class TestEntities:
    def test_list(self, client: TestClient) -> None:
        body = client.get("/v1/entities").json()

        assert body["total"] == 3
        assert {entity["id"] for entity in body["entities"]} == {"village", "smith", "sword"}

    def test_reconcile_on_consistent_graph(self, client: TestClient) -> None:
        assert client.post("/v1/entities/reconcile").json() == {"pruned": 0}


class TestLedger:
    def test_clear(self, client: TestClient, session: GameShaperSession) -> None:
        session.ledger.record_event("internal_test", "a", "b")
        assert len(client.get("/v1/ledger").json()["calls"]) == 1

        assert client.delete("/v1/ledger").status_code == 204

        body = client.get("/v1/ledger").json()
        assert body["calls"] == []
        assert body["pending_count"] == 0


class TestFeedback:
    def test_document_and_reset(self, client: TestClient) -> None:
        document = client.get("/v1/feedback").json()
        assert document["version"] == 0
        assert "general" in document

        reset = client.post("/v1/feedback/reset").json()

        assert reset["version"] == 1
        assert reset["general"] == document["general"]


# =============================================================================
# Lifespan and Wiring
# =============================================================================

class TestLifespan:
    def test_session_is_persisted_on_shutdown(
        self, session: GameShaperSession, snapshot_store: InMemorySnapshotStore,
    ) -> None:
        with TestClient(create_app(session)) as client:
            client.get("/health")

        assert snapshot_store.blob is not None
        assert '"sword"' in snapshot_store.blob

    def test_routes_need_a_session(self) -> None:
        response = TestClient(create_app()).get("/v1/entities")

        assert response.status_code == 503
        assert response.json()["error"] == "ServiceUnavailable"
