"""Integration tests for GameShaperSession.

The whole session runs against in-memory capabilities: edits flow through
the dispatcher and ledger into the graph, completed calls feed the feedback
memory, and the session survives a persist/restore cycle.
"""

import json

import pytest

from gameshaper.core.config import Settings
from gameshaper.core.exceptions import MalformedResponseError, SnapshotError
from gameshaper.schemas.chat import ChatRole
from gameshaper.schemas.entities import Entity
from gameshaper.schemas.ledger import CallStatus
from gameshaper.schemas.pipeline import PipelineConfig, PipelineMode, PipelineStage
from gameshaper.session import GameShaperSession
from tests.conftest import no_sleep
from tests.fakes.fake_clients import (
    ACTIONS_MARKER,
    ASSISTANT_MARKER,
    ASSISTANT_REVIEW_MARKER,
    CHAT_MARKER,
    CONTENT_MARKER,
    EDIT_MARKER,
    FEEDBACK_MARKER,
    MANUAL_EDIT_MARKER,
    PLANNING_MARKER,
    VALIDATION_MARKER,
    FakeChatCompletionClient,
    FakeImageClient,
    InMemorySnapshotStore,
)


pytestmark = pytest.mark.integration

GLEAM = json.dumps({"u_nodes": {"sword": {
    "longDescription": {"df": [{"prev_txt": "simple", "next_txt": "gleaming"}]},
    "img_upd": True,
}}})
REVIEW = json.dumps({
    "feedback": "Precise edit.",
    "memory_update": {"df": [{"prev_txt": "Nothing has been recorded yet.", "next_txt": "Small diffs land well."}]},
    "guidance": "Prefer small text diffs over rewrites.",
})


def _session(
    client: FakeChatCompletionClient,
    settings: Settings,
    entities: list[Entity],
    store: InMemorySnapshotStore | None = None,
    images: FakeImageClient | None = None,
) -> GameShaperSession:
    return GameShaperSession(
        client,
        settings=settings,
        image_client=images,
        snapshot_store=store,
        entities=entities,
        sleep=no_sleep,
    )


def _edit_calls(client: FakeChatCompletionClient) -> list[dict]:
    return [
        call for call in client.call_history
        if call["messages"][-1]["content"].startswith("You maintain the world")
    ]


class TestEditFlow:
    """A user edit from prompt to graph, ledger and feedback memory."""

    @pytest.mark.asyncio
    async def test_sword_edit_end_to_end(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = FakeChatCompletionClient(routes={FEEDBACK_MARKER: REVIEW, EDIT_MARKER: GLEAM})
        store = InMemorySnapshotStore()
        session = _session(client, test_settings, village_entities, store, FakeImageClient())
        await session.start()

        patch = await session.submit_user_edit("Make the sword gleam")
        await session.feedback.join()

        assert "sword" in patch.updates
        sword = session.graph.get("sword")
        assert sword.long_description == "a gleaming sword"
        assert sword.image == "fake://image/1"
        assert sword.update_image is False

        edit_entry = next(entry for entry in session.ledger.entries() if entry.call_type == "node_edition")
        assert edit_entry.status == CallStatus.COMPLETED
        assert edit_entry.feedback == "Precise edit."
        call_types = sorted(entry.call_type for entry in session.ledger.entries())
        assert call_types == ["feedback_node_edition", "internal_image_generation", "node_edition"]

        document = session.get_feedback_document()
        assert document.node_edition == "Small diffs land well."
        assert document.version == 1
        assert session.get_pending_task_count() == 0
        assert store.writes == 1

        await session.aclose()
        assert client.closed is True

    @pytest.mark.asyncio
    async def test_later_edits_carry_feedback_context(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = FakeChatCompletionClient(routes={FEEDBACK_MARKER: REVIEW, EDIT_MARKER: GLEAM})
        session = _session(client, test_settings, village_entities)
        await session.start()

        await session.submit_user_edit("Make the sword gleam")
        await session.feedback.join()
        await session.submit_user_edit("Make the sword gleam more")
        await session.feedback.join()

        first, second = _edit_calls(client)
        assert first["messages"][0]["role"] == "user"
        assert second["messages"][0]["role"] == "system"
        assert "Prefer small text diffs over rewrites." in second["messages"][0]["content"]
        await session.aclose()

    @pytest.mark.asyncio
    async def test_context_can_be_disabled(self, village_entities: list[Entity]) -> None:
        settings = Settings(environment="test", include_feedback_context=False, retry_initial_delay=0.0)
        client = FakeChatCompletionClient(routes={FEEDBACK_MARKER: REVIEW, EDIT_MARKER: GLEAM})
        session = _session(client, settings, village_entities)
        await session.start()

        await session.submit_user_edit("Make the sword gleam")
        await session.feedback.join()
        await session.submit_user_edit("Again")

        assert all(call["messages"][0]["role"] == "user" for call in _edit_calls(client))
        await session.aclose()

    @pytest.mark.asyncio
    async def test_edit_deleting_an_owner_prunes_links(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = FakeChatCompletionClient(routes={EDIT_MARKER: json.dumps({"d_nodes": ["smith"]})})
        session = _session(client, test_settings, village_entities)

        await session.submit_user_edit("The smith leaves the village")

        assert session.graph.get("smith") is None
        assert session.graph.get("village").child == []
        assert session.graph.get("sword").parent is None
        await session.aclose()


class TestChatFlow:
    """A chat input: narration, then action suggestions and a world edit."""

    NARRATION = "Bera lifts the sword to the forge light. It gleams."
    ACTIONS = json.dumps({"actions": ["Ask Bera about the blade", "Leave the forge"]})
    STYLE_REVIEW = json.dumps({"feedback": "Vivid.", "memory_update": {"rpl": "Short vivid prose lands well."}})

    def _client(self, **overrides) -> FakeChatCompletionClient:
        routes = {
            FEEDBACK_MARKER: self.STYLE_REVIEW,
            CHAT_MARKER: self.NARRATION,
            ACTIONS_MARKER: self.ACTIONS,
            EDIT_MARKER: GLEAM,
        }
        routes.update(overrides)
        return FakeChatCompletionClient(routes=routes)

    @pytest.mark.asyncio
    async def test_user_input_end_to_end(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = self._client()
        session = _session(client, test_settings, village_entities)
        await session.start()

        result = await session.submit_user_input("I look at the sword")
        await session.feedback.join()

        assert result.chat_text == self.NARRATION
        assert result.actions == ["Ask Bera about the blade", "Leave the forge"]
        assert result.summary.updated == ["sword"]
        assert session.graph.get("sword").long_description == "a gleaming sword"

        streamed = [call for call in client.call_history if call["stream"]]
        assert len(streamed) == 1
        assert streamed[0]["text"].startswith(CHAT_MARKER)
        assert self.NARRATION in _edit_calls(client)[0]["text"]

        assert [(turn.role, turn.content) for turn in session.chat_history] == [
            (ChatRole.USER, "I look at the sword"),
            (ChatRole.ASSISTANT, self.NARRATION),
        ]
        chat_entry = next(entry for entry in session.ledger.entries() if entry.call_type == "chat_text")
        assert chat_entry.feedback == "Vivid."
        call_types = {entry.call_type for entry in session.ledger.entries()}
        assert {"chat_text", "action_suggestions", "node_edition", "feedback_chat_text"} <= call_types
        assert session.get_feedback_document().chat_text == "Short vivid prose lands well."
        assert session.get_pending_task_count() == 0
        await session.aclose()

    @pytest.mark.asyncio
    async def test_narration_prompt_quotes_recent_turns(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = self._client()
        session = _session(client, test_settings, village_entities)

        await session.submit_user_input("I look at the sword")
        await session.submit_user_input("I ask Bera who forged it")

        narration_calls = [call for call in client.call_history if call["stream"]]
        assert "user: I look at the sword" in narration_calls[1]["text"]
        assert f"assistant: {self.NARRATION}" in narration_calls[1]["text"]
        assert len(session.chat_history) == 4
        await session.aclose()

    @pytest.mark.asyncio
    async def test_failed_suggestions_leave_actions_empty(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = self._client(**{ACTIONS_MARKER: "no suggestions today"})
        session = _session(client, test_settings, village_entities)

        result = await session.submit_user_input("I look at the sword")

        assert result.actions == []
        assert session.graph.get("sword").long_description == "a gleaming sword"
        await session.aclose()

    @pytest.mark.asyncio
    async def test_failed_edit_raises_but_keeps_the_narration(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = self._client(**{EDIT_MARKER: "I would rather not."})
        session = _session(client, test_settings, village_entities)

        with pytest.raises(MalformedResponseError):
            await session.submit_user_input("I look at the sword")

        assert [turn.content for turn in session.chat_history] == ["I look at the sword", self.NARRATION]
        assert session.graph.get("sword").long_description == "a simple sword"
        assert session.ledger.pending_count() == 0
        await session.aclose()


class TestAssistantFlow:
    """An assistant request reshaping the world."""

    MAGIC = json.dumps({
        "n_nodes": [{
            "id": "magic",
            "name": "Magic System",
            "type": "system",
            "longDescription": "Magic is drawn from iron. Smiths are its quiet masters.",
        }],
        "u_nodes": {"smith": {"longDescription": {"df": [
            {"prev_txt": "She looks tired.", "next_txt": "Sparks answer her hammer.", "occ": 2},
        ]}}},
    })
    ASSISTANT_REVIEW = json.dumps({
        "feedback": "Good merge.",
        "memory_update": {"rpl": "Keeps systems in one entity."},
    })

    @pytest.mark.asyncio
    async def test_request_is_applied_and_reviewed(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = FakeChatCompletionClient(routes={
            ASSISTANT_REVIEW_MARKER: self.ASSISTANT_REVIEW,
            ASSISTANT_MARKER: self.MAGIC,
        })
        session = _session(client, test_settings, village_entities)
        document = session.get_feedback_document()
        document.node_edition = "Small diffs land well."
        session.feedback.load_document(document)
        await session.start()

        result = await session.submit_assistant_request("Add a magic system tied to smithing")
        await session.feedback.join()

        assert result.summary.created == ["magic"]
        assert result.summary.updated == ["smith"]
        assert session.graph.get("smith").long_description == (
            "The village smith. She looks tired. Sparks answer her hammer."
        )
        request_call = client.call_history[0]
        assert request_call["text"].startswith(ASSISTANT_MARKER)
        assert "Small diffs land well." in request_call["text"]

        entry = next(entry for entry in session.ledger.entries() if entry.call_type == "assistant_request")
        assert entry.feedback == "Good merge."
        assert session.get_feedback_document().assistant_feedback == "Keeps systems in one entity."
        await session.aclose()


class TestManualEditFlow:
    @pytest.mark.asyncio
    async def test_hand_edit_becomes_a_feedback_task(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        client = FakeChatCompletionClient(routes={MANUAL_EDIT_MARKER: json.dumps({
            "feedback": "Gives weapons heroic names.",
            "memory_update": {"rpl": "Renames weapons after heroes."},
        })})
        session = _session(client, test_settings, village_entities)
        await session.start()
        before = [session.graph.get("sword")]
        after = [before[0].model_copy(update={"name": "Oathkeeper"})]

        summary = await session.record_manual_edit(before, after)
        await session.feedback.join()

        assert summary.updated == ["sword"]
        assert session.graph.get("sword").name == "Oathkeeper"
        event = next(entry for entry in session.ledger.entries() if entry.call_type == "internal_manual_edit")
        assert event.status == CallStatus.COMPLETED
        assert event.feedback == "Gives weapons heroic names."
        assert "Oathkeeper" in client.calls_matching(MANUAL_EDIT_MARKER)[0]["text"]
        assert session.get_feedback_document().manual_edits == "Renames weapons after heroes."
        await session.aclose()


class TestPipelineFlow:
    PLAN = json.dumps({
        "targetNodeIds": ["sword", "NEW_NODE_anvil"],
        "deleteNodeIds": [],
        "objectives": "Equip the smithy",
        "successRules": ["The smith owns an anvil"],
        "searchQueries": ["blacksmith tools", "anvil history"],
    })
    ANVIL = json.dumps({"id": "anvil", "name": "Anvil", "type": "item", "parent": "smith", "updateImage": True})
    PASSED = json.dumps({"validatedRules": ["The smith owns an anvil"], "failedRules": [], "failedNodeIds": []})

    def _client(self) -> FakeChatCompletionClient:
        return FakeChatCompletionClient(routes={
            PLANNING_MARKER: self.PLAN,
            CONTENT_MARKER: [GLEAM, self.ANVIL],
            VALIDATION_MARKER: self.PASSED,
        })

    @pytest.mark.asyncio
    async def test_completed_run_is_applied_to_the_graph(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        session = _session(self._client(), test_settings, village_entities, images=FakeImageClient())

        state = await session.run_pipeline(
            "Give the smith an anvil", PipelineConfig(mode=PipelineMode.AUTOMATIC),
        )
        assert state.stage == PipelineStage.COMPLETED
        assert session.graph.get("anvil") is None

        summary = await session.apply_pipeline_result(state)

        assert summary.created == ["anvil"]
        assert summary.updated == ["sword"]
        assert session.graph.get("anvil").image.startswith("fake://image/")
        assert session.graph.get("anvil").update_image is False
        assert session.graph.get("sword").long_description == "a gleaming sword"
        assert session.feedback.pending_count() == 0
        await session.aclose()

    @pytest.mark.asyncio
    async def test_discarded_run_is_never_applied(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        session = _session(self._client(), test_settings, village_entities)
        state = await session.run_pipeline("Give the smith an anvil")

        session.discard_pipeline(state)

        assert await session.apply_pipeline_result(state) is None
        assert session.graph.get("anvil") is None
        await session.aclose()


class TestPersistence:
    """persist/restore through the snapshot store."""

    @pytest.mark.asyncio
    async def test_round_trip(self, test_settings: Settings, village_entities: list[Entity]) -> None:
        store = InMemorySnapshotStore()
        client = FakeChatCompletionClient(routes={FEEDBACK_MARKER: REVIEW, EDIT_MARKER: GLEAM})
        first = _session(client, test_settings, village_entities, store)
        await first.start()
        await first.submit_user_edit("Make the sword gleam")
        await first.feedback.join()
        in_flight = first.ledger.begin("chat_text", "interrupted", dispatch=False)
        await first.persist()
        await first.aclose()

        second = _session(FakeChatCompletionClient(), test_settings, [], store)
        assert await second.restore() is True

        assert second.graph.get("sword").long_description == "a gleaming sword"
        assert [entry.id for entry in second.ledger.entries()] == [entry.id for entry in first.ledger.entries()]
        assert second.ledger.get(in_flight).status == CallStatus.FAILED
        assert second.get_feedback_document() == first.get_feedback_document()
        await second.aclose()

    @pytest.mark.asyncio
    async def test_chat_history_survives_restore(
        self, test_settings: Settings, village_entities: list[Entity],
    ) -> None:
        store = InMemorySnapshotStore()
        client = FakeChatCompletionClient(routes={
            FEEDBACK_MARKER: REVIEW,
            CHAT_MARKER: "The forge is cold tonight.",
            ACTIONS_MARKER: json.dumps({"actions": ["Light the forge"]}),
            EDIT_MARKER: json.dumps({}),
        })
        first = _session(client, test_settings, village_entities, store)
        await first.submit_user_input("I enter the smithy")
        await first.persist()
        await first.aclose()

        second = _session(FakeChatCompletionClient(), test_settings, [], store)
        await second.restore()

        assert second.chat_history == first.chat_history
        assert second.chat_history[-1].content == "The forge is cold tonight."
        await second.aclose()

    @pytest.mark.asyncio
    async def test_restore_without_blob(self, test_settings: Settings) -> None:
        session = _session(FakeChatCompletionClient(), test_settings, [], InMemorySnapshotStore())

        assert await session.restore() is False

    @pytest.mark.asyncio
    async def test_unreadable_blob(self, test_settings: Settings) -> None:
        session = _session(FakeChatCompletionClient(), test_settings, [], InMemorySnapshotStore("{not json"))

        with pytest.raises(SnapshotError):
            await session.restore()

    @pytest.mark.asyncio
    async def test_no_store_configured(self, test_settings: Settings) -> None:
        session = _session(FakeChatCompletionClient(), test_settings, [])

        with pytest.raises(SnapshotError):
            await session.persist()
        with pytest.raises(SnapshotError):
            await session.restore()
        assert await session.process_images() is None
