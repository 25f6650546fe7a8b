"""Fixtures for API route tests: a session wired to fake capabilities."""

from __future__ import annotations

import json

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from gameshaper.core.config import Settings
from gameshaper.main import create_app
from gameshaper.schemas.entities import Entity
from gameshaper.session import GameShaperSession
from tests.conftest import no_sleep
from tests.fakes.fake_clients import (
    EDIT_MARKER,
    FEEDBACK_MARKER,
    FakeChatCompletionClient,
    FakeImageClient,
    FakeSearchClient,
    InMemorySnapshotStore,
)


GLEAM_PATCH = json.dumps({"u_nodes": {"sword": {
    "longDescription": {"df": [{"prev_txt": "simple", "next_txt": "gleaming"}]},
    "img_upd": True,
}}})


@pytest.fixture
def api_chat() -> FakeChatCompletionClient:
    # Reviews quote the edit prompt, so their route is matched first
    return FakeChatCompletionClient(routes={
        FEEDBACK_MARKER: json.dumps({"feedback": "Clean edit."}),
        EDIT_MARKER: GLEAM_PATCH,
    })


@pytest.fixture
def session(
    api_chat: FakeChatCompletionClient,
    test_settings: Settings,
    village_entities: list[Entity],
    fake_search: FakeSearchClient,
    fake_images: FakeImageClient,
    snapshot_store: InMemorySnapshotStore,
) -> GameShaperSession:
    return GameShaperSession(
        api_chat,
        settings=test_settings,
        search_client=fake_search,
        image_client=fake_images,
        snapshot_store=snapshot_store,
        entities=village_entities,
        sleep=no_sleep,
    )


@pytest.fixture
def app(session: GameShaperSession) -> FastAPI:
    return create_app(session)


@pytest.fixture
def client(app: FastAPI):
    """Test client with the lifespan running (worker started, persisted on exit)."""
    with TestClient(app) as test_client:
        yield test_client
