"""Test configuration and shared fixtures.

Pattern: Pytest fixtures, conftest.py
"""

from __future__ import annotations

import pytest

from gameshaper.core.config import Settings
from gameshaper.ledger.call_ledger import CallLedger
from gameshaper.schemas.entities import Entity
from tests.fakes.fake_clients import (
    FakeChatCompletionClient,
    FakeImageClient,
    FakeSearchClient,
    InMemorySnapshotStore,
)


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_settings() -> Settings:
    """Create test settings with safe defaults."""
    return Settings(
        environment="test",
        log_level="DEBUG",
        llm_base_url="http://llm.test/v1",
        search_base_url="http://search.test",
        image_base_url="http://images.test/v1",
        search_delay_seconds=0.0,
        retry_initial_delay=0.0,
        include_feedback_context=True,
        snapshot_path="unused.json",
    )


async def no_sleep(_: float) -> None:
    """Awaitable stand-in for asyncio.sleep."""
    return None


@pytest.fixture
def recorded_sleeps() -> list[float]:
    return []


@pytest.fixture
def recording_sleep(recorded_sleeps: list[float]):
    async def _sleep(delay: float) -> None:
        recorded_sleeps.append(delay)

    return _sleep


# ============================================================================
# Domain Fixtures
# ============================================================================

@pytest.fixture
def sword() -> Entity:
    return Entity(id="n1", name="Sword", type="item", long_description="a simple sword")


@pytest.fixture
def village_entities() -> list[Entity]:
    """A small world: a village with a smith and the smith's sword."""
    return [
        Entity(
            id="village",
            name="Oakridge",
            type="location",
            long_description="A quiet village at the edge of the forest.",
            child=["smith"],
        ),
        Entity(
            id="smith",
            name="Bera",
            type="character",
            long_description="The village smith. She looks tired. She looks tired.",
            parent="village",
            child=["sword"],
        ),
        Entity(
            id="sword",
            name="Sword",
            type="item",
            long_description="a simple sword",
            parent="smith",
        ),
    ]


@pytest.fixture
def ledger() -> CallLedger:
    return CallLedger()


# ============================================================================
# Fake Capability Fixtures
# ============================================================================

@pytest.fixture
def fake_chat() -> FakeChatCompletionClient:
    return FakeChatCompletionClient()


@pytest.fixture
def fake_search() -> FakeSearchClient:
    return FakeSearchClient()


@pytest.fixture
def fake_images() -> FakeImageClient:
    return FakeImageClient()


@pytest.fixture
def snapshot_store() -> InMemorySnapshotStore:
    return InMemorySnapshotStore()
