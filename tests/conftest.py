"""Shared test fixtures for the livemigrate test suite."""

from typing import Any, Dict, List

import pytest

from livemigrate.engine import ProductionMigrationEngine
from livemigrate.models.migration import MigrationOptions
from livemigrate.services.migration_registry import MigrationRegistry
from livemigrate.stores.memory import InMemoryDocumentStore


# =============================================================================
# Documents
# =============================================================================


@pytest.fixture
def legacy_trade() -> Dict[str, Any]:
    """A trade stored in the legacy shape."""
    return {
        "id": "t-legacy",
        "title": "React for Python",
        "status": "active",
        "offeredSkills": ["React"],
        "requestedSkills": [{"name": "Python", "level": "advanced"}],
        "creatorId": "u1",
        "participantId": "u2",
        "createdAt": "2024-01-10T09:00:00Z",
    }


@pytest.fixture
def modern_trade() -> Dict[str, Any]:
    """A trade stored in the modern shape."""
    return {
        "id": "t-modern",
        "title": "Design review",
        "status": "active",
        "skillsOffered": [{"id": "figma", "name": "Figma", "level": "expert"}],
        "skillsWanted": [{"id": "go", "name": "Go", "level": "beginner"}],
        "participants": {"creator": "u3", "participant": "u1"},
        "createdAt": {"seconds": 1706000000, "nanoseconds": 0},
    }


@pytest.fixture
def legacy_conversation() -> Dict[str, Any]:
    """A conversation with only participant objects."""
    return {
        "id": "c-legacy",
        "participants": [
            {"id": "u1", "name": "Ada", "avatar": "ada.png"},
            {"userId": "u2", "displayName": "Grace"},
        ],
        "lastMessage": "See you tomorrow",
        "updatedAt": "2024-02-01T12:00:00Z",
    }


@pytest.fixture
def modern_conversation() -> Dict[str, Any]:
    """A conversation with participantIds."""
    return {
        "id": "c-modern",
        "type": "group",
        "title": "Study group",
        "participantIds": ["u1", "u3"],
        "participants": [{"id": "u1", "name": "Ada"}, {"id": "u3", "name": "Linus"}],
        "updatedAt": "2024-02-03T08:30:00Z",
    }


def make_docs(count: int, prefix: str = "doc") -> List[Dict[str, Any]]:
    """Simple numbered documents; ids sort in creation order."""
    return [{"id": f"{prefix}-{i:04d}", "value": i} for i in range(count)]


@pytest.fixture
def doc_factory():
    """Factory fixture building numbered documents."""
    return make_docs


# =============================================================================
# Store / registry / engine
# =============================================================================


@pytest.fixture
def store(legacy_trade, modern_trade, legacy_conversation, modern_conversation) -> InMemoryDocumentStore:
    """In-memory store seeded with a half-migrated dataset."""
    return InMemoryDocumentStore(collections={
        "trades": [legacy_trade, modern_trade],
        "conversations": [legacy_conversation, modern_conversation],
        "conversations/c-modern/messages": [
            {"id": "m1", "senderId": "u1", "content": "hi", "createdAt": "2024-02-03T08:00:00Z"},
            {"id": "m2", "senderId": "u3", "content": "hello", "createdAt": "2024-02-03T08:10:00Z"},
        ],
        "conversations/c-legacy/messages": [
            {"id": "m1", "userId": "u1", "message": "old hi", "timestamp": 1706778000000},
        ],
    })


@pytest.fixture
def registry(store) -> MigrationRegistry:
    """Registry initialized over the seeded store."""
    registry = MigrationRegistry()
    registry.initialize(store)
    return registry


@pytest.fixture
def fast_options() -> MigrationOptions:
    """Engine options with every delay removed."""
    return MigrationOptions(
        batch_size=10,
        max_concurrent_batches=2,
        rate_limit_ms=0,
        max_retries=2,
        retry_delay_ms=0,
        health_check_retries=1,
        health_check_pause_ms=0,
        error_rate_min_sample=10,
    )


@pytest.fixture
def numbered_store() -> InMemoryDocumentStore:
    """Store with 100 plain documents in ``items``."""
    return InMemoryDocumentStore(collections={"items": make_docs(100)})


@pytest.fixture
def numbered_registry(numbered_store) -> MigrationRegistry:
    registry = MigrationRegistry()
    registry.initialize(numbered_store)
    return registry


@pytest.fixture
def engine(numbered_store, numbered_registry, fast_options) -> ProductionMigrationEngine:
    """Engine over the numbered store."""
    return ProductionMigrationEngine(numbered_store, numbered_registry, fast_options)
