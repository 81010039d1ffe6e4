"""Tests for FallbackQuery and the trade / chat compatibility services."""

import pytest

from livemigrate.errors import InvalidArgumentError, UnsupportedQueryError
from livemigrate.models.record import ReadStatus, entities
from livemigrate.services.chat_compatibility import ChatCompatibilityService
from livemigrate.services.compatibility import FallbackQuery, dedupe_by_id
from livemigrate.services.normalizer import normalize_conversation
from livemigrate.services.trade_compatibility import TradeCompatibilityService
from livemigrate.stores.memory import InMemoryDocumentStore


def steps(*results):
    """Async query steps returning (or raising) the given values."""
    def make(value):
        async def step():
            if isinstance(value, Exception):
                raise value
            return value
        return step
    return [make(v) for v in results]


# =============================================================================
# Tests: FallbackQuery
# =============================================================================


class TestFallbackQuery:
    """Tests for FallbackQuery.run()."""

    def test_dedupe_keeps_first(self):
        docs = dedupe_by_id([{"id": "a", "v": 1}, {"id": "b"}, {"id": "a", "v": 2}])

        assert docs == [{"id": "a", "v": 1}, {"id": "b"}]

    @pytest.mark.asyncio
    async def test_merges_modern_and_legacy(self):
        primary, fallback = steps([{"id": "a"}], [{"id": "a"}, {"id": "b"}])

        docs = await FallbackQuery("q", primary, fallback).run()

        assert [d["id"] for d in docs] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_no_merge_skips_fallback(self):
        primary, fallback = steps([{"id": "a"}], [{"id": "b"}])

        docs = await FallbackQuery("q", primary, fallback, merge=False).run()

        assert [d["id"] for d in docs] == ["a"]

    @pytest.mark.asyncio
    async def test_primary_failure_uses_fallback(self):
        primary, fallback = steps(UnsupportedQueryError("no index"), [{"id": "b"}])

        docs = await FallbackQuery("q", primary, fallback).run()

        assert [d["id"] for d in docs] == ["b"]

    @pytest.mark.asyncio
    async def test_fallback_failure_surfaces_after_primary_failure(self):
        primary, fallback = steps(UnsupportedQueryError("no index"), UnsupportedQueryError("still no index"))

        with pytest.raises(UnsupportedQueryError, match="still no index"):
            await FallbackQuery("q", primary, fallback).run()

    @pytest.mark.asyncio
    async def test_merge_failure_is_ignored(self):
        primary, fallback = steps([{"id": "a"}], UnsupportedQueryError("no index"))

        docs = await FallbackQuery("q", primary, fallback).run()

        assert [d["id"] for d in docs] == ["a"]

    @pytest.mark.asyncio
    async def test_separate_merge_step(self):
        primary, fallback, legacy = steps([{"id": "a"}], [{"id": "scan"}], [{"id": "b"}])

        docs = await FallbackQuery("q", primary, fallback, merge_step=legacy).run()

        assert [d["id"] for d in docs] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_primary_failure_skips_merge_step(self):
        primary, fallback, legacy = steps(UnsupportedQueryError("no index"), [{"id": "scan"}], [{"id": "b"}])

        docs = await FallbackQuery("q", primary, fallback, merge_step=legacy).run()

        assert [d["id"] for d in docs] == ["scan"]

    @pytest.mark.asyncio
    async def test_primary_failure_without_fallback(self):
        (primary,) = steps(UnsupportedQueryError("no index"))

        with pytest.raises(UnsupportedQueryError):
            await FallbackQuery("q", primary).run()


# =============================================================================
# Tests: TradeCompatibilityService
# =============================================================================


class TestTradeCompatibilityService:
    """Tests for TradeCompatibilityService."""

    @pytest.fixture
    def service(self, store):
        return TradeCompatibilityService(store)

    @pytest.mark.asyncio
    async def test_get_legacy_trade(self, service):
        result = await service.get("t-legacy")

        assert result.status == ReadStatus.FOUND
        assert result.entity.creator_id == "u1"
        assert result.entity.to_dict()["skillsOffered"][0]["name"] == "React"

    @pytest.mark.asyncio
    async def test_get_missing_trade(self, service):
        result = await service.get("nope")

        assert result.status == ReadStatus.NOT_FOUND
        assert result.entity is None

    @pytest.mark.asyncio
    async def test_get_rejects_empty_id(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.get("")

    @pytest.mark.asyncio
    async def test_query_by_skill_finds_both_shapes(self, store, service):
        store.seed("trades", [{
            "id": "t-new-react",
            "status": "active",
            "skillsOffered": [{"id": "react", "name": "React"}],
            "participants": {"creator": "u5"},
        }])

        results = await service.query_by_skill("React")

        assert sorted(r.doc_id for r in results) == ["t-legacy", "t-new-react"]

    @pytest.mark.asyncio
    async def test_query_by_skill_wanted_side(self, service):
        results = await service.query_by_skill("Go", "wanted")

        assert [r.doc_id for r in results] == ["t-modern"]

    @pytest.mark.asyncio
    async def test_query_by_skill_rejects_bad_arguments(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.query_by_skill("   ")
        with pytest.raises(InvalidArgumentError):
            await service.query_by_skill("React", "both")

    @pytest.mark.asyncio
    async def test_query_by_user_newest_first(self, service):
        results = await service.query_by_user("u1")

        # t-modern (2024-01-23) is newer than t-legacy (2024-01-10)
        assert [r.doc_id for r in results] == ["t-modern", "t-legacy"]

    @pytest.mark.asyncio
    async def test_query_by_user_when_modern_index_missing(self, legacy_trade):
        store = InMemoryDocumentStore(
            collections={"trades": [legacy_trade]},
            unsupported_fields=["participants.creator"],
        )
        service = TradeCompatibilityService(store)

        results = await service.query_by_user("u1")

        assert [r.doc_id for r in results] == ["t-legacy"]

    @pytest.mark.asyncio
    async def test_corrupt_document_is_degraded(self, service, monkeypatch):
        def corrupt(raw):
            raise ValueError("corrupt")

        monkeypatch.setattr(service, "normalize", corrupt)

        result = await service.get("t-legacy")

        assert result.status == ReadStatus.DEGRADED
        assert result.entity.title == "Error Loading Trade"
        assert result.error == "corrupt"

    @pytest.mark.asyncio
    async def test_raw_query(self, service):
        results = await service.query([{"field": "status", "operator": "==", "value": "active"}], limit=1)

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_raw_query_rejects_bad_arguments(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.query("status == active")
        with pytest.raises(InvalidArgumentError):
            await service.query([], limit=0)

    def test_validate(self, service):
        assert not service.validate(service.placeholder("x"))


# =============================================================================
# Tests: ChatCompatibilityService
# =============================================================================


class TestChatCompatibilityService:
    """Tests for ChatCompatibilityService."""

    @pytest.fixture
    def service(self, store):
        return ChatCompatibilityService(store)

    @pytest.mark.asyncio
    async def test_query_by_user_finds_both_shapes(self, service):
        results = await service.query_by_user("u1")

        # Most recently updated first
        assert [r.doc_id for r in results] == ["c-modern", "c-legacy"]

    @pytest.mark.asyncio
    async def test_query_by_user_legacy_only(self, service):
        results = await service.query_by_user("u2")

        assert [r.doc_id for r in results] == ["c-legacy"]
        assert results[0].entity.participant_ids == ["u1", "u2"]

    @pytest.mark.asyncio
    async def test_query_by_user_respects_limit(self, service):
        results = await service.query_by_user("u1", limit=1)

        assert [r.doc_id for r in results] == ["c-modern"]

    @pytest.mark.asyncio
    async def test_query_by_user_rejects_bad_limit(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.query_by_user("u1", limit=0)
        with pytest.raises(InvalidArgumentError):
            await service.query_by_user("u1", limit=101)

    @pytest.mark.asyncio
    async def test_degraded_conversation_listed(self, store, service, monkeypatch):
        store.seed("conversations", [{
            "id": "c-broken",
            "participantIds": ["u1"],
            "updatedAt": "2024-03-01T00:00:00Z",
        }])

        def normalize(raw):
            if raw["id"] == "c-broken":
                raise ValueError("corrupt")
            return normalize_conversation(raw)

        monkeypatch.setattr(service, "normalize", normalize)

        results = await service.query_by_user("u1")

        degraded = [r for r in results if r.degraded]
        assert [r.doc_id for r in degraded] == ["c-broken"]
        assert degraded[0].entity.title == "Error Loading Conversation"
        assert len(results) == 3

    @pytest.mark.asyncio
    async def test_search_conversations(self, service):
        assert [r.doc_id for r in await service.search_conversations("u1", "grace")] == ["c-legacy"]
        assert [r.doc_id for r in await service.search_conversations("u1", "STUDY")] == ["c-modern"]
        assert await service.search_conversations("u1", "   ") == []

    @pytest.mark.asyncio
    async def test_get_direct_conversation(self, service):
        result = await service.get_direct_conversation(["u2", "u1"])

        assert result.doc_id == "c-legacy"

    @pytest.mark.asyncio
    async def test_get_direct_conversation_not_found(self, service):
        result = await service.get_direct_conversation(["u1", "u3"])

        # c-modern is a group conversation
        assert result.status == ReadStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_get_direct_conversation_needs_two_distinct_users(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.get_direct_conversation(["u1"])
        with pytest.raises(InvalidArgumentError):
            await service.get_direct_conversation(["u1", "u1"])

    @pytest.mark.asyncio
    async def test_get_messages_chronological(self, service):
        results = await service.get_messages("c-modern")

        assert [m.content for m in entities(results)] == ["hi", "hello"]

    @pytest.mark.asyncio
    async def test_get_messages_legacy_fields(self, service):
        results = await service.get_messages("c-legacy")

        message = results[0].entity
        assert message.content == "old hi"
        assert message.sender_id == "u1"
        assert message.conversation_id == "c-legacy"

    @pytest.mark.asyncio
    async def test_get_messages_before_cursor(self, service):
        results = await service.get_messages("c-modern", before_message_id="m2")

        assert [r.doc_id for r in results] == ["m1"]

    @pytest.mark.asyncio
    async def test_get_messages_unknown_cursor(self, service):
        assert await service.get_messages("c-modern", before_message_id="missing") == []

    @pytest.mark.asyncio
    async def test_get_messages_limit_keeps_newest(self, store, service):
        store.seed("conversations/c-modern/messages", [
            {"id": "m3", "senderId": "u1", "content": "third", "createdAt": "2024-02-03T08:20:00Z"},
        ])

        results = await service.get_messages("c-modern", limit=2)

        assert [r.doc_id for r in results] == ["m2", "m3"]

    @pytest.mark.asyncio
    async def test_get_messages_without_ordered_queries(self):
        store = InMemoryDocumentStore(
            {
                "conversations": [{"id": "c1", "participantIds": ["u1", "u2"]}],
                "conversations/c1/messages": [
                    {"id": "a", "senderId": "u2", "content": "modern late", "createdAt": "2024-02-03T09:00:00Z"},
                    {"id": "b", "userId": "u1", "message": "legacy early", "timestamp": 1706947200000},
                    {"id": "c", "senderId": "u1", "content": "modern early", "createdAt": "2024-02-03T08:30:00Z"},
                ],
            },
            unsupported_fields={"createdAt", "timestamp"},
        )
        service = ChatCompatibilityService(store)

        results = await service.get_messages("c1")

        assert [r.doc_id for r in results] == ["b", "c", "a"]
        assert [m.content for m in entities(results)] == ["legacy early", "modern early", "modern late"]

    @pytest.mark.asyncio
    async def test_get_messages_cursor_without_ordered_queries(self, store):
        store.unsupported_fields = {"createdAt", "timestamp"}
        service = ChatCompatibilityService(store)

        results = await service.get_messages("c-modern", before_message_id="m2")

        assert [r.doc_id for r in results] == ["m1"]

    @pytest.mark.asyncio
    async def test_get_messages_rejects_bad_arguments(self, service):
        with pytest.raises(InvalidArgumentError):
            await service.get_messages("")
        with pytest.raises(InvalidArgumentError):
            await service.get_messages("c-modern", limit=500)

    def test_message_result_degrades(self, service):
        result = service.message_result(["garbage"], "c1")

        assert result.status == ReadStatus.DEGRADED
        assert result.entity.content == "Error loading message"

    def test_validate_message(self, service):
        assert service.validate_message({"id": "m1", "conversationId": "c1", "senderId": "u1", "content": ""})
        assert not service.validate_message(None)
