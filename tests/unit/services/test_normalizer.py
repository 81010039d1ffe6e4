"""Tests for trade, conversation and message normalizers."""

from datetime import datetime, timezone

import pytest

from livemigrate.errors import EmptyParticipantsError, NullEntityError
from livemigrate.models.record import (
    ConversationType,
    MessageType,
    SkillLevel,
    TradeStatus,
)
from livemigrate.services.normalizer import (
    UNKNOWN_SKILL_NAME,
    build_message,
    legacy_participant_ids,
    normalize_conversation,
    normalize_message,
    normalize_skill,
    normalize_trade,
    parse_timestamp,
    participant_id_of,
)


# =============================================================================
# Tests: parse_timestamp()
# =============================================================================


class TestParseTimestamp:
    """Tests for parse_timestamp()."""

    def test_iso_string(self):
        assert parse_timestamp("2024-01-10T09:00:00Z") == datetime(2024, 1, 10, 9, tzinfo=timezone.utc)

    def test_epoch_seconds_and_millis_agree(self):
        assert parse_timestamp(1706000000) == parse_timestamp(1706000000000)

    def test_timestamp_map(self):
        parsed = parse_timestamp({"seconds": 1706000000, "nanoseconds": 500000000})

        assert parsed.timestamp() == pytest.approx(1706000000.5)

    def test_naive_datetime_becomes_utc(self):
        assert parse_timestamp(datetime(2024, 1, 1)).tzinfo == timezone.utc

    @pytest.mark.parametrize("value", [None, "", "not a date", True, [], {"seconds": "x"}])
    def test_unreadable_values(self, value):
        assert parse_timestamp(value) is None


# =============================================================================
# Tests: normalize_trade()
# =============================================================================


class TestNormalizeSkill:
    """Tests for normalize_skill()."""

    def test_string_skill(self):
        skill = normalize_skill("React", 0)

        assert skill.id == skill.name == "React"
        assert skill.level == SkillLevel.INTERMEDIATE

    def test_map_without_name(self):
        skill = normalize_skill({"level": "expert"}, 2)

        assert skill.name == UNKNOWN_SKILL_NAME
        assert skill.id == "skill_2"
        assert skill.level == SkillLevel.EXPERT

    def test_null_entry(self):
        skill = normalize_skill(None, 1)

        assert skill.id == "unknown_skill_1"
        assert skill.name == UNKNOWN_SKILL_NAME


class TestNormalizeTrade:
    """Tests for normalize_trade()."""

    def test_legacy_trade(self, legacy_trade):
        trade = normalize_trade(legacy_trade)

        assert [s.name for s in trade.skills_offered] == ["React"]
        assert trade.skills_wanted[0].level == SkillLevel.ADVANCED
        assert trade.participants.creator == "u1"
        assert trade.participants.participant == "u2"
        assert trade.status == TradeStatus.ACTIVE
        assert trade.created_at == datetime(2024, 1, 10, 9, tzinfo=timezone.utc)

    def test_modern_trade(self, modern_trade):
        trade = normalize_trade(modern_trade)

        assert trade.skills_offered[0].id == "figma"
        assert trade.creator_id == "u3"
        assert trade.created_at is not None

    def test_minimal_legacy_trade(self):
        data = normalize_trade({"offeredSkills": ["React"], "creatorId": "u1"}).to_dict()

        assert data["skillsOffered"] == [{"id": "React", "name": "React", "level": "intermediate"}]
        assert data["offeredSkills"] == data["skillsOffered"]
        assert data["skillsWanted"] == data["requestedSkills"] == []
        assert data["participants"] == {"creator": "u1", "participant": None}
        assert data["creatorId"] == "u1"
        assert data["participantId"] is None

    def test_legacy_and_modern_shapes_agree(self):
        legacy = normalize_trade({
            "id": "t",
            "title": "Swap",
            "status": "active",
            "offeredSkills": [{"id": "react", "name": "React", "level": "expert"}],
            "requestedSkills": ["Python"],
            "creatorId": "u1",
            "participantId": "u2",
        })
        modern = normalize_trade({
            "id": "t",
            "title": "Swap",
            "status": "active",
            "skillsOffered": [{"id": "react", "name": "React", "level": "expert"}],
            "skillsWanted": ["Python"],
            "participants": {"creator": "u1", "participant": "u2"},
        })

        assert legacy.to_dict() == modern.to_dict()

    @pytest.mark.parametrize("raw", [{}, {"skillsOffered": None}, {"offeredSkills": 5}, "garbage"])
    def test_skill_lists_always_lists(self, raw):
        trade = normalize_trade(raw)

        assert isinstance(trade.skills_offered, list)
        assert isinstance(trade.skills_wanted, list)

    def test_modern_fields_win_over_legacy(self):
        trade = normalize_trade({
            "id": "t",
            "skillsOffered": ["New"],
            "offeredSkills": ["Old"],
            "participants": {"creator": "modern"},
            "creatorId": "legacy",
        })

        assert [s.name for s in trade.skills_offered] == ["New"]
        assert trade.creator_id == "modern"

    def test_partial_participants_fall_back_per_field(self):
        trade = normalize_trade({"id": "t", "participants": {"participant": "u2"}, "creatorId": "u1"})

        assert trade.creator_id == "u1"
        assert trade.participant_id == "u2"

    def test_malformed_skill_lists(self):
        trade = normalize_trade({"id": "t", "skillsOffered": "React", "skillsWanted": [None, 3]})

        assert trade.skills_offered == []
        assert [s.name for s in trade.skills_wanted] == [UNKNOWN_SKILL_NAME, "3"]

    def test_unknown_status(self):
        assert normalize_trade({"id": "t", "status": "archived"}).status == TradeStatus.UNKNOWN

    def test_null_trade(self):
        with pytest.raises(NullEntityError, match="Trade data is null or undefined"):
            normalize_trade(None)

    def test_idempotent(self, legacy_trade):
        once = normalize_trade(legacy_trade)
        twice = normalize_trade(once.to_dict())

        assert twice.to_dict() == once.to_dict()
        assert normalize_trade(once).to_dict() == once.to_dict()

    def test_unknown_fields_are_kept(self):
        trade = normalize_trade({"id": "t", "views": 10})

        assert trade.to_dict()["views"] == 10


# =============================================================================
# Tests: normalize_conversation()
# =============================================================================


class TestParticipantIds:
    """Tests for participant id extraction."""

    @pytest.mark.parametrize("entry,expected", [
        ("u1", "u1"),
        ({"id": "u1"}, "u1"),
        ({"userId": "u2"}, "u2"),
        ({"uid": "u3"}, "u3"),
        ({"user": {"id": "u4"}}, "u4"),
        ({"name": "nobody"}, None),
        (42, None),
    ])
    def test_participant_id_of(self, entry, expected):
        assert participant_id_of(entry) == expected

    def test_legacy_map_keyed_by_uid(self):
        assert legacy_participant_ids({"u1": {"name": "Ada"}, "u2": True}) == ["u1", "u2"]

    def test_duplicates_removed(self):
        assert legacy_participant_ids([{"id": "u1"}, "u1", {"userId": "u2"}]) == ["u1", "u2"]


class TestNormalizeConversation:
    """Tests for normalize_conversation()."""

    def test_legacy_conversation(self, legacy_conversation):
        conversation = normalize_conversation(legacy_conversation)

        assert conversation.participant_ids == ["u1", "u2"]
        assert [p.name for p in conversation.participants] == ["Ada", "Grace"]
        assert conversation.participants[0].avatar == "ada.png"
        assert conversation.last_message.content == "See you tomorrow"
        assert conversation.type == ConversationType.DIRECT

    def test_modern_conversation(self, modern_conversation):
        conversation = normalize_conversation(modern_conversation)

        assert conversation.participant_ids == ["u1", "u3"]
        assert conversation.type == ConversationType.GROUP
        assert conversation.title == "Study group"

    @pytest.mark.parametrize("raw", [
        {"participantIds": ["u1", "u1", "u2"]},
        {"participants": {"u1": {"name": "Ada"}, "u2": {}}},
        {"participantIds": ["u1"], "participants": [{"id": "u1"}, {"id": "u2"}, {"id": "u3"}]},
    ])
    def test_ids_and_summaries_same_length(self, raw):
        conversation = normalize_conversation(raw)

        assert len(conversation.participant_ids) == len(conversation.participants)

    def test_summaries_align_with_ids(self):
        conversation = normalize_conversation({
            "id": "c",
            "participantIds": ["u2", "u1"],
            "participants": [{"id": "u1", "name": "Ada"}],
        })

        assert [p.id for p in conversation.participants] == ["u2", "u1"]
        assert [p.name for p in conversation.participants] == ["", "Ada"]

    def test_empty_participant_ids_fall_back_to_legacy(self):
        conversation = normalize_conversation({
            "id": "c",
            "participantIds": ["", None],
            "participants": [{"id": "u9"}],
        })

        assert conversation.participant_ids == ["u9"]

    def test_participants_legacy_field(self):
        conversation = normalize_conversation({"id": "c", "participants_legacy": [{"id": "u5"}]})

        assert conversation.participant_ids == ["u5"]

    def test_trade_linked_types(self):
        assert normalize_conversation(
            {"id": "c", "participantIds": ["u1"], "type": "trade-linked"}
        ).type == ConversationType.TRADE
        assert normalize_conversation(
            {"id": "c", "participantIds": ["u1"], "relatedTradeId": "t1"}
        ).type == ConversationType.TRADE

    def test_no_participants(self):
        with pytest.raises(EmptyParticipantsError, match="at least one participant"):
            normalize_conversation({"id": "c", "participants": [{"name": "nobody"}]})

    def test_null_conversation(self):
        with pytest.raises(NullEntityError, match="Conversation data is null or undefined"):
            normalize_conversation(None)

    def test_idempotent(self, legacy_conversation):
        once = normalize_conversation(legacy_conversation)

        assert normalize_conversation(once.to_dict()).to_dict() == once.to_dict()


# =============================================================================
# Tests: messages
# =============================================================================


class TestNormalizeMessage:
    """Tests for build_message() and normalize_message()."""

    def test_legacy_names(self):
        message = normalize_message({
            "id": "m1",
            "chatId": "c1",
            "userId": "u1",
            "message": "hi",
            "timestamp": 1706778000000,
            "userName": "Ada",
        })

        assert message.conversation_id == "c1"
        assert message.sender_id == "u1"
        assert message.content == "hi"
        assert message.sender_name == "Ada"
        assert message.created_at is not None
        assert message.type == MessageType.TEXT

    def test_conversation_id_from_context(self):
        message = normalize_message({"id": "m1", "senderId": "u1", "content": "hi"}, conversation_id="c9")

        assert message.conversation_id == "c9"

    def test_unreadable_payload_becomes_placeholder(self):
        message = normalize_message(["not", "a", "message"], conversation_id="c1")

        assert message.type == MessageType.SYSTEM
        assert message.content == "Error loading message"
        assert message.sender_id == "unknown"
        assert message.conversation_id == "c1"
        assert message.created_at is not None

    def test_build_message_is_strict(self):
        with pytest.raises(TypeError):
            build_message(["bad"])

    def test_null_message(self):
        with pytest.raises(NullEntityError):
            normalize_message(None)

    def test_idempotent(self):
        once = normalize_message({"id": "m1", "chatId": "c1", "userId": "u1", "text": "yo"})

        assert normalize_message(once.to_dict()).to_dict() == once.to_dict()
