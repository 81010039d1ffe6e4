"""Normalizers that turn raw stored documents into dual-shape entities."""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from datetime import datetime, timezone
from dateutil import parser as date_parser

from ..errors import EmptyParticipantsError, NullEntityError
from ..models.record import (
    SkillLevel,
    TradeStatus,
    ConversationType,
    MessageType,
    Skill,
    TradeParticipants,
    Trade,
    ParticipantSummary,
    LastMessage,
    Conversation,
    Message,
)

logger = logging.getLogger(__name__)

UNKNOWN_SKILL_NAME = "Unknown Skill"
DEFAULT_SCHEMA_VERSION = "1.0"

TRADE_KEYS = frozenset({
    "id", "title", "description", "status",
    "skillsOffered", "skillsWanted", "participants",
    "offeredSkills", "requestedSkills", "creatorId", "participantId",
    "schemaVersion", "createdAt", "updatedAt", "compatibilityLayerUsed",
})

CONVERSATION_KEYS = frozenset({
    "id", "type", "title", "participantIds", "participants", "participants_legacy",
    "lastMessage", "metadata", "relatedTradeId", "schemaVersion",
    "createdAt", "updatedAt", "compatibilityLayerUsed",
})

MESSAGE_KEYS = frozenset({
    "id", "conversationId", "chatId", "senderId", "userId", "authorId",
    "senderName", "userName", "authorName", "content", "message", "text",
    "type", "createdAt", "timestamp", "readBy", "edited",
})

SKILL_KEYS = frozenset({"id", "name", "level", "category"})

PARTICIPANT_KEYS = frozenset({"id", "name", "avatar"})

_CONVERSATION_TYPE_ALIASES = {
    "trade-linked": ConversationType.TRADE,
    "trade_linked": ConversationType.TRADE,
}


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _as_mapping(raw: Any) -> Mapping[str, Any]:
    return raw if isinstance(raw, Mapping) else {}


def _string(value: Any, default: str = "") -> str:
    if value is None:
        return default
    if isinstance(value, str):
        return value
    return str(value)


def _non_empty_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce a stored timestamp into an aware datetime.

    Accepts datetimes, ISO-8601 strings, epoch seconds or milliseconds, and
    ``{seconds, nanoseconds}`` timestamp maps. Anything else becomes None.
    """
    if value is None or isinstance(value, bool):
        return None

    try:
        if isinstance(value, datetime):
            dt = value
        elif isinstance(value, (int, float)):
            seconds = value / 1000.0 if abs(value) > 1e11 else float(value)
            dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
        elif isinstance(value, str):
            if not value.strip():
                return None
            dt = date_parser.parse(value)
        elif isinstance(value, Mapping):
            seconds = value.get("seconds", value.get("_seconds"))
            nanos = value.get("nanoseconds", value.get("_nanoseconds", 0)) or 0
            if not isinstance(seconds, (int, float)) or isinstance(seconds, bool):
                return None
            dt = datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
        else:
            return None
    except (ValueError, OverflowError, OSError, TypeError):
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _enum_value(enum_cls, value: Any, default):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return default


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------

def normalize_skill(skill: Any, index: int) -> Skill:
    """Lift one skill entry of any shape into a Skill."""
    if isinstance(skill, str):
        return Skill(id=skill, name=skill, level=SkillLevel.INTERMEDIATE)

    if isinstance(skill, Mapping):
        name = _non_empty_string(skill.get("name"))
        skill_id = _non_empty_string(skill.get("id")) or name or f"skill_{index}"
        category = skill.get("category")
        return Skill(
            id=skill_id,
            name=name or UNKNOWN_SKILL_NAME,
            level=_enum_value(SkillLevel, skill.get("level"), SkillLevel.INTERMEDIATE),
            category=category if isinstance(category, str) else None,
            extra={k: v for k, v in skill.items() if k not in SKILL_KEYS},
        )

    if skill is None:
        return Skill(id=f"unknown_skill_{index}", name=UNKNOWN_SKILL_NAME)

    return Skill(id=f"unknown_skill_{index}", name=str(skill))


def normalize_skills(skills: Any) -> List[Skill]:
    """Normalize a skill list, preserving order. Non-lists become []."""
    if not isinstance(skills, (list, tuple)):
        return []
    return [normalize_skill(skill, i) for i, skill in enumerate(skills)]


def _pick_skill_list(data: Mapping[str, Any], modern: str, legacy: str) -> Any:
    value = data.get(modern)
    if isinstance(value, (list, tuple)):
        return value
    return data.get(legacy)


def _reconcile_trade_participants(data: Mapping[str, Any]) -> TradeParticipants:
    modern = _as_mapping(data.get("participants"))
    creator = _non_empty_string(modern.get("creator")) or _non_empty_string(data.get("creatorId"))
    participant = (
        _non_empty_string(modern.get("participant"))
        or _non_empty_string(data.get("participantId"))
    )
    return TradeParticipants(creator=creator, participant=participant)


def normalize_trade(raw: Optional[Mapping[str, Any]]) -> Trade:
    """
    Normalize a trade document in either shape.

    Args:
        raw: Stored document (legacy, modern or half-migrated)

    Returns:
        Trade with modern and legacy fields populated identically

    Raises:
        NullEntityError: if ``raw`` is None
    """
    if raw is None:
        raise NullEntityError("Trade")

    data = _as_mapping(raw.to_dict() if isinstance(raw, Trade) else raw)

    return Trade(
        id=_string(data.get("id")),
        title=_string(data.get("title")),
        description=_string(data.get("description")),
        skills_offered=normalize_skills(_pick_skill_list(data, "skillsOffered", "offeredSkills")),
        skills_wanted=normalize_skills(_pick_skill_list(data, "skillsWanted", "requestedSkills")),
        participants=_reconcile_trade_participants(data),
        status=_enum_value(TradeStatus, data.get("status"), TradeStatus.UNKNOWN),
        schema_version=_non_empty_string(data.get("schemaVersion")) or DEFAULT_SCHEMA_VERSION,
        created_at=parse_timestamp(data.get("createdAt")),
        updated_at=parse_timestamp(data.get("updatedAt")),
        extra={k: v for k, v in data.items() if k not in TRADE_KEYS},
    )


def trade_placeholder(doc_id: str) -> Trade:
    """Stand-in for a trade document that could not be normalized."""
    return Trade(id=doc_id, title="Error Loading Trade", status=TradeStatus.UNKNOWN)


# ---------------------------------------------------------------------------
# Conversations
# ---------------------------------------------------------------------------

def participant_id_of(entry: Any) -> Optional[str]:
    """Identifier of one legacy participant entry, or None."""
    if isinstance(entry, str):
        return entry or None
    if isinstance(entry, Mapping):
        for key in ("id", "userId", "uid"):
            value = _non_empty_string(entry.get(key))
            if value:
                return value
        nested = entry.get("user")
        if isinstance(nested, Mapping):
            return participant_id_of(nested)
    return None


def _legacy_participant_entries(value: Any) -> Iterable[Tuple[Optional[str], Mapping[str, Any]]]:
    """Yield (id, info) pairs from a list of entries or a map keyed by user id."""
    if isinstance(value, (list, tuple)):
        for entry in value:
            yield participant_id_of(entry), _as_mapping(entry)
    elif isinstance(value, Mapping):
        for key, info in value.items():
            info_map = _as_mapping(info)
            yield (_non_empty_string(key) or participant_id_of(info_map)), info_map


def _unique(ids: Iterable[Optional[str]]) -> List[str]:
    seen = set()
    result = []
    for participant_id in ids:
        if participant_id and participant_id not in seen:
            seen.add(participant_id)
            result.append(participant_id)
    return result


def legacy_participant_ids(value: Any) -> List[str]:
    """Unique participant ids from a legacy ``participants`` value."""
    return _unique(pid for pid, _ in _legacy_participant_entries(value))


def _summary(participant_id: str, info: Mapping[str, Any]) -> ParticipantSummary:
    name = info.get("name")
    if not isinstance(name, str):
        name = info.get("displayName")
    avatar = info.get("avatar")
    if not isinstance(avatar, str):
        avatar = info.get("photoURL")
    return ParticipantSummary(
        id=participant_id,
        name=name if isinstance(name, str) else "",
        avatar=avatar if isinstance(avatar, str) else None,
        extra={k: v for k, v in info.items() if k not in PARTICIPANT_KEYS},
    )


def _last_message(value: Any) -> Optional[LastMessage]:
    if isinstance(value, str):
        return LastMessage(content=value)
    if isinstance(value, Mapping):
        return LastMessage(
            content=_string(value.get("content", value.get("message", value.get("text")))),
            sender_id=_string(value.get("senderId", value.get("userId"))),
            created_at=parse_timestamp(value.get("createdAt", value.get("timestamp"))),
        )
    return None


def _conversation_type(data: Mapping[str, Any]) -> ConversationType:
    value = data.get("type")
    if value in _CONVERSATION_TYPE_ALIASES:
        return _CONVERSATION_TYPE_ALIASES[value]
    if value is None and _non_empty_string(data.get("relatedTradeId")):
        return ConversationType.TRADE
    return _enum_value(ConversationType, value, ConversationType.DIRECT)


def normalize_conversation(raw: Optional[Mapping[str, Any]]) -> Conversation:
    """
    Normalize a conversation document in either shape.

    Participant ids come from ``participantIds`` when it yields any valid id,
    otherwise from the legacy ``participants`` objects. Summaries are kept
    index-aligned with the ids.

    Raises:
        NullEntityError: if ``raw`` is None
        EmptyParticipantsError: if no participant id can be extracted
    """
    if raw is None:
        raise NullEntityError("Conversation")

    data = _as_mapping(raw.to_dict() if isinstance(raw, Conversation) else raw)
    conversation_id = _string(data.get("id"))

    modern_ids = data.get("participantIds")
    participant_ids: List[str] = []
    if isinstance(modern_ids, (list, tuple)):
        participant_ids = _unique(_non_empty_string(pid) for pid in modern_ids)

    legacy_entries = list(_legacy_participant_entries(data.get("participants")))
    legacy_entries.extend(_legacy_participant_entries(data.get("participants_legacy")))

    if not participant_ids:
        participant_ids = _unique(pid for pid, _ in legacy_entries)

    if not participant_ids:
        raise EmptyParticipantsError(conversation_id or None)

    info_by_id: Dict[str, Mapping[str, Any]] = {}
    for pid, info in legacy_entries:
        if pid and pid not in info_by_id:
            info_by_id[pid] = info

    metadata = data.get("metadata")

    return Conversation(
        id=conversation_id,
        participant_ids=participant_ids,
        participants=[_summary(pid, info_by_id.get(pid, {})) for pid in participant_ids],
        type=_conversation_type(data),
        title=_non_empty_string(data.get("title")),
        last_message=_last_message(data.get("lastMessage")),
        metadata=dict(metadata) if isinstance(metadata, Mapping) else {},
        related_trade_id=_non_empty_string(data.get("relatedTradeId")),
        schema_version=_non_empty_string(data.get("schemaVersion")) or DEFAULT_SCHEMA_VERSION,
        created_at=parse_timestamp(data.get("createdAt")),
        updated_at=parse_timestamp(data.get("updatedAt")),
        extra={k: v for k, v in data.items() if k not in CONVERSATION_KEYS},
    )


def conversation_placeholder(doc_id: str) -> Conversation:
    """Stand-in for a conversation document that could not be normalized."""
    return Conversation(id=doc_id, title="Error Loading Conversation")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

def _first(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def message_placeholder(doc_id: str = "", conversation_id: str = "") -> Message:
    """Minimal valid message served in place of a corrupt one."""
    return Message(
        id=doc_id,
        conversation_id=conversation_id,
        sender_id="unknown",
        content="Error loading message",
        type=MessageType.SYSTEM,
        created_at=datetime.now(timezone.utc),
    )


def build_message(raw: Mapping[str, Any], conversation_id: Optional[str] = None) -> Message:
    """
    Strict message normalization.

    Raises:
        NullEntityError: if ``raw`` is None
        TypeError: if ``raw`` is not a mapping
    """
    if raw is None:
        raise NullEntityError("Message")
    if isinstance(raw, Message):
        raw = raw.to_dict()
    if not isinstance(raw, Mapping):
        raise TypeError(f"Unsupported message payload: {type(raw).__name__}")

    read_by = raw.get("readBy")
    sender_name = _first(raw, "senderName", "userName", "authorName")
    return Message(
        id=_string(raw.get("id")),
        conversation_id=_string(_first(raw, "conversationId", "chatId"), conversation_id or ""),
        sender_id=_string(_first(raw, "senderId", "userId", "authorId")),
        sender_name=_string(sender_name) if sender_name is not None else None,
        content=_string(_first(raw, "content", "message", "text")),
        type=_enum_value(MessageType, raw.get("type") or MessageType.TEXT.value, MessageType.TEXT),
        created_at=parse_timestamp(_first(raw, "createdAt", "timestamp")),
        read_by=[r for r in read_by if isinstance(r, str)] if isinstance(read_by, (list, tuple)) else [],
        edited=bool(raw.get("edited", False)),
        extra={k: v for k, v in raw.items() if k not in MESSAGE_KEYS},
    )


def normalize_message(raw: Optional[Mapping[str, Any]], conversation_id: Optional[str] = None) -> Message:
    """
    Normalize a message document, reconciling legacy field names.

    Never raises for a non-None input: anything that cannot be read degrades
    to a system placeholder message.

    Args:
        raw: Stored message document
        conversation_id: Conversation the message was read from, used when the
            document does not name one itself

    Raises:
        NullEntityError: if ``raw`` is None
    """
    if raw is None:
        raise NullEntityError("Message")

    try:
        return build_message(raw, conversation_id)
    except Exception as e:
        logger.warning(f"Could not normalize message, serving placeholder: {e}")
        doc_id = ""
        if isinstance(raw, Mapping):
            try:
                doc_id = _string(raw.get("id"))
            except Exception:
                doc_id = ""
        return message_placeholder(doc_id, conversation_id or "")
