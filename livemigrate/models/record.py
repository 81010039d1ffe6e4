"""Entity records produced by the compatibility layer."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum
from datetime import datetime


class SkillLevel(str, Enum):
    """Proficiency level of a skill."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"
    EXPERT = "expert"


class TradeStatus(str, Enum):
    """Lifecycle status of a trade."""
    DRAFT = "draft"
    ACTIVE = "active"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ConversationType(str, Enum):
    """Kind of chat thread."""
    DIRECT = "direct"
    GROUP = "group"
    TRADE = "trade"
    COLLABORATION = "collaboration"


class MessageType(str, Enum):
    """Kind of chat message."""
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class ReadStatus(str, Enum):
    """Outcome of reading one document through a compatibility service."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    DEGRADED = "degraded"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class ValidationError:
    """A validation error on a record."""
    field: str
    message: str
    error_type: str = "validation"
    severity: str = "error"  # error, warning, info
    value: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "field": self.field,
            "message": self.message,
            "error_type": self.error_type,
            "severity": self.severity,
            "value": self.value,
        }


@dataclass
class Skill:
    """A skill offered or wanted in a trade."""
    id: str
    name: str
    level: SkillLevel = SkillLevel.INTERMEDIATE
    category: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = dict(self.extra)
        result.update({"id": self.id, "name": self.name, "level": self.level.value})
        if self.category is not None:
            result["category"] = self.category
        return result


@dataclass
class TradeParticipants:
    """Creator and optional counterpart of a trade."""
    creator: Optional[str] = None
    participant: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"creator": self.creator, "participant": self.participant}


@dataclass
class Trade:
    """A skill-exchange offer, carrying both the modern and legacy shape."""
    id: str
    title: str = ""
    description: str = ""
    skills_offered: List[Skill] = field(default_factory=list)
    skills_wanted: List[Skill] = field(default_factory=list)
    participants: TradeParticipants = field(default_factory=TradeParticipants)
    status: TradeStatus = TradeStatus.UNKNOWN
    schema_version: str = "1.0"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)  # Unrecognised stored fields

    # Legacy accessors mirror the modern fields.
    @property
    def offered_skills(self) -> List[Skill]:
        return self.skills_offered

    @property
    def requested_skills(self) -> List[Skill]:
        return self.skills_wanted

    @property
    def creator_id(self) -> Optional[str]:
        return self.participants.creator

    @property
    def participant_id(self) -> Optional[str]:
        return self.participants.participant

    def to_dict(self) -> Dict[str, Any]:
        """Stored dual shape: modern and legacy fields populated identically."""
        result = dict(self.extra)
        result.update({
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            # Modern format
            "skillsOffered": [s.to_dict() for s in self.skills_offered],
            "skillsWanted": [s.to_dict() for s in self.skills_wanted],
            "participants": self.participants.to_dict(),
            # Legacy format
            "offeredSkills": [s.to_dict() for s in self.skills_offered],
            "requestedSkills": [s.to_dict() for s in self.skills_wanted],
            "creatorId": self.participants.creator,
            "participantId": self.participants.participant,
            "schemaVersion": self.schema_version,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "compatibilityLayerUsed": True,
        })
        return result


@dataclass
class ParticipantSummary:
    """Display information for one conversation participant."""
    id: str
    name: str = ""
    avatar: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.extra)
        result.update({"id": self.id, "name": self.name, "avatar": self.avatar})
        return result


@dataclass
class LastMessage:
    """Summary of the newest message in a conversation."""
    content: str = ""
    sender_id: str = ""
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "senderId": self.sender_id,
            "createdAt": _iso(self.created_at),
        }


@dataclass
class Conversation:
    """A chat thread; participant ids and summaries are index-aligned."""
    id: str
    participant_ids: List[str] = field(default_factory=list)
    participants: List[ParticipantSummary] = field(default_factory=list)
    type: ConversationType = ConversationType.DIRECT
    title: Optional[str] = None
    last_message: Optional[LastMessage] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    related_trade_id: Optional[str] = None
    schema_version: str = "1.0"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Stored shape: participantIds for new readers, participant objects for old ones."""
        result = dict(self.extra)
        result.update({
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "participantIds": list(self.participant_ids),
            "participants": [p.to_dict() for p in self.participants],
            "lastMessage": self.last_message.to_dict() if self.last_message else None,
            "metadata": dict(self.metadata),
            "relatedTradeId": self.related_trade_id,
            "schemaVersion": self.schema_version,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
            "compatibilityLayerUsed": True,
        })
        return result


@dataclass
class Message:
    """A single message belonging to one conversation."""
    id: str
    conversation_id: str = ""
    sender_id: str = ""
    content: str = ""
    type: MessageType = MessageType.TEXT
    sender_name: Optional[str] = None
    created_at: Optional[datetime] = None
    read_by: List[str] = field(default_factory=list)
    edited: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)  # Attachments, reactions, ...

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        result = dict(self.extra)
        result.update({
            "id": self.id,
            "conversationId": self.conversation_id,
            "senderId": self.sender_id,
            "senderName": self.sender_name,
            "content": self.content,
            "type": self.type.value,
            "createdAt": _iso(self.created_at),
            "readBy": list(self.read_by),
            "edited": self.edited,
        })
        return result


@dataclass
class ReadResult:
    """
    A document read through a compatibility service.

    DEGRADED results carry a placeholder entity plus the normalization error,
    so a corrupt record can be listed without being mistaken for real data.
    """
    status: ReadStatus
    doc_id: str
    entity: Optional[Any] = None
    error: Optional[str] = None

    @property
    def found(self) -> bool:
        return self.status != ReadStatus.NOT_FOUND

    @property
    def degraded(self) -> bool:
        return self.status == ReadStatus.DEGRADED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "status": self.status.value,
            "doc_id": self.doc_id,
            "entity": self.entity.to_dict() if self.entity is not None else None,
            "error": self.error,
        }


def entities(results: List[ReadResult], include_degraded: bool = True) -> List[Any]:
    """Unwrap the entities from a list of read results."""
    return [
        r.entity for r in results
        if r.entity is not None and (include_degraded or not r.degraded)
    ]
