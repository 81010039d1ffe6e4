"""Data models for the migration toolkit."""

from .record import (
    SkillLevel,
    TradeStatus,
    ConversationType,
    MessageType,
    ReadStatus,
    ValidationError,
    Skill,
    TradeParticipants,
    Trade,
    ParticipantSummary,
    LastMessage,
    Conversation,
    Message,
    ReadResult,
    entities,
)
from .migration import (
    EngineState,
    StopReason,
    MigrationOptions,
    DocumentOutcome,
    BatchOperation,
    MigrationResult,
    EmergencyStopResult,
    ShutdownResult,
)
from .schema import (
    DOCUMENT_ID,
    Operator,
    Direction,
    WriteKind,
    QueryConstraint,
    OrderBy,
    WriteOp,
    where,
)

__all__ = [
    "SkillLevel",
    "TradeStatus",
    "ConversationType",
    "MessageType",
    "ReadStatus",
    "ValidationError",
    "Skill",
    "TradeParticipants",
    "Trade",
    "ParticipantSummary",
    "LastMessage",
    "Conversation",
    "Message",
    "ReadResult",
    "entities",
    "EngineState",
    "StopReason",
    "MigrationOptions",
    "DocumentOutcome",
    "BatchOperation",
    "MigrationResult",
    "EmergencyStopResult",
    "ShutdownResult",
    "DOCUMENT_ID",
    "Operator",
    "Direction",
    "WriteKind",
    "QueryConstraint",
    "OrderBy",
    "WriteOp",
    "where",
]
