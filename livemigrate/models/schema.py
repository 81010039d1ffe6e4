"""Query, write and field-mapping models shared by stores and services."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from enum import Enum

from ..errors import InvalidArgumentError

# Pseudo-field that orders or filters on the document identifier itself.
DOCUMENT_ID = "__id__"


class Operator(str, Enum):
    """Filter operators understood by document stores."""
    EQ = "=="
    NE = "!="
    LT = "<"
    LTE = "<="
    GT = ">"
    GTE = ">="
    IN = "in"
    NOT_IN = "not-in"
    ARRAY_CONTAINS = "array-contains"
    ARRAY_CONTAINS_ANY = "array-contains-any"


class Direction(str, Enum):
    """Sort direction."""
    ASC = "asc"
    DESC = "desc"


class WriteKind(str, Enum):
    """Kinds of operation inside an atomic batch write."""
    SET = "set"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class QueryConstraint:
    """An equality / membership filter: {field, operator, value}."""
    field: str
    operator: Operator
    value: Any

    def __post_init__(self):
        if not isinstance(self.field, str) or not self.field:
            raise InvalidArgumentError("Constraint field must be a non-empty string")
        if not isinstance(self.operator, Operator):
            try:
                object.__setattr__(self, "operator", Operator(self.operator))
            except ValueError:
                raise InvalidArgumentError(f"Unsupported operator: {self.operator!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"field": self.field, "operator": self.operator.value, "value": self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueryConstraint":
        """Create from dictionary representation."""
        return cls(field=data.get("field", ""), operator=data.get("operator", "=="), value=data.get("value"))


@dataclass(frozen=True)
class OrderBy:
    """An ordering clause: {field, direction}."""
    field: str
    direction: Direction = Direction.ASC

    def __post_init__(self):
        if not isinstance(self.direction, Direction):
            try:
                object.__setattr__(self, "direction", Direction(str(self.direction).lower()))
            except ValueError:
                raise InvalidArgumentError(f"Unsupported sort direction: {self.direction!r}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {"field": self.field, "direction": self.direction.value}


def where(field_path: str, operator: str, value: Any) -> QueryConstraint:
    """Shorthand for building a QueryConstraint."""
    return QueryConstraint(field_path, operator, value)


@dataclass
class WriteOp:
    """One operation inside an atomic batch write."""
    kind: WriteKind
    collection: str
    doc_id: str
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind.value,
            "collection": self.collection,
            "doc_id": self.doc_id,
            "data": self.data,
        }


@dataclass
class FieldMapping:
    """A modern field name and the legacy name it replaces."""
    modern: str
    legacy: str
    description: str = ""


@dataclass
class EntityFieldMap:
    """Legacy/modern field pairs for one entity family."""
    entity: str
    collection: str
    fields: List[FieldMapping] = field(default_factory=list)

    def legacy_for(self, modern: str) -> Optional[str]:
        """Legacy name for a modern field, if the field was renamed."""
        for mapping in self.fields:
            if mapping.modern == modern:
                return mapping.legacy
        return None

    def modern_for(self, legacy: str) -> Optional[str]:
        """Modern name for a legacy field, if the field was renamed."""
        for mapping in self.fields:
            if mapping.legacy == legacy:
                return mapping.modern
        return None


TRADE_FIELDS = EntityFieldMap(
    entity="trade",
    collection="trades",
    fields=[
        FieldMapping("skillsOffered", "offeredSkills", "Skills the creator offers"),
        FieldMapping("skillsWanted", "requestedSkills", "Skills the creator wants"),
        FieldMapping("participants.creator", "creatorId", "Trade creator"),
        FieldMapping("participants.participant", "participantId", "Counterpart"),
    ],
)

CONVERSATION_FIELDS = EntityFieldMap(
    entity="conversation",
    collection="conversations",
    fields=[
        FieldMapping("participantIds", "participants", "Participant identifiers"),
    ],
)

MESSAGE_FIELDS = EntityFieldMap(
    entity="message",
    collection="messages",
    fields=[
        FieldMapping("conversationId", "chatId"),
        FieldMapping("senderId", "userId"),
        FieldMapping("content", "message"),
        FieldMapping("createdAt", "timestamp"),
    ],
)
