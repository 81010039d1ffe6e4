"""Per-document transforms that rewrite stored records into the modern shape."""

import logging
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..errors import InvalidArgumentError
from ..models.migration import utcnow
from ..models.schema import MESSAGE_FIELDS
from .normalizer import build_message, normalize_conversation, normalize_trade

logger = logging.getLogger(__name__)

TARGET_SCHEMA_VERSION = "2.0"

Transform = Callable[[Dict[str, Any]], Optional[Dict[str, Any]]]


def _already_migrated(doc: Mapping[str, Any]) -> bool:
    return doc.get("schemaVersion") == TARGET_SCHEMA_VERSION and bool(doc.get("compatibilityLayerUsed"))


def _stamp(data: Dict[str, Any]) -> Dict[str, Any]:
    data["schemaVersion"] = TARGET_SCHEMA_VERSION
    data["migratedAt"] = utcnow().isoformat()
    return data


def trade_to_modern(doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Rewrite a trade into the dual shape; already migrated trades are skipped."""
    if _already_migrated(doc):
        return None
    return _stamp(normalize_trade(doc).to_dict())


def conversation_to_modern(doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """
    Rewrite a conversation with participantIds and participant summaries.

    Raises:
        EmptyParticipantsError: if no participant can be recovered
    """
    if _already_migrated(doc):
        return None
    return _stamp(normalize_conversation(doc).to_dict())


def message_to_modern(doc: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Rewrite a message under modern names, mirroring the legacy ones."""
    if _already_migrated(doc):
        return None
    data = build_message(doc).to_dict()
    for mapping in MESSAGE_FIELDS.fields:
        data[mapping.legacy] = data.get(mapping.modern)
    data["compatibilityLayerUsed"] = True
    return _stamp(data)


class TransformRegistry:
    """
    Named transforms available to the CLI and scripted runs.

    Supports:
    - Built-in transforms for trades, conversations and messages
    - Custom transforms registered at runtime
    """

    def __init__(self):
        """Initialize the registry."""
        self._custom_transforms: Dict[str, Callable] = {}
        self._builtin_transforms = self._register_builtin_transforms()

    def _register_builtin_transforms(self) -> Dict[str, Callable]:
        """Register all built-in transforms."""
        return {
            "trade_to_modern": trade_to_modern,
            "conversation_to_modern": conversation_to_modern,
            "message_to_modern": message_to_modern,
        }

    def register_transform(self, name: str, func: Callable) -> None:
        """Register a custom transform; overrides a built-in of the same name."""
        if not callable(func):
            raise InvalidArgumentError(f"Transform {name!r} is not callable")
        self._custom_transforms[name] = func

    def get_transform(self, name: str) -> Callable:
        """
        Look up a transform by name.

        Raises:
            InvalidArgumentError: if no transform has that name
        """
        func = self._custom_transforms.get(name) or self._builtin_transforms.get(name)
        if func is None:
            raise InvalidArgumentError(
                f"Unknown transform {name!r}. Available: {', '.join(self.available())}"
            )
        return func

    def available(self) -> List[str]:
        return sorted(set(self._builtin_transforms) | set(self._custom_transforms))
