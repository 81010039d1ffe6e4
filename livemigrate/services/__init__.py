"""Services for the migration toolkit."""

from .normalizer import normalize_trade, normalize_conversation, normalize_message
from .validator import RecordValidator
from .compatibility import CompatibilityService, FallbackQuery
from .trade_compatibility import TradeCompatibilityService
from .chat_compatibility import ChatCompatibilityService
from .migration_registry import MigrationRegistry
from .transforms import TransformRegistry

__all__ = [
    "normalize_trade",
    "normalize_conversation",
    "normalize_message",
    "RecordValidator",
    "CompatibilityService",
    "FallbackQuery",
    "TradeCompatibilityService",
    "ChatCompatibilityService",
    "MigrationRegistry",
    "TransformRegistry",
]
