"""Migration registry: the compatibility services plus the migration-mode flag."""

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

from ..config import env_flag
from ..errors import NotInitializedError
from ..stores.base import DocumentStore
from .chat_compatibility import ChatCompatibilityService
from .trade_compatibility import TradeCompatibilityService

logger = logging.getLogger(__name__)

MIGRATION_MODE_SETTING = "MIGRATION_MODE"


class MigrationRegistry:
    """
    Coordination point for live migration.

    Built once per process and passed to whatever needs the compatibility
    services (engine, CLI, API). Flag reads take no lock; the rare writes
    are serialised.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._store: Optional[DocumentStore] = None
        self._trades: Optional[TradeCompatibilityService] = None
        self._chat: Optional[ChatCompatibilityService] = None
        self._initialized = False
        self._migration_mode = False

    def initialize(self, store: DocumentStore) -> None:
        """
        Build the compatibility services over a store.

        A second call logs a warning and keeps the existing services.
        """
        with self._lock:
            if self._initialized:
                logger.warning("Migration registry already initialized")
                return
            self._store = store
            self._trades = TradeCompatibilityService(store)
            self._chat = ChatCompatibilityService(store)
            self._initialized = True
        logger.info("Migration registry initialized")

    @property
    def trades(self) -> TradeCompatibilityService:
        if self._trades is None:
            raise NotInitializedError("Migration registry not initialized. Call initialize() first.")
        return self._trades

    @property
    def chat(self) -> ChatCompatibilityService:
        if self._chat is None:
            raise NotInitializedError("Migration registry not initialized. Call initialize() first.")
        return self._chat

    @property
    def store(self) -> Optional[DocumentStore]:
        return self._store

    def is_initialized(self) -> bool:
        return self._initialized

    def is_migration_mode(self) -> bool:
        return self._migration_mode

    def enable_migration_mode(self) -> None:
        with self._lock:
            self._migration_mode = True
        logger.info("Migration mode enabled")

    def disable_migration_mode(self) -> None:
        with self._lock:
            self._migration_mode = False
        logger.info("Migration mode disabled")

    def set_migration_mode(self, enabled: bool) -> None:
        if enabled:
            self.enable_migration_mode()
        else:
            self.disable_migration_mode()

    def enable_migration_mode_from_config(self, environ: Optional[Mapping[str, str]] = None) -> bool:
        """
        Set migration mode from the MIGRATION_MODE setting.

        Returns:
            The resulting migration-mode flag
        """
        enabled = env_flag(MIGRATION_MODE_SETTING, False, environ)
        self.set_migration_mode(enabled)
        return enabled

    def get_status(self) -> Dict[str, Any]:
        """Side-effect free snapshot for health checks."""
        return {
            "initialized": self._initialized,
            "migrationMode": self._migration_mode,
            "services": {
                "trades": self._trades is not None,
                "chat": self._chat is not None,
            },
        }

    async def validate_services(self) -> Dict[str, Any]:
        """
        Exercise each compatibility service with a one-document query.

        Failures are aggregated so one broken service does not hide the
        other's status.
        """
        if not self._initialized:
            return {
                "trades": False,
                "chat": False,
                "errors": ["Registry validation failed: Registry not initialized"],
            }

        results: Dict[str, Any] = {"trades": False, "chat": False}
        errors: List[str] = []

        try:
            await self.trades.query([], limit=1)
            results["trades"] = True
        except Exception as e:
            logger.error(f"Trade service validation failed: {e}")
            errors.append(f"Trade service validation failed: {e}")

        try:
            await self.chat.query([], limit=1)
            results["chat"] = True
        except Exception as e:
            logger.error(f"Chat service validation failed: {e}")
            errors.append(f"Chat service validation failed: {e}")

        results["errors"] = errors
        return results

    async def check_health(self) -> bool:
        """True when both services answer a trivial query."""
        report = await self.validate_services()
        return bool(report["trades"] and report["chat"])

    def reset(self) -> None:
        """Drop services and flags, e.g. between tests or before re-initialization."""
        with self._lock:
            self._store = None
            self._trades = None
            self._chat = None
            self._initialized = False
            self._migration_mode = False
        logger.info("Migration registry reset")
