"""Environment-driven settings."""

import os
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger(__name__)

TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: bool = False, environ: Optional[Mapping[str, str]] = None) -> bool:
    """Read a boolean setting such as MIGRATION_MODE=true."""
    env = os.environ if environ is None else environ
    value = env.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in TRUTHY


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={value!r}, using {default}")
        return default


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning(f"Ignoring non-numeric {name}={value!r}, using {default}")
        return default


@dataclass
class Settings:
    """Process settings read once from the environment."""
    migration_mode: bool = False
    batch_size: int = 50
    max_retries: int = 3
    retry_delay_ms: int = 1000
    max_concurrent_batches: int = 3
    rate_limit_ms: int = 100
    emergency_stop_threshold: float = 0.05
    enable_rollback: bool = True
    enable_zero_downtime: bool = True
    checkpoint_interval: int = 0
    store_url: Optional[str] = None
    store_api_key: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """Build settings from environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            migration_mode=env_flag("MIGRATION_MODE", False, env),
            batch_size=_env_int(env, "MIGRATION_BATCH_SIZE", 50),
            max_retries=_env_int(env, "MIGRATION_MAX_RETRIES", 3),
            retry_delay_ms=_env_int(env, "MIGRATION_RETRY_DELAY", 1000),
            max_concurrent_batches=_env_int(env, "MIGRATION_CONCURRENT_BATCHES", 3),
            rate_limit_ms=_env_int(env, "MIGRATION_RATE_LIMIT_MS", 100),
            emergency_stop_threshold=_env_float(env, "MIGRATION_ERROR_THRESHOLD", 0.05),
            enable_rollback=env_flag("MIGRATION_ROLLBACK_ENABLED", True, env),
            enable_zero_downtime=env_flag("MIGRATION_ZERO_DOWNTIME", True, env),
            checkpoint_interval=_env_int(env, "MIGRATION_CHECKPOINT_INTERVAL", 0),
            store_url=env.get("STORE_URL") or None,
            store_api_key=env.get("STORE_API_KEY") or None,
        )

    def migration_options(self, **overrides: Any) -> "MigrationOptions":
        """Engine options seeded from these settings."""
        from .models.migration import MigrationOptions

        values: Dict[str, Any] = {
            "batch_size": self.batch_size,
            "max_retries": self.max_retries,
            "retry_delay_ms": self.retry_delay_ms,
            "max_concurrent_batches": self.max_concurrent_batches,
            "rate_limit_ms": self.rate_limit_ms,
            "emergency_stop_threshold": self.emergency_stop_threshold,
            "enable_rollback": self.enable_rollback,
            "enable_zero_downtime": self.enable_zero_downtime,
            "checkpoint_interval": self.checkpoint_interval,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return MigrationOptions.from_dict(values)
