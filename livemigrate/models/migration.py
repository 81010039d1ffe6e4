"""Migration run models: engine state, options, batches and results."""

import re
from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, List, Optional
from enum import Enum
from datetime import datetime, timezone

from ..errors import InvalidArgumentError


class EngineState(str, Enum):
    """State of the migration engine over a single run."""
    IDLE = "IDLE"
    VALIDATING = "VALIDATING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    EMERGENCY_STOPPED = "EMERGENCY_STOPPED"
    ROLLED_BACK = "ROLLED_BACK"
    GRACEFULLY_STOPPED = "GRACEFULLY_STOPPED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self not in (EngineState.IDLE, EngineState.VALIDATING, EngineState.RUNNING)


class StopReason(str, Enum):
    """Why a run stopped before reaching the end of the collection."""
    HIGH_ERROR_RATE = "HIGH_ERROR_RATE"
    SERVICE_DEGRADATION = "SERVICE_DEGRADATION"
    MANUAL_INTERVENTION = "MANUAL_INTERVENTION"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


@dataclass
class MigrationOptions:
    """Options for one migration run."""
    batch_size: int = 50
    max_concurrent_batches: int = 3
    rate_limit_ms: int = 100  # Minimum delay between batch dispatches
    max_retries: int = 3
    retry_delay_ms: int = 1000  # Backoff base; doubles on every attempt
    emergency_stop_threshold: float = 0.05  # Error-rate fraction that halts the run
    error_rate_min_sample: int = 50  # Settled documents before the rate is judged
    enable_zero_downtime: bool = True
    enable_rollback: bool = True
    health_check_retries: int = 3
    health_check_pause_ms: int = 1000
    dry_run: bool = False
    report_dir: Optional[str] = None
    checkpoint_interval: int = 0  # Settled batches between progress files; 0 disables
    resume_after: Optional[str] = None  # Document id to continue after
    post_validation: bool = False

    # Hooks
    validate_fn: Optional[Callable[[Dict[str, Any]], bool]] = None
    audit_sink: Optional[Callable[[Dict[str, Any]], None]] = None

    def __post_init__(self):
        if self.batch_size < 1:
            raise InvalidArgumentError("batch_size must be at least 1")
        if self.max_concurrent_batches < 1:
            raise InvalidArgumentError("max_concurrent_batches must be at least 1")
        if self.max_retries < 0:
            raise InvalidArgumentError("max_retries cannot be negative")
        if self.rate_limit_ms < 0 or self.retry_delay_ms < 0:
            raise InvalidArgumentError("delays cannot be negative")
        if not 0.0 <= self.emergency_stop_threshold <= 1.0:
            raise InvalidArgumentError("emergency_stop_threshold must be a fraction between 0 and 1")
        if self.checkpoint_interval < 0:
            raise InvalidArgumentError("checkpoint_interval cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "batch_size": self.batch_size,
            "max_concurrent_batches": self.max_concurrent_batches,
            "rate_limit_ms": self.rate_limit_ms,
            "max_retries": self.max_retries,
            "retry_delay_ms": self.retry_delay_ms,
            "emergency_stop_threshold": self.emergency_stop_threshold,
            "error_rate_min_sample": self.error_rate_min_sample,
            "enable_zero_downtime": self.enable_zero_downtime,
            "enable_rollback": self.enable_rollback,
            "health_check_retries": self.health_check_retries,
            "health_check_pause_ms": self.health_check_pause_ms,
            "dry_run": self.dry_run,
            "report_dir": self.report_dir,
            "checkpoint_interval": self.checkpoint_interval,
            "resume_after": self.resume_after,
            "post_validation": self.post_validation,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationOptions":
        """
        Create from a mapping.

        Keys may be snake_case or camelCase (``batchSize``); unknown keys are
        ignored so operator tooling can pass richer option sets.
        """
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in (data or {}).items():
            name = key if key in known else _snake_case(key)
            if name in known:
                values[name] = value
        return cls(**values)


@dataclass
class DocumentOutcome:
    """Outcome of migrating one document inside a batch."""
    doc_id: str
    success: bool
    skipped: bool = False
    attempts: int = 1
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.doc_id,
            "success": self.success,
            "skipped": self.skipped,
            "attempts": self.attempts,
            "error": self.error,
            "type": self.error_type,
        }


@dataclass
class BatchOperation:
    """A batch of documents over one cursor range."""
    batch_id: int
    collection: str
    first_id: Optional[str] = None
    last_id: Optional[str] = None
    document_ids: List[str] = field(default_factory=list)
    outcomes: List[DocumentOutcome] = field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    committed: bool = False
    rolled_back: bool = False
    commit_error: Optional[str] = None

    @property
    def success_count(self) -> int:
        return sum(1 for o in self.outcomes if o.success and not o.skipped)

    @property
    def failure_count(self) -> int:
        return sum(1 for o in self.outcomes if not o.success)

    @property
    def skipped_count(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def duration_ms(self) -> Optional[float]:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds() * 1000
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "batchId": self.batch_id,
            "collection": self.collection,
            "cursorRange": [self.first_id, self.last_id],
            "documentsProcessed": len(self.outcomes),
            "succeeded": self.success_count,
            "failed": self.failure_count,
            "skipped": self.skipped_count,
            "success": self.committed and self.failure_count == 0,
            "committed": self.committed,
            "rolledBack": self.rolled_back,
            "commitError": self.commit_error,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationMs": self.duration_ms,
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class Checkpoint:
    """Progress marker written while a run is underway."""
    batch_id: int
    documents_processed: int
    error_count: int
    resume_cursor: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "documentsProcessed": self.documents_processed,
            "errorCount": self.error_count,
            "resumeCursor": self.resume_cursor,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass
class PostValidationResult:
    """Re-read of a migrated collection through its compatibility service."""
    checked: int = 0
    invalid: int = 0
    invalid_ids: List[str] = field(default_factory=list)
    skipped: bool = False  # No validator known for the collection

    @property
    def passed(self) -> bool:
        return not self.skipped and self.invalid == 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked": self.checked,
            "invalid": self.invalid,
            "invalidIds": list(self.invalid_ids),
            "skipped": self.skipped,
            "passed": self.passed,
        }


@dataclass
class MigrationResult:
    """Result of one execute_migration run."""
    collection: str
    state: EngineState = EngineState.IDLE
    success: bool = False
    total_processed: int = 0  # Settled documents: succeeded + failed
    total_succeeded: int = 0
    total_failed: int = 0
    total_skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    performance_metrics: Dict[str, Any] = field(default_factory=dict)
    batches_processed: int = 0
    batch_operations: List[BatchOperation] = field(default_factory=list)
    rollback_executed: bool = False
    rollback_succeeded: Optional[bool] = None
    emergency_stop_triggered: bool = False
    emergency_stop_reason: Optional[str] = None
    error_rate: float = 0.0
    graceful_shutdown: bool = False
    data_integrity_maintained: bool = True
    compatibility_mode_enabled: bool = False
    service_degradation_detected: bool = False
    retry_operations: int = 0
    dry_run: bool = False
    resume_cursor: Optional[str] = None  # Last id before which every batch settled cleanly
    checkpoints: List[Checkpoint] = field(default_factory=list)
    post_validation: Optional[PostValidationResult] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        """Get duration in seconds."""
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    @property
    def error_summary(self) -> Dict[str, int]:
        """Error count per error type."""
        summary: Dict[str, int] = {}
        for error in self.errors:
            error_type = error.get("type") or "unknown"
            summary[error_type] = summary.get(error_type, 0) + 1
        return summary

    def add_error(
        self,
        doc_id: str,
        message: str,
        error_type: str,
        attempts: int = 1,
        batch_id: Optional[int] = None,
    ) -> None:
        """Record a per-document or run-level error."""
        self.errors.append({
            "id": doc_id,
            "error": message,
            "type": error_type,
            "attempts": attempts,
            "batchId": batch_id,
            "timestamp": utcnow().isoformat(),
        })

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "collection": self.collection,
            "state": self.state.value,
            "success": self.success,
            "totalProcessed": self.total_processed,
            "totalSucceeded": self.total_succeeded,
            "totalFailed": self.total_failed,
            "totalSkipped": self.total_skipped,
            "errors": self.errors,
            "errorSummary": self.error_summary,
            "performanceMetrics": self.performance_metrics,
            "batchesProcessed": self.batches_processed,
            "batchOperations": [b.to_dict() for b in self.batch_operations],
            "rollbackExecuted": self.rollback_executed,
            "rollbackSucceeded": self.rollback_succeeded,
            "emergencyStopTriggered": self.emergency_stop_triggered,
            "emergencyStopReason": self.emergency_stop_reason,
            "errorRate": self.error_rate,
            "gracefulShutdown": self.graceful_shutdown,
            "dataIntegrityMaintained": self.data_integrity_maintained,
            "compatibilityModeEnabled": self.compatibility_mode_enabled,
            "serviceDegradationDetected": self.service_degradation_detected,
            "retryOperations": self.retry_operations,
            "dryRun": self.dry_run,
            "resumeCursor": self.resume_cursor,
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "postValidation": self.post_validation.to_dict() if self.post_validation else None,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "completedAt": self.completed_at.isoformat() if self.completed_at else None,
            "durationSeconds": self.duration_seconds,
        }


@dataclass
class EmergencyStopResult:
    """Acknowledgement of a manual emergency stop."""
    success: bool
    reason: str
    stopped_at: datetime
    documents_processed_before_stop: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "reason": self.reason,
            "stoppedAt": self.stopped_at.isoformat(),
            "documentsProcessedBeforeStop": self.documents_processed_before_stop,
        }


@dataclass
class ShutdownResult:
    """Outcome of a graceful shutdown request."""
    success: bool
    graceful_shutdown: bool
    data_integrity_maintained: bool
    final_processed_count: int
    remaining_documents: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "gracefulShutdown": self.graceful_shutdown,
            "dataIntegrityMaintained": self.data_integrity_maintained,
            "finalProcessedCount": self.final_processed_count,
            "remainingDocuments": self.remaining_documents,
        }
