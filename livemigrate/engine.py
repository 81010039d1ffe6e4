"""Production migration engine - rewrites a live collection in batches."""

import asyncio
import copy
import inspect
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from .errors import (
    EmergencyStopTriggered,
    InvalidArgumentError,
    TransientStoreError,
    error_type_of,
)
from .models.migration import (
    BatchOperation,
    Checkpoint,
    DocumentOutcome,
    EmergencyStopResult,
    EngineState,
    MigrationOptions,
    MigrationResult,
    PostValidationResult,
    ShutdownResult,
    StopReason,
    utcnow,
)
from .models.schema import DOCUMENT_ID, OrderBy, WriteKind, WriteOp
from .retry import RateLimiter, retry_async
from .services.migration_registry import MigrationRegistry
from .stores.base import DocumentStore

logger = logging.getLogger(__name__)

Transform = Callable[[Dict[str, Any]], Any]

MAX_REPORTED_INVALID = 100


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, TransientStoreError)


class ProductionMigrationEngine:
    """
    Rewrites every document of a collection while the application keeps
    serving traffic.

    Handles:
    - Cursor pagination ordered by document id
    - Bounded batch concurrency and rate-limited dispatch
    - Per-document retry with exponential backoff
    - Atomic batch writes with snapshot rollback
    - Emergency stop on a high error rate or degraded services
    - Graceful shutdown
    - Progress checkpoints and resuming after a document id
    - Post-migration validation through the compatibility services
    - JSON run reports
    """

    def __init__(
        self,
        store: DocumentStore,
        registry: Optional[MigrationRegistry] = None,
        options: Optional[Union[MigrationOptions, Mapping[str, Any]]] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Store holding the collection to migrate
            registry: Migration registry used for health coordination
            options: Default run options
        """
        self.store = store
        self.registry = registry
        self.options = self._coerce_options(options) or MigrationOptions()

        # Runtime state
        self._state = EngineState.IDLE
        self._run_options: Optional[MigrationOptions] = None
        self._result: Optional[MigrationResult] = None
        self._collection: Optional[str] = None
        self._initial_count = 0
        self._in_flight: Set[asyncio.Task] = set()
        self._stop_reason: Optional[str] = None
        self._shutdown_requested = False
        self._rolled_back = False
        self._failed = False
        self._batch_durations: List[float] = []
        self._rate_limiter: Optional[RateLimiter] = None
        self._clean_batches: Dict[int, Optional[str]] = {}
        self._next_clean_batch = 1

    @staticmethod
    def _coerce_options(options: Any) -> Optional[MigrationOptions]:
        if options is None:
            return None
        if isinstance(options, MigrationOptions):
            return options
        if isinstance(options, Mapping):
            return MigrationOptions.from_dict(dict(options))
        raise InvalidArgumentError("options must be MigrationOptions or a mapping")

    def get_status(self) -> EngineState:
        return self._state

    def get_config(self) -> MigrationOptions:
        return self._run_options or self.options

    @property
    def last_result(self) -> Optional[MigrationResult]:
        return self._result

    def is_running(self) -> bool:
        return self._state in (EngineState.VALIDATING, EngineState.RUNNING)

    # ------------------------------------------------------------------
    # Prerequisites
    # ------------------------------------------------------------------

    async def validate_prerequisites(self, collection_name: Optional[str] = None) -> bool:
        """
        Check store connectivity, registry initialization and the collection.

        Never raises; logs the reason and returns False instead.
        """
        try:
            if not await self.store.ping():
                logger.error("Document store is unreachable")
                return False
        except Exception as e:
            logger.error(f"Document store health check failed: {e}")
            return False

        if self.registry is None or not self.registry.is_initialized():
            logger.error("Migration registry is not initialized")
            return False

        if collection_name:
            try:
                exists = await self.store.collection_exists(collection_name)
            except Exception as e:
                logger.error(f"Could not check collection {collection_name}: {e}")
                return False
            if not exists:
                logger.error(f"Collection {collection_name} does not exist or is empty")
                return False

        return True

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def execute_migration(
        self,
        collection_name: str,
        transform_fn: Transform,
        options: Optional[Union[MigrationOptions, Mapping[str, Any]]] = None,
    ) -> MigrationResult:
        """
        Migrate every document of a collection.

        Args:
            collection_name: Collection to rewrite
            transform_fn: Sync or async callable mapping a document to its new
                data; returning None leaves the document untouched
            options: Run options overriding the engine defaults

        Returns:
            MigrationResult describing the run

        Raises:
            InvalidArgumentError: on a bad collection name, a non-callable
                transform, bad options, or when a run is already in progress
        """
        if not isinstance(collection_name, str) or not collection_name.strip():
            raise InvalidArgumentError("Collection name must be a non-empty string")
        if not callable(transform_fn):
            raise InvalidArgumentError("transform_fn must be callable")
        if self.is_running():
            raise InvalidArgumentError("A migration is already in progress")

        opts = self._coerce_options(options) or self.options
        self._start_run(collection_name, opts)
        result = MigrationResult(
            collection=collection_name,
            dry_run=opts.dry_run,
            resume_cursor=opts.resume_after,
        )
        result.started_at = utcnow()
        self._result = result

        previous_mode: Optional[bool] = None

        try:
            logger.info(f"=== PHASE 1: VALIDATION ({collection_name}) ===")
            self._state = EngineState.VALIDATING
            if not await self.validate_prerequisites(collection_name):
                self._failed = True
                result.add_error("", "Prerequisite validation failed", "system")
                return result

            if opts.enable_zero_downtime and self.registry is not None:
                previous_mode = self.registry.is_migration_mode()
                self.registry.enable_migration_mode()
                result.compatibility_mode_enabled = True

            logger.info(f"=== PHASE 2: MIGRATION ({collection_name}) ===")
            self._state = EngineState.RUNNING
            self._initial_count = await self.store.count(collection_name)
            logger.info(f"Migrating {self._initial_count} documents in batches of {opts.batch_size}")

            await self._dispatch(collection_name, transform_fn, opts, result)
            await self._drain()

            if opts.post_validation and not opts.dry_run and not self._halted():
                logger.info(f"=== PHASE 3: POST-MIGRATION VALIDATION ({collection_name}) ===")
                result.post_validation = await self.validate_post_migration(collection_name, opts)
                if result.post_validation.invalid:
                    result.add_error(
                        "",
                        f"Post-migration validation found {result.post_validation.invalid} invalid documents",
                        "post_validation",
                    )

        except EmergencyStopTriggered as stop:
            logger.error(f"=== EMERGENCY STOP: {stop.reason} ===")

        except Exception as e:
            logger.error(f"Migration failed: {e}")
            self._failed = True
            result.add_error("", f"Migration failed: {e}", error_type_of(e))

        finally:
            await self._drain()
            if previous_mode is not None and not previous_mode:
                self.registry.disable_migration_mode()
            self._finish_run(result, opts)

        return result

    def _start_run(self, collection_name: str, opts: MigrationOptions) -> None:
        self._run_options = opts
        self._collection = collection_name
        self._initial_count = 0
        self._in_flight = set()
        self._stop_reason = None
        self._shutdown_requested = False
        self._rolled_back = False
        self._failed = False
        self._batch_durations = []
        self._rate_limiter = RateLimiter(opts.rate_limit_ms)
        self._clean_batches = {}
        self._next_clean_batch = 1

    def _halted(self) -> bool:
        return (
            self._stop_reason is not None
            or self._shutdown_requested
            or self._rolled_back
            or self._failed
        )

    async def _dispatch(
        self,
        collection_name: str,
        transform_fn: Transform,
        opts: MigrationOptions,
        result: MigrationResult,
    ) -> None:
        """Page through the collection and launch one task per batch."""
        semaphore = asyncio.Semaphore(opts.max_concurrent_batches)
        cursor: Optional[str] = opts.resume_after
        batch_id = 0

        if cursor is not None:
            logger.info(f"Resuming {collection_name} after document {cursor}")

        while True:
            self._check_stop()
            if self._halted():
                break

            docs = await retry_async(
                lambda: self.store.query(
                    collection_name,
                    order_by=[OrderBy(DOCUMENT_ID)],
                    limit=opts.batch_size,
                    start_after=cursor,
                ),
                opts.max_retries,
                opts.retry_delay_ms,
                should_retry=_is_transient,
            )
            if not docs:
                break
            cursor = docs[-1]["id"]

            await semaphore.acquire()
            launched = False
            try:
                self._check_stop()
                if self._halted():
                    break

                if opts.enable_zero_downtime and self.registry is not None:
                    if not await self._wait_for_healthy(opts, result):
                        self._emergency_stop(StopReason.SERVICE_DEGRADATION.value, result)
                        self._check_stop()

                await self._rate_limiter.wait()
                self._check_stop()
                if self._halted():
                    break

                batch_id += 1
                batch = BatchOperation(
                    batch_id=batch_id,
                    collection=collection_name,
                    first_id=docs[0]["id"],
                    last_id=cursor,
                    document_ids=[d["id"] for d in docs],
                )
                task = asyncio.create_task(self._run_batch(batch, docs, transform_fn, opts, result))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
                task.add_done_callback(lambda _: semaphore.release())
                launched = True
            finally:
                # The permit is handed to the batch task once it exists
                if not launched:
                    semaphore.release()

            if len(docs) < opts.batch_size:
                break

    def _check_stop(self) -> None:
        if self._stop_reason is not None:
            raise EmergencyStopTriggered(self._stop_reason)

    async def _wait_for_healthy(self, opts: MigrationOptions, result: MigrationResult) -> bool:
        """Consult registry health, pausing between checks while degraded."""
        for attempt in range(opts.health_check_retries + 1):
            try:
                healthy = await self.registry.check_health()
            except Exception as e:
                logger.warning(f"Service health check failed: {e}")
                healthy = False

            if healthy:
                return True

            result.service_degradation_detected = True
            if attempt < opts.health_check_retries:
                logger.warning(
                    f"Services degraded, pausing {opts.health_check_pause_ms}ms "
                    f"(check {attempt + 1}/{opts.health_check_retries + 1})"
                )
                await asyncio.sleep(opts.health_check_pause_ms / 1000.0)

        logger.error("Services still degraded after health check retries")
        return False

    async def _drain(self) -> None:
        """Wait for every in-flight batch to settle."""
        current = asyncio.current_task()
        pending = [t for t in self._in_flight if t is not current]
        if pending:
            outcomes = await asyncio.gather(*pending, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, Exception):
                    logger.error(f"Batch task crashed: {outcome}")

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def _run_batch(
        self,
        batch: BatchOperation,
        docs: List[Dict[str, Any]],
        transform_fn: Transform,
        opts: MigrationOptions,
        result: MigrationResult,
    ) -> None:
        batch.started_at = utcnow()
        logger.debug(f"Batch {batch.batch_id}: {len(docs)} documents [{batch.first_id} .. {batch.last_id}]")

        snapshots = {doc["id"]: copy.deepcopy(doc) for doc in docs}
        transformed = await asyncio.gather(
            *(self._transform_document(doc, transform_fn, opts, result) for doc in docs)
        )

        batch.outcomes = [outcome for outcome, _ in transformed]
        ops = [
            WriteOp(WriteKind.SET, batch.collection, outcome.doc_id, data)
            for outcome, data in transformed
            if data is not None
        ]

        if ops and not opts.dry_run:
            await self._commit(batch, ops, snapshots, opts, result)

        batch.completed_at = utcnow()
        self._settle(batch, opts, result)

    async def _transform_document(
        self,
        doc: Dict[str, Any],
        transform_fn: Transform,
        opts: MigrationOptions,
        result: MigrationResult,
    ) -> Tuple[DocumentOutcome, Optional[Dict[str, Any]]]:
        doc_id = doc["id"]
        retries = []

        async def attempt():
            value = transform_fn(copy.deepcopy(doc))
            if inspect.isawaitable(value):
                value = await value
            return value

        def on_retry(retry: int, error: BaseException, delay: float) -> None:
            retries.append(retry)
            result.retry_operations += 1
            logger.debug(f"Retrying {doc_id} ({retry}/{opts.max_retries}) in {delay:.2f}s: {error}")

        try:
            data = await retry_async(attempt, opts.max_retries, opts.retry_delay_ms, on_retry=on_retry)
        except Exception as e:
            logger.warning(f"Failed to migrate {doc_id}: {e}")
            return DocumentOutcome(
                doc_id=doc_id,
                success=False,
                attempts=len(retries) + 1,
                error=str(e),
                error_type=error_type_of(e),
            ), None

        attempts = len(retries) + 1
        if data is None:
            return DocumentOutcome(doc_id=doc_id, success=True, skipped=True, attempts=attempts), None

        if not isinstance(data, Mapping):
            return DocumentOutcome(
                doc_id=doc_id,
                success=False,
                attempts=attempts,
                error=f"Transform returned {type(data).__name__}, expected a mapping",
                error_type="transform",
            ), None

        if opts.validate_fn is not None:
            try:
                valid = bool(opts.validate_fn(data))
                reason = "Transformed document failed validation"
            except Exception as e:
                valid = False
                reason = f"Validation raised: {e}"
            if not valid:
                return DocumentOutcome(
                    doc_id=doc_id,
                    success=False,
                    attempts=attempts,
                    error=reason,
                    error_type="validation",
                ), None

        return DocumentOutcome(doc_id=doc_id, success=True, attempts=attempts), dict(data)

    async def _commit(
        self,
        batch: BatchOperation,
        ops: List[WriteOp],
        snapshots: Dict[str, Dict[str, Any]],
        opts: MigrationOptions,
        result: MigrationResult,
    ) -> None:
        """Atomic batch write; on a hard failure restore the snapshots."""

        def on_retry(retry: int, error: BaseException, delay: float) -> None:
            result.retry_operations += 1
            logger.warning(f"Batch {batch.batch_id} write failed ({retry}/{opts.max_retries}), retrying: {error}")

        try:
            await retry_async(
                lambda: self.store.batch_write(ops),
                opts.max_retries,
                opts.retry_delay_ms,
                should_retry=_is_transient,
                on_retry=on_retry,
            )
            batch.committed = True
            return
        except Exception as e:
            batch.commit_error = str(e)
            error = e

        logger.error(f"Batch {batch.batch_id} commit failed: {error}")
        written = {op.doc_id for op in ops}
        batch.outcomes = [
            DocumentOutcome(
                doc_id=o.doc_id,
                success=False,
                attempts=o.attempts,
                error=f"Batch commit failed: {error}",
                error_type=error_type_of(error),
            ) if o.doc_id in written else o
            for o in batch.outcomes
        ]

        if not opts.enable_rollback:
            return

        logger.info(f"=== ROLLBACK: batch {batch.batch_id} ===")
        result.rollback_executed = True
        self._rolled_back = True
        restore = [
            WriteOp(WriteKind.SET, batch.collection, doc_id, snapshots[doc_id])
            for doc_id in written
        ]
        try:
            await retry_async(
                lambda: self.store.batch_write(restore),
                opts.max_retries,
                opts.retry_delay_ms,
                should_retry=_is_transient,
            )
            batch.rolled_back = True
            if result.rollback_succeeded is None:
                result.rollback_succeeded = True
            logger.info(f"Restored {len(restore)} documents of batch {batch.batch_id}")
        except Exception as e:
            logger.error(f"Rollback of batch {batch.batch_id} failed: {e}")
            result.rollback_succeeded = False
            result.data_integrity_maintained = False
            result.add_error("", f"Rollback failed: {e}", "rollback", batch_id=batch.batch_id)
            self._failed = True

    def _settle(self, batch: BatchOperation, opts: MigrationOptions, result: MigrationResult) -> None:
        """Fold a finished batch into the run totals and judge the error rate."""
        result.batch_operations.append(batch)
        result.batches_processed += 1
        result.total_succeeded += batch.success_count
        result.total_failed += batch.failure_count
        result.total_skipped += batch.skipped_count
        result.total_processed = result.total_succeeded + result.total_failed

        for outcome in batch.outcomes:
            if not outcome.success:
                result.add_error(
                    outcome.doc_id,
                    outcome.error or "Unknown error",
                    outcome.error_type or "unknown",
                    attempts=outcome.attempts,
                    batch_id=batch.batch_id,
                )

        if batch.duration_ms is not None:
            self._batch_durations.append(batch.duration_ms)

        self._advance_resume_cursor(batch, result)
        if opts.checkpoint_interval and result.batches_processed % opts.checkpoint_interval == 0:
            self._checkpoint(batch, result, opts)

        if opts.audit_sink is not None:
            try:
                opts.audit_sink(batch.to_dict())
            except Exception as e:
                logger.warning(f"Audit sink rejected batch {batch.batch_id}: {e}")

        settled = result.total_processed
        if settled:
            result.error_rate = result.total_failed / settled

        # Small collections are judged once they have fully settled
        min_sample = min(opts.error_rate_min_sample, max(self._initial_count, 1))
        if (
            self._stop_reason is None
            and settled >= min_sample
            and result.total_failed > 0
            and result.error_rate >= opts.emergency_stop_threshold
        ):
            logger.error(
                f"Error rate {result.error_rate:.2%} reached threshold "
                f"{opts.emergency_stop_threshold:.2%} after {settled} documents"
            )
            self._emergency_stop(StopReason.HIGH_ERROR_RATE.value, result)

    def _advance_resume_cursor(self, batch: BatchOperation, result: MigrationResult) -> None:
        """Move the resume cursor over every leading batch that settled without a commit error."""
        if batch.commit_error is not None:
            return
        self._clean_batches[batch.batch_id] = batch.last_id
        while self._next_clean_batch in self._clean_batches:
            result.resume_cursor = self._clean_batches.pop(self._next_clean_batch)
            self._next_clean_batch += 1

    def _checkpoint(self, batch: BatchOperation, result: MigrationResult, opts: MigrationOptions) -> None:
        checkpoint = Checkpoint(
            batch_id=batch.batch_id,
            documents_processed=result.total_processed,
            error_count=len(result.errors),
            resume_cursor=result.resume_cursor,
        )
        result.checkpoints.append(checkpoint)
        logger.info(
            f"Checkpoint after batch {batch.batch_id}: {result.total_processed} processed, "
            f"resume after {result.resume_cursor}"
        )
        if opts.report_dir:
            self._save_progress(result, opts)

    def _save_progress(self, result: MigrationResult, opts: MigrationOptions) -> Optional[Path]:
        """Overwrite the progress file of the run so a crashed run can be resumed."""
        progress = {
            "collection": result.collection,
            "state": self._state.value,
            "savedAt": utcnow().isoformat(),
            "startedAt": result.started_at.isoformat() if result.started_at else None,
            "resumeCursor": result.resume_cursor,
            "totalProcessed": result.total_processed,
            "totalSucceeded": result.total_succeeded,
            "totalFailed": result.total_failed,
            "totalSkipped": result.total_skipped,
            "batchesProcessed": result.batches_processed,
            "errorRate": result.error_rate,
            "errorCount": len(result.errors),
            "checkpoints": [c.to_dict() for c in result.checkpoints],
            "config": opts.to_dict(),
        }
        try:
            directory = Path(opts.report_dir)
            directory.mkdir(parents=True, exist_ok=True)
            filepath = directory / f"progress_{result.collection.replace('/', '_')}.json"
            with open(filepath, "w") as f:
                json.dump(progress, f, indent=2, default=str)
        except OSError as e:
            logger.warning(f"Could not save migration progress: {e}")
            return None
        logger.debug(f"Saved migration progress to {filepath}")
        return filepath

    def _emergency_stop(self, reason: str, result: Optional[MigrationResult]) -> None:
        if self._stop_reason is not None:
            return
        self._stop_reason = reason
        if result is not None:
            stop = EmergencyStopTriggered(reason)
            result.emergency_stop_triggered = True
            result.emergency_stop_reason = reason
            result.add_error("", stop.message, stop.error_type)

    def _finish_run(self, result: MigrationResult, opts: MigrationOptions) -> None:
        result.completed_at = utcnow()

        if self._failed:
            state = EngineState.FAILED
        elif self._rolled_back:
            state = EngineState.ROLLED_BACK
        elif self._stop_reason is not None:
            state = EngineState.EMERGENCY_STOPPED
        elif self._shutdown_requested:
            state = EngineState.GRACEFULLY_STOPPED
        else:
            state = EngineState.COMPLETED

        self._state = state
        result.state = state
        result.success = state == EngineState.COMPLETED
        result.graceful_shutdown = self._shutdown_requested
        result.batch_operations.sort(key=lambda b: b.batch_id)

        duration_ms = (result.duration_seconds or 0.0) * 1000
        result.performance_metrics = {
            "totalDurationMs": round(duration_ms, 2),
            "avgProcessingTimeMs": (
                round(sum(self._batch_durations) / len(self._batch_durations), 2)
                if self._batch_durations else 0.0
            ),
            "throughputPerSecond": (
                round(result.total_processed / (duration_ms / 1000), 2) if duration_ms > 0 else 0.0
            ),
            "rateLimitingApplied": self._rate_limiter.delays_applied if self._rate_limiter else 0,
            "batchesDispatched": result.batches_processed,
        }

        logger.info(
            f"=== MIGRATION {state.value} === processed={result.total_processed} "
            f"succeeded={result.total_succeeded} failed={result.total_failed} "
            f"skipped={result.total_skipped} batches={result.batches_processed}"
        )

        if opts.report_dir:
            if opts.checkpoint_interval:
                self._save_progress(result, opts)
            self._save_report(result, opts.report_dir)

    def _save_report(self, result: MigrationResult, report_dir: str) -> Optional[Path]:
        """Save the migration report as JSON."""
        try:
            directory = Path(report_dir)
            directory.mkdir(parents=True, exist_ok=True)
            name = result.collection.replace("/", "_")
            filepath = directory / f"migration_{name}_{utcnow().strftime('%Y%m%d_%H%M%S')}.json"
            with open(filepath, "w") as f:
                json.dump(result.to_dict(), f, indent=2, default=str)
        except OSError as e:
            logger.error(f"Could not save migration report: {e}")
            return None
        logger.info(f"Saved migration report to {filepath}")
        return filepath

    # ------------------------------------------------------------------
    # Post-migration validation
    # ------------------------------------------------------------------

    def _document_check(
        self, collection_name: str, opts: MigrationOptions
    ) -> Optional[Callable[[Dict[str, Any]], bool]]:
        """Pick how a stored document of this collection is judged valid."""
        if self.registry is not None and self.registry.is_initialized():
            trades = self.registry.trades
            chat = self.registry.chat
            service = None
            if collection_name == trades.collection:
                service = trades
            elif collection_name == chat.collection:
                service = chat
            elif collection_name.startswith(f"{chat.collection}/") and collection_name.endswith("/messages"):
                conversation_id = collection_name[len(chat.collection) + 1:-len("/messages")]

                def check_message(doc: Dict[str, Any]) -> bool:
                    read = chat.message_result(doc, conversation_id)
                    return not read.degraded and chat.validate_message(read.entity)

                return check_message

            if service is not None:
                def check_entity(doc: Dict[str, Any]) -> bool:
                    read = service.read_result(doc)
                    return not read.degraded and service.validate(read.entity)

                return check_entity

        if opts.validate_fn is not None:
            validate_fn = opts.validate_fn

            def check_raw(doc: Dict[str, Any]) -> bool:
                try:
                    return bool(validate_fn(doc))
                except Exception as e:
                    logger.warning(f"Validation of {doc.get('id')} raised: {e}")
                    return False

            return check_raw

        return None

    async def validate_post_migration(
        self,
        collection_name: str,
        options: Optional[Union[MigrationOptions, Mapping[str, Any]]] = None,
    ) -> PostValidationResult:
        """
        Re-read a collection and count the documents that fail validation.

        Trades, conversations and message subcollections are read through
        their compatibility service; any other collection uses the
        ``validate_fn`` option. With neither, the pass is skipped.

        Args:
            collection_name: Collection to check
            options: Paging, retry and validate_fn settings

        Returns:
            PostValidationResult with the invalid document ids (first 100)
        """
        opts = self._coerce_options(options) or self.get_config()
        check = self._document_check(collection_name, opts)
        if check is None:
            logger.warning(f"No validator known for {collection_name}; skipping post-migration validation")
            return PostValidationResult(skipped=True)

        outcome = PostValidationResult()
        cursor: Optional[str] = None
        while True:
            docs = await retry_async(
                lambda: self.store.query(
                    collection_name,
                    order_by=[OrderBy(DOCUMENT_ID)],
                    limit=opts.batch_size,
                    start_after=cursor,
                ),
                opts.max_retries,
                opts.retry_delay_ms,
                should_retry=_is_transient,
            )
            if not docs:
                break
            cursor = docs[-1]["id"]

            for doc in docs:
                outcome.checked += 1
                if not check(doc):
                    outcome.invalid += 1
                    if len(outcome.invalid_ids) < MAX_REPORTED_INVALID:
                        outcome.invalid_ids.append(doc["id"])

            if len(docs) < opts.batch_size:
                break

        if outcome.invalid:
            logger.warning(
                f"Post-migration validation of {collection_name}: "
                f"{outcome.invalid}/{outcome.checked} documents invalid"
            )
        else:
            logger.info(f"Post-migration validation of {collection_name}: {outcome.checked} documents valid")
        return outcome

    # ------------------------------------------------------------------
    # Operator controls
    # ------------------------------------------------------------------

    async def trigger_emergency_stop(
        self, reason: str = StopReason.MANUAL_INTERVENTION.value
    ) -> EmergencyStopResult:
        """
        Halt the current run: in-flight batches settle, no new ones start.

        Returns immediately; success is False when no run is active.
        """
        processed = self._result.total_processed if self._result else 0
        if not self.is_running():
            logger.warning(f"Emergency stop requested while {self._state.value}; nothing to stop")
            return EmergencyStopResult(
                success=False,
                reason=reason,
                stopped_at=utcnow(),
                documents_processed_before_stop=processed,
            )

        logger.error(f"Emergency stop requested: {reason}")
        self._emergency_stop(reason, self._result)
        return EmergencyStopResult(
            success=True,
            reason=self._stop_reason,
            stopped_at=utcnow(),
            documents_processed_before_stop=processed,
        )

    async def request_graceful_shutdown(self) -> ShutdownResult:
        """
        Refuse new batches, wait for in-flight ones, and report what is left.
        """
        result = self._result
        processed = result.total_processed if result else 0

        if not self.is_running():
            logger.warning(f"Graceful shutdown requested while {self._state.value}")
            return ShutdownResult(
                success=False,
                graceful_shutdown=False,
                data_integrity_maintained=result.data_integrity_maintained if result else True,
                final_processed_count=processed,
                remaining_documents=0,
            )

        logger.info("Graceful shutdown requested; finishing in-flight batches")
        self._shutdown_requested = True
        await self._drain()

        total = self._initial_count
        try:
            total = await self.store.count(self._collection)
        except Exception as e:
            logger.warning(f"Could not recount {self._collection}, using initial count: {e}")

        processed = result.total_processed
        handled = processed + result.total_skipped
        return ShutdownResult(
            success=True,
            graceful_shutdown=True,
            data_integrity_maintained=result.data_integrity_maintained,
            final_processed_count=processed,
            remaining_documents=max(total - handled, 0),
        )
