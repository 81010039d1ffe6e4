"""Operator CLI for live migrations."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional, Tuple

from .config import Settings
from .engine import ProductionMigrationEngine
from .errors import InvalidArgumentError
from .models.migration import MigrationResult
from .services.migration_registry import MigrationRegistry
from .services.transforms import TransformRegistry
from .stores.base import DocumentStore
from .stores.memory import InMemoryDocumentStore
from .stores.rest_store import RestDocumentStore

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def build_store(args: argparse.Namespace, settings: Settings) -> DocumentStore:
    """Open the store named on the command line or in the environment."""
    if getattr(args, "data_file", None):
        return InMemoryDocumentStore.load_json(args.data_file)

    store_url = getattr(args, "store_url", None) or settings.store_url
    if store_url:
        api_key = getattr(args, "api_key", None) or settings.store_api_key
        return RestDocumentStore(store_url, api_key=api_key)

    raise InvalidArgumentError("No store configured: pass --data-file or --store-url (or set STORE_URL)")


def build_context(
    args: argparse.Namespace, settings: Settings
) -> Tuple[DocumentStore, MigrationRegistry, ProductionMigrationEngine]:
    store = build_store(args, settings)
    registry = MigrationRegistry()
    registry.initialize(store)
    registry.enable_migration_mode_from_config()
    engine = ProductionMigrationEngine(store, registry, settings.migration_options())
    return store, registry, engine


def print_result(result: MigrationResult) -> None:
    """Print a run summary."""
    print("\n" + "=" * 60)
    print(f"MIGRATION {result.state.value}")
    print("=" * 60)
    print(f"Collection: {result.collection}")
    print(f"Processed: {result.total_processed}")
    print(f"Succeeded: {result.total_succeeded}")
    print(f"Failed: {result.total_failed}")
    print(f"Skipped: {result.total_skipped}")
    print(f"Batches: {result.batches_processed}")
    print(f"Error rate: {result.error_rate:.2%}")
    if result.emergency_stop_triggered:
        print(f"Emergency stop: {result.emergency_stop_reason}")
    if result.rollback_executed:
        print(f"Rollback succeeded: {result.rollback_succeeded}")
    if result.dry_run:
        print("Dry run: no documents were written")
    if result.resume_cursor and not result.success:
        print(f"Resume with: --resume-after {result.resume_cursor}")
    if result.post_validation is not None and not result.post_validation.skipped:
        print(f"Post-validation: {result.post_validation.invalid}/{result.post_validation.checked} invalid")
    if result.duration_seconds:
        print(f"Duration: {result.duration_seconds:.2f} seconds")
    if result.error_summary:
        print(f"Errors by type: {json.dumps(result.error_summary)}")


def log_shutdown(request: asyncio.Future) -> None:
    """Report the outcome of a signal-triggered graceful shutdown."""
    if request.cancelled():
        logger.warning("Graceful shutdown request was cancelled")
        return
    error = request.exception()
    if error is not None:
        logger.error(f"Graceful shutdown failed: {error}")
        return
    shutdown = request.result()
    if shutdown.success:
        logger.info(
            f"Graceful shutdown complete: {shutdown.final_processed_count} processed, "
            f"{shutdown.remaining_documents} remaining"
        )
    else:
        logger.warning("Graceful shutdown requested with no migration running")


async def run_status(args: argparse.Namespace, settings: Settings) -> int:
    """Print registry status and the effective engine config."""
    _, registry, engine = build_context(args, settings)
    print(json.dumps({
        "registry": registry.get_status(),
        "engine": {
            "state": engine.get_status().value,
            "config": engine.get_config().to_dict(),
        },
    }, indent=2))
    return EXIT_OK


async def run_validate(args: argparse.Namespace, settings: Settings) -> int:
    """Check service health and run prerequisites."""
    _, registry, engine = build_context(args, settings)

    print("\n=== Validating Services ===")
    report = await registry.validate_services()
    print(f"Trades: {'ok' if report['trades'] else 'FAILED'}")
    print(f"Chat: {'ok' if report['chat'] else 'FAILED'}")
    for error in report["errors"]:
        print(f"  - {error}")

    ready = await engine.validate_prerequisites(args.collection)
    print(f"Prerequisites: {'ok' if ready else 'FAILED'}")

    return EXIT_OK if ready and not report["errors"] else EXIT_FAILED


async def run_migrate(args: argparse.Namespace, settings: Settings) -> int:
    """Run a migration over one collection."""
    store, _, engine = build_context(args, settings)
    transform = TransformRegistry().get_transform(args.transform)

    options = settings.migration_options(
        batch_size=args.batch_size,
        max_concurrent_batches=args.concurrency,
        rate_limit_ms=args.rate_limit_ms,
        max_retries=args.max_retries,
        retry_delay_ms=args.retry_delay_ms,
        emergency_stop_threshold=args.error_threshold,
        enable_rollback=False if args.no_rollback else None,
        enable_zero_downtime=False if args.no_zero_downtime else None,
        dry_run=args.dry_run or None,
        report_dir=args.report_dir,
        checkpoint_interval=args.checkpoint_interval,
        resume_after=args.resume_after,
        post_validation=args.post_validate or None,
    )

    shutdown_requests: List[asyncio.Future] = []

    def request_shutdown() -> None:
        logger.warning("Signal received, finishing in-flight batches")
        request = asyncio.ensure_future(engine.request_graceful_shutdown())
        request.add_done_callback(log_shutdown)
        shutdown_requests.append(request)

    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, request_shutdown)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            logger.debug(f"Cannot install handler for {sig!r} on this platform")

    try:
        result = await engine.execute_migration(args.collection, transform, options)
        if shutdown_requests:
            await asyncio.gather(*shutdown_requests, return_exceptions=True)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)

    print_result(result)

    if isinstance(store, InMemoryDocumentStore) and args.data_file and not result.dry_run:
        store.dump_json(args.data_file)

    return EXIT_OK if result.success else EXIT_FAILED


def _add_store_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--data-file", help="JSON file backing an in-memory store")
    parser.add_argument("--store-url", help="Base URL of the document store API")
    parser.add_argument("--api-key", help="Document store API key")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="livemigrate - rewrite live document collections without downtime"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Status
    status_parser = subparsers.add_parser("status", help="Show registry and engine status")
    _add_store_args(status_parser)

    # Validate
    validate_parser = subparsers.add_parser("validate", help="Check services and run prerequisites")
    _add_store_args(validate_parser)
    validate_parser.add_argument("--collection", help="Collection that must exist")

    # Migrate
    migrate_parser = subparsers.add_parser("migrate", help="Migrate a collection")
    _add_store_args(migrate_parser)
    migrate_parser.add_argument("--collection", required=True, help="Collection to migrate")
    migrate_parser.add_argument("--transform", required=True, help="Transform name, e.g. trade_to_modern")
    migrate_parser.add_argument("--batch-size", type=int, help="Documents per batch")
    migrate_parser.add_argument("--concurrency", type=int, help="Max concurrent batches")
    migrate_parser.add_argument("--rate-limit-ms", type=int, help="Minimum delay between batches")
    migrate_parser.add_argument("--max-retries", type=int, help="Retries per document")
    migrate_parser.add_argument("--retry-delay-ms", type=int, help="Backoff base delay")
    migrate_parser.add_argument("--error-threshold", type=float, help="Error rate that stops the run")
    migrate_parser.add_argument("--no-rollback", action="store_true", help="Do not restore failed batches")
    migrate_parser.add_argument("--no-zero-downtime", action="store_true", help="Skip service health checks")
    migrate_parser.add_argument("--dry-run", action="store_true", help="Transform without writing")
    migrate_parser.add_argument("--report-dir", help="Directory for the JSON run report")
    migrate_parser.add_argument("--checkpoint-interval", type=int,
                                help="Write a progress file to --report-dir every N batches")
    migrate_parser.add_argument("--resume-after", help="Continue after this document id")
    migrate_parser.add_argument("--post-validate", action="store_true",
                                help="Re-read the collection and validate it after the run")

    return parser


COMMANDS = {
    "status": run_status,
    "validate": run_validate,
    "migrate": run_migrate,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return EXIT_USAGE

    settings = Settings.from_env()
    try:
        return asyncio.run(command(args, settings))
    except InvalidArgumentError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
