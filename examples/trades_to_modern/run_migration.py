#!/usr/bin/env python3
"""
Example: migrating trades and conversations to the modern shape

Seeds an in-memory store with a mix of legacy, modern and half-migrated
documents (or loads one from a JSON file), rewrites the trades and
conversations collections while reading them through the compatibility
layer, and prints what live readers see before and after.

Usage:
    # Dry run (simulation)
    python run_migration.py --dry-run

    # Full migration against a JSON-backed store
    python run_migration.py --data-file data/store.json --report-dir data/reports
"""

import argparse
import asyncio
import logging

from livemigrate.config import Settings
from livemigrate.engine import ProductionMigrationEngine
from livemigrate.models.record import entities
from livemigrate.services.migration_registry import MigrationRegistry
from livemigrate.services.transforms import conversation_to_modern, trade_to_modern
from livemigrate.stores.memory import InMemoryDocumentStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


SAMPLE_DATA = {
    "trades": [
        # Legacy shape
        {"id": "t1", "title": "React for Python", "status": "active",
         "offeredSkills": ["React"], "requestedSkills": ["Python"],
         "creatorId": "u1", "createdAt": "2024-01-10T09:00:00Z"},
        # Modern shape
        {"id": "t2", "title": "Design review", "status": "active",
         "skillsOffered": [{"id": "figma", "name": "Figma", "level": "expert"}],
         "skillsWanted": [{"id": "go", "name": "Go", "level": "beginner"}],
         "participants": {"creator": "u2", "participant": "u1"},
         "createdAt": {"seconds": 1706000000, "nanoseconds": 0}},
        # Half migrated with a malformed skill list
        {"id": "t3", "title": "Photography", "status": "draft",
         "skillsOffered": ["Lightroom", None, 42], "offeredSkills": ["stale"],
         "creatorId": "u3", "participants": {"participant": "u1"}},
    ],
    "conversations": [
        {"id": "c1", "participants": [{"id": "u1", "name": "Ada"}, {"userId": "u2", "name": "Grace"}],
         "lastMessage": "See you tomorrow", "updatedAt": "2024-02-01T12:00:00Z"},
        {"id": "c2", "type": "group", "title": "Study group",
         "participantIds": ["u1", "u3"],
         "participants": [{"id": "u1", "name": "Ada"}, {"id": "u3", "name": "Linus"}],
         "updatedAt": "2024-02-03T08:30:00Z"},
        # No recoverable participants: recorded as a data error
        {"id": "c3", "participants": [{"name": "nobody"}], "updatedAt": "2024-01-01T00:00:00Z"},
    ],
}


async def show_user_view(registry: MigrationRegistry, user_id: str):
    """Print what a live reader sees for one user."""
    trades = entities(await registry.trades.query_by_user(user_id))
    conversations = entities(await registry.chat.query_by_user(user_id))
    logger.info(f"User {user_id}: {len(trades)} trades, {len(conversations)} conversations")
    for trade in trades:
        offered = ", ".join(s.name for s in trade.skills_offered)
        logger.info(f"  trade {trade.id} [{trade.status.value}] offers: {offered} (schema {trade.schema_version})")
    for conversation in conversations:
        logger.info(f"  conversation {conversation.id} with {', '.join(conversation.participant_ids)}")


async def run(args: argparse.Namespace) -> int:
    """Run the example migration."""
    if args.data_file:
        store = InMemoryDocumentStore.load_json(args.data_file)
    else:
        store = InMemoryDocumentStore(collections=SAMPLE_DATA)

    registry = MigrationRegistry()
    registry.initialize(store)

    settings = Settings.from_env()
    options = settings.migration_options(
        batch_size=2,
        rate_limit_ms=10,
        retry_delay_ms=10,
        max_retries=1,
        # The sample collections are tiny; one bad conversation is a third of them
        emergency_stop_threshold=0.5,
        dry_run=args.dry_run or None,
        report_dir=args.report_dir,
    )
    engine = ProductionMigrationEngine(store, registry, options)

    logger.info("=" * 60)
    logger.info("BEFORE MIGRATION")
    logger.info("=" * 60)
    await show_user_view(registry, "u1")

    exit_code = 0
    for collection, transform in (("trades", trade_to_modern), ("conversations", conversation_to_modern)):
        result = await engine.execute_migration(collection, transform)
        logger.info(f"{collection}: {result.state.value}, "
                    f"{result.total_succeeded} migrated, {result.total_failed} failed")
        for error in result.errors[:10]:  # Show first 10
            logger.warning(f"  - {error['id'] or '<run>'}: {error['error']}")
        if not result.success:
            exit_code = 1

    logger.info("=" * 60)
    logger.info("AFTER MIGRATION")
    logger.info("=" * 60)
    await show_user_view(registry, "u1")

    if args.data_file and not args.dry_run:
        store.dump_json(args.data_file)

    return exit_code


def main():
    parser = argparse.ArgumentParser(description="Migrate trades and conversations to the modern shape")
    parser.add_argument("--data-file", help="JSON file backing the store (default: built-in sample)")
    parser.add_argument("--report-dir", help="Directory for JSON run reports")
    parser.add_argument("--dry-run", action="store_true", help="Transform without writing")
    args = parser.parse_args()

    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
