"""Tests for the operator CLI."""

import asyncio
import json
import logging

import pytest

from livemigrate.cli import EXIT_FAILED, EXIT_OK, EXIT_USAGE, build_parser, log_shutdown, main
from livemigrate.models.migration import ShutdownResult


@pytest.fixture
def data_file(tmp_path, legacy_trade, modern_trade, legacy_conversation):
    path = tmp_path / "store.json"
    path.write_text(json.dumps({
        "trades": [legacy_trade, modern_trade],
        "conversations": [legacy_conversation],
    }))
    return path


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "STORE_URL", "MIGRATION_MODE", "MIGRATION_RATE_LIMIT_MS", "MIGRATION_RETRY_DELAY",
        "MIGRATION_CHECKPOINT_INTERVAL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestCli:
    """Tests for livemigrate.cli.main()."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == EXIT_USAGE

    def test_missing_store(self):
        assert main(["status"]) == EXIT_USAGE

    def test_status(self, data_file, capsys):
        assert main(["status", "--data-file", str(data_file)]) == EXIT_OK

        output = json.loads(capsys.readouterr().out)
        assert output["registry"]["initialized"] is True
        assert output["engine"]["state"] == "IDLE"

    def test_validate(self, data_file, capsys):
        assert main(["validate", "--data-file", str(data_file), "--collection", "trades"]) == EXIT_OK

        assert "Prerequisites: ok" in capsys.readouterr().out

    def test_validate_missing_collection(self, data_file):
        assert main(["validate", "--data-file", str(data_file), "--collection", "invoices"]) == EXIT_FAILED

    def test_migrate_rewrites_data_file(self, data_file, tmp_path, capsys):
        code = main([
            "migrate",
            "--data-file", str(data_file),
            "--collection", "trades",
            "--transform", "trade_to_modern",
            "--rate-limit-ms", "0",
            "--retry-delay-ms", "0",
            "--report-dir", str(tmp_path / "reports"),
        ])

        assert code == EXIT_OK
        assert "MIGRATION COMPLETED" in capsys.readouterr().out
        stored = json.loads(data_file.read_text())
        assert stored["trades"]["t-legacy"]["schemaVersion"] == "2.0"
        assert len(list((tmp_path / "reports").glob("migration_trades_*.json"))) == 1

    def test_migrate_dry_run_leaves_file(self, data_file):
        original = data_file.read_text()

        code = main([
            "migrate",
            "--data-file", str(data_file),
            "--collection", "trades",
            "--transform", "trade_to_modern",
            "--rate-limit-ms", "0",
            "--dry-run",
        ])

        assert code == EXIT_OK
        assert data_file.read_text() == original

    def test_migrate_unknown_transform(self, data_file):
        code = main([
            "migrate",
            "--data-file", str(data_file),
            "--collection", "trades",
            "--transform", "nope",
        ])

        assert code == EXIT_USAGE

    def test_migrate_failed_run(self, data_file, capsys):
        data = json.loads(data_file.read_text())
        data["conversations"].append({"id": "c-empty", "participants": []})
        data_file.write_text(json.dumps(data))

        code = main([
            "migrate",
            "--data-file", str(data_file),
            "--collection", "conversations",
            "--transform", "conversation_to_modern",
            "--rate-limit-ms", "0",
            "--retry-delay-ms", "0",
            "--max-retries", "0",
        ])

        assert code == EXIT_FAILED
        assert "EMERGENCY_STOPPED" in capsys.readouterr().out

    def test_parser_flags(self):
        args = build_parser().parse_args([
            "migrate", "--collection", "c", "--transform", "t", "--no-rollback", "--concurrency", "4",
        ])

        assert args.no_rollback is True
        assert args.concurrency == 4

    def test_parser_resume_flags(self):
        args = build_parser().parse_args([
            "migrate", "--collection", "c", "--transform", "t",
            "--checkpoint-interval", "3", "--resume-after", "doc-0042", "--post-validate",
        ])

        assert args.checkpoint_interval == 3
        assert args.resume_after == "doc-0042"
        assert args.post_validate is True

    def test_migrate_with_checkpoints_and_post_validation(self, data_file, tmp_path, capsys):
        reports = tmp_path / "reports"

        code = main([
            "migrate",
            "--data-file", str(data_file),
            "--collection", "trades",
            "--transform", "trade_to_modern",
            "--rate-limit-ms", "0",
            "--retry-delay-ms", "0",
            "--batch-size", "1",
            "--checkpoint-interval", "1",
            "--post-validate",
            "--report-dir", str(reports),
        ])

        assert code == EXIT_OK
        assert "Post-validation: 0/2 invalid" in capsys.readouterr().out
        progress = json.loads((reports / "progress_trades.json").read_text())
        assert progress["resumeCursor"] == "t-modern"
        assert len(progress["checkpoints"]) == 2

    def test_migrate_resume_after(self, data_file):
        code = main([
            "migrate",
            "--data-file", str(data_file),
            "--collection", "trades",
            "--transform", "trade_to_modern",
            "--rate-limit-ms", "0",
            "--resume-after", "t-legacy",
        ])

        assert code == EXIT_OK
        stored = json.loads(data_file.read_text())
        assert "schemaVersion" not in stored["trades"]["t-legacy"]
        assert stored["trades"]["t-modern"]["schemaVersion"] == "2.0"


# =============================================================================
# Tests: signal-triggered shutdown reporting
# =============================================================================


def _finished(result=None, error=None):
    loop = asyncio.new_event_loop()
    try:
        future = loop.create_future()
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)
        return future
    finally:
        loop.close()


class TestLogShutdown:
    """Tests for log_shutdown()."""

    def test_success_logged(self, caplog):
        shutdown = ShutdownResult(
            success=True,
            graceful_shutdown=True,
            data_integrity_maintained=True,
            final_processed_count=30,
            remaining_documents=70,
        )

        with caplog.at_level(logging.INFO, logger="livemigrate.cli"):
            log_shutdown(_finished(shutdown))

        assert "30 processed, 70 remaining" in caplog.text

    def test_idle_engine_warned(self, caplog):
        shutdown = ShutdownResult(
            success=False,
            graceful_shutdown=False,
            data_integrity_maintained=True,
            final_processed_count=0,
            remaining_documents=0,
        )

        with caplog.at_level(logging.INFO, logger="livemigrate.cli"):
            log_shutdown(_finished(shutdown))

        assert "no migration running" in caplog.text

    def test_failure_logged_as_error(self, caplog):
        with caplog.at_level(logging.INFO, logger="livemigrate.cli"):
            log_shutdown(_finished(error=RuntimeError("store went away")))

        record = next(r for r in caplog.records if "store went away" in r.getMessage())
        assert record.levelno == logging.ERROR

    def test_cancelled_request_logged(self, caplog):
        loop = asyncio.new_event_loop()
        future = loop.create_future()
        future.cancel()
        loop.close()

        with caplog.at_level(logging.INFO, logger="livemigrate.cli"):
            log_shutdown(future)

        assert "cancelled" in caplog.text
