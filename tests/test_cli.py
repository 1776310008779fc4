"""
Tests for cli.py module.

This module tests the CLI commands using Typer's CliRunner against real
SQLite wallet stores:
- migrate: fresh store, staged target, idempotent rerun, config file
- rollback: refused across the non-revertible reconciliation
- status: applied and pending migrations
- events / summary: reconciled views, unmigrated store errors
- audit: balanced ledger and fee mismatch
- Exit codes and JSON output in agent mode
"""

import json
import logging

import pytest
import yaml
from typer.testing import CliRunner

from wallet_ledger.cli import (
    EXIT_AUDIT_FAILURE,
    EXIT_CONFIG_ERROR,
    EXIT_DB_ERROR,
    EXIT_MIGRATION_ERROR,
    EXIT_SUCCESS,
    app,
)
from wallet_ledger.migrations.wallet import (
    ADD_SENT_NOTES_ID,
    ADD_TRANSACTION_VIEWS_ID,
    INITIAL_SETUP_ID,
    V_TRANSACTIONS_NET_ID,
    WALLET_MIGRATIONS,
)
from wallet_ledger.storage.db import connect

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cli_runner():
    """Return CliRunner for testing Typer apps."""
    return CliRunner()


@pytest.fixture(autouse=True)
def reset_output_mode():
    """Reset global output_mode and root logging after each test."""
    from wallet_ledger.utils.console import output_mode

    original_format = output_mode.format
    original_quiet = output_mode.quiet
    original_handlers = list(logging.getLogger().handlers)
    original_level = logging.getLogger().level
    output_mode._json_buffer.clear()

    yield

    output_mode.format = original_format
    output_mode.quiet = original_quiet
    output_mode._json_buffer.clear()
    root_logger = logging.getLogger()
    root_logger.handlers[:] = original_handlers
    root_logger.setLevel(original_level)


def _json(result):
    return json.loads(result.stdout)


# ============================================================================
# migrate
# ============================================================================


class TestMigrateCommand:
    def test_migrate_fresh_store(self, cli_runner, wallet_db_path):
        result = cli_runner.invoke(
            app, ["migrate", "--db", str(wallet_db_path), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = _json(result)
        assert data["status"] == "success"
        assert data["applied"] == [str(m.migration_id) for m in WALLET_MIGRATIONS]
        assert data["skipped"] == []
        assert wallet_db_path.exists()

    def test_migrate_is_idempotent(self, cli_runner, wallet_db_path):
        cli_runner.invoke(app, ["migrate", "--db", str(wallet_db_path)])
        result = cli_runner.invoke(
            app, ["migrate", "--db", str(wallet_db_path), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        assert _json(result)["applied"] == []

    def test_migrate_with_target(self, cli_runner, wallet_db_path):
        """--target applies only that migration and its dependencies."""
        result = cli_runner.invoke(
            app,
            [
                "migrate",
                "--db",
                str(wallet_db_path),
                "--target",
                str(ADD_SENT_NOTES_ID),
                "--format",
                "json",
            ],
        )

        assert result.exit_code == EXIT_SUCCESS
        assert _json(result)["applied"] == [str(INITIAL_SETUP_ID), str(ADD_SENT_NOTES_ID)]

    def test_migrate_from_config_file(self, cli_runner, tmp_path):
        config_file = tmp_path / "ledger.config.yaml"
        config_file.write_text(
            yaml.dump(
                {
                    "database": {"path": "data/wallet.db"},
                    "migrations": {"target": str(ADD_TRANSACTION_VIEWS_ID)},
                }
            ),
            encoding="utf-8",
        )

        result = cli_runner.invoke(
            app, ["migrate", "--config", str(config_file), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        assert str(V_TRANSACTIONS_NET_ID) not in _json(result)["applied"]
        assert (tmp_path / "data" / "wallet.db").exists()

    def test_migrate_human_mode(self, cli_runner, wallet_db_path):
        result = cli_runner.invoke(app, ["migrate", "--db", str(wallet_db_path)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Applied 4 migration(s)" in result.stdout

    def test_migrate_requires_db_or_config(self, cli_runner):
        result = cli_runner.invoke(app, ["migrate", "--format", "json"])

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert "Either --db or --config is required" in _json(result)["error"]

    def test_migrate_missing_config_file(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app, ["migrate", "--config", str(tmp_path / "missing.yaml")]
        )

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_migrate_rejects_unknown_policy(self, cli_runner, wallet_db_path):
        result = cli_runner.invoke(
            app,
            ["migrate", "--db", str(wallet_db_path), "--on-already-applied", "maybe"],
        )

        assert result.exit_code == EXIT_CONFIG_ERROR


# ============================================================================
# rollback / status
# ============================================================================


class TestRollbackCommand:
    def test_rollback_before_reconciliation(self, cli_runner, wallet_db_path):
        """Reverting the view recomposition is allowed."""
        cli_runner.invoke(
            app, ["migrate", "--db", str(wallet_db_path), "--target", str(ADD_TRANSACTION_VIEWS_ID)]
        )

        result = cli_runner.invoke(
            app,
            [
                "rollback",
                "--db",
                str(wallet_db_path),
                "--to",
                str(ADD_SENT_NOTES_ID),
                "--format",
                "json",
            ],
        )

        assert result.exit_code == EXIT_SUCCESS
        assert _json(result)["reverted"] == [str(ADD_TRANSACTION_VIEWS_ID)]

    def test_rollback_across_reconciliation_refused(self, cli_runner, scenario_conn, wallet_db_path):
        result = cli_runner.invoke(
            app,
            [
                "rollback",
                "--db",
                str(wallet_db_path),
                "--to",
                str(ADD_TRANSACTION_VIEWS_ID),
                "--format",
                "json",
            ],
        )

        assert result.exit_code == EXIT_MIGRATION_ERROR
        assert _json(result)["status"] == "error"

    def test_rollback_missing_database(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app,
            ["rollback", "--db", str(tmp_path / "nope.db"), "--to", str(INITIAL_SETUP_ID)],
        )

        assert result.exit_code == EXIT_DB_ERROR


class TestStatusCommand:
    def test_status_lists_pending(self, cli_runner, wallet_db_path):
        cli_runner.invoke(
            app, ["migrate", "--db", str(wallet_db_path), "--target", str(ADD_SENT_NOTES_ID)]
        )

        result = cli_runner.invoke(
            app, ["status", "--db", str(wallet_db_path), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        rows = _json(result)["migrations"]
        assert [row["migration_id"] for row in rows] == [
            str(m.migration_id) for m in WALLET_MIGRATIONS
        ]
        assert [row["applied_at"] is not None for row in rows] == [True, True, False, False]
        assert rows[-1]["revertible"] is False

    def test_status_human_mode(self, cli_runner, wallet_db_path):
        cli_runner.invoke(app, ["migrate", "--db", str(wallet_db_path)])

        result = cli_runner.invoke(app, ["status", "--db", str(wallet_db_path)])

        assert result.exit_code == EXIT_SUCCESS
        assert "Wallet schema is current" in result.stdout


# ============================================================================
# events / summary
# ============================================================================


class TestQueryCommands:
    def test_events_for_change_transaction(self, cli_runner, scenario_conn, wallet_db_path):
        result = cli_runner.invoke(
            app, ["events", "--db", str(wallet_db_path), "--tx", "1", "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = _json(result)
        assert data["id_tx"] == 1
        assert [(e["output_index"], e["value"], e["is_change"]) for e in data["events"]] == [
            (0, 2, False),
            (1, 3, False),
            (2, 2, True),
        ]
        assert data["events"][1]["memo"] == "61"

    def test_events_unknown_transaction(self, cli_runner, scenario_conn, wallet_db_path):
        result = cli_runner.invoke(
            app, ["events", "--db", str(wallet_db_path), "--tx", "99", "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = _json(result)
        assert data["events"] == []
        assert "No outputs recorded" in data["warning"]

    def test_events_on_unmigrated_store(self, cli_runner, wallet_db_path):
        connect(wallet_db_path).close()

        result = cli_runner.invoke(
            app, ["events", "--db", str(wallet_db_path), "--tx", "1", "--format", "json"]
        )

        assert result.exit_code == EXIT_DB_ERROR
        assert "wallet-ledger migrate" in _json(result)["error"]

    def test_summary_for_account(self, cli_runner, scenario_conn, wallet_db_path):
        result = cli_runner.invoke(
            app,
            ["summary", "--db", str(wallet_db_path), "--account", "0", "--format", "json"],
        )

        assert result.exit_code == EXIT_SUCCESS
        rows = _json(result)["transactions"]
        assert [(r["id_tx"], r["net_transfer"], r["has_change"]) for r in rows] == [
            (0, 7, False),
            (1, -5, True),
            (2, -1, True),
        ]

    def test_summary_human_mode(self, cli_runner, scenario_conn, wallet_db_path):
        result = cli_runner.invoke(app, ["summary", "--db", str(wallet_db_path), "--tx", "2"])

        assert result.exit_code == EXIT_SUCCESS
        assert "Account Transactions" in result.stdout


# ============================================================================
# audit
# ============================================================================


class TestAuditCommand:
    def test_audit_balanced_ledger(self, cli_runner, scenario_conn, wallet_db_path):
        result = cli_runner.invoke(
            app, ["audit", "--db", str(wallet_db_path), "--format", "json"]
        )

        assert result.exit_code == EXIT_SUCCESS
        data = _json(result)
        assert data["transactions_checked"] == 3
        assert data["view_mismatches"] == []
        assert data["imbalances"] == []

    def test_audit_detects_fee_mismatch(self, cli_runner, scenario_conn, wallet_db_path):
        """A recorded fee that the note values do not cover fails the audit."""
        scenario_conn.execute("UPDATE transactions SET fee = 1000 WHERE id_tx = 1")

        result = cli_runner.invoke(
            app, ["audit", "--db", str(wallet_db_path), "--format", "json"]
        )

        assert result.exit_code == EXIT_AUDIT_FAILURE
        data = _json(result)
        assert data["status"] == "error"
        assert "Audit failed" in data["error"]
        [imbalance] = data["imbalances"]
        assert imbalance["id_tx"] == 1
        assert imbalance["discrepancy"] == 1000


# ============================================================================
# Version / callback
# ============================================================================


def test_version_flag(cli_runner):
    result = cli_runner.invoke(app, ["--version"])

    assert result.exit_code == EXIT_SUCCESS
    assert "wallet-ledger" in result.stdout
    assert "version" in result.stdout


def test_no_command_shows_hint(cli_runner):
    result = cli_runner.invoke(app, [])

    assert result.exit_code == EXIT_SUCCESS
    assert "--help" in result.stdout


# ============================================================================
# Storage errors
# ============================================================================


class TestCorruptStore:
    """A file that is not a SQLite database is a database error, exit code 2."""

    @pytest.fixture
    def not_a_database(self, tmp_path):
        path = tmp_path / "wallet.db"
        path.write_text("plain text, not sqlite\n" * 150, encoding="utf-8")
        return path

    @pytest.mark.parametrize("command", ["migrate", "status", "summary", "audit"])
    def test_command_exits_db_error(self, cli_runner, not_a_database, command):
        result = cli_runner.invoke(
            app, [command, "--db", str(not_a_database), "--format", "json"]
        )

        assert result.exit_code == EXIT_DB_ERROR
        assert _json(result)["status"] == "error"

    def test_rollback_exits_db_error(self, cli_runner, not_a_database):
        result = cli_runner.invoke(
            app,
            ["rollback", "--db", str(not_a_database), "--to", str(INITIAL_SETUP_ID)],
        )

        assert result.exit_code == EXIT_DB_ERROR
