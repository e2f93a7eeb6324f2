"""Tests for the command-line interface."""

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from trip_ledger.cli import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the CLI at a temporary database and settle in GBP."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_PATH", str(tmp_path / "cli.db"))
    monkeypatch.setenv("SETTLEMENT_CURRENCY", "GBP")


def add_expense(*args):
    return runner.invoke(app, ["ledger", "add-expense", "--trip", "rome", *args])


class TestAddExpense:
    """Tests for the add-expense command."""

    def test_equal_split(self):
        result = add_expense(
            "--paid-by", "alice", "--amount", "90", "-w", "alice", "-w", "bob",
            "-w", "carol",
        )

        assert result.exit_code == 0, result.output
        assert "Expense 1 recorded" in result.output
        assert "bob: £30.00" in result.output

    def test_custom_split_mismatch(self):
        result = add_expense(
            "--paid-by", "alice", "--amount", "100", "-w", "alice", "-w", "bob",
            "--split", "custom", "--share", "alice=50", "--share", "bob=40",
        )

        assert result.exit_code == 1
        assert "must equal" in result.output

    def test_invalid_amount(self):
        result = add_expense("--paid-by", "alice", "--amount", "lots", "-w", "bob")

        assert result.exit_code == 2


class TestBalances:
    """Tests for the balances command."""

    def test_suggests_payments(self):
        add_expense(
            "--paid-by", "alice", "--amount", "90", "-w", "alice", "-w", "bob",
            "-w", "carol",
        )

        result = runner.invoke(app, ["ledger", "balances", "--trip", "rome"])

        assert result.exit_code == 0, result.output
        assert "Suggested payments (2)" in result.output
        assert "bob → alice: £30.00" in result.output

    def test_my_payments(self):
        add_expense(
            "--paid-by", "alice", "--amount", "90", "-w", "alice", "-w", "bob",
            "-w", "carol",
        )

        result = runner.invoke(
            app, ["ledger", "balances", "--trip", "rome", "--me", "carol"]
        )

        assert result.exit_code == 0, result.output
        assert "carol pays:" in result.output
        assert "→ alice: £30.00" in result.output

    def test_no_activity(self):
        result = runner.invoke(app, ["ledger", "balances", "--trip", "empty"])

        assert result.exit_code == 0
        assert "No activity" in result.output


class TestSettlements:
    """Tests for record-settlement and history."""

    def test_record_and_list(self):
        recorded = runner.invoke(
            app,
            [
                "ledger", "record-settlement", "--trip", "rome", "--from", "bob",
                "--to", "alice", "--amount", "30", "--date", "2024-06-05",
            ],
        )
        history = runner.invoke(app, ["ledger", "history", "--trip", "rome"])

        assert recorded.exit_code == 0, recorded.output
        assert "Settlement recorded" in recorded.output
        assert history.exit_code == 0
        assert "2024-06-05" in history.output

    def test_rejects_self_settlement(self):
        result = runner.invoke(
            app,
            [
                "ledger", "record-settlement", "--trip", "rome", "--from", "bob",
                "--to", "bob", "--amount", "30",
            ],
        )

        assert result.exit_code == 1
        assert "Error" in result.output


class TestRate:
    """Tests for the rate and clear-cache commands."""

    @patch("trip_ledger.clients.frankfurter.FrankfurterClient.get_rate")
    def test_rate_lookup(self, mock_get_rate):
        mock_get_rate.return_value = (Decimal("0.85"), date(2024, 6, 3))

        result = runner.invoke(app, ["ledger", "rate", "EUR", "--date", "2024-06-03"])

        assert result.exit_code == 0, result.output
        assert "1 EUR = 0.85 GBP" in result.output

    @patch("trip_ledger.clients.frankfurter.FrankfurterClient.get_rate")
    def test_clear_cache(self, mock_get_rate):
        mock_get_rate.return_value = (Decimal("0.85"), date(2024, 6, 3))
        runner.invoke(app, ["ledger", "rate", "EUR", "--date", "2024-06-03"])

        result = runner.invoke(app, ["ledger", "clear-cache"])

        assert result.exit_code == 0
        assert "Cleared 1 cached rates" in result.output


def test_lists_currencies():
    result = runner.invoke(app, ["currencies"])

    assert result.exit_code == 0
    assert "JPY" in result.output
    assert "Swiss Franc" in result.output
