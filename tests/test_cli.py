"""Tests for the command-line interface."""

from pathlib import Path

import pandas as pd
import pytest
from click.testing import CliRunner

from ledger_recon.cli import main

LEDGER_CSV = (
    "id,date,amount,description\n"
    "t-pay,2024-01-10,300.00,Salary ACME Corp\n"
    "t-shop,2024-01-15,-50.00,Grocery Store\n"
)

STATEMENT_CSV = (
    "date,amount,description,reference_number\n"
    "2024-01-10,300.00,SALARY ACME CORP,\n"
    "2024-01-15,-50.00,GROCERY STORE,\n"
)


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def files(tmp_path: Path):
    ledger = tmp_path / "ledger.csv"
    ledger.write_text(LEDGER_CSV)
    statement = tmp_path / "statement.csv"
    statement.write_text(STATEMENT_CSV)
    return ledger, statement


def reconcile_args(ledger: Path, statement: Path, balance: str = "1250.00") -> list[str]:
    return [
        "reconcile",
        str(ledger),
        str(statement),
        "--account",
        "checking",
        "--start",
        "2024-01-01",
        "--end",
        "2024-01-31",
        "--statement-balance",
        balance,
        "--initial-balance",
        "1000.00",
    ]


class TestReconcileCommand:
    def test_balanced_run_writes_report(self, runner, files, tmp_path: Path):
        ledger, statement = files
        output = tmp_path / "report.xlsx"

        result = runner.invoke(main, reconcile_args(ledger, statement) + ["-o", str(output)])

        assert result.exit_code == 0, result.output
        assert "Reconciliation Summary" in result.output
        assert output.exists()

    def test_dry_run_writes_nothing(self, runner, files, tmp_path: Path):
        ledger, statement = files
        output = tmp_path / "report.xlsx"

        result = runner.invoke(
            main, reconcile_args(ledger, statement) + ["-o", str(output), "--dry-run"]
        )

        assert result.exit_code == 0, result.output
        assert "Dry run" in result.output
        assert not output.exists()

    def test_unresolved_lines_fail_without_force(self, runner, files, tmp_path: Path):
        ledger, statement = files
        statement.write_text(STATEMENT_CSV + "2024-01-20,-25.00,FEE,\n")

        result = runner.invoke(main, reconcile_args(ledger, statement, "1225.00"))

        assert result.exit_code == 1
        assert "Unresolved Statement Transactions" in result.output
        assert "--force" in result.output

    def test_force_completes(self, runner, files, tmp_path: Path):
        ledger, statement = files
        statement.write_text(STATEMENT_CSV + "2024-01-20,-25.00,FEE,\n")
        output = tmp_path / "forced.xlsx"

        result = runner.invoke(
            main, reconcile_args(ledger, statement, "1225.00") + ["--force", "-o", str(output)]
        )

        assert result.exit_code == 0, result.output
        assert output.exists()

    def test_invalid_balance_reports_error(self, runner, files):
        ledger, statement = files

        result = runner.invoke(main, reconcile_args(ledger, statement, "lots"))

        assert result.exit_code == 1
        assert "Error" in result.output


class TestDuplicatesCommand:
    def test_lists_and_auto_merges(self, runner, tmp_path: Path):
        ledger = tmp_path / "ledger.csv"
        ledger.write_text(
            "id,date,amount,description,created_at\n"
            "A,2024-03-01,42.00,Coffee Shop,2024-03-01T08:00:00\n"
            "B,2024-03-02,42.00,Coffee Shop,2024-03-02T08:00:00\n"
            "C,2024-03-09,15.00,Bakery,2024-03-09T08:00:00\n"
        )
        output = tmp_path / "merged.csv"

        result = runner.invoke(
            main,
            ["duplicates", str(ledger), "--account", "checking", "--auto-merge", "-o", str(output)],
        )

        assert result.exit_code == 0, result.output
        assert "Suspected Duplicates" in result.output
        assert "Merged 1 transactions in 1 groups" in result.output
        assert "Merged Transactions" in result.output

        df = pd.read_csv(output, dtype=str, keep_default_na=False).set_index("id")
        assert df.loc["B", "is_merged"] == "True"
        assert df.loc["B", "merged_into_id"] == "A"
        assert df.loc["A", "is_merged"] == "False"

    def test_no_duplicates(self, runner, files):
        ledger, _ = files
        result = runner.invoke(main, ["duplicates", str(ledger), "--account", "checking"])

        assert result.exit_code == 0, result.output
        assert "No suspected duplicates found." in result.output


class TestInitConfig:
    def test_writes_config(self, runner, tmp_path: Path):
        output = tmp_path / "config.yaml"
        result = runner.invoke(main, ["init-config", "-o", str(output)])

        assert result.exit_code == 0
        assert output.exists()
