"""Tests for the Excel report generator."""

from pathlib import Path

import pytest
from openpyxl import load_workbook

from conftest import ACCOUNT, statement_lines
from ledger_recon.config import ReconConfig
from ledger_recon.reports.excel_generator import ExcelReportGenerator
from ledger_recon.utils.exceptions import ReportGenerationError


@pytest.fixture
def completed(service, ledger, january_ledger):
    """A completed January session with one excluded line."""
    session = service.start(ACCOUNT, "2024-01-01", "2024-01-31", "1250.00")
    uploaded = service.upload_statement(
        session.id,
        statement_lines({"date": "2024-01-20", "amount": "-25.00", "description": "Fee"}),
    )
    fee = next(l for l in uploaded.statement_transactions if l.description == "Fee")
    service.exclude_statement_line(session.id, fee.id, "Refunded same day")
    summary = service.complete(session.id)
    stored = service.get_session(session.id)
    matched = [ledger.get_by_id(m.transaction_id) for m in stored.matches]
    return stored, summary, matched


class TestExcelReportGenerator:
    def test_all_sheets_written(self, tmp_path: Path, completed, recorder):
        session, summary, matched = completed
        output = tmp_path / "reports" / "january.xlsx"

        path = ExcelReportGenerator(ReconConfig()).generate_report(
            session=session,
            summary=summary,
            ledger_transactions=matched,
            unmatched_ledger=[],
            output_path=output,
            events=recorder.events,
        )

        wb = load_workbook(path)
        assert wb.sheetnames == [
            "Summary",
            "Matched Transactions",
            "Unmatched Statement",
            "Unmatched Ledger",
            "Adjustments",
            "Audit Trail",
        ]
        assert wb["Matched Transactions"].max_row == 3
        assert wb["Unmatched Statement"]["F2"].value == "Yes"
        assert wb["Unmatched Statement"]["G2"].value == "Refunded same day"

    def test_currency_symbol_from_config(self, tmp_path: Path, completed):
        session, summary, matched = completed
        config = ReconConfig(**{"report": {"currency_symbol": "€"}})

        path = ExcelReportGenerator(config).generate_report(
            session, summary, matched, [], tmp_path / "eur.xlsx"
        )

        values = [c.value for row in load_workbook(path)["Summary"].iter_rows() for c in row]
        assert "€1,250.00" in values

    def test_disabled_sheets_skipped(self, tmp_path: Path, completed):
        session, summary, matched = completed
        config = ReconConfig()
        config.report.sheets.audit_trail.enabled = False
        config.report.sheets.adjustments.enabled = False

        path = ExcelReportGenerator(config).generate_report(
            session, summary, matched, [], tmp_path / "short.xlsx"
        )

        assert "Audit Trail" not in load_workbook(path).sheetnames

    def test_all_sheets_disabled(self, tmp_path: Path, completed):
        session, summary, matched = completed
        config = ReconConfig()
        for name in ("summary", "matched", "unmatched_statement", "unmatched_ledger", "adjustments", "audit_trail"):
            getattr(config.report.sheets, name).enabled = False

        with pytest.raises(ReportGenerationError):
            ExcelReportGenerator(config).generate_report(
                session, summary, matched, [], tmp_path / "none.xlsx"
            )
