"""
Excel report generator for reconciliation sessions.
Creates multi-sheet workbooks with formatted output.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Optional
import logging

from openpyxl import Workbook
from openpyxl.styles import Border, Font, PatternFill, Side
from openpyxl.worksheet.worksheet import Worksheet

from ..config import ReconConfig
from ..events import DomainEvent
from ..models.session import ReconciliationSession, ReconciliationSummary
from ..models.transaction import LedgerTransaction
from ..utils.exceptions import ReportGenerationError
from ..utils.money import format_amount

logger = logging.getLogger(__name__)

# Style definitions
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
MATCH_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
VARIANCE_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
UNMATCHED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)


class ExcelReportGenerator:
    """Generates Excel reconciliation reports with multiple sheets."""

    def __init__(self, config: Optional[ReconConfig] = None):
        """
        Initialize the report generator.

        Args:
            config: Application configuration
        """
        self.config = config or ReconConfig()
        self.report_config = self.config.report
        self.sheet_config = self.report_config.sheets

    def generate_report(
        self,
        session: ReconciliationSession,
        summary: ReconciliationSummary,
        ledger_transactions: list[LedgerTransaction],
        unmatched_ledger: list[LedgerTransaction],
        output_path: Path,
        events: Optional[list[DomainEvent]] = None,
    ) -> Path:
        """
        Generate the complete reconciliation report.

        Args:
            session: Reconciliation session
            summary: Summary computed for the session
            ledger_transactions: Ledger transactions referenced by the matches
            unmatched_ledger: Ledger transactions in the window with no match
            output_path: Path for output file
            events: Domain events to list on the audit trail sheet

        Returns:
            Path to generated report

        Raises:
            ReportGenerationError: If the workbook cannot be written
        """
        logger.info(f"Generating Excel report: {output_path}")
        ledger_by_id = {t.id: t for t in ledger_transactions}

        wb = Workbook()

        # Remove default sheet
        if wb.active:
            wb.remove(wb.active)

        if self.sheet_config.summary.enabled:
            self._create_summary_sheet(wb, summary)
        if self.sheet_config.matched.enabled:
            self._create_matched_sheet(wb, session, ledger_by_id)
        if self.sheet_config.unmatched_statement.enabled:
            self._create_unmatched_statement_sheet(wb, session)
        if self.sheet_config.unmatched_ledger.enabled:
            self._create_unmatched_ledger_sheet(wb, unmatched_ledger)
        if self.sheet_config.adjustments.enabled:
            self._create_adjustments_sheet(wb, session)
        if self.sheet_config.audit_trail.enabled:
            self._create_audit_trail_sheet(wb, session, events or [])

        if not wb.sheetnames:
            raise ReportGenerationError("All report sheets are disabled")

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            wb.save(output_path)
        except OSError as e:
            raise ReportGenerationError(f"Could not write report {output_path}: {e}") from e

        logger.info(f"Report saved: {output_path}")
        return output_path

    def _money(self, amount: Optional[Decimal]) -> str:
        return format_amount(amount, self.report_config.currency_symbol)

    def _create_summary_sheet(self, wb: Workbook, summary: ReconciliationSummary) -> None:
        """Create the summary sheet with key metrics."""
        ws = wb.create_sheet(self.sheet_config.summary.name)

        ws["A1"] = "Bank Reconciliation Summary"
        ws["A1"].font = Font(size=16, bold=True)
        ws.merge_cells("A1:D1")

        ws["A3"] = "Session"
        ws["A3"].font = Font(bold=True)
        session_info = [
            ("Session ID:", summary.session_id),
            ("Account:", summary.account_id),
            ("Status:", summary.status.value),
            ("Statement Period:", f"{summary.start_date} to {summary.end_date}"),
            (
                "Completed At:",
                summary.completed_at.strftime("%Y-%m-%d %H:%M:%S")
                if summary.completed_at
                else "",
            ),
        ]
        row = 4
        for label, value in session_info:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = str(value)
            row += 1

        row += 1
        ws[f"A{row}"] = "Transaction Counts"
        ws[f"A{row}"].font = Font(bold=True)
        row += 1
        count_data = [
            ("Statement Transactions:", summary.statement_transaction_count),
            ("Matched:", summary.matched_count),
            ("Excluded:", summary.excluded_count),
            ("Unmatched:", summary.unmatched_count),
            ("Unresolved:", len(summary.unresolved_ids)),
            ("Match Rate:", f"{summary.match_rate:.1f}%"),
        ]
        for label, value in count_data:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = value
            row += 1

        row += 1
        ws[f"A{row}"] = f"Balances ({self.report_config.currency_code})"
        ws[f"A{row}"].font = Font(bold=True)
        row += 1
        amount_data = [
            ("Opening Balance:", summary.opening_balance),
            ("Matched Activity:", summary.matched_sum),
            ("Adjustments:", summary.adjustment_sum),
            ("Computed Balance:", summary.computed_balance),
            ("Statement Balance:", summary.statement_balance),
            ("Variance:", summary.variance),
        ]
        for label, value in amount_data:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = self._money(value)
            row += 1
        ws[f"B{row - 1}"].fill = MATCH_FILL if summary.is_balanced else VARIANCE_FILL

        row += 1
        ws[f"A{row}"] = "Matches by Confidence"
        ws[f"A{row}"].font = Font(bold=True)
        row += 1
        for confidence, count in summary.matches_by_confidence.items():
            ws[f"A{row}"] = confidence
            ws[f"B{row}"] = count
            row += 1

        ws.column_dimensions["A"].width = 30
        ws.column_dimensions["B"].width = 40

    def _create_matched_sheet(
        self,
        wb: Workbook,
        session: ReconciliationSession,
        ledger_by_id: dict[str, LedgerTransaction],
    ) -> None:
        """Create the matched transactions sheet."""
        ws = wb.create_sheet(self.sheet_config.matched.name)
        headers = [
            "Statement Date",
            "Statement Reference",
            "Statement Amount",
            "Statement Description",
            "Ledger Date",
            "Ledger Reference",
            "Ledger Amount",
            "Ledger Description",
            "Confidence",
            "Score",
            "Manual",
            "Notes",
        ]
        self._write_headers(ws, headers)

        for row_num, match in enumerate(session.matches, start=2):
            line = session.get_statement_line(match.reconciliation_transaction_id)
            txn = ledger_by_id.get(match.transaction_id)
            stale = txn is None or txn.is_merged

            row_data = [
                line.date,
                line.reference_number or "",
                float(line.amount),
                line.description,
                txn.date if txn else "",
                (txn.reference_number or "") if txn else "",
                float(txn.amount) if txn else "",
                txn.description if txn else "",
                match.confidence.value if match.confidence else "",
                f"{match.score:.2f}",
                "Yes" if match.is_manual else "No",
                match.notes or "",
            ]
            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                cell.fill = VARIANCE_FILL if stale else MATCH_FILL

        self._auto_fit_columns(ws)

    def _create_unmatched_statement_sheet(
        self, wb: Workbook, session: ReconciliationSession
    ) -> None:
        """Create the sheet of statement lines without a match."""
        ws = wb.create_sheet(self.sheet_config.unmatched_statement.name)
        headers = ["Line ID", "Date", "Reference", "Amount", "Description", "Excluded", "Reason"]
        self._write_headers(ws, headers)

        matched = session.matched_line_ids
        unmatched = [l for l in session.statement_transactions if l.id not in matched]
        for row_num, line in enumerate(unmatched, start=2):
            row_data = [
                line.id,
                line.date,
                line.reference_number or "",
                float(line.amount),
                line.description,
                "Yes" if line.excluded else "No",
                line.exclusion_reason or "",
            ]
            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                if not line.excluded:
                    cell.fill = UNMATCHED_FILL

        self._auto_fit_columns(ws)

    def _create_unmatched_ledger_sheet(
        self, wb: Workbook, unmatched_ledger: list[LedgerTransaction]
    ) -> None:
        """Create the sheet of ledger transactions without a match."""
        ws = wb.create_sheet(self.sheet_config.unmatched_ledger.name)
        headers = ["Transaction ID", "Date", "Reference", "Amount", "Description", "Source"]
        self._write_headers(ws, headers)

        for row_num, txn in enumerate(unmatched_ledger, start=2):
            row_data = [
                txn.id,
                txn.date,
                txn.reference_number or "",
                float(txn.amount),
                txn.description,
                txn.source.value,
            ]
            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                cell.fill = UNMATCHED_FILL

        self._auto_fit_columns(ws)

    def _create_adjustments_sheet(self, wb: Workbook, session: ReconciliationSession) -> None:
        """Create the adjustments sheet; staged adjustments are listed while open."""
        ws = wb.create_sheet(self.sheet_config.adjustments.name)
        headers = ["Type", "Amount", "Reason", "Statement Line", "Created At", "State"]
        self._write_headers(ws, headers)

        rows = [(a, "Accepted") for a in session.adjustments]
        rows += [(a, "Staged") for a in session.pending_adjustments]
        for row_num, (adjustment, state) in enumerate(rows, start=2):
            row_data = [
                adjustment.type,
                float(adjustment.amount),
                adjustment.reason,
                adjustment.statement_line_id or "",
                adjustment.created_at.strftime("%Y-%m-%d %H:%M:%S"),
                state,
            ]
            for col, value in enumerate(row_data, start=1):
                cell = ws.cell(row=row_num, column=col, value=value)
                cell.border = THIN_BORDER
                cell.fill = VARIANCE_FILL

        self._auto_fit_columns(ws)

    def _create_audit_trail_sheet(
        self, wb: Workbook, session: ReconciliationSession, events: list[DomainEvent]
    ) -> None:
        """Create the audit trail sheet."""
        ws = wb.create_sheet(self.sheet_config.audit_trail.name)

        ws["A1"] = "Reconciliation Audit Trail"
        ws["A1"].font = Font(size=14, bold=True)

        audit_info = [
            ("Generated At:", datetime.now().strftime("%Y-%m-%d %H:%M:%S")),
            ("Config File:", self.config.config_file_path or "Default"),
            ("Session Notes:", session.notes or ""),
        ]
        row = 3
        for label, value in audit_info:
            ws[f"A{row}"] = label
            ws[f"B{row}"] = value
            row += 1

        row += 1
        ws[f"A{row}"] = "Event Log"
        ws[f"A{row}"].font = Font(bold=True)
        row += 1

        headers = ["Timestamp", "Event", "Details"]
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=row, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
        row += 1

        for event in events:
            details = ", ".join(f"{k}={v}" for k, v in event.payload.items())
            log_data = [
                event.occurred_at.strftime("%Y-%m-%d %H:%M:%S"),
                event.type.value,
                details,
            ]
            for col, value in enumerate(log_data, start=1):
                ws.cell(row=row, column=col, value=value)
            row += 1

        self._auto_fit_columns(ws)

    @staticmethod
    def _write_headers(ws: Worksheet, headers: list[str]) -> None:
        for col, header in enumerate(headers, start=1):
            cell = ws.cell(row=1, column=col, value=header)
            cell.fill = HEADER_FILL
            cell.font = HEADER_FONT
            cell.border = THIN_BORDER

    def _auto_fit_columns(self, ws: Worksheet) -> None:
        """Auto-fit column widths based on content."""
        for column_cells in ws.columns:
            max_length = 0
            column = column_cells[0].column_letter

            for cell in column_cells:
                if cell.value is not None:
                    max_length = max(max_length, len(str(cell.value)))

            ws.column_dimensions[column].width = min(max_length + 2, 50)
