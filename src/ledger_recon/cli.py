"""
Command-line interface for ledger reconciliation and duplicate merging.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional
import logging
import sys

import click
import pandas as pd
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .config import ReconConfig, generate_default_config, load_config
from .events import AuditLogObserver, EventBus, EventRecorder
from .loaders.csv_loader import LedgerCsvLoader, StatementCsvLoader
from .merge.engine import DuplicateGroup, MergeEngine
from .models.session import ReconciliationSummary
from .models.transaction import LedgerTransaction
from .reconciliation.service import ReconciliationService
from .reports.excel_generator import ExcelReportGenerator
from .stores.memory import (
    InMemoryAccountStore,
    InMemoryLedgerStore,
    InMemorySessionRepository,
)
from .utils.exceptions import ReconciliationError, UnresolvedTransactionsError
from .utils.logging_config import setup_logging
from .utils.money import format_amount, to_date, to_decimal

console = Console()


@click.group()
@click.version_option(version=__version__)
def main():
    """Household ledger reconciliation and duplicate merge tool."""
    pass


@main.command()
@click.argument("ledger_file", type=click.Path(exists=True, path_type=Path))
@click.argument("statement_file", type=click.Path(exists=True, path_type=Path))
@click.option("-a", "--account", "account_id", required=True, help="Account being reconciled")
@click.option("--start", "start_date", required=True, help="Statement period start (YYYY-MM-DD)")
@click.option("--end", "end_date", required=True, help="Statement period end (YYYY-MM-DD)")
@click.option("-b", "--statement-balance", required=True, help="Closing balance on the statement")
@click.option(
    "--initial-balance",
    default="0",
    show_default=True,
    help="Account balance before the first ledger transaction",
)
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("-o", "--output", type=click.Path(path_type=Path), help="Output Excel file path")
@click.option("--force", is_flag=True, help="Complete even with unresolved statement lines")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option(
    "--dry-run", is_flag=True, help="Match and show the summary without completing the session"
)
def reconcile(
    ledger_file: Path,
    statement_file: Path,
    account_id: str,
    start_date: str,
    end_date: str,
    statement_balance: str,
    initial_balance: str,
    config: Optional[Path],
    output: Optional[Path],
    force: bool,
    verbose: bool,
    dry_run: bool,
):
    """
    Reconcile a bank statement against ledger transactions.

    LEDGER_FILE: CSV export of ledger transactions
    STATEMENT_FILE: CSV of statement lines (date, amount, description, reference_number)
    """
    try:
        recon_config = load_config(config)
        _setup_logging(recon_config, verbose)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task("Loading ledger CSV...", total=None)
            ledger_rows = LedgerCsvLoader().load(ledger_file, account_id=account_id)
            progress.update(task, completed=True)

            task = progress.add_task("Loading statement CSV...", total=None)
            statement_lines = StatementCsvLoader().load(statement_file)
            progress.update(task, completed=True)

            ledger = InMemoryLedgerStore(ledger_rows)
            accounts = InMemoryAccountStore(ledger)
            accounts.add_account(account_id, to_decimal(initial_balance, "initial balance"))

            events = EventBus()
            recorder = EventRecorder()
            events.subscribe(AuditLogObserver())
            events.subscribe(recorder)

            service = ReconciliationService(
                InMemorySessionRepository(), ledger, accounts, config=recon_config, events=events
            )

            task = progress.add_task("Running reconciliation...", total=None)
            session = service.start(account_id, start_date, end_date, statement_balance)
            service.upload_statement(session.id, statement_lines)
            progress.update(task, completed=True)

        if dry_run:
            _display_summary(service.summarize(session.id), recon_config)
            console.print("\n[yellow]Dry run - session left open, no report generated[/yellow]")
            return

        try:
            summary = service.complete(session.id, force=force)
        except UnresolvedTransactionsError as e:
            _display_unresolved(service, session.id, e.unresolved_ids, recon_config)
            console.print(f"[red]Error: {e}[/red]")
            console.print("Use --force to complete anyway.")
            sys.exit(1)

        _display_summary(summary, recon_config)

        if output is None:
            now = datetime.now()
            output = Path(
                recon_config.report.filename_template.format(
                    date=now.strftime("%Y%m%d"), time=now.strftime("%H%M%S")
                )
            )

        completed = service.get_session(session.id)
        matched_ids = completed.matched_transaction_ids
        report_path = ExcelReportGenerator(recon_config).generate_report(
            session=completed,
            summary=summary,
            ledger_transactions=[ledger.get_by_id(t) for t in matched_ids],
            unmatched_ledger=service.unmatched_ledger_transactions(session.id),
            output_path=output,
            events=recorder.events,
        )
        console.print(f"\n[green]Report generated: {report_path}[/green]")

    except ReconciliationError as e:
        console.print(f"[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@main.command()
@click.argument("ledger_file", type=click.Path(exists=True, path_type=Path))
@click.option("-a", "--account", "account_id", required=True, help="Account to scan")
@click.option("--start", "start_date", default=None, help="Only transactions on or after (YYYY-MM-DD)")
@click.option("--end", "end_date", default=None, help="Only transactions on or before (YYYY-MM-DD)")
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option("--auto-merge", is_flag=True, help="Merge groups at or above the confidence threshold")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), help="Write the ledger with merge state to CSV"
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def duplicates(
    ledger_file: Path,
    account_id: str,
    start_date: Optional[str],
    end_date: Optional[str],
    config: Optional[Path],
    auto_merge: bool,
    output: Optional[Path],
    verbose: bool,
):
    """
    Find suspected duplicate ledger transactions.

    LEDGER_FILE: CSV export of ledger transactions
    """
    try:
        recon_config = load_config(config)
        _setup_logging(recon_config, verbose)

        ledger = InMemoryLedgerStore(LedgerCsvLoader().load(ledger_file, account_id=account_id))
        events = EventBus()
        events.subscribe(AuditLogObserver())
        engine = MergeEngine(ledger, recon_config.duplicates, events=events)

        start = to_date(start_date, "start") if start_date else None
        end = to_date(end_date, "end") if end_date else None
        groups = engine.find_duplicate_groups(account_id, start, end)
        _display_groups(groups, recon_config)

        if auto_merge:
            merged = engine.auto_merge(account_id, start, end)
            merged_count = sum(len(g.duplicate_ids) for g in merged)
            console.print(
                f"\n[green]Merged {merged_count} transactions in {len(merged)} groups[/green]"
            )
            if merged:
                _display_merged(engine, merged)

        if output is not None:
            _write_ledger_csv(ledger.list_for_account(account_id, include_merged=True), output)
            console.print(f"[green]Ledger written: {output}[/green]")

    except ReconciliationError as e:
        console.print(f"[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


def _setup_logging(config: ReconConfig, verbose: bool) -> None:
    log_config = config.logging
    setup_logging(
        logging.DEBUG if verbose else log_config.level,
        log_file=Path(log_config.file) if log_config.file else None,
        log_format=log_config.format,
        audit_file=Path(log_config.audit_file) if log_config.audit_file else None,
    )


def _display_summary(summary: ReconciliationSummary, config: ReconConfig) -> None:
    """Display reconciliation summary in console."""
    symbol = config.report.currency_symbol
    table = Table(title="Reconciliation Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Status", summary.status.value)
    table.add_row("Statement Transactions", str(summary.statement_transaction_count))
    table.add_row("Matched", str(summary.matched_count))
    table.add_row("Excluded", str(summary.excluded_count))
    table.add_row("Unresolved", str(len(summary.unresolved_ids)))
    table.add_row("Match Rate", f"{summary.match_rate:.1f}%")
    table.add_row("Opening Balance", format_amount(summary.opening_balance, symbol))
    table.add_row("Matched Activity", format_amount(summary.matched_sum, symbol))
    table.add_row("Adjustments", format_amount(summary.adjustment_sum, symbol))
    table.add_row("Computed Balance", format_amount(summary.computed_balance, symbol))
    table.add_row("Statement Balance", format_amount(summary.statement_balance, symbol))
    style = "green" if summary.is_balanced else "yellow"
    table.add_row("Variance", f"[{style}]{format_amount(summary.variance, symbol)}[/{style}]")

    console.print(table)


def _display_unresolved(
    service: ReconciliationService,
    session_id: str,
    unresolved_ids: list[str],
    config: ReconConfig,
) -> None:
    session = service.get_session(session_id)
    table = Table(title="Unresolved Statement Transactions")
    table.add_column("Date")
    table.add_column("Reference")
    table.add_column("Amount", justify="right")
    table.add_column("Description")

    for line_id in unresolved_ids:
        line = session.get_statement_line(line_id)
        table.add_row(
            str(line.date),
            line.reference_number or "-",
            format_amount(line.amount, config.report.currency_symbol),
            line.description[:40] + "..." if len(line.description) > 40 else line.description,
        )
    console.print(table)


def _display_groups(groups: list[DuplicateGroup], config: ReconConfig) -> None:
    if not groups:
        console.print("No suspected duplicates found.")
        return

    table = Table(title="Suspected Duplicates")
    table.add_column("Group", justify="right")
    table.add_column("Transaction")
    table.add_column("Date")
    table.add_column("Amount", justify="right")
    table.add_column("Description")
    table.add_column("Confidence", justify="right")

    for number, group in enumerate(groups, start=1):
        for txn in group.transactions:
            marker = " (primary)" if txn.id == group.primary_id else ""
            table.add_row(
                str(number),
                f"{txn.id}{marker}",
                str(txn.date),
                format_amount(txn.amount, config.report.currency_symbol),
                txn.description,
                f"{group.confidence:.1f}",
            )
    console.print(table)


def _display_merged(engine: MergeEngine, groups: list[DuplicateGroup]) -> None:
    """Show the records folded into each surviving transaction."""
    table = Table(title="Merged Transactions")
    table.add_column("Survivor")
    table.add_column("Merged")
    table.add_column("Merged At")

    for group in groups:
        for txn in engine.get_merged(group.primary_id):
            table.add_row(
                group.primary_id,
                txn.id,
                txn.merged_at.strftime("%Y-%m-%d %H:%M:%S") if txn.merged_at else "",
            )
    console.print(table)


def _write_ledger_csv(transactions: list[LedgerTransaction], output: Path) -> None:
    rows = [
        {
            "id": t.id,
            "account_id": t.account_id,
            "date": t.date.isoformat(),
            "amount": str(t.amount),
            "description": t.description,
            "reference_number": t.reference_number or "",
            "source": t.source.value,
            "created_at": t.created_at.isoformat(),
            "is_verified": t.is_verified,
            "is_merged": t.is_merged,
            "merged_into_id": t.merged_into_id or "",
            "merged_at": t.merged_at.isoformat() if t.merged_at else "",
        }
        for t in transactions
    ]
    output.parent.mkdir(parents=True, exist_ok=True)
    pd.DataFrame(rows).to_csv(output, index=False)


if __name__ == "__main__":
    main()
