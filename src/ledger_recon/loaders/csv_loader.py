"""
CSV loaders for ledger transactions and structured statement records.
Reads exports with pandas and converts rows to the domain models.
"""

from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional
import logging

import pandas as pd

from ..models.transaction import LedgerTransaction, StatementTransaction, TransactionSource
from ..utils.exceptions import InvalidInputError, LoaderError
from ..utils.money import to_date, to_decimal

logger = logging.getLogger(__name__)

LEDGER_COLUMNS = {
    "id": "id",
    "account_id": "account_id",
    "date": "date",
    "amount": "amount",
    "debit": "debit",
    "credit": "credit",
    "description": "description",
    "reference": "reference_number",
    "source": "source",
    "created_at": "created_at",
    "is_verified": "is_verified",
}

STATEMENT_COLUMNS = {
    "date": "date",
    "amount": "amount",
    "debit": "debit",
    "credit": "credit",
    "description": "description",
    "reference": "reference_number",
}


class _CsvLoader:
    """Shared CSV reading and cell parsing."""

    default_columns: dict[str, str] = {}

    def __init__(
        self,
        column_mappings: Optional[dict[str, str]] = None,
        encoding: str = "utf-8",
        delimiter: str = ",",
        date_format: Optional[str] = None,
    ):
        """
        Initialize the loader.

        Args:
            column_mappings: Overrides of logical field name to CSV column
            encoding: File encoding
            delimiter: Field delimiter
            date_format: strptime format for dates; ISO dates when omitted
        """
        self.columns = {**self.default_columns, **(column_mappings or {})}
        self.encoding = encoding
        self.delimiter = delimiter
        self.date_format = date_format

    def _read(self, file_path: Path) -> pd.DataFrame:
        logger.info(f"Reading CSV file: {file_path}")
        try:
            df = pd.read_csv(
                file_path,
                encoding=self.encoding,
                delimiter=self.delimiter,
                dtype=str,
                keep_default_na=False,
            )
        except (OSError, UnicodeDecodeError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.error(f"Failed to read CSV file: {e}")
            raise LoaderError(f"Failed to read CSV file {file_path}: {e}") from e

        df.columns = [str(c).strip() for c in df.columns]
        if self.columns["date"] not in df.columns:
            raise LoaderError(f"{file_path}: missing required column '{self.columns['date']}'")
        has_amount = self.columns["amount"] in df.columns
        has_split = self.columns["debit"] in df.columns or self.columns["credit"] in df.columns
        if not has_amount and not has_split:
            raise LoaderError(
                f"{file_path}: needs an '{self.columns['amount']}' column or "
                f"'{self.columns['debit']}'/'{self.columns['credit']}' columns"
            )
        return df

    def _cell(self, row: pd.Series, field_name: str) -> Optional[str]:
        value = row.get(self.columns[field_name])
        if value is None or pd.isna(value):
            return None
        text = str(value).strip()
        return text or None

    def _parse_date(self, value: Optional[str]) -> date:
        if self.date_format and value:
            try:
                return datetime.strptime(value, self.date_format).date()
            except ValueError as e:
                raise InvalidInputError(f"date {value!r} does not match {self.date_format}") from e
        return to_date(value)

    def _parse_amount(self, row: pd.Series) -> Decimal:
        """
        Signed amount from an ``amount`` column, or ``credit - debit``.

        Currency symbols are stripped; parenthesised values are negative.
        """
        raw = self._cell(row, "amount")
        if raw is not None:
            return self._to_amount(raw, "amount")

        debit = self._cell(row, "debit")
        credit = self._cell(row, "credit")
        if debit is None and credit is None:
            raise InvalidInputError("amount is required")
        total = Decimal("0")
        if credit is not None:
            total += self._to_amount(credit, "credit")
        if debit is not None:
            total -= abs(self._to_amount(debit, "debit"))
        return total

    @staticmethod
    def _to_amount(raw: str, field_name: str) -> Decimal:
        text = raw.replace("$", "").replace(" ", "")
        if text.startswith("(") and text.endswith(")"):
            return -to_decimal(text[1:-1], field_name)
        return to_decimal(text, field_name)


class LedgerCsvLoader(_CsvLoader):
    """Loads ledger transactions exported from the household ledger."""

    default_columns = LEDGER_COLUMNS

    def load(
        self, file_path: Path, account_id: Optional[str] = None
    ) -> list[LedgerTransaction]:
        """
        Load ledger transactions from a CSV file.

        Rows that cannot be parsed are logged and skipped.

        Args:
            file_path: Path to the CSV file
            account_id: Account for rows without an ``account_id`` column

        Returns:
            Ledger transactions in file order

        Raises:
            LoaderError: If the file cannot be read or lacks required columns
        """
        df = self._read(file_path)
        if self.columns["account_id"] not in df.columns and not account_id:
            raise LoaderError(f"{file_path}: no account_id column and no account given")

        loaded_at = datetime.now()
        transactions: list[LedgerTransaction] = []
        for idx, row in df.iterrows():
            try:
                transactions.append(self._to_transaction(row, int(idx), account_id, loaded_at))
            except InvalidInputError as e:
                logger.warning(f"Row {idx}: {e}, skipping")

        logger.info(f"Loaded {len(transactions)} ledger transactions from {file_path}")
        return transactions

    def _to_transaction(
        self, row: pd.Series, idx: int, account_id: Optional[str], loaded_at: datetime
    ) -> LedgerTransaction:
        txn_account = self._cell(row, "account_id") or account_id
        if not txn_account:
            raise InvalidInputError("account_id is required")

        source_value = self._cell(row, "source")
        try:
            source = TransactionSource(source_value) if source_value else TransactionSource.CSV_IMPORT
        except ValueError as e:
            raise InvalidInputError(f"unknown source {source_value!r}") from e

        created_raw = self._cell(row, "created_at")
        try:
            created_at = datetime.fromisoformat(created_raw) if created_raw else loaded_at
        except ValueError as e:
            raise InvalidInputError(f"created_at is not an ISO timestamp: {created_raw!r}") from e

        verified = self._cell(row, "is_verified")

        return LedgerTransaction(
            id=self._cell(row, "id") or f"TXN-{idx:05d}",
            account_id=txn_account,
            date=self._parse_date(self._cell(row, "date")),
            amount=self._parse_amount(row),
            description=self._cell(row, "description") or "",
            reference_number=self._cell(row, "reference"),
            source=source,
            created_at=created_at,
            is_verified=_parse_bool(verified, default=True),
        )


class StatementCsvLoader(_CsvLoader):
    """
    Loads already-structured statement records (one row per statement line).

    This reads a tabular export; it does not extract lines from PDF or
    OFX statements.
    """

    default_columns = STATEMENT_COLUMNS

    def load(self, file_path: Path) -> list[StatementTransaction]:
        """
        Load statement lines from a CSV file.

        Raises:
            LoaderError: If the file cannot be read, lacks required columns,
                or any row is malformed
        """
        df = self._read(file_path)

        lines: list[StatementTransaction] = []
        errors: list[str] = []
        for idx, row in df.iterrows():
            try:
                lines.append(
                    StatementTransaction(
                        amount=self._parse_amount(row),
                        date=self._parse_date(self._cell(row, "date")),
                        description=self._cell(row, "description") or "",
                        reference_number=self._cell(row, "reference"),
                    )
                )
            except InvalidInputError as e:
                errors.append(f"row {idx}: {e}")

        # A statement with a dropped line cannot balance, so nothing is skipped
        if errors:
            raise LoaderError(f"{file_path}: invalid statement rows: " + "; ".join(errors))

        logger.info(f"Loaded {len(lines)} statement lines from {file_path}")
        return lines


def _parse_bool(value: Optional[Any], default: bool) -> bool:
    if value is None:
        return default
    return str(value).strip().lower() in ("1", "true", "yes", "y")
