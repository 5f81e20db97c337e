"""CSV loaders for ledger and statement records."""

from .csv_loader import LedgerCsvLoader, StatementCsvLoader

__all__ = ["LedgerCsvLoader", "StatementCsvLoader"]
