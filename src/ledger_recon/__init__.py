"""Bank statement reconciliation and duplicate transaction merging for a household ledger."""

__version__ = "0.1.0"
