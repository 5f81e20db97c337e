"""Custom exceptions for the reconciliation and merge core."""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for reconciliation errors."""

    pass


class InvalidInputError(ReconciliationError):
    """Malformed request data; rejected before any state change."""

    pass


class NotFoundError(ReconciliationError):
    """Referenced session, statement line, transaction or account does not exist."""

    pass


class InvalidSessionStateError(ReconciliationError):
    """Operation attempted while the session is not in a legal state for it."""

    pass


class ConflictingSessionError(ReconciliationError):
    """An open reconciliation session already exists for the account."""

    pass


class AlreadyMatchedError(ReconciliationError):
    """Statement line or ledger transaction already has a match in the session."""

    pass


class NoMatchFoundError(ReconciliationError):
    """Unmatch requested for a statement line that has no match."""

    pass


class AccountMismatchError(ReconciliationError):
    """Ledger transaction does not belong to the session's account."""

    pass


class UnresolvedTransactionsError(ReconciliationError):
    """Completion attempted with statement lines that are still unresolved."""

    def __init__(self, message: str, unresolved_ids: Optional[list[str]] = None):
        super().__init__(message)
        self.unresolved_ids = unresolved_ids or []


class MergeError(ReconciliationError):
    """Base class for merge failures."""

    pass


class AlreadyMergedError(MergeError):
    """Source or target has already been merged into another transaction."""

    pass


class SelfMergeError(MergeError):
    """A transaction cannot be merged into itself."""

    pass


class CrossAccountError(MergeError):
    """Transactions belong to different accounts."""

    pass


class NotMergedError(MergeError):
    """Unmerge requested for a transaction that is not merged."""

    pass


class ConfigurationError(ReconciliationError):
    """Error in configuration."""

    pass


class LoaderError(ReconciliationError):
    """Error loading transaction records from a file."""

    pass


class ReportGenerationError(ReconciliationError):
    """Error generating Excel report."""

    pass
