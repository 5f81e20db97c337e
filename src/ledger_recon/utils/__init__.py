"""Utility modules."""

from .exceptions import (
    ReconciliationError,
    InvalidInputError,
    NotFoundError,
    InvalidSessionStateError,
    ConflictingSessionError,
    AlreadyMatchedError,
    NoMatchFoundError,
    AccountMismatchError,
    UnresolvedTransactionsError,
    MergeError,
    AlreadyMergedError,
    SelfMergeError,
    CrossAccountError,
    NotMergedError,
    ConfigurationError,
    LoaderError,
    ReportGenerationError,
)
from .logging_config import setup_logging

__all__ = [
    "ReconciliationError",
    "InvalidInputError",
    "NotFoundError",
    "InvalidSessionStateError",
    "ConflictingSessionError",
    "AlreadyMatchedError",
    "NoMatchFoundError",
    "AccountMismatchError",
    "UnresolvedTransactionsError",
    "MergeError",
    "AlreadyMergedError",
    "SelfMergeError",
    "CrossAccountError",
    "NotMergedError",
    "ConfigurationError",
    "LoaderError",
    "ReportGenerationError",
    "setup_logging",
]
