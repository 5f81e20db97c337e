"""Reconciliation session lifecycle."""

from .service import ReconciliationService

__all__ = ["ReconciliationService"]
