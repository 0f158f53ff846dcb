"""Reconciliation of transactions against the ledger."""

from ledger_sync.reconciliation.engine import (
    InvoiceDiff,
    ReconciliationEngine,
    ReconciliationResult,
    ReconcileOutcome,
    diff_invoice,
)

__all__ = [
    "InvoiceDiff",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReconcileOutcome",
    "diff_invoice",
]
