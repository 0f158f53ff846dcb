"""ledger-sync - reconciles transaction webhooks into ledger invoices and payments."""

__version__ = "0.1.0"

from ledger_sync.config import configure_logging, get_settings
from ledger_sync.ingress import Transaction, parse_webhook_payload
from ledger_sync.ledger import AuthGateway, LedgerClient
from ledger_sync.reconciliation import (
    ReconciliationEngine,
    ReconciliationResult,
    ReconcileOutcome,
)

__all__ = [
    # Version
    "__version__",
    # Ledger
    "AuthGateway",
    "LedgerClient",
    # Reconciliation
    "Transaction",
    "parse_webhook_payload",
    "ReconciliationEngine",
    "ReconciliationResult",
    "ReconcileOutcome",
    # Config
    "get_settings",
    "configure_logging",
]
