"""Ledger API access: authentication gateway, typed client and entities."""

from ledger_sync.ledger.auth import AuthGateway, CredentialStore
from ledger_sync.ledger.client import ADJUSTMENT_REASON, LedgerClient
from ledger_sync.ledger.errors import (
    InvalidTransactionError,
    LedgerError,
    LedgerRequestError,
    LedgerTimeoutError,
    LookupFailedError,
    PaymentExceedsBalanceError,
    PaymentRemovalError,
    ReconciliationError,
    ReconciliationRejected,
    TokenRefreshError,
)
from ledger_sync.ledger.models import (
    CreditNote,
    Invoice,
    LineItem,
    Lookup,
    Payment,
    PaymentApplication,
    PaymentOutcome,
)

__all__ = [
    # Gateway & client
    "AuthGateway",
    "CredentialStore",
    "LedgerClient",
    "ADJUSTMENT_REASON",
    # Entities
    "CreditNote",
    "Invoice",
    "LineItem",
    "Lookup",
    "Payment",
    "PaymentApplication",
    "PaymentOutcome",
    # Errors
    "LedgerError",
    "LedgerRequestError",
    "LedgerTimeoutError",
    "TokenRefreshError",
    "ReconciliationError",
    "ReconciliationRejected",
    "InvalidTransactionError",
    "PaymentExceedsBalanceError",
    "PaymentRemovalError",
    "LookupFailedError",
]
