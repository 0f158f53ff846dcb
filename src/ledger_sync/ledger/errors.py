"""Exceptions raised by the ledger client and the reconciliation engine."""

from typing import Any


class LedgerError(Exception):
    """Base exception for ledger API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: int | None = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.details = details


class LedgerRequestError(LedgerError):
    """The ledger rejected a request, or it could not be delivered."""

    pass


class LedgerTimeoutError(LedgerError):
    """An outbound ledger call exceeded its timeout."""

    pass


class TokenRefreshError(LedgerError):
    """The access token could not be refreshed."""

    pass


class ReconciliationError(Exception):
    """Base exception for reconciliation failures."""

    def __init__(self, message: str, transaction_id: str | None = None):
        super().__init__(message)
        self.transaction_id = transaction_id


class ReconciliationRejected(ReconciliationError):
    """A business rule blocked the reconciliation (client-side problem)."""

    pass


class InvalidTransactionError(ReconciliationRejected):
    """The inbound event does not describe a usable transaction."""

    pass


class PaymentExceedsBalanceError(ReconciliationRejected):
    """A payment is larger than the remaining invoice balance."""

    def __init__(
        self,
        invoice_id: str | None,
        requested: Any,
        balance: Any,
        transaction_id: str | None = None,
    ):
        target = f"invoice {invoice_id}" if invoice_id else f"transaction {transaction_id}"
        super().__init__(
            f"Payment of {requested} exceeds balance {balance} of {target}",
            transaction_id=transaction_id,
        )
        self.invoice_id = invoice_id
        self.requested = requested
        self.balance = balance


class PaymentRemovalError(ReconciliationError):
    """An attached payment could not be removed before voiding its invoice."""

    pass


class LookupFailedError(ReconciliationError):
    """The existing invoice for a transaction could not be looked up."""

    pass
