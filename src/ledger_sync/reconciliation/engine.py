"""Reconciliation of one transaction against its ledger invoice and payment.

For each transaction the engine decides between three paths:

- no live invoice for the transaction id: create it and record the payment;
- an invoice that already matches: do nothing (replays are free of writes);
- an invoice that differs: remove its payments, repair the invoice by voiding
  and recreating it (or by updating it in place, depending on the configured
  policy) and record the payment again.

Payments are always removed before the invoice they are applied to is voided.
Under the reject overpayment policy an overpaid transaction is refused before
anything is written.
"""

from dataclasses import dataclass, field
from enum import Enum

import structlog

from ledger_sync.config import InvoiceRepairPolicy, OverpaymentPolicy, get_settings
from ledger_sync.ingress.transaction import Transaction
from ledger_sync.ledger.client import LedgerClient
from ledger_sync.ledger.errors import (
    LedgerError,
    LookupFailedError,
    PaymentExceedsBalanceError,
    PaymentRemovalError,
)
from ledger_sync.ledger.models import CENT, Invoice, PaymentOutcome

logger = structlog.get_logger(__name__)


class ReconcileOutcome(str, Enum):
    """Which path a reconciliation took."""

    CREATED = "created"
    UNCHANGED = "unchanged"
    RECREATED = "recreated"
    UPDATED = "updated"


@dataclass(frozen=True)
class InvoiceDiff:
    """Differences between a ledger invoice and the current transaction."""

    descriptions_changed: bool = False
    rates_changed: bool = False
    total_changed: bool = False
    no_line_items: bool = False

    def __bool__(self) -> bool:
        return (
            self.descriptions_changed
            or self.rates_changed
            or self.total_changed
            or self.no_line_items
        )

    def reasons(self) -> list[str]:
        return [name for name, changed in vars(self).items() if changed]


def diff_invoice(invoice: Invoice, transaction: Transaction) -> InvoiceDiff:
    """Compare line descriptions (in order), summed rates and the payable total."""
    descriptions = [item.description for item in invoice.line_items]
    return InvoiceDiff(
        descriptions_changed=descriptions != transaction.descriptions,
        rates_changed=invoice.line_total.quantize(CENT)
        != transaction.service_total.quantize(CENT),
        total_changed=invoice.total.quantize(CENT)
        != transaction.payable_amount.quantize(CENT),
        no_line_items=not invoice.line_items,
    )


@dataclass
class ReconciliationResult:
    """Outcome of reconciling one transaction."""

    outcome: ReconcileOutcome
    transaction_id: str
    invoice_id: str
    message: str
    payment: PaymentOutcome | None = None
    previous_invoice_id: str | None = None
    changes: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "message": self.message,
            "outcome": self.outcome.value,
            "transaction_id": self.transaction_id,
            "invoice_id": self.invoice_id,
        }
        if self.previous_invoice_id:
            data["previous_invoice_id"] = self.previous_invoice_id
        if self.payment is not None:
            data["payment"] = {
                "requested": str(self.payment.requested),
                "applied": str(self.payment.applied),
                "payment_id": self.payment.payment.payment_id if self.payment.payment else None,
                "credit_note_id": (
                    self.payment.credit_note.creditnote_id if self.payment.credit_note else None
                ),
            }
        return data


class ReconciliationEngine:
    """Brings the ledger in line with a single transaction."""

    def __init__(
        self,
        client: LedgerClient,
        repair_policy: InvoiceRepairPolicy | None = None,
        default_payment_mode: str | None = None,
    ):
        settings = get_settings()
        self._client = client
        self.repair_policy = repair_policy or settings.invoice_repair_policy
        self._default_payment_mode = default_payment_mode or settings.default_payment_mode

    async def reconcile(self, transaction: Transaction) -> ReconciliationResult:
        """Reconcile ``transaction``; any failure propagates to the caller."""
        log = logger.bind(transaction_id=transaction.transaction_id)

        lookup = await self._client.find_invoice_by_reference(transaction.transaction_id)
        if lookup.is_error:
            raise LookupFailedError(
                f"Could not look up invoice for transaction {transaction.transaction_id}: "
                f"{lookup.error}",
                transaction_id=transaction.transaction_id,
            )

        existing = lookup.value
        if existing is None:
            log.info("no_existing_invoice")
            self._refuse_overpayment(transaction)
            invoice = await self._client.create_invoice(transaction)
            payment = await self._record_payment(invoice, transaction)
            return ReconciliationResult(
                outcome=ReconcileOutcome.CREATED,
                transaction_id=transaction.transaction_id,
                invoice_id=invoice.invoice_id,
                message="Invoice processed successfully",
                payment=payment,
            )

        diff = diff_invoice(existing, transaction)
        if not diff:
            log.info("invoice_unchanged", invoice_id=existing.invoice_id)
            return ReconciliationResult(
                outcome=ReconcileOutcome.UNCHANGED,
                transaction_id=transaction.transaction_id,
                invoice_id=existing.invoice_id,
                message="Invoice already matches transaction; no changes made",
            )

        log.info(
            "invoice_changed",
            invoice_id=existing.invoice_id,
            changes=diff.reasons(),
            policy=self.repair_policy.value,
        )
        self._refuse_overpayment(transaction)

        if self.repair_policy == InvoiceRepairPolicy.VOID_AND_RECREATE:
            await self._remove_payments_before_void(existing)
            await self._client.void_invoice(existing.invoice_id)
            invoice = await self._client.create_invoice(transaction)
            outcome = ReconcileOutcome.RECREATED
            message = "Invoice voided and recreated"
        else:
            await self._remove_payments_best_effort(existing)
            patch = self._client.build_invoice_patch(transaction)
            if transaction.discount_amount <= 0 and existing.discount > 0:
                patch["discount"] = 0
            invoice = await self._client.update_invoice(existing.invoice_id, patch)
            outcome = ReconcileOutcome.UPDATED
            message = "Invoice updated"

        payment = await self._record_payment(invoice, transaction)
        return ReconciliationResult(
            outcome=outcome,
            transaction_id=transaction.transaction_id,
            invoice_id=invoice.invoice_id,
            message=message,
            payment=payment,
            previous_invoice_id=(
                existing.invoice_id if outcome == ReconcileOutcome.RECREATED else None
            ),
            changes=diff.reasons(),
        )

    def _refuse_overpayment(self, transaction: Transaction) -> None:
        """Under the reject policy, refuse before the first write.

        The new or patched invoice carries exactly the payable amount, so that
        is the balance the payment will be checked against.
        """
        if self._client.overpayment_policy != OverpaymentPolicy.REJECT:
            return
        if transaction.total_amount_paid > transaction.payable_amount:
            logger.warning(
                "payment_exceeds_payable",
                transaction_id=transaction.transaction_id,
                paid=str(transaction.total_amount_paid),
                payable=str(transaction.payable_amount),
            )
            raise PaymentExceedsBalanceError(
                None,
                transaction.total_amount_paid,
                transaction.payable_amount,
                transaction_id=transaction.transaction_id,
            )

    async def _record_payment(
        self, invoice: Invoice, transaction: Transaction
    ) -> PaymentOutcome | None:
        if transaction.total_amount_paid <= 0:
            logger.info(
                "payment_not_recorded",
                invoice_id=invoice.invoice_id,
                reason="nothing paid",
            )
            return None
        return await self._client.create_payment(
            invoice.invoice_id,
            transaction.total_amount_paid,
            transaction.payment_mode or self._default_payment_mode,
        )

    async def _remove_payments_before_void(self, invoice: Invoice) -> None:
        """Delete the invoice's payments; the void must not proceed otherwise."""
        lookup = await self._client.find_payments_for_invoice(
            invoice.invoice_id, invoice.customer_id
        )
        if lookup.is_error:
            raise PaymentRemovalError(
                f"Could not check payments of invoice {invoice.invoice_id}: {lookup.error}",
                transaction_id=invoice.reference_number,
            )

        for payment in lookup.value or []:
            try:
                await self._client.delete_payment(payment.payment_id)
            except LedgerError as e:
                logger.error(
                    "payment_delete_failed",
                    payment_id=payment.payment_id,
                    invoice_id=invoice.invoice_id,
                    error=str(e),
                )
                raise PaymentRemovalError(
                    f"Could not delete payment {payment.payment_id} "
                    f"before voiding invoice {invoice.invoice_id}: {e}",
                    transaction_id=invoice.reference_number,
                ) from e

    async def _remove_payments_best_effort(self, invoice: Invoice) -> None:
        """Delete the invoice's payments; failures are logged and tolerated."""
        lookup = await self._client.find_payments_for_invoice(
            invoice.invoice_id, invoice.customer_id
        )
        if lookup.is_error:
            logger.warning("payment_lookup_skipped", invoice_id=invoice.invoice_id)
            return

        for payment in lookup.value or []:
            try:
                await self._client.delete_payment(payment.payment_id)
            except LedgerError as e:
                logger.warning(
                    "payment_delete_failed",
                    payment_id=payment.payment_id,
                    invoice_id=invoice.invoice_id,
                    error=str(e),
                )
