"""Typed ledger operations on invoices, contacts, payments and credit notes."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog

from ledger_sync.config import OverpaymentPolicy, get_settings
from ledger_sync.ledger.auth import AuthGateway
from ledger_sync.ledger.errors import LedgerError, PaymentExceedsBalanceError
from ledger_sync.ledger.models import (
    ZERO,
    CreditNote,
    Invoice,
    LineItem,
    Lookup,
    Payment,
    PaymentOutcome,
    money_to_wire,
)

if TYPE_CHECKING:
    from ledger_sync.ingress.transaction import Transaction

logger = structlog.get_logger(__name__)

# The ledger refuses edits to a sent invoice unless a reason is given
ADJUSTMENT_REASON = "Adjusted to match updated source transaction"

ADJUSTMENT_DESCRIPTION = "Adjustment to payable amount"

# Largest page the ledger serves for list endpoints
PAGE_SIZE = 200


class LedgerClient:
    """Ledger operations, each routed through the :class:`AuthGateway`."""

    def __init__(
        self,
        gateway: AuthGateway | None = None,
        overpayment_policy: OverpaymentPolicy | None = None,
    ):
        settings = get_settings()
        self.gateway = gateway or AuthGateway()
        self.overpayment_policy = overpayment_policy or settings.overpayment_policy

    async def close(self) -> None:
        await self.gateway.close()

    async def __aenter__(self) -> LedgerClient:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    async def _call(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return await self.gateway.authorized_call(method, path, params=params, json=json)

    @staticmethod
    def _today() -> str:
        return date.today().isoformat()

    # === Invoice Endpoints ===

    async def find_invoice_by_reference(self, reference: str) -> Lookup[Invoice]:
        """Find the live invoice whose reference number is exactly ``reference``.

        The remote ``reference_number`` filter is not an exact match, so the
        candidates are filtered again locally. Voided invoices are ignored.
        """
        try:
            data = await self._call("GET", "/invoices", params={"reference_number": reference})
            matches = [
                summary
                for summary in data.get("invoices") or []
                if summary.get("reference_number") == reference
                and str(summary.get("status", "")).lower() != "void"
            ]
            if not matches:
                logger.debug("invoice_not_found", reference=reference)
                return Lookup.not_found()
            if len(matches) > 1:
                logger.warning(
                    "multiple_live_invoices",
                    reference=reference,
                    invoice_ids=[m.get("invoice_id") for m in matches],
                )
            invoice = await self.get_invoice(str(matches[0]["invoice_id"]))
        except LedgerError as e:
            logger.warning("invoice_lookup_failed", reference=reference, error=str(e))
            return Lookup.failed(e)

        return Lookup.found(invoice)

    async def get_invoice(self, invoice_id: str) -> Invoice:
        """Get invoice by ID, including its line items."""
        data = await self._call("GET", f"/invoices/{invoice_id}")
        return Invoice.from_api(data["invoice"])

    @staticmethod
    def build_line_items(transaction: Transaction) -> list[LineItem]:
        """One line per service, priced at its rate (missing price is zero)."""
        return [
            LineItem(description=line.description, rate=line.rate)
            for line in transaction.service_lines
        ]

    @staticmethod
    def payable_adjustment(transaction: Transaction) -> Decimal:
        """Gap between the payable amount and lines minus discount.

        The ledger computes an invoice total as lines - discount + adjustment
        and ignores a submitted total, so the gap goes into ``adjustment``.
        """
        return transaction.payable_amount - (
            transaction.service_total - transaction.discount_amount
        )

    def build_invoice_patch(self, transaction: Transaction) -> dict[str, Any]:
        """Invoice body fields derived from the transaction.

        ``adjustment`` is always sent so an update clears a stale one.
        """
        adjustment = self.payable_adjustment(transaction)
        patch: dict[str, Any] = {
            "line_items": [item.to_api() for item in self.build_line_items(transaction)],
            "adjustment": money_to_wire(adjustment),
        }
        if adjustment != 0:
            patch["adjustment_description"] = ADJUSTMENT_DESCRIPTION
        if transaction.discount_amount > 0:
            patch.update(
                {
                    "discount": money_to_wire(transaction.discount_amount),
                    "discount_type": "entity_level",
                    "is_discount_before_tax": True,
                }
            )
        return patch

    async def create_invoice(self, transaction: Transaction) -> Invoice:
        """Create the invoice for a transaction, resolving its customer first."""
        customer_id = await self.find_or_create_customer(transaction.customer_name)
        payload = {
            "customer_id": customer_id,
            "reference_number": transaction.transaction_id,
            "date": transaction.date.isoformat() if transaction.date else self._today(),
            **self.build_invoice_patch(transaction),
        }
        data = await self._call("POST", "/invoices", json=payload)
        invoice = Invoice.from_api(data["invoice"])
        logger.info(
            "invoice_created",
            invoice_id=invoice.invoice_id,
            reference=invoice.reference_number,
            total=str(invoice.total),
        )
        return invoice

    async def void_invoice(self, invoice_id: str) -> None:
        """Mark an invoice as void. Irreversible."""
        await self._call("POST", f"/invoices/{invoice_id}/status/void")
        logger.info("invoice_voided", invoice_id=invoice_id)

    async def update_invoice(self, invoice_id: str, patch: dict[str, Any]) -> Invoice:
        """Update an invoice in place, always carrying the adjustment reason."""
        body = {**patch, "reason": ADJUSTMENT_REASON}
        data = await self._call("PUT", f"/invoices/{invoice_id}", json=body)
        invoice = Invoice.from_api(data["invoice"])
        logger.info("invoice_updated", invoice_id=invoice_id, total=str(invoice.total))
        return invoice

    # === Contact Endpoints ===

    async def find_or_create_customer(self, name: str) -> str:
        """Return the id of the contact named exactly ``name``, creating it if needed."""
        data = await self._call("GET", "/contacts", params={"contact_name": name})
        for contact in data.get("contacts") or []:
            if contact.get("contact_name") == name:
                return str(contact["contact_id"])

        created = await self._call(
            "POST",
            "/contacts",
            json={"contact_name": name, "contact_type": "customer"},
        )
        customer_id = str(created["contact"]["contact_id"])
        logger.info("customer_created", customer_id=customer_id, name=name)
        return customer_id

    # === Payment Endpoints ===

    async def get_payment(self, payment_id: str) -> Payment:
        data = await self._call("GET", f"/customerpayments/{payment_id}")
        return Payment.from_api(data["payment"])

    async def find_payments_for_invoice(
        self, invoice_id: str, customer_id: str
    ) -> Lookup[list[Payment]]:
        """Find every payment of the customer that is applied to ``invoice_id``.

        A customer can hold unrelated payments, so each candidate's
        applications are checked for the invoice. All result pages are read.
        """
        linked: list[Payment] = []
        try:
            page = 1
            while True:
                data = await self._call(
                    "GET",
                    "/customerpayments",
                    params={"customer_id": customer_id, "page": page, "per_page": PAGE_SIZE},
                )
                for summary in data.get("customerpayments") or []:
                    if "invoices" in summary:
                        payment = Payment.from_api(summary)
                    else:
                        payment = await self.get_payment(str(summary["payment_id"]))
                    if payment.applies_to(invoice_id):
                        linked.append(payment)
                if not (data.get("page_context") or {}).get("has_more_page"):
                    break
                page += 1
        except LedgerError as e:
            logger.warning("payment_lookup_failed", invoice_id=invoice_id, error=str(e))
            return Lookup.failed(e)

        if not linked:
            return Lookup.not_found()
        return Lookup.found(linked)

    async def delete_payment(self, payment_id: str) -> None:
        await self._call("DELETE", f"/customerpayments/{payment_id}")
        logger.info("payment_deleted", payment_id=payment_id)

    async def create_payment(
        self, invoice_id: str, amount: Decimal, mode: str = "cash"
    ) -> PaymentOutcome:
        """Record a payment against an invoice, clamped to its balance.

        Under the credit-note policy the part above the balance is issued as
        a credit note; under the reject policy an overpayment raises
        :class:`PaymentExceedsBalanceError` before anything is written.
        """
        invoice = await self.get_invoice(invoice_id)
        balance = max(invoice.balance, ZERO)
        applied = min(amount, balance)

        if amount > applied and self.overpayment_policy == OverpaymentPolicy.REJECT:
            logger.warning(
                "payment_exceeds_balance",
                invoice_id=invoice_id,
                requested=str(amount),
                balance=str(balance),
            )
            raise PaymentExceedsBalanceError(
                invoice_id, amount, balance, transaction_id=invoice.reference_number
            )

        payment: Payment | None = None
        if applied > 0:
            data = await self._call(
                "POST",
                "/customerpayments",
                json={
                    "customer_id": invoice.customer_id,
                    "payment_mode": mode,
                    "amount": money_to_wire(applied),
                    "date": self._today(),
                    "reference_number": invoice.reference_number,
                    "invoices": [
                        {"invoice_id": invoice_id, "amount_applied": money_to_wire(applied)}
                    ],
                },
            )
            payment = Payment.from_api(data["payment"])
            logger.info(
                "payment_created",
                payment_id=payment.payment_id,
                invoice_id=invoice_id,
                applied=str(applied),
            )
        else:
            logger.info("payment_skipped_zero_balance", invoice_id=invoice_id)

        credit_note: CreditNote | None = None
        if amount > applied:
            credit_note = await self.create_credit_note(
                invoice.customer_id,
                amount - applied,
                f"Overpayment on invoice for transaction {invoice.reference_number}",
                reference_number=invoice.reference_number,
            )

        return PaymentOutcome(
            invoice_id=invoice_id,
            requested=amount,
            applied=applied,
            payment=payment,
            credit_note=credit_note,
        )

    # === Credit Note Endpoints ===

    async def create_credit_note(
        self,
        customer_id: str,
        amount: Decimal,
        note: str,
        reference_number: str = "",
    ) -> CreditNote:
        """Issue a credit note for funds not applied to any invoice."""
        data = await self._call(
            "POST",
            "/creditnotes",
            json={
                "customer_id": customer_id,
                "date": self._today(),
                "reference_number": reference_number,
                "line_items": [
                    {"description": note, "rate": money_to_wire(amount), "quantity": 1}
                ],
                "notes": note,
            },
        )
        credit_note = CreditNote.from_api(data["creditnote"])
        logger.info(
            "credit_note_created",
            creditnote_id=credit_note.creditnote_id,
            customer_id=customer_id,
            amount=str(amount),
        )
        return credit_note
