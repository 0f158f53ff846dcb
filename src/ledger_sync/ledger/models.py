"""Ledger entities as returned by the ledger API.

Records are parsed from the raw JSON the ledger returns into small frozen
dataclasses. Money is always ``Decimal`` quantized to cents.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Generic, TypeVar

T = TypeVar("T")

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce a ledger amount (number, string or None) to a cent-quantized Decimal."""
    if value is None or value == "":
        return ZERO
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return ZERO
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def money_to_wire(value: Decimal) -> float:
    """Ledger API expects JSON numbers for amounts."""
    return float(value.quantize(CENT, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class LineItem:
    """One invoice line."""

    description: str
    rate: Decimal
    quantity: Decimal = Decimal("1")
    line_item_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "LineItem":
        quantity = data.get("quantity")
        return cls(
            description=str(data.get("description") or data.get("name") or ""),
            rate=to_money(data.get("rate")),
            quantity=Decimal(str(quantity)) if quantity not in (None, "") else Decimal("1"),
            line_item_id=data.get("line_item_id"),
        )

    def to_api(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "rate": money_to_wire(self.rate),
            "quantity": float(self.quantity),
        }


@dataclass(frozen=True)
class Invoice:
    """Ledger invoice, keyed by ``reference_number`` == transaction id."""

    invoice_id: str
    customer_id: str
    reference_number: str
    status: str
    total: Decimal
    balance: Decimal
    discount: Decimal = ZERO
    line_items: tuple[LineItem, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Invoice":
        return cls(
            invoice_id=str(data["invoice_id"]),
            customer_id=str(data.get("customer_id") or ""),
            reference_number=str(data.get("reference_number") or ""),
            status=str(data.get("status") or "draft"),
            total=to_money(data.get("total")),
            balance=to_money(data.get("balance")),
            discount=to_money(data.get("discount_amount", data.get("discount"))),
            line_items=tuple(LineItem.from_api(item) for item in data.get("line_items") or []),
        )

    @property
    def is_void(self) -> bool:
        return self.status.lower() == "void"

    @property
    def line_total(self) -> Decimal:
        """Sum of line rates (quantity ignored, lines are created with quantity 1)."""
        return sum((item.rate for item in self.line_items), ZERO)


@dataclass(frozen=True)
class PaymentApplication:
    """Portion of a payment applied to a single invoice."""

    invoice_id: str
    amount_applied: Decimal


@dataclass(frozen=True)
class Payment:
    """Customer payment and the invoices it is applied to."""

    payment_id: str
    customer_id: str
    amount: Decimal
    payment_mode: str = ""
    applications: tuple[PaymentApplication, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Payment":
        return cls(
            payment_id=str(data["payment_id"]),
            customer_id=str(data.get("customer_id") or ""),
            amount=to_money(data.get("amount")),
            payment_mode=str(data.get("payment_mode") or ""),
            applications=tuple(
                PaymentApplication(
                    invoice_id=str(app.get("invoice_id")),
                    amount_applied=to_money(app.get("amount_applied")),
                )
                for app in data.get("invoices") or []
            ),
        )

    def applies_to(self, invoice_id: str) -> bool:
        return any(app.invoice_id == invoice_id for app in self.applications)

    def applied_amount(self, invoice_id: str) -> Decimal:
        return sum(
            (app.amount_applied for app in self.applications if app.invoice_id == invoice_id),
            ZERO,
        )


@dataclass(frozen=True)
class CreditNote:
    """Funds received but not applied to any invoice balance."""

    creditnote_id: str
    customer_id: str
    total: Decimal
    reference_number: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "CreditNote":
        return cls(
            creditnote_id=str(data["creditnote_id"]),
            customer_id=str(data.get("customer_id") or ""),
            total=to_money(data.get("total")),
            reference_number=str(data.get("reference_number") or ""),
        )


@dataclass(frozen=True)
class PaymentOutcome:
    """Result of recording a payment against an invoice."""

    invoice_id: str
    requested: Decimal
    applied: Decimal
    payment: Payment | None = None
    credit_note: CreditNote | None = None

    @property
    def excess(self) -> Decimal:
        return self.requested - self.applied


@dataclass(frozen=True)
class Lookup(Generic[T]):
    """Outcome of a lookup that distinguishes absence from failure."""

    value: T | None = None
    error: Exception | None = field(default=None, compare=False)

    @classmethod
    def found(cls, value: T) -> "Lookup[T]":
        return cls(value=value)

    @classmethod
    def not_found(cls) -> "Lookup[T]":
        return cls()

    @classmethod
    def failed(cls, error: Exception) -> "Lookup[T]":
        return cls(error=error)

    @property
    def is_found(self) -> bool:
        return self.value is not None

    @property
    def is_missing(self) -> bool:
        return self.value is None and self.error is None

    @property
    def is_error(self) -> bool:
        return self.error is not None
