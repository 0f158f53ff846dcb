"""Transaction schema and webhook payload parsing.

The data source posts table rows whose cells come in several shapes: plain
strings and numbers, or lists of ``{"id": ..., "value": ...}`` objects for
link-row, lookup and multiple-select fields. Parsing distinguishes an absent
cell (documented default) from a malformed one (event rejected).
"""

import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ledger_sync.ledger.errors import InvalidTransactionError
from ledger_sync.ledger.models import ZERO, to_money

UNKNOWN_CUSTOMER = "Unknown Patient"
DEFAULT_SERVICE = "Service"

NAME_FIELDS = ("Patient Name", "Customer Name")


class ServiceLine(BaseModel):
    """A billed service and its price."""

    model_config = ConfigDict(frozen=True)

    description: str
    rate: Decimal = Field(default=ZERO, ge=0)


class Transaction(BaseModel):
    """A transaction event, immutable once received."""

    model_config = ConfigDict(frozen=True)

    transaction_id: str = Field(..., min_length=1)
    customer_name: str = UNKNOWN_CUSTOMER
    service_lines: tuple[ServiceLine, ...] = ()
    payable_amount: Decimal = Field(default=ZERO, ge=0)
    discount_amount: Decimal = Field(default=ZERO, ge=0)
    total_amount_paid: Decimal = Field(default=ZERO, ge=0)
    payment_mode: str | None = None
    date: datetime.date | None = None

    @property
    def service_total(self) -> Decimal:
        return sum((line.rate for line in self.service_lines), ZERO)

    @property
    def descriptions(self) -> list[str]:
        return [line.description for line in self.service_lines]

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Transaction":
        """Build a transaction from a data-source row."""
        raw_id = row.get("Transaction ID")
        transaction_id = _scalar(raw_id)
        if transaction_id is None or not str(transaction_id).strip():
            raise InvalidTransactionError("Missing 'Transaction ID'")
        transaction_id = str(transaction_id).strip()

        customer_name = UNKNOWN_CUSTOMER
        for name_field in NAME_FIELDS:
            names = _cell_values(row.get(name_field))
            if names and names[0].strip():
                customer_name = names[0].strip()
                break

        services = _cell_values(row.get("Services"), split=True)
        prices = _cell_values(row.get("Prices"), split=True)
        service_lines = []
        for index, service in enumerate(services):
            price = prices[index] if index < len(prices) else None
            service_lines.append(
                ServiceLine(
                    description=service.strip() or DEFAULT_SERVICE,
                    rate=_money(price, f"Prices[{index}]", transaction_id),
                )
            )

        mode = _scalar(row.get("Payment Mode"))
        raw_date = _scalar(row.get("Date"))

        try:
            return cls(
                transaction_id=transaction_id,
                customer_name=customer_name,
                service_lines=tuple(service_lines),
                payable_amount=_money(row.get("Payable Amount"), "Payable Amount", transaction_id),
                discount_amount=_money(row.get("Discount"), "Discount", transaction_id),
                total_amount_paid=_money(
                    row.get("Total Amount Paid"), "Total Amount Paid", transaction_id
                ),
                payment_mode=str(mode).strip() if mode else None,
                date=raw_date or None,
            )
        except ValidationError as e:
            raise InvalidTransactionError(
                f"Invalid transaction: {e.errors(include_url=False)}",
                transaction_id=transaction_id,
            ) from e


def parse_webhook_payload(body: Any) -> Transaction:
    """Extract the transaction from a webhook body.

    The body is either a row or ``{"items": [row, ...]}``; only the first
    item is processed.
    """
    if not isinstance(body, dict):
        raise InvalidTransactionError("Webhook body must be a JSON object")

    if "items" in body:
        items = body["items"]
        if not isinstance(items, list) or not items:
            raise InvalidTransactionError("Webhook 'items' must be a non-empty list")
        row = items[0]
        if not isinstance(row, dict):
            raise InvalidTransactionError("Webhook item must be a JSON object")
    else:
        row = body

    return Transaction.from_row(row)


def _unwrap(item: Any) -> Any:
    # link-row / select cells nest the value one level down
    while isinstance(item, dict):
        if "value" not in item:
            return None
        item = item["value"]
    return item


def _scalar(cell: Any) -> Any:
    if isinstance(cell, list):
        return _unwrap(cell[0]) if cell else None
    return _unwrap(cell)


def _cell_values(cell: Any, split: bool = False) -> list[str]:
    """Normalise a cell to a list of strings."""
    if cell is None:
        return []
    if isinstance(cell, list):
        values = [_unwrap(item) for item in cell]
        return ["" if value is None else str(value) for value in values]
    value = _unwrap(cell)
    if value is None:
        return []
    if split and isinstance(value, str):
        return value.split(",") if value.strip() else []
    return [str(value)]


def _money(cell: Any, field_name: str, transaction_id: str) -> Decimal:
    """Parse a money cell; absent means zero, anything non-numeric is rejected."""
    value = _scalar(cell)
    if value is None or (isinstance(value, str) and not value.strip()):
        return ZERO
    if isinstance(value, bool):
        raise InvalidTransactionError(
            f"Field '{field_name}' is not a number", transaction_id=transaction_id
        )
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise InvalidTransactionError(
            f"Field '{field_name}' is not a number: {value!r}",
            transaction_id=transaction_id,
        ) from e
    if not amount.is_finite():
        raise InvalidTransactionError(
            f"Field '{field_name}' is not a finite number", transaction_id=transaction_id
        )
    if amount < 0:
        raise InvalidTransactionError(
            f"Field '{field_name}' must not be negative", transaction_id=transaction_id
        )
    return to_money(amount)
