"""Pytest configuration and fixtures."""

import itertools
import os
from decimal import Decimal
from typing import Any

import httpx
import pytest

# Set test environment variables before importing settings
os.environ.setdefault("ZOHO_ACCESS_TOKEN", "access-token-123")
os.environ.setdefault("ZOHO_REFRESH_TOKEN", "refresh-token-123")
os.environ.setdefault("ZOHO_CLIENT_ID", "client-id-123")
os.environ.setdefault("ZOHO_CLIENT_SECRET", "client-secret-123")
os.environ.setdefault("ZOHO_ORGANIZATION_ID", "org-123")

from ledger_sync.config import InvoiceRepairPolicy, OverpaymentPolicy  # noqa: E402
from ledger_sync.ingress.transaction import ServiceLine, Transaction  # noqa: E402
from ledger_sync.ledger.client import LedgerClient  # noqa: E402
from ledger_sync.ledger.errors import LedgerError, LedgerRequestError  # noqa: E402
from ledger_sync.ledger.models import to_money  # noqa: E402
from ledger_sync.reconciliation.engine import ReconciliationEngine  # noqa: E402


def make_response(status_code: int = 200, body: Any = None) -> httpx.Response:
    """Build an httpx response carrying a JSON body."""
    if body is None:
        return httpx.Response(status_code)
    return httpx.Response(status_code, json=body)


class FakeLedger:
    """In-memory ledger that answers ``authorized_call`` like the REST API.

    Behaves like the real service where it matters to reconciliation:
    the reference and contact-name filters are substring matches, totals are
    computed as lines - discount + adjustment, invoices with an applied
    payment cannot be voided, edits to a non-draft invoice need a reason,
    and payments cannot be applied beyond the balance.
    """

    def __init__(self) -> None:
        self.invoices: dict[str, dict[str, Any]] = {}
        self.contacts: dict[str, dict[str, Any]] = {}
        self.payments: dict[str, dict[str, Any]] = {}
        self.credit_notes: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str, dict[str, Any] | None]] = []
        self.failures: dict[tuple[str, str], LedgerError] = {}
        self._ids = itertools.count(1)
        self.max_page_size = 200

    # === Test helpers ===

    def fail_on(self, method: str, path_prefix: str, error: LedgerError | None = None) -> None:
        self.failures[(method, path_prefix)] = error or LedgerRequestError(
            "API error: 500", status_code=500
        )

    def writes(self) -> list[tuple[str, str]]:
        return [(method, path) for method, path, _ in self.calls if method != "GET"]

    def live_invoices(self, reference: str) -> list[dict[str, Any]]:
        return [
            inv
            for inv in self.invoices.values()
            if inv["reference_number"] == reference and inv["status"] != "void"
        ]

    def add_contact(self, name: str) -> str:
        contact_id = f"C-{next(self._ids)}"
        self.contacts[contact_id] = {"contact_id": contact_id, "contact_name": name}
        return contact_id

    def add_invoice(
        self,
        reference: str,
        customer_id: str,
        line_items: list[tuple[str, str]],
        discount: str = "0",
        status: str = "sent",
    ) -> str:
        invoice_id = f"INV-{next(self._ids)}"
        self.invoices[invoice_id] = {
            "invoice_id": invoice_id,
            "customer_id": customer_id,
            "reference_number": reference,
            "status": status,
            "discount_amount": float(discount),
            "line_items": [
                {"description": desc, "rate": float(rate), "quantity": 1}
                for desc, rate in line_items
            ],
        }
        self._recompute(invoice_id)
        return invoice_id

    def add_payment(self, customer_id: str, applications: list[tuple[str, str]]) -> str:
        payment_id = f"P-{next(self._ids)}"
        self.payments[payment_id] = {
            "payment_id": payment_id,
            "customer_id": customer_id,
            "amount": float(sum(Decimal(amount) for _, amount in applications)),
            "payment_mode": "cash",
            "invoices": [
                {"invoice_id": invoice_id, "amount_applied": float(amount)}
                for invoice_id, amount in applications
            ],
        }
        for invoice_id, _ in applications:
            self._recompute(invoice_id)
        return payment_id

    # === Internals ===

    def _applied(self, invoice_id: str) -> Decimal:
        return sum(
            (
                to_money(app["amount_applied"])
                for payment in self.payments.values()
                for app in payment["invoices"]
                if app["invoice_id"] == invoice_id
            ),
            Decimal("0"),
        )

    def _recompute(self, invoice_id: str) -> None:
        inv = self.invoices[invoice_id]
        subtotal = sum(
            (to_money(item["rate"]) * Decimal(str(item.get("quantity", 1))) for item in inv["line_items"]),
            Decimal("0"),
        )
        total = subtotal - to_money(inv.get("discount_amount")) + to_money(inv.get("adjustment"))
        inv["total"] = float(total)
        inv["balance"] = 0.0 if inv["status"] == "void" else float(total - self._applied(invoice_id))

    @staticmethod
    def _error(message: str, status_code: int = 400, code: int = 1001) -> LedgerRequestError:
        return LedgerRequestError(
            f"API error: {status_code}",
            status_code=status_code,
            code=code,
            details={"code": code, "message": message},
        )

    def _summary(self, inv: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in inv.items() if k != "line_items"}

    # === Routing ===

    async def authorized_call(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.calls.append((method, path, json))
        for (fail_method, prefix), error in self.failures.items():
            if method == fail_method and path.startswith(prefix):
                raise error

        params = params or {}
        parts = path.strip("/").split("/")
        resource = parts[0]

        if resource == "invoices":
            return self._invoices(method, parts[1:], params, json)
        if resource == "contacts":
            return self._contacts(method, params, json)
        if resource == "customerpayments":
            return self._payments(method, parts[1:], params, json)
        if resource == "creditnotes" and method == "POST":
            note_id = f"CN-{next(self._ids)}"
            self.credit_notes[note_id] = {
                "creditnote_id": note_id,
                "customer_id": json["customer_id"],
                "reference_number": json.get("reference_number", ""),
                "total": sum(item["rate"] * item["quantity"] for item in json["line_items"]),
            }
            return {"code": 0, "creditnote": self.credit_notes[note_id]}
        raise self._error(f"No route for {method} {path}", status_code=404)

    def _invoices(self, method, rest, params, json):
        if method == "GET" and not rest:
            reference = params.get("reference_number", "")
            return {
                "code": 0,
                "invoices": [
                    self._summary(inv)
                    for inv in self.invoices.values()
                    if reference in inv["reference_number"]
                ],
            }

        if method == "POST" and not rest:
            invoice_id = f"INV-{next(self._ids)}"
            self.invoices[invoice_id] = {
                "invoice_id": invoice_id,
                "customer_id": json["customer_id"],
                "reference_number": json["reference_number"],
                "status": "draft",
                "discount_amount": json.get("discount", 0),
                "adjustment": json.get("adjustment", 0),
                "line_items": [dict(item) for item in json["line_items"]],
            }
            self._recompute(invoice_id)
            return {"code": 0, "invoice": self.invoices[invoice_id]}

        invoice_id = rest[0]
        if invoice_id not in self.invoices:
            raise self._error("Invoice does not exist", status_code=404, code=1002)
        inv = self.invoices[invoice_id]

        if method == "GET":
            return {"code": 0, "invoice": inv}

        if method == "POST" and rest[1:] == ["status", "void"]:
            if self._applied(invoice_id) > 0:
                raise self._error("Invoices with payments cannot be voided")
            inv["status"] = "void"
            self._recompute(invoice_id)
            return {"code": 0, "message": "Invoice status has been changed to Void."}

        if method == "PUT":
            if inv["status"] != "draft" and not json.get("reason"):
                raise self._error("Reason is required to edit a sent invoice")
            if "line_items" in json:
                inv["line_items"] = [dict(item) for item in json["line_items"]]
            if "discount" in json:
                inv["discount_amount"] = json["discount"]
            if "adjustment" in json:
                inv["adjustment"] = json["adjustment"]
            self._recompute(invoice_id)
            return {"code": 0, "invoice": inv}

        raise self._error(f"No route for {method} invoices/{'/'.join(rest)}", status_code=404)

    def _contacts(self, method, params, json):
        if method == "GET":
            name = params.get("contact_name", "")
            return {
                "code": 0,
                "contacts": [c for c in self.contacts.values() if name in c["contact_name"]],
            }
        contact_id = self.add_contact(json["contact_name"])
        return {"code": 0, "contact": self.contacts[contact_id]}

    def _payments(self, method, rest, params, json):
        if method == "GET" and not rest:
            customer_id = params.get("customer_id")
            matching = [
                {k: v for k, v in p.items() if k != "invoices"}
                for p in self.payments.values()
                if p["customer_id"] == customer_id
            ]
            per_page = min(int(params.get("per_page", 200)), self.max_page_size)
            page = int(params.get("page", 1))
            start = (page - 1) * per_page
            return {
                "code": 0,
                "customerpayments": matching[start : start + per_page],
                "page_context": {
                    "page": page,
                    "per_page": per_page,
                    "has_more_page": start + per_page < len(matching),
                },
            }

        if method == "POST" and not rest:
            for app in json["invoices"]:
                inv = self.invoices[app["invoice_id"]]
                if to_money(app["amount_applied"]) > to_money(inv["balance"]):
                    raise self._error("Amount applied exceeds invoice balance")
            payment_id = f"P-{next(self._ids)}"
            self.payments[payment_id] = {
                "payment_id": payment_id,
                "customer_id": json["customer_id"],
                "amount": json["amount"],
                "payment_mode": json["payment_mode"],
                "invoices": [dict(app) for app in json["invoices"]],
            }
            for app in json["invoices"]:
                self._recompute(app["invoice_id"])
            return {"code": 0, "payment": self.payments[payment_id]}

        payment_id = rest[0]
        if payment_id not in self.payments:
            raise self._error("Payment does not exist", status_code=404, code=1002)

        if method == "GET":
            return {"code": 0, "payment": self.payments[payment_id]}

        if method == "DELETE":
            payment = self.payments.pop(payment_id)
            for app in payment["invoices"]:
                self._recompute(app["invoice_id"])
            return {"code": 0, "message": "The payment has been deleted."}

        raise self._error(f"No route for {method} customerpayments/{payment_id}", status_code=404)

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_ledger():
    """Empty in-memory ledger."""
    return FakeLedger()


@pytest.fixture
def ledger_client(fake_ledger):
    """LedgerClient backed by the in-memory ledger (credit-note policy)."""
    return LedgerClient(gateway=fake_ledger, overpayment_policy=OverpaymentPolicy.CREDIT_NOTE)


@pytest.fixture
def make_engine(fake_ledger):
    """Factory for engines over the in-memory ledger with chosen policies."""

    def _make(
        repair_policy: InvoiceRepairPolicy = InvoiceRepairPolicy.VOID_AND_RECREATE,
        overpayment_policy: OverpaymentPolicy = OverpaymentPolicy.CREDIT_NOTE,
    ) -> ReconciliationEngine:
        client = LedgerClient(gateway=fake_ledger, overpayment_policy=overpayment_policy)
        return ReconciliationEngine(client, repair_policy=repair_policy)

    return _make


@pytest.fixture
def make_transaction():
    """Factory for transactions with sensible defaults."""

    def _make(
        transaction_id: str = "T1",
        services: list[tuple[str, str]] | None = None,
        payable: str = "1000",
        paid: str = "0",
        discount: str = "0",
        customer: str = "Jane Patient",
    ) -> Transaction:
        services = services if services is not None else [("Consultation", payable)]
        return Transaction(
            transaction_id=transaction_id,
            customer_name=customer,
            service_lines=tuple(
                ServiceLine(description=desc, rate=Decimal(rate)) for desc, rate in services
            ),
            payable_amount=Decimal(payable),
            discount_amount=Decimal(discount),
            total_amount_paid=Decimal(paid),
        )

    return _make


@pytest.fixture
def mock_invoice_response():
    """Mock invoice detail as returned by the ledger."""
    return {
        "invoice_id": "982000000567114",
        "invoice_number": "INV-000001",
        "customer_id": "982000000567001",
        "reference_number": "T1",
        "status": "sent",
        "date": "2024-03-01",
        "sub_total": 1000.0,
        "discount": "100.00",
        "discount_amount": 100.0,
        "discount_type": "entity_level",
        "is_discount_before_tax": True,
        "total": 900.0,
        "balance": 900.0,
        "line_items": [
            {
                "line_item_id": "982000000567021",
                "description": "Consultation",
                "rate": 600.0,
                "quantity": 1.0,
                "item_total": 600.0,
            },
            {
                "line_item_id": "982000000567022",
                "description": "X-Ray",
                "rate": 400.0,
                "quantity": 1.0,
                "item_total": 400.0,
            },
        ],
    }


@pytest.fixture
def mock_payment_response():
    """Mock customer payment detail as returned by the ledger."""
    return {
        "payment_id": "982000000567190",
        "customer_id": "982000000567001",
        "payment_mode": "cash",
        "amount": 900.0,
        "date": "2024-03-01",
        "invoices": [
            {
                "invoice_id": "982000000567114",
                "invoice_number": "INV-000001",
                "amount_applied": 900.0,
            }
        ],
    }
