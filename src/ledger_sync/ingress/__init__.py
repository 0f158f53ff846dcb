"""Inbound transaction events."""

from ledger_sync.ingress.transaction import (
    ServiceLine,
    Transaction,
    parse_webhook_payload,
)

__all__ = ["ServiceLine", "Transaction", "parse_webhook_payload"]
