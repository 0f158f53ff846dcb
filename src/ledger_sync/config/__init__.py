"""Configuration module for the ledger sync service."""

from ledger_sync.config.logging import configure_logging
from ledger_sync.config.settings import (
    InvoiceRepairPolicy,
    OverpaymentPolicy,
    Settings,
    get_settings,
)

__all__ = [
    "Settings",
    "OverpaymentPolicy",
    "InvoiceRepairPolicy",
    "get_settings",
    "configure_logging",
]
