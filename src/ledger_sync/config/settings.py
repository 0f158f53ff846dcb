"""Configuration settings for the ledger sync service."""

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class OverpaymentPolicy(str, Enum):
    """What to do when a payment exceeds the invoice balance."""

    CREDIT_NOTE = "credit_note"
    REJECT = "reject"


class InvoiceRepairPolicy(str, Enum):
    """How an existing invoice is brought in line with a changed transaction."""

    VOID_AND_RECREATE = "void_and_recreate"
    UPDATE_IN_PLACE = "update_in_place"


class Settings(BaseSettings):
    """Flat settings loaded from environment variables (or a .env file)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Ledger OAuth credentials
    zoho_access_token: SecretStr = Field(
        default=SecretStr(""), validation_alias="ZOHO_ACCESS_TOKEN"
    )
    zoho_refresh_token: SecretStr = Field(..., validation_alias="ZOHO_REFRESH_TOKEN")
    zoho_client_id: str = Field(..., validation_alias="ZOHO_CLIENT_ID")
    zoho_client_secret: SecretStr = Field(..., validation_alias="ZOHO_CLIENT_SECRET")
    zoho_organization_id: str = Field(..., validation_alias="ZOHO_ORGANIZATION_ID")

    # Ledger endpoints
    ledger_api_url: str = Field(
        default="https://www.zohoapis.com/books/v3", validation_alias="LEDGER_API_URL"
    )
    ledger_accounts_url: str = Field(
        default="https://accounts.zoho.com/oauth/v2/token",
        validation_alias="LEDGER_ACCOUNTS_URL",
    )
    ledger_timeout: float = Field(default=30.0, validation_alias="LEDGER_TIMEOUT")

    # Reconciliation behaviour
    overpayment_policy: OverpaymentPolicy = Field(
        default=OverpaymentPolicy.CREDIT_NOTE, validation_alias="OVERPAYMENT_POLICY"
    )
    invoice_repair_policy: InvoiceRepairPolicy = Field(
        default=InvoiceRepairPolicy.VOID_AND_RECREATE,
        validation_alias="INVOICE_REPAIR_POLICY",
    )
    default_payment_mode: str = Field(default="cash", validation_alias="DEFAULT_PAYMENT_MODE")

    # Webhook server
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=3000, validation_alias="PORT")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
