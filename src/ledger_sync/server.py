"""Webhook server that feeds transaction events to the reconciliation engine.

Usage:
    ledger-sync                 # serve on HOST:PORT from the environment
    python -m ledger_sync       # same
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ledger_sync.config import configure_logging, get_settings
from ledger_sync.ingress.transaction import parse_webhook_payload
from ledger_sync.ledger.client import LedgerClient
from ledger_sync.ledger.errors import ReconciliationRejected
from ledger_sync.reconciliation.engine import ReconciliationEngine

logger = structlog.get_logger(__name__)


def create_app(engine: ReconciliationEngine | None = None) -> FastAPI:
    """Build the FastAPI application.

    When no engine is given, one is created at startup on top of a
    :class:`LedgerClient` configured from the environment, and its HTTP
    client is closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        client: LedgerClient | None = None
        if engine is None:
            client = LedgerClient()
            app.state.engine = ReconciliationEngine(client)
        else:
            app.state.engine = engine
        settings = get_settings()
        logger.info(
            "ledger_sync_started",
            repair_policy=app.state.engine.repair_policy.value,
            overpayment_policy=settings.overpayment_policy.value,
        )
        try:
            yield
        finally:
            if client is not None:
                await client.close()
            logger.info("ledger_sync_stopped")

    app = FastAPI(title="ledger-sync", lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/webhook")
    async def webhook(request: Request) -> JSONResponse:
        try:
            body: Any = await request.json()
        except ValueError as e:
            logger.warning("webhook_invalid_json", error=str(e))
            return JSONResponse(
                status_code=400,
                content={"message": "Invalid webhook payload", "error": "Body is not valid JSON"},
            )

        try:
            transaction = parse_webhook_payload(body)
        except ReconciliationRejected as e:
            logger.warning("webhook_rejected", error=str(e))
            return JSONResponse(
                status_code=400,
                content={"message": "Invalid webhook payload", "error": str(e)},
            )

        structlog.contextvars.bind_contextvars(transaction_id=transaction.transaction_id)
        try:
            result = await request.app.state.engine.reconcile(transaction)
        except ReconciliationRejected as e:
            logger.warning("reconciliation_rejected", error=str(e))
            return JSONResponse(
                status_code=400,
                content={"message": "Reconciliation rejected", "error": str(e)},
            )
        except Exception as e:
            logger.exception("reconciliation_failed")
            return JSONResponse(
                status_code=500,
                content={"message": "Error processing webhook", "error": str(e)},
            )
        finally:
            structlog.contextvars.unbind_contextvars("transaction_id")

        logger.info(
            "webhook_processed",
            transaction_id=result.transaction_id,
            outcome=result.outcome.value,
        )
        return JSONResponse(status_code=200, content=result.to_dict())

    return app


def main() -> None:
    """Run the webhook server."""
    import uvicorn

    configure_logging()
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
