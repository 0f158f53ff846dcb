"""Authorized access to the ledger API with one-shot token refresh."""

import asyncio
from typing import Any, cast

import httpx
import structlog

from ledger_sync.config import get_settings
from ledger_sync.ledger.errors import (
    LedgerRequestError,
    LedgerTimeoutError,
    TokenRefreshError,
)

logger = structlog.get_logger(__name__)

# Ledger error codes that mean the OAuth token is no longer accepted
TOKEN_INVALID_CODES = frozenset({14, 57})

# First attempt plus one retry after a refresh
MAX_ATTEMPTS = 2


class CredentialStore:
    """Single owner of the current access token.

    Refresh is a critical section: the first caller whose token was rejected
    performs the refresh, later callers holding the same stale token reuse the
    replacement instead of refreshing again.
    """

    def __init__(self, access_token: str = ""):
        self._access_token = access_token
        self._lock = asyncio.Lock()
        self.refresh_count = 0

    @property
    def access_token(self) -> str:
        return self._access_token

    async def replace_if_stale(self, rejected_token: str, refresh: Any) -> str:
        """Refresh unless another caller already replaced ``rejected_token``."""
        async with self._lock:
            if self._access_token != rejected_token:
                logger.debug("token_already_refreshed")
                return self._access_token
            self._access_token = await refresh()
            self.refresh_count += 1
            return self._access_token


class AuthGateway:
    """Attaches the access token to ledger requests and recovers from expiry."""

    def __init__(
        self,
        base_url: str | None = None,
        organization_id: str | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        accounts_url: str | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.ledger_api_url).rstrip("/")
        self.organization_id = organization_id or settings.zoho_organization_id
        self._refresh_token = refresh_token or settings.zoho_refresh_token.get_secret_value()
        self._client_id = client_id or settings.zoho_client_id
        self._client_secret = client_secret or settings.zoho_client_secret.get_secret_value()
        self._accounts_url = accounts_url or settings.ledger_accounts_url
        self._timeout = timeout if timeout is not None else settings.ledger_timeout

        self.credentials = CredentialStore(
            access_token if access_token is not None
            else settings.zoho_access_token.get_secret_value()
        )
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "AuthGateway":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # === Token refresh ===

    async def _request_new_token(self) -> str:
        """Exchange the refresh secret for a new access token."""
        client = await self._get_client()
        try:
            response = await client.post(
                self._accounts_url,
                params={
                    "refresh_token": self._refresh_token,
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "refresh_token",
                },
            )
        except httpx.HTTPError as e:
            logger.error("token_refresh_failed", error=str(e))
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

        data = self._decode(response)
        token = data.get("access_token") if response.status_code < 400 else None
        if not token:
            logger.error(
                "token_refresh_failed",
                status_code=response.status_code,
                details=data,
            )
            raise TokenRefreshError(
                "Token refresh failed",
                status_code=response.status_code,
                details=data,
            )

        logger.info("access_token_refreshed")
        return cast(str, token)

    async def refresh(self, rejected_token: str) -> str:
        """Replace ``rejected_token`` with a fresh one, at most once per rejection."""
        return await self.credentials.replace_if_stale(rejected_token, self._request_new_token)

    # === Authorized requests ===

    def _get_headers(self, token: str) -> dict[str, str]:
        """Get request headers with auth token."""
        return {
            "Content-Type": "application/json",
            "Authorization": f"Zoho-oauthtoken {token}",
        }

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body, tolerating empty or non-JSON bodies."""
        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text[:500] if response.text else "empty response"}
        return data if isinstance(data, dict) else {"data": data}

    @staticmethod
    def _is_auth_failure(response: httpx.Response, data: dict[str, Any]) -> bool:
        return response.status_code == 401 or data.get("code") in TOKEN_INVALID_CODES

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        params: dict[str, Any],
        json: dict[str, Any] | None,
    ) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.request(
                method=method,
                url=path,
                params=params,
                json=json,
                headers=self._get_headers(token),
            )
        except httpx.TimeoutException as e:
            logger.warning("ledger_request_timeout", method=method, path=path)
            raise LedgerTimeoutError(f"Request timed out: {method} {path}") from e
        except httpx.RequestError as e:
            raise LedgerRequestError(f"Request failed: {e}") from e

    async def authorized_call(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send an authenticated request, refreshing the token once on rejection."""
        params = {**(params or {}), "organization_id": self.organization_id}

        for attempt in range(MAX_ATTEMPTS):
            token = self.credentials.access_token
            response = await self._send(method, path, token, params, json)
            data = self._decode(response)

            if not self._is_auth_failure(response, data):
                break

            if attempt + 1 < MAX_ATTEMPTS:
                logger.info("access_token_rejected", method=method, path=path)
                await self.refresh(token)
                continue

            logger.error("authorization_failed_after_refresh", method=method, path=path)
            raise LedgerRequestError(
                "Authorization failed after token refresh",
                status_code=response.status_code,
                code=data.get("code"),
                details=data,
            )

        code = data.get("code")
        if response.status_code >= 400 or (code is not None and code != 0):
            logger.warning(
                "ledger_request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
                code=code,
                message=data.get("message"),
            )
            raise LedgerRequestError(
                f"API error: {response.status_code}",
                status_code=response.status_code,
                code=code,
                details=data,
            )

        return data
