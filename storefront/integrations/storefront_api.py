"""
REST client for the storefront backend.

Endpoints used by the core:
- GET  /products                          catalog
- POST /orders                            order submission
- POST /payments/mpesa/initiate           STK push
- GET  /payments/mpesa/status/{id}        STK push status

Catalog reads and order submission are retried with backoff. M-Pesa calls
are single-shot: the payment machine owns their pacing.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp

from storefront.core.config import ApiConfig
from storefront.core.constants import CATALOG_FETCH_LIMIT, IDEMPOTENCY_HEADER
from storefront.core.exceptions import ApiException, NetworkException
from storefront.core.idempotency import idempotency_headers
from storefront.core.retry import retry_call
from storefront.domain.product import Product, parse_products

logger = logging.getLogger(__name__)


class StorefrontApiClient:
    """
    aiohttp client for the storefront REST API.

    Example:
    ```python
    client = StorefrontApiClient(ApiConfig(base_url="https://shop.example/api"))
    products = await client.fetch_products(limit=50)
    await client.close()
    ```
    """

    def __init__(
        self,
        config: ApiConfig | None = None,
        *,
        session: aiohttp.ClientSession | None = None,
        auth_token: str | None = None,
    ):
        self.config = config or ApiConfig()
        self._session = session
        self._owns_session = session is None
        self._auth_token = auth_token

    def _url(self, path: str) -> str:
        return f"{self.config.base_url.rstrip('/')}/{path.lstrip('/')}"

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create the HTTP session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    def set_auth_token(self, token: str | None) -> None:
        self._auth_token = token

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        request_headers = {"Accept": "application/json"}
        if self._auth_token:
            request_headers["Authorization"] = f"Bearer {self._auth_token}"
        if headers:
            request_headers.update(headers)

        session = await self._get_session()
        try:
            async with session.request(
                method,
                self._url(path),
                params=params,
                json=json,
                headers=request_headers,
            ) as response:
                try:
                    body = await response.json(content_type=None)
                except ValueError:
                    body = None

                if response.status >= 400:
                    message = None
                    if isinstance(body, dict):
                        message = body.get("message") or body.get("error")
                    raise ApiException(
                        message or f"HTTP {response.status}",
                        status=response.status,
                        path=path,
                    )
                return body
        except asyncio.TimeoutError as e:
            raise NetworkException(f"Request to {path} timed out", path=path) from e
        except aiohttp.ClientError as e:
            raise NetworkException(f"Request to {path} failed: {e}", path=path) from e

    async def _with_retry(self, func, *args: Any, **kwargs: Any) -> Any:
        return await retry_call(
            func,
            *args,
            max_attempts=self.config.retry_attempts,
            initial_delay=self.config.retry_initial_delay,
            max_delay=self.config.retry_max_delay,
            **kwargs,
        )

    async def fetch_products(
        self,
        category: str | None = None,
        limit: int = CATALOG_FETCH_LIMIT,
    ) -> list[Product]:
        """
        Fetch the product catalog.

        Args:
            category: Optional category filter
            limit: Maximum number of products

        Returns:
            Parsed products; the backend may answer with a bare list or a
            wrapped ``{products}`` / ``{data: {products}}`` object.
        """
        params: dict[str, Any] = {"limit": limit}
        if category:
            params["category"] = category
        payload = await self._with_retry(self._request, "GET", "/products", params=params)
        products = parse_products(payload)
        logger.debug("Fetched %d products", len(products))
        return products

    async def create_order(
        self,
        payload: dict[str, Any],
        idempotency_key: str | None = None,
    ) -> dict[str, Any]:
        """Submit an order; returns ``{orderId, referenceNumber}``."""
        headers = idempotency_headers(idempotency_key, IDEMPOTENCY_HEADER)
        result = await self._with_retry(
            self._request, "POST", "/orders", json=payload, headers=headers
        )
        if isinstance(result, dict) and isinstance(result.get("data"), dict):
            result = {**result["data"], **{k: v for k, v in result.items() if k != "data"}}
        return result if isinstance(result, dict) else {}

    async def initiate_mpesa_payment(
        self,
        *,
        phone_number: str,
        amount: int,
        order_id: str | None,
        description: str,
        idempotency_key: str | None = None,
    ) -> Any:
        body = {
            "phoneNumber": phone_number,
            "amount": amount,
            "orderId": order_id,
            "description": description,
        }
        headers = idempotency_headers(idempotency_key, IDEMPOTENCY_HEADER)
        return await self._request("POST", "/payments/mpesa/initiate", json=body, headers=headers)

    async def get_mpesa_status(
        self,
        checkout_request_id: str,
        idempotency_key: str | None = None,
    ) -> Any:
        headers = idempotency_headers(idempotency_key, IDEMPOTENCY_HEADER)
        return await self._request(
            "GET", f"/payments/mpesa/status/{checkout_request_id}", headers=headers
        )
