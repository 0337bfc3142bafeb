"""REST client against a local aiohttp test server."""
from __future__ import annotations

import pytest
from aiohttp import web

from storefront.core.config import ApiConfig
from storefront.core.exceptions import ApiException, NetworkException
from storefront.integrations.storefront_api import StorefrontApiClient


def _build_app(state: dict) -> web.Application:
    async def products(request: web.Request) -> web.Response:
        state.setdefault("product_queries", []).append(dict(request.query))
        failures = state.get("product_failures", 0)
        if failures:
            state["product_failures"] = failures - 1
            return web.json_response({"message": "busy"}, status=503)
        return web.json_response(state.get("products_body", []))

    async def orders(request: web.Request) -> web.Response:
        state.setdefault("order_requests", []).append(
            (await request.json(), request.headers.get("X-Idempotency-Key"))
        )
        if state.get("order_status"):
            return web.json_response({"message": "Invalid order"}, status=state["order_status"])
        return web.json_response({"success": True, "data": {"orderId": "ord_9", "referenceNumber": "REF-9"}})

    async def initiate(request: web.Request) -> web.Response:
        state["initiate_body"] = await request.json()
        state["initiate_key"] = request.headers.get("X-Idempotency-Key")
        return web.json_response({"checkoutRequestId": "ws_CO_55"})

    async def status(request: web.Request) -> web.Response:
        state["status_id"] = request.match_info["checkout_request_id"]
        return web.json_response({"status": "PENDING"})

    app = web.Application()
    app.router.add_get("/api/products", products)
    app.router.add_post("/api/orders", orders)
    app.router.add_post("/api/payments/mpesa/initiate", initiate)
    app.router.add_get("/api/payments/mpesa/status/{checkout_request_id}", status)
    return app


@pytest.fixture()
async def api(aiohttp_server_factory):
    state: dict = {}
    server = await aiohttp_server_factory(_build_app(state))
    config = ApiConfig(
        base_url=str(server.make_url("/api")),
        timeout_seconds=5,
        retry_attempts=3,
        retry_initial_delay=0.01,
        retry_max_delay=0.02,
    )
    client = StorefrontApiClient(config)
    try:
        yield client, state
    finally:
        await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        [{"_id": "p1", "name": "Peanut", "price": 850}],
        {"products": [{"_id": "p1", "name": "Peanut", "price": 850}]},
        {"data": {"products": [{"_id": "p1", "name": "Peanut", "price": 850}]}},
    ],
)
async def test_fetch_products_accepts_every_response_shape(api, body) -> None:
    client, state = api
    state["products_body"] = body

    products = await client.fetch_products(category="peanut", limit=50)

    assert [product.mongo_id for product in products] == ["p1"]
    assert products[0].in_stock is True
    assert products[0].stock_quantity == 999
    assert state["product_queries"][0] == {"limit": "50", "category": "peanut"}


@pytest.mark.asyncio
async def test_fetch_products_retries_server_errors(api) -> None:
    client, state = api
    state["product_failures"] = 2
    state["products_body"] = [{"_id": "p1", "name": "Peanut", "price": 850}]

    products = await client.fetch_products()

    assert len(products) == 1
    assert len(state["product_queries"]) == 3


@pytest.mark.asyncio
async def test_fetch_products_gives_up_after_retry_budget(api) -> None:
    client, state = api
    state["product_failures"] = 10

    with pytest.raises(ApiException) as exc_info:
        await client.fetch_products()

    assert exc_info.value.status == 503
    assert len(state["product_queries"]) == 3


@pytest.mark.asyncio
async def test_create_order_sends_idempotency_key_and_unwraps(api) -> None:
    client, state = api

    result = await client.create_order({"orderNumber": "LNB-1"}, idempotency_key="abc123")

    assert result["orderId"] == "ord_9"
    assert result["referenceNumber"] == "REF-9"
    assert state["order_requests"] == [({"orderNumber": "LNB-1"}, "abc123")]


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(api) -> None:
    client, state = api
    state["order_status"] = 422

    with pytest.raises(ApiException) as exc_info:
        await client.create_order({"orderNumber": "LNB-1"})

    assert exc_info.value.status == 422
    assert exc_info.value.message == "Invalid order"
    assert len(state["order_requests"]) == 1


@pytest.mark.asyncio
async def test_mpesa_endpoints(api) -> None:
    client, state = api

    initiated = await client.initiate_mpesa_payment(
        phone_number="254712345678",
        amount=1500,
        order_id="LNB-1",
        description="Order payment",
        idempotency_key="key-1",
    )
    status = await client.get_mpesa_status("ws_CO_55", idempotency_key="key-1")

    assert initiated == {"checkoutRequestId": "ws_CO_55"}
    assert state["initiate_body"] == {
        "phoneNumber": "254712345678",
        "amount": 1500,
        "orderId": "LNB-1",
        "description": "Order payment",
    }
    assert state["initiate_key"] == "key-1"
    assert state["status_id"] == "ws_CO_55"
    assert status == {"status": "PENDING"}


@pytest.mark.asyncio
async def test_connection_failure_raises_network_exception() -> None:
    config = ApiConfig(
        base_url="http://127.0.0.1:9/api",
        timeout_seconds=2,
        retry_attempts=1,
    )
    client = StorefrontApiClient(config)
    try:
        with pytest.raises(NetworkException):
            await client.get_mpesa_status("ws_CO_1")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_auth_token_is_sent_as_bearer(aiohttp_server_factory) -> None:
    seen: list[str | None] = []

    async def status(request: web.Request) -> web.Response:
        seen.append(request.headers.get("Authorization"))
        return web.json_response({"status": "PENDING"})

    app = web.Application()
    app.router.add_get("/api/payments/mpesa/status/{checkout_request_id}", status)
    server = await aiohttp_server_factory(app)
    client = StorefrontApiClient(ApiConfig(base_url=str(server.make_url("/api"))))
    try:
        await client.get_mpesa_status("ws_CO_1")
        client.set_auth_token("tok-1")
        await client.get_mpesa_status("ws_CO_1")
    finally:
        await client.close()

    assert seen == [None, "Bearer tok-1"]
