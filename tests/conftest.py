"""Shared pytest fixtures: fake clock, fake backend collaborators, wired services."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from storefront.core.config import CartConfig, PaymentConfig, SyncConfig
from storefront.core.events import DomainEvent, EventBus
from storefront.core.storage import MemoryStorage
from storefront.domain.product import Product, parse_products
from storefront.services.cart_store import CartStore
from storefront.services.catalog_sync import CatalogSyncService
from storefront.services.checkout import CheckoutOrchestrator
from storefront.services.payment_machine import PaymentStateMachine

PENDING = {"status": "PENDING"}


class FakeClock:
    """Virtual monotonic clock; ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 0.0) -> None:
        self.current = start
        self.sleeps: list[float] = []

    def now(self) -> float:
        return self.current

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.current += max(0.0, seconds)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        self.current += seconds


@dataclass
class FakeGateway:
    """M-Pesa endpoints of the backend.

    ``statuses`` are returned in order, the last one repeating; an exception
    instance in the list is raised instead.
    """

    clock: FakeClock | None = None
    initiate_response: Any = field(default_factory=lambda: {"checkoutRequestId": "ws_CO_123"})
    initiate_error: Exception | None = None
    statuses: list[Any] = field(default_factory=list)
    block_initiate: asyncio.Event | None = None
    block_status: asyncio.Event | None = None
    initiate_calls: list[dict[str, Any]] = field(default_factory=list)
    status_calls: list[str] = field(default_factory=list)
    status_times: list[float] = field(default_factory=list)

    async def initiate_mpesa_payment(self, **kwargs: Any) -> Any:
        self.initiate_calls.append(kwargs)
        await asyncio.sleep(0)
        if self.block_initiate is not None:
            await self.block_initiate.wait()
        if self.initiate_error is not None:
            raise self.initiate_error
        return self.initiate_response

    async def get_mpesa_status(self, checkout_request_id: str, idempotency_key: str | None = None) -> Any:
        self.status_calls.append(checkout_request_id)
        if self.clock is not None:
            self.status_times.append(self.clock.now())
        if self.block_status is not None:
            await self.block_status.wait()
        if not self.statuses:
            return PENDING
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status


@dataclass
class FakeCatalog:
    products: list[dict[str, Any]] = field(default_factory=list)
    error: Exception | None = None
    gate: asyncio.Event | None = None
    calls: int = 0

    async def fetch_products(self, category: str | None = None, limit: int = 100) -> list[Product]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return parse_products(self.products)


@dataclass
class FakeOrders:
    response: dict[str, Any] = field(
        default_factory=lambda: {"orderId": "ord_1", "referenceNumber": "REF-1"}
    )
    error: Exception | None = None
    calls: list[tuple[dict[str, Any], str | None]] = field(default_factory=list)

    async def create_order(self, payload: dict[str, Any], idempotency_key: str | None = None) -> dict[str, Any]:
        self.calls.append((payload, idempotency_key))
        if self.error is not None:
            raise self.error
        return self.response


def make_product(**overrides: Any) -> dict[str, Any]:
    product = {
        "_id": "p1",
        "name": "Creamy Peanut Butter",
        "price": 850,
        "category": "peanut",
        "inStock": True,
        "stockQuantity": 20,
        "image": "/images/peanut.jpg",
    }
    product.update(overrides)
    return product


async def wait_until(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def events(bus: EventBus) -> list[DomainEvent]:
    received: list[DomainEvent] = []
    bus.subscribe(received.append)
    return received


@pytest.fixture()
def store(storage: MemoryStorage, bus: EventBus) -> CartStore:
    return CartStore(storage=storage, config=CartConfig(), bus=bus)


@pytest.fixture()
def catalog() -> FakeCatalog:
    return FakeCatalog(products=[make_product()])


@pytest.fixture()
def sync_service(store: CartStore, catalog: FakeCatalog, clock: FakeClock) -> CatalogSyncService:
    return CatalogSyncService(store, catalog, config=SyncConfig(), clock=clock)


@pytest.fixture()
def gateway(clock: FakeClock) -> FakeGateway:
    return FakeGateway(clock=clock)


@pytest.fixture()
async def machine(gateway: FakeGateway, clock: FakeClock, bus: EventBus):
    payment_machine = PaymentStateMachine(gateway, config=PaymentConfig(), clock=clock, bus=bus)
    try:
        yield payment_machine
    finally:
        await payment_machine.close()


@pytest.fixture()
def orders() -> FakeOrders:
    return FakeOrders()


@pytest.fixture()
def orchestrator(
    store: CartStore,
    sync_service: CatalogSyncService,
    machine: PaymentStateMachine,
    orders: FakeOrders,
) -> CheckoutOrchestrator:
    return CheckoutOrchestrator(store, sync_service, machine, orders, authenticated=True)


@pytest.fixture()
async def aiohttp_server_factory():
    """Start aiohttp apps on a local TestServer without pytest-aiohttp."""
    servers: list[object] = []

    async def _make_server(app):
        from aiohttp.test_utils import TestServer

        server = TestServer(app)
        await server.start_server()
        servers.append(server)
        return server

    try:
        yield _make_server
    finally:
        for server in servers:
            await server.close()
