"""Catalog sync: refresh, matching fallbacks, failure handling and single-flight."""
from __future__ import annotations

import asyncio

import pytest

from storefront.core.events import EventType
from storefront.core.exceptions import NetworkException
from storefront.services.catalog_sync import CatalogSyncService

from tests.conftest import FakeCatalog, make_product, wait_until

CART_KEY = "lindas:cart"


@pytest.mark.asyncio
async def test_sync_refreshes_price_and_preserves_quantity(store, catalog, sync_service) -> None:
    line = store.add_item(make_product(price=800), 3)
    catalog.products = [make_product(price=900, image="/images/new.jpg")]

    lines = await sync_service.sync(force=True)

    assert lines[0].line_id == line.line_id
    assert lines[0].unit_price == 900
    assert lines[0].quantity == 3
    assert lines[0].image == "/images/new.jpg"
    assert lines[0].last_synced_at is not None
    assert store.get_totals().subtotal == 2700


@pytest.mark.asyncio
async def test_quantity_change_during_fetch_survives(store, catalog, sync_service) -> None:
    line = store.add_item(make_product(price=800), 2)
    catalog.products = [make_product(price=950)]
    catalog.gate = asyncio.Event()

    pending = asyncio.create_task(sync_service.sync(force=True))
    await wait_until(lambda: catalog.calls == 1)
    store.update_quantity(line.line_id, 5)
    catalog.gate.set()
    lines = await pending

    assert lines[0].quantity == 5
    assert lines[0].unit_price == 950


@pytest.mark.asyncio
async def test_fetch_failure_leaves_cart_untouched(store, storage, catalog, sync_service, events) -> None:
    store.add_item(make_product(price=800), 2)
    before_lines = store.lines
    before_raw = storage.raw(CART_KEY)
    catalog.error = NetworkException("connection refused")

    report = await sync_service.sync_with_report(force=True)

    assert report.ok is False
    assert report.lines == before_lines
    assert storage.raw(CART_KEY) == before_raw
    assert EventType.SYNC_FAILED in [event.type for event in events]
    assert sync_service.last_synced_at is None


@pytest.mark.asyncio
async def test_empty_cart_skips_fetch(catalog, sync_service) -> None:
    report = await sync_service.sync_with_report(force=True)

    assert report.skipped is True
    assert catalog.calls == 0


@pytest.mark.asyncio
async def test_recent_sync_is_skipped_until_stale(store, catalog, sync_service, clock) -> None:
    store.add_item(make_product())
    await sync_service.sync()
    assert catalog.calls == 1

    clock.advance(120)
    assert (await sync_service.sync_with_report()).skipped is True
    assert catalog.calls == 1

    clock.advance(200)
    await sync_service.sync()
    assert catalog.calls == 2


@pytest.mark.asyncio
async def test_concurrent_syncs_share_one_fetch(store, catalog, sync_service) -> None:
    store.add_item(make_product())
    catalog.gate = asyncio.Event()

    first = asyncio.create_task(sync_service.sync(force=True))
    second = asyncio.create_task(sync_service.sync(force=True))
    await wait_until(lambda: catalog.calls == 1)
    catalog.gate.set()
    results = await asyncio.gather(first, second)

    assert catalog.calls == 1
    assert results[0] == results[1]


@pytest.mark.asyncio
async def test_matching_falls_back_to_raw_ids_and_names(store, catalog, sync_service) -> None:
    by_numeric = store.add_item({"numericId": 12, "name": "Honey Peanut", "price": 500})
    by_name = store.add_item({"id": "legacy-9", "name": "chocolate hazelnut", "price": 700})
    by_substring = store.add_item({"id": "legacy-10", "name": "Cashew", "price": 600})
    catalog.products = [
        {"_id": "m12", "numericId": 12, "name": "Honey Peanut", "price": 550},
        {"_id": "m9", "name": "Chocolate Hazelnut", "price": 750},
        {"_id": "m10", "name": "Roasted Cashew Butter", "price": 650},
    ]

    report = await sync_service.sync_with_report(force=True)
    prices = {line.line_id: line.unit_price for line in report.lines}

    assert prices[by_numeric.line_id] == 550
    assert prices[by_name.line_id] == 750
    assert prices[by_substring.line_id] == 650
    assert report.unmatched == []


@pytest.mark.asyncio
async def test_unmatched_lines_are_left_unchanged(store, catalog, sync_service) -> None:
    line = store.add_item({"_id": "gone", "name": "Discontinued Jar", "price": 400}, 2)
    catalog.products = [make_product()]

    report = await sync_service.sync_with_report(force=True)

    assert report.unmatched == [line.line_id]
    assert report.lines[0] == line


@pytest.mark.asyncio
async def test_newly_unavailable_items_are_reported_not_removed(store, catalog, sync_service, events) -> None:
    line = store.add_item(make_product())
    catalog.products = [make_product(inStock=False)]

    report = await sync_service.sync_with_report(force=True)

    assert [item.line_id for item in report.unavailable] == [line.line_id]
    assert len(store.lines) == 1
    assert store.lines[0].in_stock is False
    assert EventType.ITEMS_UNAVAILABLE in [event.type for event in events]


@pytest.mark.asyncio
async def test_related_products_excludes_cart_items(store, catalog, sync_service) -> None:
    store.add_item(make_product())
    catalog.products = [
        make_product(),
        make_product(_id="p2", name="Crunchy Peanut"),
        make_product(_id="p3", name="Spicy Peanut", inStock=False),
        make_product(_id="p4", name="Almond", category="almond"),
    ]

    related = await sync_service.related_products(limit=4)

    assert [product.mongo_id for product in related] == ["p2"]


@pytest.mark.asyncio
async def test_background_sync_runs_until_stopped(store, clock) -> None:
    store.add_item(make_product())
    catalog = FakeCatalog(products=[make_product(price=999)])
    service = CatalogSyncService(store, catalog, clock=clock)

    service.start_background(interval=60)
    await wait_until(lambda: catalog.calls >= 2)
    await service.stop_background()
    calls = catalog.calls
    await asyncio.sleep(0)

    assert store.lines[0].unit_price == 999
    assert catalog.calls == calls


@pytest.mark.asyncio
async def test_needs_sync_tracks_staleness(store, sync_service, clock) -> None:
    assert sync_service.needs_sync() is False

    store.add_item(make_product())
    assert sync_service.needs_sync() is True

    await sync_service.sync()
    assert sync_service.needs_sync() is False

    clock.advance(sync_service.config.stale_after_seconds + 1)
    assert sync_service.needs_sync() is True
