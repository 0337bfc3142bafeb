"""
Catalog sync: refresh cart lines against the live product catalog.

The service never persists anything itself. It computes refreshed lines
and hands them to ``CartStore.apply_sync``, which merges them into
whatever the cart looks like when the fetch returns.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from storefront.core.config import SyncConfig
from storefront.core.constants import CATALOG_FETCH_LIMIT, RELATED_PRODUCTS_LIMIT
from storefront.core.events import EventType
from storefront.core.scheduler import Clock, MonotonicClock
from storefront.domain.cart import CartLine, utc_now_iso
from storefront.domain.identity import identifier_keys, normalize_product
from storefront.domain.product import Product
from storefront.services.cart_store import CartStore

logger = logging.getLogger(__name__)


class CatalogSource(Protocol):
    async def fetch_products(
        self, category: str | None = None, limit: int = CATALOG_FETCH_LIMIT
    ) -> list[Product]: ...


@dataclass
class SyncReport:
    """Outcome of one sync run."""

    lines: list[CartLine] = field(default_factory=list)
    matched: list[str] = field(default_factory=list)
    unmatched: list[str] = field(default_factory=list)
    unavailable: list[CartLine] = field(default_factory=list)
    skipped: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CatalogIndex:
    """Products keyed by every identifier form and by lower-cased name."""

    by_id: dict[str, Product] = field(default_factory=dict)
    by_name: dict[str, Product] = field(default_factory=dict)
    products: list[Product] = field(default_factory=list)

    @classmethod
    def build(cls, products: list[Product]) -> CatalogIndex:
        index = cls(products=list(products))
        for product in products:
            for key in identifier_keys(product):
                index.by_id.setdefault(key, product)
            name = product.name.strip().lower()
            if name:
                index.by_name.setdefault(name, product)
        return index

    def match(self, line: CartLine) -> Product | None:
        """Canonical id, then raw ids, then exact name, then name substring."""
        for key in (line.canonical_product_id, line.product_id, line.numeric_id):
            if key is None:
                continue
            product = self.by_id.get(str(key))
            if product is not None:
                return product

        name = line.name.strip().lower()
        if not name:
            return None
        product = self.by_name.get(name)
        if product is not None:
            return product
        for candidate_name, candidate in self.by_name.items():
            if name in candidate_name or candidate_name in name:
                return candidate
        return None


def refresh_line(line: CartLine, product: Product, synced_at: str) -> CartLine:
    """Copy live catalog fields onto a line; quantity is left alone."""
    variant_price = None
    if line.variant is not None:
        live_variant = product.find_variant(size=line.variant.size, sku=line.variant.sku)
        if live_variant is not None:
            variant_price = live_variant.price

    changes = {
        "unit_price": variant_price if variant_price is not None else product.price,
        "in_stock": product.in_stock,
        "image": product.main_image,
        "name": product.name or line.name,
        "stock_limit": max(1, product.stock_quantity),
        "last_synced_at": synced_at,
    }
    # variant lines keep their variant-qualified id
    if line.variant is None:
        canonical = normalize_product(product)
        if canonical is not None:
            changes["canonical_product_id"] = canonical.value
    return line.with_changes(**changes)


class CatalogSyncService:
    """Keeps cart prices and availability in step with the catalog."""

    def __init__(
        self,
        store: CartStore,
        source: CatalogSource,
        config: SyncConfig | None = None,
        clock: Clock | None = None,
    ):
        self.store = store
        self.source = source
        self.config = config or SyncConfig()
        self.clock = clock or MonotonicClock()
        self._last_synced_at: float | None = None
        self._in_flight: asyncio.Task | None = None
        self._background: asyncio.Task | None = None
        self._catalog: list[Product] = []

    @property
    def last_synced_at(self) -> float | None:
        return self._last_synced_at

    @property
    def catalog(self) -> list[Product]:
        return list(self._catalog)

    def needs_sync(self) -> bool:
        if self.store.is_empty:
            return False
        if self._last_synced_at is None:
            return True
        return self.clock.now() - self._last_synced_at > self.config.stale_after_seconds

    async def sync(self, force: bool = False) -> list[CartLine]:
        report = await self.sync_with_report(force=force)
        return report.lines

    async def sync_with_report(self, force: bool = False) -> SyncReport:
        """Run a sync, or join the one already running."""
        if self._in_flight is not None and not self._in_flight.done():
            return await asyncio.shield(self._in_flight)

        if self.store.is_empty or not (force or self.needs_sync()):
            return SyncReport(lines=self.store.lines, skipped=True)

        self._in_flight = asyncio.get_running_loop().create_task(self._run(), name="catalog-sync")
        try:
            return await asyncio.shield(self._in_flight)
        finally:
            if self._in_flight is not None and self._in_flight.done():
                self._in_flight = None

    async def _run(self) -> SyncReport:
        snapshot = self.store.lines
        self.store.bus.emit(EventType.SYNC_STARTED, count=len(snapshot))
        try:
            products = await self.source.fetch_products(limit=CATALOG_FETCH_LIMIT)
        except Exception as e:
            logger.warning("Catalog sync failed: %s", e)
            self.store.bus.emit(
                EventType.SYNC_FAILED,
                "Could not refresh prices. Showing your saved cart.",
                error=str(e),
            )
            return SyncReport(lines=self.store.lines, error=str(e))

        self._catalog = list(products)
        index = CatalogIndex.build(products)
        synced_at = utc_now_iso()
        report = SyncReport()
        refreshed: list[CartLine] = []

        for line in snapshot:
            product = index.match(line)
            if product is None:
                report.unmatched.append(line.line_id)
                continue
            fresh = refresh_line(line, product, synced_at)
            report.matched.append(line.line_id)
            if line.in_stock and not fresh.in_stock:
                report.unavailable.append(fresh)
            refreshed.append(fresh)

        report.lines = self.store.apply_sync(refreshed)
        self._last_synced_at = self.clock.now()

        if report.unmatched:
            logger.info("Catalog sync left %d cart line(s) unmatched", len(report.unmatched))
        if report.unavailable:
            names = ", ".join(line.name for line in report.unavailable)
            self.store.bus.emit(
                EventType.ITEMS_UNAVAILABLE,
                f"Some items are no longer available: {names}",
                line_ids=[line.line_id for line in report.unavailable],
            )
        self.store.bus.emit(
            EventType.SYNC_COMPLETED,
            matched=len(report.matched),
            unmatched=len(report.unmatched),
        )
        return report

    async def related_products(self, limit: int = RELATED_PRODUCTS_LIMIT) -> list[Product]:
        """Products sharing a category with the cart that are not already in it."""
        lines = self.store.lines
        categories = {line.category for line in lines if line.category}
        if not categories:
            return []
        catalog = self._catalog
        if not catalog:
            try:
                catalog = await self.source.fetch_products(limit=CATALOG_FETCH_LIMIT)
            except Exception as e:
                logger.warning("Related products unavailable: %s", e)
                return []
            self._catalog = list(catalog)

        in_cart: set[str] = set()
        for line in lines:
            in_cart.update({line.canonical_product_id, line.product_id})
        related: list[Product] = []
        for product in catalog:
            if product.category not in categories or not product.in_stock:
                continue
            if in_cart.intersection(identifier_keys(product)):
                continue
            related.append(product)
            if len(related) >= limit:
                break
        return related

    # ------------------------------------------------------------------
    # background refresh
    # ------------------------------------------------------------------

    def start_background(self, interval: float | None = None) -> None:
        if self._background is not None and not self._background.done():
            return
        period = interval if interval is not None else self.config.interval_seconds
        self._background = asyncio.get_running_loop().create_task(
            self._background_loop(period), name="catalog-sync-background"
        )
        logger.info("Background catalog sync started (every %.0fs)", period)

    async def _background_loop(self, interval: float) -> None:
        while True:
            try:
                await self.sync(force=True)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Background catalog sync error: %s", e)
            await self.clock.sleep(interval)

    async def stop_background(self) -> None:
        task, self._background = self._background, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Background catalog sync stopped")

    async def close(self) -> None:
        await self.stop_background()
        if self._in_flight is not None and not self._in_flight.done():
            self._in_flight.cancel()
