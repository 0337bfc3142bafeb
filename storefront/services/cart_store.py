"""
Cart store: the single owner and writer of the persisted cart and wishlist.

Every mutation is synchronous, so on one event loop mutations never
interleave; each one recomputes from the current in-memory lines, persists
the whole list and publishes events. Problems are reported as CART_ERROR
events instead of exceptions.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from storefront.core.config import CartConfig
from storefront.core.constants import (
    CART_KEY,
    DEFAULT_PRODUCT_NAME,
    MIN_QUANTITY,
    PLACEHOLDER_IMAGE,
    WISHLIST_KEY,
)
from storefront.core.events import EventBus, EventHandler, EventType
from storefront.core.order_math import CartTotals, calc_totals
from storefront.core.storage import MemoryStorage, Storage
from storefront.domain.cart import CartLine, Variant, new_line_id, parse_lines, utc_now_iso
from storefront.domain.identity import (
    PRODUCT_ID_FIELDS,
    as_mapping,
    normalize_product,
    stringify_id,
    variant_size,
)

logger = logging.getLogger(__name__)


def _int_or_none(value: Any) -> int | None:
    if value in (None, "") or isinstance(value, bool):
        return None
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return None


class CartStore:
    """Cart lines, totals, persistence and change notifications."""

    def __init__(
        self,
        storage: Storage | None = None,
        config: CartConfig | None = None,
        bus: EventBus | None = None,
    ):
        self.config = config or CartConfig()
        self.storage = storage if storage is not None else MemoryStorage()
        self.bus = bus or EventBus()
        self._cart_key = f"{self.config.namespace}:{CART_KEY}"
        self._wishlist_key = f"{self.config.namespace}:{WISHLIST_KEY}"
        self._lines: list[CartLine] = self._hydrate(self._cart_key)
        self._wishlist: list[CartLine] = self._hydrate(self._wishlist_key)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def _hydrate(self, key: str) -> list[CartLine]:
        try:
            payload = self.storage.load(key)
        except Exception as e:
            logger.error("Failed to load %s: %s", key, e)
            return []
        return parse_lines(payload)

    def _persist(self, key: str, lines: list[CartLine]) -> None:
        try:
            self.storage.save(key, [line.to_dict() for line in lines])
        except Exception as e:
            logger.error("Failed to persist %s: %s", key, e)
            self.bus.emit(EventType.CART_ERROR, "Could not save your cart.", error=str(e))

    def _commit(self, lines: list[CartLine]) -> None:
        self._lines = lines
        self._persist(self._cart_key, lines)
        self.bus.emit(EventType.CART_UPDATED, totals=self.get_totals().to_dict(), count=len(lines))

    def reload(self) -> None:
        """Re-read persisted state, e.g. after another process wrote it."""
        self._lines = self._hydrate(self._cart_key)
        self._wishlist = self._hydrate(self._wishlist_key)

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    @property
    def lines(self) -> list[CartLine]:
        return list(self._lines)

    @property
    def wishlist(self) -> list[CartLine]:
        return list(self._wishlist)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def get_line(self, line_id: str) -> CartLine | None:
        for line in self._lines:
            if line.line_id == line_id:
                return line
        return None

    def get_totals(self) -> CartTotals:
        return calc_totals(self._lines, shipping_fee=self.config.shipping_fee)

    def subscribe(self, handler: EventHandler):
        """Register a change listener; returns its unsubscribe callable."""
        return self.bus.subscribe(handler)

    # ------------------------------------------------------------------
    # line construction
    # ------------------------------------------------------------------

    def _build_line(self, product: Any, quantity: int) -> CartLine | None:
        record = as_mapping(product)
        if record is None:
            return None
        canonical = normalize_product(record)
        if canonical is None:
            return None

        raw_ids = [stringify_id(record.get(name)) for name in PRODUCT_ID_FIELDS]
        product_id = next((value for value in raw_ids if value), canonical.value)

        variant = Variant.from_dict(record.get("selectedVariant"))
        price = variant.price if variant and variant.price is not None else _int_or_none(record.get("price"))
        images = record.get("images") or []
        image = record.get("image") or (images[0] if isinstance(images, list) and images else None)
        stock = _int_or_none(record.get("stockQuantity"))
        stock_limit = max(MIN_QUANTITY, stock if stock is not None else self.config.default_stock_limit)
        sku = (variant.sku if variant else None) or record.get("sku") or self.config.default_sku

        return CartLine(
            line_id=new_line_id(),
            canonical_product_id=canonical.value,
            product_id=product_id,
            numeric_id=_int_or_none(record.get("numericId")),
            name=str(record.get("name") or DEFAULT_PRODUCT_NAME),
            unit_price=max(0, price or 0),
            quantity=min(quantity, stock_limit),
            size=variant_size(record, self.config.default_size),
            sku=str(sku),
            variant=variant,
            image=str(image or PLACEHOLDER_IMAGE),
            category=record.get("category"),
            in_stock=record.get("inStock") is not False,
            stock_limit=stock_limit,
        )

    @staticmethod
    def _find_by_signature(lines: Iterable[CartLine], signature: str) -> int:
        for index, line in enumerate(lines):
            if line.signature == signature:
                return index
        return -1

    # ------------------------------------------------------------------
    # cart mutations
    # ------------------------------------------------------------------

    def add_item(self, product: Any, quantity: int = 1) -> CartLine | None:
        """Add ``quantity`` of a product, merging into an existing line of the same size."""
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < MIN_QUANTITY:
            self.bus.emit(EventType.CART_ERROR, "Invalid quantity.", quantity=quantity)
            return None

        candidate = self._build_line(product, quantity)
        if candidate is None:
            logger.warning("Rejected add_item for unresolvable product: %r", product)
            self.bus.emit(EventType.CART_ERROR, "Invalid product data.")
            return None

        lines = list(self._lines)
        index = self._find_by_signature(lines, candidate.signature)
        if index < 0:
            if candidate.quantity < quantity:
                self._emit_limited(candidate)
            lines.append(candidate)
            self._commit(lines)
            self.bus.emit(EventType.ITEM_ADDED, f"{candidate.name} added to your cart!", line=candidate.to_dict())
            return candidate

        existing = lines[index]
        wanted = existing.quantity + quantity
        merged = existing.with_changes(
            quantity=min(wanted, existing.stock_limit),
            updated_at=utc_now_iso(),
        )
        if merged.quantity < wanted:
            self._emit_limited(merged)
        lines[index] = merged
        self._commit(lines)
        self.bus.emit(
            EventType.ITEM_MERGED,
            f"{merged.name} quantity is now {merged.quantity}.",
            line=merged.to_dict(),
        )
        return merged

    def remove_item(self, line_id: str) -> bool:
        lines = [line for line in self._lines if line.line_id != line_id]
        if len(lines) == len(self._lines):
            logger.warning("No cart line to remove for id %s", line_id)
            self.bus.emit(EventType.CART_ERROR, "Could not remove item.", line_id=line_id)
            return False
        removed = self.get_line(line_id)
        self._commit(lines)
        self.bus.emit(
            EventType.ITEM_REMOVED,
            f"{removed.name} removed from your cart" if removed else "",
            line_id=line_id,
        )
        return True

    def update_quantity(self, line_id: str, new_quantity: int) -> CartLine | None:
        """Set a line's quantity.

        ``<= 0`` removes the line (returns None). Values above the line's
        stock limit are capped and LIMITED_STOCK is emitted.
        """
        if not isinstance(new_quantity, int) or isinstance(new_quantity, bool):
            self.bus.emit(EventType.CART_ERROR, "Invalid quantity.", quantity=new_quantity)
            return None

        current = self.get_line(line_id)
        if current is None:
            self.bus.emit(EventType.CART_ERROR, "Item is no longer in your cart.", line_id=line_id)
            return None

        if new_quantity <= 0:
            self.remove_item(line_id)
            return None

        quantity = min(max(new_quantity, MIN_QUANTITY), current.stock_limit)
        updated = current.with_changes(quantity=quantity, updated_at=utc_now_iso())
        if quantity < new_quantity:
            self._emit_limited(updated)
        self._commit([updated if line.line_id == line_id else line for line in self._lines])
        return updated

    def clear(self) -> None:
        self._commit([])
        self.bus.emit(EventType.CART_CLEARED, "Your cart has been cleared")

    def apply_sync(self, refreshed: Iterable[CartLine]) -> list[CartLine]:
        """Merge refreshed catalog fields into the current lines.

        Matching is by ``line_id``. The current quantity always wins, lines
        removed since the sync started stay removed and lines added since
        are kept as they are.
        """
        by_id = {line.line_id: line for line in refreshed}
        merged: list[CartLine] = []
        for line in self._lines:
            fresh = by_id.get(line.line_id)
            if fresh is None:
                merged.append(line)
                continue
            merged.append(fresh.with_changes(quantity=line.quantity, added_at=line.added_at))
        self._commit(merged)
        return list(merged)

    def _emit_limited(self, line: CartLine) -> None:
        self.bus.emit(
            EventType.LIMITED_STOCK,
            f"Only {line.stock_limit} of {line.name} available.",
            line_id=line.line_id,
            stock_limit=line.stock_limit,
        )

    # ------------------------------------------------------------------
    # wishlist
    # ------------------------------------------------------------------

    def _save_wishlist(self, items: list[CartLine]) -> None:
        self._wishlist = items
        self._persist(self._wishlist_key, items)
        self.bus.emit(EventType.WISHLIST_UPDATED, count=len(items))

    def add_to_wishlist(self, product: Any) -> CartLine | None:
        candidate = self._build_line(product, MIN_QUANTITY)
        if candidate is None:
            self.bus.emit(EventType.CART_ERROR, "Invalid product data.")
            return None
        if self._find_by_signature(self._wishlist, candidate.signature) >= 0:
            self.bus.emit(
                EventType.WISHLIST_DUPLICATE,
                f"{candidate.name} is already in your wishlist",
                product_id=candidate.canonical_product_id,
            )
            return None
        self._save_wishlist([*self._wishlist, candidate])
        return candidate

    def remove_from_wishlist(self, line_id: str) -> bool:
        items = [item for item in self._wishlist if item.line_id != line_id]
        if len(items) == len(self._wishlist):
            return False
        self._save_wishlist(items)
        return True

    def move_to_cart(self, line_id: str) -> CartLine | None:
        item = next((entry for entry in self._wishlist if entry.line_id == line_id), None)
        if item is None:
            self.bus.emit(EventType.CART_ERROR, "Item is no longer in your wishlist.", line_id=line_id)
            return None
        record = item.to_dict()
        record.pop("cartItemId", None)
        line = self.add_item(record, MIN_QUANTITY)
        if line is not None:
            self.remove_from_wishlist(line_id)
        return line

    def is_in_wishlist(self, product: Any) -> bool:
        canonical = normalize_product(product)
        if canonical is None:
            return False
        return any(item.canonical_product_id == canonical.value for item in self._wishlist)


_cart_store: CartStore | None = None


def get_cart_store(storage: Storage | None = None, config: CartConfig | None = None) -> CartStore:
    """Process-wide cart store, created on first use.

    Arguments only take effect on the first call; later calls that pass
    different ones get the existing store and a warning.
    """
    global _cart_store
    if _cart_store is None:
        _cart_store = CartStore(storage=storage, config=config)
    elif (storage is not None and storage is not _cart_store.storage) or (
        config is not None and config != _cart_store.config
    ):
        logger.warning("get_cart_store: cart store already created, ignoring new storage/config")
    return _cart_store
