"""Cart line entities."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any

from storefront.core.constants import (
    DEFAULT_PRODUCT_NAME,
    DEFAULT_SKU,
    DEFAULT_STOCK_LIMIT,
    DEFAULT_VARIANT_SIZE,
    MIN_QUANTITY,
    PLACEHOLDER_IMAGE,
)
from storefront.core.order_math import calc_line_total
from storefront.domain.identity import stringify_id

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_line_id() -> str:
    return f"line_{uuid.uuid4().hex}"


def _to_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(round(float(value)))
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class Variant:
    """Selected variant of a cart line."""

    id: str | None = None
    size: str | None = None
    mass: str | None = None
    sku: str | None = None
    price: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "size": self.size,
            "mass": self.mass,
            "sku": self.sku,
            "price": self.price,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Variant | None:
        if not isinstance(data, dict):
            return None
        price = data.get("price")
        return cls(
            id=stringify_id(data.get("id")) or stringify_id(data.get("_id")),
            size=data.get("size") or None,
            mass=stringify_id(data.get("mass")),
            sku=data.get("sku") or None,
            price=None if price in (None, "") else _to_int(price, 0),
        )


@dataclass
class CartLine:
    """Single line in the cart.

    ``line_id`` is minted once per add-to-cart and never reused; two lines
    for the same product and size never coexist (they are merged).
    """

    line_id: str
    canonical_product_id: str
    product_id: str
    name: str
    unit_price: int
    quantity: int
    numeric_id: int | None = None
    size: str = DEFAULT_VARIANT_SIZE
    sku: str = DEFAULT_SKU
    variant: Variant | None = None
    image: str = PLACEHOLDER_IMAGE
    category: str | None = None
    in_stock: bool = True
    stock_limit: int = DEFAULT_STOCK_LIMIT
    last_synced_at: str | None = None
    added_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)

    @property
    def signature(self) -> str:
        return f"{self.canonical_product_id}_{self.size}"

    @property
    def line_total(self) -> int:
        return calc_line_total(self.unit_price, self.quantity)

    def with_changes(self, **changes: Any) -> CartLine:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "cartItemId": self.line_id,
            "canonicalProductId": self.canonical_product_id,
            "productId": self.product_id,
            "numericId": self.numeric_id,
            "name": self.name,
            "price": int(self.unit_price),
            "quantity": int(self.quantity),
            "size": self.size,
            "sku": self.sku,
            "selectedVariant": self.variant.to_dict() if self.variant else None,
            "image": self.image,
            "category": self.category,
            "inStock": bool(self.in_stock),
            "stockQuantity": int(self.stock_limit),
            "lastSyncedAt": self.last_synced_at,
            "addedAt": self.added_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> CartLine | None:
        """Parse a persisted line; returns None for anything unusable."""
        if not isinstance(data, dict):
            return None
        line_id = stringify_id(data.get("cartItemId"))
        product_id = stringify_id(data.get("productId")) or stringify_id(data.get("id"))
        canonical = stringify_id(data.get("canonicalProductId")) or product_id
        quantity = _to_int(data.get("quantity"), 0)
        if not line_id or not canonical or quantity < MIN_QUANTITY:
            logger.debug("Dropping invalid stored cart line: %r", data)
            return None

        numeric_id = data.get("numericId")
        now = utc_now_iso()
        return cls(
            line_id=line_id,
            canonical_product_id=canonical,
            product_id=product_id or canonical,
            numeric_id=None if numeric_id in (None, "") else _to_int(numeric_id, 0),
            name=str(data.get("name") or DEFAULT_PRODUCT_NAME),
            unit_price=max(0, _to_int(data.get("price"), 0)),
            quantity=quantity,
            size=str(data.get("size") or DEFAULT_VARIANT_SIZE),
            sku=str(data.get("sku") or DEFAULT_SKU),
            variant=Variant.from_dict(data.get("selectedVariant")),
            image=str(data.get("image") or PLACEHOLDER_IMAGE),
            category=data.get("category"),
            in_stock=data.get("inStock") is not False,
            stock_limit=max(MIN_QUANTITY, _to_int(data.get("stockQuantity"), DEFAULT_STOCK_LIMIT)),
            last_synced_at=data.get("lastSyncedAt"),
            added_at=str(data.get("addedAt") or now),
            updated_at=str(data.get("updatedAt") or now),
        )


def parse_lines(payload: Any) -> list[CartLine]:
    """Hydrate persisted lines; non-list payloads and bad entries are dropped."""
    if not isinstance(payload, list):
        if payload is not None:
            logger.warning("Stored cart is not a list, ignoring it")
        return []
    lines: list[CartLine] = []
    seen: set[str] = set()
    for raw in payload:
        line = CartLine.from_dict(raw)
        if line is None or line.line_id in seen:
            continue
        seen.add(line.line_id)
        lines.append(line)
    return lines
