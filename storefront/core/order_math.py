"""Shared helpers for cart totals and quantities."""
from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from storefront.core.constants import DEFAULT_SHIPPING_FEE


@dataclass(frozen=True, slots=True)
class CartTotals:
    subtotal: int
    shipping: int
    total: int
    item_count: int

    def to_dict(self) -> dict[str, int]:
        return {
            "subtotal": self.subtotal,
            "shipping": self.shipping,
            "total": self.total,
            "itemCount": self.item_count,
        }


def calc_line_total(unit_price: int, quantity: int) -> int:
    return int(unit_price) * int(quantity)


def calc_items_total(lines: Iterable[Any]) -> int:
    return sum(calc_line_total(line.unit_price, line.quantity) for line in lines)


def calc_quantity(lines: Iterable[Any]) -> int:
    return sum(int(line.quantity) for line in lines)


def calc_shipping_fee(subtotal: int, *, flat_fee: int = DEFAULT_SHIPPING_FEE) -> int:
    return int(flat_fee) if subtotal > 0 else 0


def calc_totals(lines: Iterable[Any], *, shipping_fee: int = DEFAULT_SHIPPING_FEE) -> CartTotals:
    snapshot = list(lines)
    subtotal = calc_items_total(snapshot)
    shipping = calc_shipping_fee(subtotal, flat_fee=shipping_fee)
    return CartTotals(
        subtotal=subtotal,
        shipping=shipping,
        total=subtotal + shipping,
        item_count=calc_quantity(snapshot),
    )
