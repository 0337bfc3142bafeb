from storefront.core.order_math import calc_items_total, calc_shipping_fee, calc_totals
from storefront.domain.cart import CartLine


def _line(price: int, quantity: int) -> CartLine:
    return CartLine(
        line_id=f"line_{price}_{quantity}",
        canonical_product_id="p1",
        product_id="p1",
        name="Peanut Butter",
        unit_price=price,
        quantity=quantity,
    )


def test_calc_items_total_multiplies_price_by_quantity() -> None:
    assert calc_items_total([_line(850, 3), _line(1200, 1)]) == 3750


def test_shipping_is_flat_and_only_for_non_empty_subtotal() -> None:
    assert calc_shipping_fee(0, flat_fee=500) == 0
    assert calc_shipping_fee(1, flat_fee=500) == 500
    assert calc_shipping_fee(100_000, flat_fee=500) == 500


def test_calc_totals_is_pure_function_of_lines() -> None:
    lines = [_line(850, 2), _line(400, 1)]
    totals = calc_totals(lines, shipping_fee=300)

    assert totals.subtotal == 2100
    assert totals.shipping == 300
    assert totals.total == 2400
    assert totals.item_count == 3
    assert calc_totals(lines, shipping_fee=300) == totals


def test_calc_totals_of_empty_cart_is_zero() -> None:
    totals = calc_totals([], shipping_fee=500)
    assert totals.to_dict() == {"subtotal": 0, "shipping": 0, "total": 0, "itemCount": 0}
