from __future__ import annotations

from storefront.core.config import CartConfig
from storefront.core.events import EventType
from storefront.core.storage import MemoryStorage
from storefront.domain.product import Product
from storefront.services.cart_store import CartStore, get_cart_store

from tests.conftest import make_product

CART_KEY = "lindas:cart"


def _types(events) -> list[EventType]:
    return [event.type for event in events]


def test_add_same_product_twice_merges_into_one_line(store, events) -> None:
    product = make_product(price=1200)

    first = store.add_item(product, 1)
    second = store.add_item(product, 2)

    assert len(store.lines) == 1
    assert second.line_id == first.line_id
    assert store.lines[0].quantity == 3
    assert store.get_totals().subtotal == 3600
    assert EventType.ITEM_MERGED in _types(events)


def test_different_sizes_are_separate_lines(store) -> None:
    store.add_item(make_product(selectedVariant={"size": "250g", "price": 450}))
    store.add_item(make_product(selectedVariant={"size": "1kg", "price": 1900}))

    lines = store.lines
    assert len(lines) == 2
    assert {line.size for line in lines} == {"250g", "1kg"}
    assert {line.unit_price for line in lines} == {450, 1900}


def test_new_line_defaults(store) -> None:
    line = store.add_item({"id": 3, "name": "Almond Butter", "price": 1000})

    assert line.line_id.startswith("line_")
    assert line.size == "370g"
    assert line.sku == "SKU-DEFAULT"
    assert line.in_stock is True
    assert line.stock_limit == 999
    assert line.product_id == "3"


def test_line_ids_are_never_reused(store) -> None:
    product = make_product()
    first = store.add_item(product)
    store.remove_item(first.line_id)
    second = store.add_item(product)

    assert second.line_id != first.line_id


def test_add_accepts_catalog_product_model(store) -> None:
    product = Product.model_validate(make_product(_id="p9", price="1,250"))
    line = store.add_item(product)

    assert line.canonical_product_id == "p9"
    assert line.unit_price == 1250


def test_unresolvable_product_is_rejected(store, events) -> None:
    assert store.add_item({"name": "Mystery jar", "price": 100}) is None
    assert store.lines == []
    assert _types(events) == [EventType.CART_ERROR]


def test_invalid_quantity_is_rejected(store, events) -> None:
    assert store.add_item(make_product(), 0) is None
    assert store.add_item(make_product(), -2) is None
    assert store.lines == []
    assert _types(events) == [EventType.CART_ERROR, EventType.CART_ERROR]


def test_update_quantity_caps_at_stock_limit(store, events) -> None:
    line = store.add_item(make_product(stockQuantity=5))

    updated = store.update_quantity(line.line_id, 10)

    assert updated.quantity == 5
    assert store.lines[0].quantity == 5
    assert EventType.LIMITED_STOCK in _types(events)


def test_update_quantity_zero_removes_line(store) -> None:
    line = store.add_item(make_product())

    assert store.update_quantity(line.line_id, 0) is None
    assert store.lines == []


def test_update_quantity_unknown_line(store, events) -> None:
    assert store.update_quantity("line_missing", 2) is None
    assert _types(events) == [EventType.CART_ERROR]


def test_merge_respects_stock_limit(store, events) -> None:
    product = make_product(stockQuantity=3)
    store.add_item(product, 2)
    store.add_item(product, 2)

    assert store.lines[0].quantity == 3
    assert EventType.LIMITED_STOCK in _types(events)


def test_remove_item(store, events) -> None:
    line = store.add_item(make_product())

    assert store.remove_item(line.line_id) is True
    assert store.remove_item(line.line_id) is False
    assert store.lines == []
    assert _types(events)[-1] == EventType.CART_ERROR


def test_totals_include_flat_shipping_only_when_not_empty(store) -> None:
    empty = store.get_totals()
    assert (empty.subtotal, empty.shipping, empty.total) == (0, 0, 0)

    store.add_item(make_product(price=850), 2)
    totals = store.get_totals()
    assert totals.subtotal == 1700
    assert totals.shipping == 500
    assert totals.total == 2200
    assert totals.item_count == 2


def test_cart_updated_event_carries_totals(store, events) -> None:
    store.add_item(make_product(price=100))

    updated = [event for event in events if event.type is EventType.CART_UPDATED]
    assert updated[-1].data["totals"] == {"subtotal": 100, "shipping": 500, "total": 600, "itemCount": 1}


def test_unsubscribe_stops_notifications(store) -> None:
    received = []
    unsubscribe = store.subscribe(received.append)
    store.add_item(make_product())
    count = len(received)

    unsubscribe()
    store.clear()

    assert count > 0
    assert len(received) == count


def test_mutations_persist_and_hydrate(storage) -> None:
    store = CartStore(storage=storage)
    line = store.add_item(make_product(), 2)

    restored = CartStore(storage=storage)

    assert [item.line_id for item in restored.lines] == [line.line_id]
    assert restored.lines[0].quantity == 2
    assert storage.load(CART_KEY)[0]["cartItemId"] == line.line_id


def test_corrupt_storage_is_treated_as_empty() -> None:
    storage = MemoryStorage()
    storage.put_raw(CART_KEY, "{not json")
    assert CartStore(storage=storage).lines == []

    storage.save(CART_KEY, {"items": "not a list"})
    assert CartStore(storage=storage).lines == []


def test_invalid_stored_lines_are_dropped(storage) -> None:
    storage.save(
        CART_KEY,
        [
            {"cartItemId": "line_a", "productId": "p1", "name": "Ok", "price": 100, "quantity": 1},
            {"cartItemId": "line_b", "productId": "p2", "quantity": 0},
            {"productId": "p3", "quantity": 2},
            "garbage",
        ],
    )

    store = CartStore(storage=storage)

    assert [line.line_id for line in store.lines] == ["line_a"]


def test_namespace_controls_storage_key(storage) -> None:
    store = CartStore(storage=storage, config=CartConfig(namespace="shop2"))
    store.add_item(make_product())

    assert storage.load("shop2:cart")
    assert storage.load(CART_KEY) is None


def test_clear_empties_and_persists(store, storage, events) -> None:
    store.add_item(make_product())
    store.clear()

    assert store.lines == []
    assert storage.load(CART_KEY) == []
    assert EventType.CART_CLEARED in _types(events)


def test_apply_sync_preserves_current_quantity(store) -> None:
    line = store.add_item(make_product(price=850), 2)
    stale_snapshot = store.lines
    store.update_quantity(line.line_id, 4)

    refreshed = [stale_snapshot[0].with_changes(unit_price=900)]
    merged = store.apply_sync(refreshed)

    assert merged[0].quantity == 4
    assert merged[0].unit_price == 900


def test_apply_sync_keeps_removed_lines_removed(store) -> None:
    kept = store.add_item(make_product(_id="p1"))
    dropped = store.add_item(make_product(_id="p2", name="Cashew"))
    snapshot = store.lines
    store.remove_item(dropped.line_id)
    added = store.add_item(make_product(_id="p3", name="Macadamia"))

    merged = store.apply_sync([line.with_changes(unit_price=1) for line in snapshot])

    assert [line.line_id for line in merged] == [kept.line_id, added.line_id]
    assert merged[0].unit_price == 1


def test_wishlist_add_duplicate_and_move(store, events) -> None:
    saved = store.add_to_wishlist(make_product())
    assert saved is not None
    assert store.add_to_wishlist(make_product()) is None
    assert EventType.WISHLIST_DUPLICATE in _types(events)
    assert store.is_in_wishlist(make_product())

    moved = store.move_to_cart(saved.line_id)

    assert moved is not None
    assert store.wishlist == []
    assert store.lines[0].canonical_product_id == "p1"
    assert store.lines[0].line_id != saved.line_id


def test_wishlist_persists_separately(storage) -> None:
    store = CartStore(storage=storage)
    item = store.add_to_wishlist(make_product())

    restored = CartStore(storage=storage)

    assert [entry.line_id for entry in restored.wishlist] == [item.line_id]
    assert restored.lines == []
    assert store.remove_from_wishlist(item.line_id) is True
    assert store.remove_from_wishlist(item.line_id) is False


def test_get_cart_store_returns_singleton(monkeypatch) -> None:
    import storefront.services.cart_store as cart_store_module

    monkeypatch.setattr(cart_store_module, "_cart_store", None)
    first = get_cart_store(storage=MemoryStorage())

    assert get_cart_store() is first


def test_get_cart_store_warns_when_arguments_change(monkeypatch, caplog) -> None:
    import storefront.services.cart_store as cart_store_module

    monkeypatch.setattr(cart_store_module, "_cart_store", None)
    first = get_cart_store(storage=MemoryStorage())

    with caplog.at_level("WARNING", logger="storefront.services.cart_store"):
        second = get_cart_store(config=CartConfig(namespace="other"))

    assert second is first
    assert second.config.namespace == "lindas"
    assert "already created" in caplog.text


def test_zero_shipping_fee_store(storage) -> None:
    store = CartStore(storage=storage, config=CartConfig(shipping_fee=0))
    store.add_item(make_product(price=850), 2)

    totals = store.get_totals()

    assert (totals.subtotal, totals.shipping, totals.total) == (1700, 0, 1700)


def test_reload_picks_up_writes_from_another_store(storage) -> None:
    reader = CartStore(storage=storage)
    writer = CartStore(storage=storage)
    writer.add_item(make_product(), 4)

    assert reader.lines == []
    reader.reload()

    assert reader.lines[0].quantity == 4
