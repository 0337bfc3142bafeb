"""Product and cart-line identity.

Catalog records, legacy records and cart lines name the same product with
different fields (``productId``, ``_id``, ``id``, ``numericId``, ``sku``),
and cart lines add their own ``cartItemId``. Everything downstream compares
products only through :func:`normalize`.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel

from storefront.core.constants import DEFAULT_VARIANT_SIZE

PRODUCT_ID_FIELDS = ("productId", "_id", "id", "numericId")
VARIANT_DISCRIMINATOR_FIELDS = ("id", "_id", "size", "mass")


class IdSource(str, Enum):
    """Which rule produced a canonical id."""

    RAW = "raw"
    CART_LINE = "cart_line"
    PRODUCT = "product"
    VARIANT = "variant"
    SKU = "sku"


@dataclass(frozen=True)
class CanonicalId:
    """Authoritative identifier; equality and hashing use ``value`` only."""

    value: str
    source: IdSource = field(default=IdSource.PRODUCT, compare=False)

    def __str__(self) -> str:
        return self.value


def as_mapping(record: Any) -> Mapping[str, Any] | None:
    if isinstance(record, Mapping):
        return record
    if isinstance(record, BaseModel):
        return record.model_dump(by_alias=True)
    to_dict = getattr(record, "to_dict", None)
    if callable(to_dict):
        data = to_dict()
        if isinstance(data, Mapping):
            return data
    return None


def get_field(record: Any, name: str, default: Any = None) -> Any:
    mapping = as_mapping(record)
    if mapping is not None:
        value = mapping.get(name, default)
    else:
        value = getattr(record, name, default)
    return default if value is None else value


def stringify_id(value: Any) -> str | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if value != value:  # NaN
            return None
        if value.is_integer():
            value = int(value)
    if isinstance(value, (int, str)):
        text = str(value).strip()
        return text or None
    return None


def _candidate_ids(record: Any) -> list[str]:
    ids: list[str] = []
    for name in PRODUCT_ID_FIELDS:
        value = stringify_id(get_field(record, name))
        if value is not None:
            ids.append(value)
    return ids


def variant_discriminator(variant: Any) -> str | None:
    if variant is None:
        return None
    for name in VARIANT_DISCRIMINATOR_FIELDS:
        value = stringify_id(get_field(variant, name))
        if value is not None:
            return value
    return None


def normalize(record: Any) -> CanonicalId | None:
    """Resolve any product-like value to its canonical id, or None.

    Priority: cart-line id, then product ids (with a variant suffix when a
    variant is selected), then sku.
    """
    if isinstance(record, CanonicalId):
        return record
    if record is None or isinstance(record, bool):
        return None
    if isinstance(record, (str, int, float)):
        value = stringify_id(record)
        return CanonicalId(value, IdSource.RAW) if value else None

    cart_item_id = stringify_id(get_field(record, "cartItemId"))
    if cart_item_id:
        return CanonicalId(cart_item_id, IdSource.CART_LINE)

    candidates = _candidate_ids(record)
    if candidates:
        discriminator = variant_discriminator(get_field(record, "selectedVariant"))
        if discriminator:
            return CanonicalId(f"{candidates[0]}_{discriminator}", IdSource.VARIANT)
        return CanonicalId(candidates[0], IdSource.PRODUCT)

    sku = stringify_id(get_field(record, "sku"))
    if sku:
        return CanonicalId(sku, IdSource.SKU)
    return None


def normalize_product(record: Any, variant: Any = None) -> CanonicalId | None:
    """Product identity of ``record``, ignoring any cart-line id.

    ``variant`` overrides the record's own ``selectedVariant``.
    """
    mapping = as_mapping(record)
    if mapping is None:
        return normalize(record)
    data = {key: mapping.get(key) for key in (*PRODUCT_ID_FIELDS, "sku")}
    data["selectedVariant"] = variant if variant is not None else mapping.get("selectedVariant")
    return normalize(data)


def identifier_keys(record: Any) -> list[str]:
    """Every identifier form a record can be looked up by, canonical first."""
    keys: list[str] = []
    canonical = normalize_product(record)
    if canonical is not None:
        keys.append(canonical.value)
    for value in _candidate_ids(record):
        if value not in keys:
            keys.append(value)
    return keys


def variant_size(record: Any, default: str = DEFAULT_VARIANT_SIZE) -> str:
    """Size label used in line signatures (``"250g"``, ``"1kg"``...)."""
    variant = get_field(record, "selectedVariant")
    if variant is not None:
        size = get_field(variant, "size")
        if size:
            return str(size)
        mass = get_field(variant, "mass")
        if mass not in (None, ""):
            return f"{stringify_id(mass) or mass}g"
    size = get_field(record, "size")
    return str(size) if size else default
