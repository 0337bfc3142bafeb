"""Catalog product records as served by ``GET /products``."""
from __future__ import annotations

from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.core.constants import DEFAULT_STOCK_LIMIT, PLACEHOLDER_IMAGE

RawId = Union[str, int]


def _coerce_price(value: Any) -> int:
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(round(value))
    if isinstance(value, str):
        cleaned = value.replace(",", "").strip()
        try:
            return int(round(float(cleaned)))
        except ValueError:
            return 0
    return 0


class Variant(BaseModel):
    """Purchasable variant of a product (jar size, mass)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[RawId] = None
    mongo_id: Optional[RawId] = Field(None, alias="_id")
    size: Optional[str] = None
    mass: Optional[Union[int, float, str]] = None
    sku: Optional[str] = None
    price: Optional[int] = None

    @field_validator("price", mode="before")
    @classmethod
    def coerce_price(cls, v: Any) -> Optional[int]:
        return None if v in (None, "") else _coerce_price(v)


class Product(BaseModel):
    """Read-only catalog record.

    Unknown fields are kept so a product can be handed back to the cart
    unchanged.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: Optional[RawId] = None
    mongo_id: Optional[RawId] = Field(None, alias="_id")
    product_id: Optional[RawId] = Field(None, alias="productId")
    numeric_id: Optional[int] = Field(None, alias="numericId")
    sku: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    price: int = 0
    in_stock: bool = Field(True, alias="inStock")
    stock_quantity: int = Field(DEFAULT_STOCK_LIMIT, alias="stockQuantity")
    image: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    category: Optional[str] = None
    variants: list[Variant] = Field(default_factory=list)
    selected_variant: Optional[Variant] = Field(None, alias="selectedVariant")
    size: Optional[str] = None

    @field_validator("price", mode="before")
    @classmethod
    def coerce_price(cls, v: Any) -> int:
        return _coerce_price(v)

    @field_validator("in_stock", mode="before")
    @classmethod
    def default_in_stock(cls, v: Any) -> bool:
        # only an explicit false marks a product unavailable
        return v is not False

    @field_validator("stock_quantity", mode="before")
    @classmethod
    def default_stock(cls, v: Any) -> int:
        if v in (None, ""):
            return DEFAULT_STOCK_LIMIT
        try:
            return max(0, int(v))
        except (TypeError, ValueError):
            return DEFAULT_STOCK_LIMIT

    @field_validator("numeric_id", mode="before")
    @classmethod
    def coerce_numeric_id(cls, v: Any) -> Optional[int]:
        if v in (None, "") or isinstance(v, bool):
            return None
        try:
            return int(v)
        except (TypeError, ValueError):
            return None

    @property
    def main_image(self) -> str:
        if self.image:
            return self.image
        return self.images[0] if self.images else PLACEHOLDER_IMAGE

    def find_variant(self, size: str | None = None, sku: str | None = None) -> Variant | None:
        for variant in self.variants:
            if sku and variant.sku == sku:
                return variant
            if size and variant.size == size:
                return variant
        return None

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def parse_products(payload: Any) -> list[Product]:
    """Accept a bare list or the wrapped ``{products}`` / ``{data: {products}}`` shapes."""
    if isinstance(payload, dict):
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("products"), list):
            payload = data["products"]
        elif isinstance(data, list):
            payload = data
        else:
            payload = payload.get("products", [])
    if not isinstance(payload, list):
        return []
    products: list[Product] = []
    for raw in payload:
        if isinstance(raw, Product):
            products.append(raw)
        elif isinstance(raw, dict):
            products.append(Product.model_validate(raw))
    return products
