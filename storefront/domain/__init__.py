"""Domain layer: pure entities and rules of the storefront core."""

from storefront.domain.cart import CartLine, Variant
from storefront.domain.checkout import (
    CheckoutSession,
    CheckoutStep,
    CustomerInfo,
    OrderDraft,
    OrderItem,
    generate_order_number,
)
from storefront.domain.identity import CanonicalId, IdSource, normalize
from storefront.domain.payment import PaymentAttempt, PaymentResult
from storefront.domain.payment_fsm import PaymentState, validate_payment_transition
from storefront.domain.phone import format_phone_number
from storefront.domain.product import Product

__all__ = [
    "CanonicalId",
    "CartLine",
    "CheckoutSession",
    "CheckoutStep",
    "CustomerInfo",
    "IdSource",
    "OrderDraft",
    "OrderItem",
    "PaymentAttempt",
    "PaymentResult",
    "PaymentState",
    "Product",
    "Variant",
    "format_phone_number",
    "generate_order_number",
    "normalize",
    "validate_payment_transition",
]
