"""Checkout session, customer details and order payloads."""
from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.core.constants import (
    ORDER_NUMBER_PREFIX,
    ORDER_STATUS_PROCESSING,
    PAYMENT_METHOD_MPESA,
)
from storefront.core.order_math import CartTotals, calc_line_total
from storefront.domain.cart import CartLine
from storefront.domain.payment import PaymentAttempt
from storefront.domain.payment_fsm import PaymentState

EMAIL_PATTERN = re.compile(r"^[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}$", re.IGNORECASE)
PHONE_PATTERN = re.compile(r"^[+\d\s\-()]{10,20}$")

_ORDER_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


class CheckoutStep(str, Enum):
    CART_REVIEW = "cart_review"
    LOGIN = "login"
    CUSTOMER_INFO = "customer_info"
    PAYMENT = "payment"
    CONFIRMATION = "confirmation"


def steps_for(authenticated: bool) -> list[CheckoutStep]:
    """Step order; LOGIN only appears for anonymous customers."""
    steps = [CheckoutStep.CART_REVIEW]
    if not authenticated:
        steps.append(CheckoutStep.LOGIN)
    steps.extend([CheckoutStep.CUSTOMER_INFO, CheckoutStep.PAYMENT, CheckoutStep.CONFIRMATION])
    return steps


def generate_order_number(prefix: str = ORDER_NUMBER_PREFIX, now: datetime | None = None) -> str:
    """``LNB-YYMMDD-XXXX`` with a random uppercase alphanumeric suffix."""
    moment = now or datetime.now()
    suffix = "".join(secrets.choice(_ORDER_SUFFIX_ALPHABET) for _ in range(4))
    return f"{prefix}-{moment:%y%m%d}-{suffix}"


class CustomerInfo(BaseModel):
    """Delivery contact collected on the customer-info step."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    name: str
    email: str
    phone_number: str = Field(alias="phoneNumber")
    delivery_address: str = Field(alias="deliveryAddress")
    notes: Optional[str] = None

    @field_validator("name", "delivery_address")
    @classmethod
    def required_text(cls, v: str) -> str:
        if not v:
            raise ValueError("This field is required")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        if not EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email address")
        return v

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        if not PHONE_PATTERN.match(v):
            raise ValueError("Please enter a valid phone number")
        return v


class OrderItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(alias="productId")
    name: str
    quantity: int = Field(ge=1)
    unit_price: int = Field(alias="unitPrice", ge=0)
    total_price: int = Field(alias="totalPrice", ge=0)
    size: Optional[str] = None
    sku: Optional[str] = None

    @classmethod
    def from_line(cls, line: CartLine) -> OrderItem:
        return cls(
            product_id=line.product_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
            total_price=calc_line_total(line.unit_price, line.quantity),
            size=line.size,
            sku=line.sku,
        )


class OrderDraft(BaseModel):
    """Order assembled before payment; becomes the ``POST /orders`` body."""

    model_config = ConfigDict(populate_by_name=True)

    order_number: str = Field(alias="orderNumber")
    customer: Optional[CustomerInfo] = None
    items: list[OrderItem]
    payment_method: str = Field(PAYMENT_METHOD_MPESA, alias="paymentMethod")
    subtotal: int
    shipping: int
    total: int

    @classmethod
    def build(
        cls,
        lines: list[CartLine],
        totals: CartTotals,
        customer: CustomerInfo | None,
        *,
        order_number: str,
    ) -> OrderDraft:
        return cls(
            order_number=order_number,
            customer=customer,
            items=[OrderItem.from_line(line) for line in lines],
            subtotal=totals.subtotal,
            shipping=totals.shipping,
            total=totals.total,
        )

    def to_payload(
        self,
        *,
        receipt_number: str | None = None,
        checkout_request_id: str | None = None,
    ) -> dict[str, Any]:
        payload = self.model_dump(by_alias=True, exclude_none=True)
        payload["paymentStatus"] = PaymentState.COMPLETED.value
        payload["status"] = ORDER_STATUS_PROCESSING
        if receipt_number:
            payload["mpesaReceiptNumber"] = receipt_number
        if checkout_request_id:
            payload["checkoutRequestId"] = checkout_request_id
        return payload


@dataclass(slots=True)
class OrderConfirmation:
    """What the confirmation step shows."""

    order_number: str
    order_id: str | None = None
    reference_number: str | None = None
    receipt_number: str | None = None
    total: int = 0


@dataclass
class CheckoutSession:
    """In-memory state of one checkout; discarded on success or cancel."""

    authenticated: bool = False
    active_step_index: int = 0
    customer_info: CustomerInfo | None = None
    payment_selection: str = PAYMENT_METHOD_MPESA
    order_draft: OrderDraft | None = None
    # COMPLETED payment whose order is not recorded yet
    paid_attempt: PaymentAttempt | None = None
    confirmation: OrderConfirmation | None = None
    steps: list[CheckoutStep] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.steps:
            self.steps = steps_for(self.authenticated)

    @property
    def current_step(self) -> CheckoutStep:
        return self.steps[self.active_step_index]

    def index_of(self, step: CheckoutStep) -> int:
        return self.steps.index(step)
