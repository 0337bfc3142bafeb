"""Custom exceptions for the storefront core."""
from __future__ import annotations

from typing import Any


class StorefrontException(Exception):
    """Base exception for all storefront core errors."""

    def __init__(self, message: str, *args: object) -> None:
        super().__init__(message, *args)
        self.message = message


class ValidationException(StorefrontException):
    """Input rejected locally before any network call."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class UnresolvableProductException(StorefrontException):
    """Product or cart line has no identifier the normalizer can use."""

    def __init__(self, record: Any = None) -> None:
        super().__init__("Product has no valid ID")
        self.record = record


class ConfigurationException(StorefrontException):
    """Configuration errors."""

    pass


class ApiException(StorefrontException):
    """REST backend returned an error response."""

    def __init__(self, message: str, status: int | None = None, path: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.path = path


class NetworkException(ApiException):
    """Transport-level failure (connection refused, timeout, reset)."""

    pass


class CatalogUnavailableException(StorefrontException):
    """Catalog could not be fetched after the retry budget was spent."""

    pass


class PaymentException(StorefrontException):
    """Base class for payment errors."""

    pass


class PaymentInProgressException(PaymentException):
    """A payment attempt is already running on this machine."""

    def __init__(self, checkout_request_id: str | None = None) -> None:
        super().__init__("Payment request is already in progress. Please wait.")
        self.checkout_request_id = checkout_request_id


class PaymentFailedException(PaymentException):
    """Payment reached a terminal state other than COMPLETED."""

    def __init__(self, state: str, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.state = state
        self.code = code


class CheckoutBlockedException(StorefrontException):
    """Checkout cannot proceed to payment."""

    def __init__(self, message: str, items: list[Any] | None = None) -> None:
        super().__init__(message)
        self.items = items or []


class OrderRecordingException(StorefrontException):
    """Payment succeeded but the order could not be recorded.

    Money may have moved without a recorded order, so this is never folded
    into a generic failure.
    """

    def __init__(
        self,
        order_number: str,
        receipt_number: str | None,
        checkout_request_id: str | None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(
            "Payment succeeded but order recording failed, contact support "
            f"(order {order_number}, receipt {receipt_number or 'n/a'})"
        )
        self.order_number = order_number
        self.receipt_number = receipt_number
        self.checkout_request_id = checkout_request_id
        self.cause = cause
