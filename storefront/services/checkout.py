"""
Checkout orchestration.

Walks the customer through cart review, login, customer details and
payment. Entering PAYMENT re-validates the cart against the live catalog;
a COMPLETED payment is recorded as an order before the cart is cleared.
"""
from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import ValidationError

from storefront.core.constants import ORDER_NUMBER_PREFIX
from storefront.core.events import EventType
from storefront.core.exceptions import (
    CheckoutBlockedException,
    OrderRecordingException,
    PaymentFailedException,
    ValidationException,
)
from storefront.core.idempotency import build_request_hash
from storefront.core.sentry_integration import capture_exception
from storefront.domain.cart import CartLine
from storefront.domain.checkout import (
    CheckoutSession,
    CheckoutStep,
    CustomerInfo,
    OrderConfirmation,
    OrderDraft,
    generate_order_number,
    steps_for,
)
from storefront.domain.identity import normalize
from storefront.domain.payment import PaymentAttempt
from storefront.domain.payment_fsm import PaymentState
from storefront.services.cart_store import CartStore
from storefront.services.catalog_sync import CatalogSyncService, SyncReport
from storefront.services.payment_machine import PaymentStateMachine

logger = logging.getLogger(__name__)


class OrderSink(Protocol):
    async def create_order(
        self, payload: dict[str, Any], idempotency_key: str | None = None
    ) -> dict[str, Any]: ...


class CheckoutOrchestrator:
    """Step navigation, pre-payment validation and order recording."""

    def __init__(
        self,
        store: CartStore,
        sync: CatalogSyncService,
        payments: PaymentStateMachine,
        orders: OrderSink,
        *,
        authenticated: bool = False,
        order_prefix: str = ORDER_NUMBER_PREFIX,
    ):
        self.store = store
        self.sync = sync
        self.payments = payments
        self.orders = orders
        self.order_prefix = order_prefix
        self.session = CheckoutSession(authenticated=authenticated)
        self._prepared_line_ids: list[str] = []

    @property
    def current_step(self) -> CheckoutStep:
        return self.session.current_step

    @property
    def steps(self) -> list[CheckoutStep]:
        return list(self.session.steps)

    def _go_to(self, index: int) -> CheckoutStep:
        self.session.active_step_index = index
        step = self.session.current_step
        self.store.bus.emit(EventType.CHECKOUT_STEP_CHANGED, step=step.value, index=index)
        return step

    # ------------------------------------------------------------------
    # navigation
    # ------------------------------------------------------------------

    def set_authenticated(self, authenticated: bool) -> CheckoutStep:
        """Recompute steps after a login or logout."""
        session = self.session
        if session.authenticated == authenticated:
            return session.current_step

        current = session.current_step
        session.authenticated = authenticated
        session.steps = steps_for(authenticated)

        if not authenticated:
            # logging out mid-checkout starts over
            if self.payments.is_active:
                self.payments.cancel()
            if session.paid_attempt is None:
                session.order_draft = None
            return self._go_to(0)
        if current is CheckoutStep.LOGIN:
            return self._go_to(session.index_of(CheckoutStep.CUSTOMER_INFO))
        return self._go_to(session.index_of(current))

    async def next_step(self, data: Any = None) -> CheckoutStep:
        """Validate the current step and move forward.

        Raises:
            ValidationException: the current step is incomplete
            CheckoutBlockedException: the cart failed pre-payment checks
        """
        step = self.session.current_step

        if step is CheckoutStep.CART_REVIEW:
            if self.store.is_empty:
                raise ValidationException("Your cart is empty.", field="cart")
        elif step is CheckoutStep.LOGIN:
            if not self.session.authenticated:
                raise ValidationException("Please sign in to continue.", field="login")
        elif step is CheckoutStep.CUSTOMER_INFO:
            self.session.customer_info = self._validate_customer(data)
        elif step is CheckoutStep.PAYMENT:
            raise ValidationException("Complete the payment to continue.", field="payment")
        else:
            return step

        target = self.session.steps[self.session.active_step_index + 1]
        if target is CheckoutStep.PAYMENT:
            await self.prepare_payment()
        return self._go_to(self.session.active_step_index + 1)

    def previous_step(self) -> CheckoutStep:
        index = self.session.active_step_index
        if index == 0 or self.session.current_step is CheckoutStep.CONFIRMATION:
            return self.session.current_step
        if self.session.paid_attempt is not None:
            # paid; the order must be recorded before going back
            return self.session.current_step
        if self.session.current_step is CheckoutStep.PAYMENT and self.payments.is_active:
            self.payments.cancel()
        return self._go_to(index - 1)

    def _validate_customer(self, data: Any) -> CustomerInfo:
        if data is None:
            if self.session.customer_info is not None:
                return self.session.customer_info
            raise ValidationException("Please fill in your delivery details.", field="customer")
        if isinstance(data, CustomerInfo):
            return data
        try:
            return CustomerInfo.model_validate(data)
        except ValidationError as e:
            error = e.errors()[0]
            field = ".".join(str(part) for part in error.get("loc", ())) or None
            message = str(error.get("msg", "Invalid value")).removeprefix("Value error, ")
            raise ValidationException(message, field=field) from e

    # ------------------------------------------------------------------
    # payment
    # ------------------------------------------------------------------

    def _block(self, message: str, items: list[CartLine]) -> CheckoutBlockedException:
        logger.info("Checkout blocked: %s", message)
        self.store.bus.emit(
            EventType.CHECKOUT_BLOCKED,
            message,
            line_ids=[line.line_id for line in items],
        )
        return CheckoutBlockedException(message, items)

    def _build_draft(self, lines: list[CartLine]) -> OrderDraft:
        existing = self.session.order_draft
        order_number = existing.order_number if existing else generate_order_number(self.order_prefix)
        return OrderDraft.build(
            lines,
            self.store.get_totals(),
            self.session.customer_info,
            order_number=order_number,
        )

    async def prepare_payment(self) -> OrderDraft:
        """Force a catalog sync and refuse to pay for anything unverified.

        Raises:
            CheckoutBlockedException: sync failed, or a line is unresolvable,
                missing from the catalog or out of stock
        """
        if self.store.is_empty:
            raise self._block("Your cart is empty.", [])

        report = await self.sync.sync_with_report(force=True)
        seen = set(report.matched) | set(report.unmatched)
        if report.ok and any(line.line_id not in seen for line in self.store.lines):
            # joined a sync whose snapshot predates some lines
            report = await self.sync.sync_with_report(force=True)
        lines = self.store.lines
        if not lines:
            raise self._block("Your cart is empty.", [])
        if not report.ok:
            raise self._block(
                "We could not verify current prices and stock. Please try again.",
                lines,
            )

        unresolvable = [line for line in lines if normalize(line.canonical_product_id) is None]
        missing = self._unverified(report)
        out_of_stock = [line for line in lines if not line.in_stock]
        if unresolvable:
            raise self._block("Some items in your cart are invalid. Please remove them.", unresolvable)
        if missing:
            names = ", ".join(line.name for line in missing)
            raise self._block(f"These items are no longer sold: {names}", missing)
        if out_of_stock:
            names = ", ".join(line.name for line in out_of_stock)
            raise self._block(f"These items are out of stock: {names}", out_of_stock)

        self.session.order_draft = self._build_draft(lines)
        self._prepared_line_ids = [line.line_id for line in lines]
        return self.session.order_draft

    def _unverified(self, report: SyncReport) -> list[CartLine]:
        """Current lines the sync did not match against the catalog."""
        matched = set(report.matched)
        return [line for line in self.store.lines if line.line_id not in matched]

    async def _current_draft(self) -> OrderDraft:
        lines = self.store.lines
        if self.session.order_draft is None or [line.line_id for line in lines] != self._prepared_line_ids:
            return await self.prepare_payment()
        # quantities may have changed since validation
        self.session.order_draft = self._build_draft(lines)
        return self.session.order_draft

    async def pay(self, phone_number: str | None = None) -> OrderConfirmation:
        """Run the M-Pesa payment and record the order.

        Raises:
            ValidationException: not on the payment step
            PaymentInProgressException: a payment is already running
            PaymentFailedException: payment ended FAILED, TIMEOUT or CANCELLED
            OrderRecordingException: paid, but the order was not recorded
        """
        if self.session.current_step is not CheckoutStep.PAYMENT:
            raise ValidationException("Checkout is not at the payment step.", field="step")
        if self.session.paid_attempt is not None:
            # already charged; only the order is missing
            return await self.retry_order_recording()

        draft = await self._current_draft()
        customer = self.session.customer_info
        phone = phone_number or (customer.phone_number if customer else None)

        attempt = await self.payments.run(phone, draft.total, order_id=draft.order_number)
        if attempt.state is not PaymentState.COMPLETED:
            result = attempt.terminal_result
            raise PaymentFailedException(
                attempt.state.value,
                (result.message if result else None) or "Payment failed. Please try again.",
                result.error_code if result else None,
            )

        self.session.paid_attempt = attempt
        return await self._complete(draft, attempt)

    async def retry_order_recording(self) -> OrderConfirmation:
        """Re-submit the order for a payment that already completed.

        Uses the paid draft and the same idempotency key, so the customer is
        never charged twice and the backend can drop a duplicate order.

        Raises:
            ValidationException: no completed payment is waiting to be recorded
            OrderRecordingException: the order still could not be recorded
        """
        attempt = self.session.paid_attempt
        draft = self.session.order_draft
        if attempt is None or draft is None:
            raise ValidationException("There is no completed payment to record.", field="payment")
        return await self._complete(draft, attempt)

    async def _complete(self, draft: OrderDraft, attempt: PaymentAttempt) -> OrderConfirmation:
        confirmation = await self._record_order(draft, attempt)
        self.session.paid_attempt = None
        self.store.clear()
        self.session.confirmation = confirmation
        self._go_to(self.session.index_of(CheckoutStep.CONFIRMATION))
        self.store.bus.emit(
            EventType.ORDER_SUBMITTED,
            "Order placed successfully!",
            order_number=confirmation.order_number,
            order_id=confirmation.order_id,
        )
        return confirmation

    async def _record_order(self, draft: OrderDraft, attempt: PaymentAttempt) -> OrderConfirmation:
        receipt = attempt.terminal_result.receipt_number if attempt.terminal_result else None
        payload = draft.to_payload(
            receipt_number=receipt,
            checkout_request_id=attempt.checkout_request_id,
        )
        idempotency_key = build_request_hash(
            {"orderNumber": draft.order_number, "checkoutRequestId": attempt.checkout_request_id}
        )
        try:
            response = await self.orders.create_order(payload, idempotency_key=idempotency_key)
        except Exception as e:
            error = OrderRecordingException(
                draft.order_number,
                receipt,
                attempt.checkout_request_id,
                cause=e,
            )
            logger.critical(
                "Order %s not recorded after successful payment (receipt %s, checkout %s): %s",
                draft.order_number,
                receipt,
                attempt.checkout_request_id,
                e,
            )
            capture_exception(
                error,
                order={
                    "order_number": draft.order_number,
                    "receipt_number": receipt,
                    "checkout_request_id": attempt.checkout_request_id,
                    "total": draft.total,
                },
            )
            self.store.bus.emit(
                EventType.ORDER_RECORDING_FAILED,
                error.message,
                order_number=draft.order_number,
                receipt_number=receipt,
            )
            raise error from e

        return OrderConfirmation(
            order_number=draft.order_number,
            order_id=response.get("orderId") or response.get("_id"),
            reference_number=response.get("referenceNumber"),
            receipt_number=receipt,
            total=draft.total,
        )

    def cancel(self) -> None:
        """Abandon checkout: stop any payment and discard the session."""
        paid = self.session.paid_attempt
        if paid is not None:
            logger.warning(
                "Checkout cancelled with unrecorded paid order %s (checkout %s)",
                self.session.order_draft.order_number if self.session.order_draft else None,
                paid.checkout_request_id,
            )
        self.payments.cancel()
        authenticated = self.session.authenticated
        self.session = CheckoutSession(authenticated=authenticated)
        self._prepared_line_ids = []
        self.store.bus.emit(EventType.CHECKOUT_STEP_CHANGED, step=self.session.current_step.value, index=0)

    async def close(self) -> None:
        await self.payments.close()
