"""M-Pesa payment attempt and its pure state transitions.

Transition helpers never perform I/O and never mutate: each returns a new
``PaymentAttempt``. The driver in ``storefront.services.payment_machine``
decides when to call them.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any

from storefront.core.constants import MPESA_MIN_AMOUNT
from storefront.domain.payment_fsm import PaymentState, ensure_transition, is_terminal
from storefront.domain.phone import format_phone_number

MSG_INVALID_PHONE = "Please enter a valid Safaricom phone number (e.g., 0712345678)."
MSG_INVALID_AMOUNT = "Invalid payment amount."
MSG_UNVERIFIABLE = "Could not verify payment status. Please contact support."
MSG_FAILED = "Payment failed. Please try again."
MSG_TIMEOUT = "Payment confirmation timed out. If you were charged, please contact support."
MSG_CANCELLED = "Payment was cancelled."

# Daraja result code for a request the customer dismissed on the handset
RESULT_CODE_USER_CANCELLED = "1032"

_COMPLETED_STATUSES = frozenset({"COMPLETED", "SUCCESS", "SUCCESSFUL", "PAID"})
_FAILED_STATUSES = frozenset({"FAILED", "FAILURE", "ERROR", "REJECTED"})
_CANCELLED_STATUSES = frozenset({"CANCELLED", "CANCELED"})


class PollOutcome(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class PaymentResult:
    """Terminal outcome details."""

    receipt_number: str | None = None
    error_code: str | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "receiptNumber": self.receipt_number,
            "errorCode": self.error_code,
            "message": self.message,
        }


@dataclass(frozen=True, slots=True)
class StatusReport:
    """One parsed status-poll response."""

    outcome: PollOutcome
    receipt_number: str | None = None
    message: str | None = None
    code: str | None = None


@dataclass(frozen=True, slots=True)
class PaymentAttempt:
    phone_number: str
    amount: int
    order_id: str | None
    idempotency_key: str
    state: PaymentState = PaymentState.IDLE
    checkout_request_id: str | None = None
    attempt_count: int = 0
    started_at: float | None = None
    last_polled_at: float | None = None
    terminal_result: PaymentResult | None = None

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.state)

    @property
    def is_active(self) -> bool:
        return self.state is not PaymentState.IDLE and not self.is_terminal

    def _to(self, target: PaymentState, **changes: Any) -> PaymentAttempt:
        ensure_transition(self.state, target)
        return replace(self, state=target, **changes)


def validate_amount(amount: Any) -> int | None:
    """Round to whole shillings; None when not payable."""
    if amount is None or isinstance(amount, bool):
        return None
    try:
        rounded = int(round(float(amount)))
    except (TypeError, ValueError):
        return None
    return rounded if rounded >= MPESA_MIN_AMOUNT else None


def parse_checkout_request_id(response: Any) -> str | None:
    """Pull the checkout request id out of the spellings the gateway uses."""
    if not isinstance(response, dict):
        return None
    candidates = [response]
    if isinstance(response.get("data"), dict):
        candidates.append(response["data"])
    for source in candidates:
        for name in ("checkoutRequestId", "CheckoutRequestID", "checkoutRequestID"):
            value = source.get(name)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return None


def parse_status_report(response: Any) -> StatusReport:
    """Map a status response onto a poll outcome; unknown shapes stay pending."""
    if not isinstance(response, dict):
        return StatusReport(PollOutcome.PENDING)

    status = str(response.get("status") or "").strip().upper()
    code = response.get("resultCode", response.get("ResultCode"))
    code = None if code in (None, "") else str(code)
    message = response.get("message") or response.get("resultDesc") or response.get("ResultDesc")
    receipt = (
        response.get("receiptNumber")
        or response.get("mpesaReceiptNumber")
        or response.get("MpesaReceiptNumber")
    )

    if status in _COMPLETED_STATUSES:
        return StatusReport(PollOutcome.COMPLETED, receipt_number=receipt, message=message, code=code)
    if status in _CANCELLED_STATUSES or code == RESULT_CODE_USER_CANCELLED:
        return StatusReport(PollOutcome.CANCELLED, message=message or MSG_CANCELLED, code=code)
    if status in _FAILED_STATUSES:
        return StatusReport(PollOutcome.FAILED, message=message or MSG_FAILED, code=code)
    return StatusReport(PollOutcome.PENDING, message=message, code=code)


def new_attempt(
    phone_number: str,
    amount: Any,
    *,
    order_id: str | None,
    idempotency_key: str,
) -> PaymentAttempt:
    """Create an IDLE attempt; inputs are validated by :func:`begin`."""
    return PaymentAttempt(
        phone_number=str(phone_number or ""),
        amount=validate_amount(amount) or 0,
        order_id=order_id,
        idempotency_key=idempotency_key,
    )


def fail(attempt: PaymentAttempt, message: str = MSG_FAILED, code: str | None = None) -> PaymentAttempt:
    return attempt._to(
        PaymentState.FAILED,
        terminal_result=PaymentResult(error_code=code, message=message),
    )


def begin(attempt: PaymentAttempt, raw_phone: Any, raw_amount: Any, now: float) -> PaymentAttempt:
    """IDLE -> INITIATING with normalized inputs, or IDLE -> FAILED on bad input."""
    phone = format_phone_number(raw_phone)
    if phone is None:
        return fail(attempt, MSG_INVALID_PHONE, "invalid_phone")
    amount = validate_amount(raw_amount)
    if amount is None:
        return fail(attempt, MSG_INVALID_AMOUNT, "invalid_amount")
    return attempt._to(PaymentState.INITIATING, phone_number=phone, amount=amount, started_at=now)


def mark_initiated(attempt: PaymentAttempt, response: Any) -> PaymentAttempt:
    checkout_request_id = parse_checkout_request_id(response)
    if checkout_request_id is None:
        return fail(attempt, MSG_UNVERIFIABLE, "missing_checkout_request_id")
    return attempt._to(PaymentState.INITIATED, checkout_request_id=checkout_request_id)


def apply_poll(attempt: PaymentAttempt, report: StatusReport, now: float) -> PaymentAttempt:
    """Fold one status poll into the attempt."""
    counted = replace(attempt, attempt_count=attempt.attempt_count + 1, last_polled_at=now)
    if report.outcome is PollOutcome.COMPLETED:
        return counted._to(
            PaymentState.COMPLETED,
            terminal_result=PaymentResult(receipt_number=report.receipt_number, message=report.message),
        )
    if report.outcome is PollOutcome.FAILED:
        return fail(counted, report.message or MSG_FAILED, report.code)
    if report.outcome is PollOutcome.CANCELLED:
        return counted._to(
            PaymentState.CANCELLED,
            terminal_result=PaymentResult(error_code=report.code, message=report.message or MSG_CANCELLED),
        )
    return counted._to(PaymentState.PROCESSING)


def expire(attempt: PaymentAttempt) -> PaymentAttempt:
    return attempt._to(
        PaymentState.TIMEOUT,
        terminal_result=PaymentResult(error_code="timeout", message=MSG_TIMEOUT),
    )


def cancel(attempt: PaymentAttempt) -> PaymentAttempt:
    return attempt._to(
        PaymentState.CANCELLED,
        terminal_result=PaymentResult(error_code="cancelled", message=MSG_CANCELLED),
    )


def deadline_for(attempt: PaymentAttempt, timeout_seconds: float) -> float | None:
    if attempt.started_at is None:
        return None
    return attempt.started_at + timeout_seconds
