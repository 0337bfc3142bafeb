"""Payment state transition rules (single source of truth)."""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping


class PaymentState(str, Enum):
    """M-Pesa STK push lifecycle."""

    IDLE = "IDLE"
    INITIATING = "INITIATING"
    INITIATED = "INITIATED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"

    @classmethod
    def normalize(cls, value: str | PaymentState | None) -> PaymentState | None:
        if value is None:
            return None
        if isinstance(value, PaymentState):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return None


ALLOWED_TRANSITIONS: Mapping[PaymentState, frozenset[PaymentState]] = {
    PaymentState.IDLE: frozenset(
        {
            PaymentState.INITIATING,
            PaymentState.FAILED,
        }
    ),
    PaymentState.INITIATING: frozenset(
        {
            PaymentState.INITIATED,
            PaymentState.FAILED,
            PaymentState.TIMEOUT,
            PaymentState.CANCELLED,
        }
    ),
    PaymentState.INITIATED: frozenset(
        {
            PaymentState.PROCESSING,
            PaymentState.COMPLETED,
            PaymentState.FAILED,
            PaymentState.TIMEOUT,
            PaymentState.CANCELLED,
        }
    ),
    PaymentState.PROCESSING: frozenset(
        {
            PaymentState.PROCESSING,
            PaymentState.COMPLETED,
            PaymentState.FAILED,
            PaymentState.TIMEOUT,
            PaymentState.CANCELLED,
        }
    ),
    PaymentState.COMPLETED: frozenset(),
    PaymentState.FAILED: frozenset(),
    PaymentState.TIMEOUT: frozenset(),
    PaymentState.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(
    {
        PaymentState.COMPLETED,
        PaymentState.FAILED,
        PaymentState.TIMEOUT,
        PaymentState.CANCELLED,
    }
)


@dataclass(frozen=True, slots=True)
class TransitionValidationResult:
    allowed: bool
    reason: str | None = None


class InvalidTransitionError(ValueError):
    def __init__(self, current: PaymentState, target: PaymentState, reason: str | None) -> None:
        super().__init__(reason or f"Transition '{current.value} -> {target.value}' is not allowed.")
        self.current = current
        self.target = target


def is_terminal(state: PaymentState | str | None) -> bool:
    return PaymentState.normalize(state) in TERMINAL_STATES


def validate_payment_transition(
    current: PaymentState | str | None,
    target: PaymentState | str | None,
) -> TransitionValidationResult:
    """Check ``current -> target`` against the transition table."""
    target_state = PaymentState.normalize(target)
    if target_state is None:
        return TransitionValidationResult(False, f"Unsupported target state: {target}")

    current_state = PaymentState.normalize(current) if current is not None else PaymentState.IDLE
    if current_state is None:
        return TransitionValidationResult(False, f"Unsupported current state: {current}")

    if current_state in TERMINAL_STATES:
        return TransitionValidationResult(
            False,
            f"Cannot leave terminal state '{current_state.value}'.",
        )

    if target_state not in ALLOWED_TRANSITIONS[current_state]:
        return TransitionValidationResult(
            False,
            f"Transition '{current_state.value} -> {target_state.value}' is not allowed.",
        )
    return TransitionValidationResult(True)


def ensure_transition(current: PaymentState, target: PaymentState) -> None:
    result = validate_payment_transition(current, target)
    if not result.allowed:
        raise InvalidTransitionError(current, target, result.reason)
