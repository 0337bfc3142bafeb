"""
M-Pesa STK push driver.

Sequences gateway I/O around the pure transitions in
``storefront.domain.payment``: initiate, then poll the status endpoint
(first after ``first_poll_delay``, then every ``poll_interval``) until a
terminal state or the deadline ``started_at + timeout_seconds``.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from storefront.core.config import PaymentConfig
from storefront.core.events import EventBus, EventType
from storefront.core.exceptions import PaymentInProgressException, StorefrontException
from storefront.core.idempotency import new_idempotency_key
from storefront.core.scheduler import Clock, DeadlineTask, MonotonicClock, run_before
from storefront.domain import payment as transitions
from storefront.domain.payment import PaymentAttempt, parse_status_report
from storefront.domain.payment_fsm import PaymentState

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    async def initiate_mpesa_payment(
        self,
        *,
        phone_number: str,
        amount: int,
        order_id: str | None,
        description: str,
        idempotency_key: str | None = None,
    ) -> Any: ...

    async def get_mpesa_status(
        self, checkout_request_id: str, idempotency_key: str | None = None
    ) -> Any: ...


class PaymentStateMachine:
    """One payment attempt at a time, driven to a terminal state."""

    def __init__(
        self,
        gateway: PaymentGateway,
        config: PaymentConfig | None = None,
        clock: Clock | None = None,
        bus: EventBus | None = None,
    ):
        self.gateway = gateway
        self.config = config or PaymentConfig()
        self.clock = clock or MonotonicClock()
        self.bus = bus or EventBus()
        self._attempt: PaymentAttempt | None = None
        self._poll_task: DeadlineTask | None = None

    @property
    def attempt(self) -> PaymentAttempt | None:
        return self._attempt

    @property
    def state(self) -> PaymentState:
        return self._attempt.state if self._attempt else PaymentState.IDLE

    @property
    def is_active(self) -> bool:
        return self._attempt is not None and self._attempt.is_active

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def _set(self, attempt: PaymentAttempt) -> PaymentAttempt:
        previous = self.state
        self._attempt = attempt
        if previous is not attempt.state:
            logger.info(
                "Payment %s: %s -> %s",
                attempt.checkout_request_id or attempt.idempotency_key,
                previous.value,
                attempt.state.value,
            )
        result = attempt.terminal_result
        self.bus.emit(
            EventType.PAYMENT_STATE_CHANGED,
            result.message if result and result.message else "",
            state=attempt.state.value,
            checkout_request_id=attempt.checkout_request_id,
            attempt_count=attempt.attempt_count,
        )
        return attempt

    async def submit(
        self,
        phone_number: str,
        amount: Any,
        order_id: str | None = None,
        description: str | None = None,
    ) -> PaymentAttempt:
        """Start an STK push.

        Returns once the gateway accepted the request (INITIATED, polling in
        the background) or the attempt failed outright.

        Raises:
            PaymentInProgressException: an attempt is still running
        """
        if self.is_active:
            raise PaymentInProgressException(self._attempt.checkout_request_id)

        attempt = transitions.new_attempt(
            phone_number,
            amount,
            order_id=order_id,
            idempotency_key=new_idempotency_key(),
        )
        self._attempt = attempt
        attempt = self._set(transitions.begin(attempt, phone_number, amount, self.clock.now()))
        if attempt.is_terminal:
            return attempt

        deadline = transitions.deadline_for(attempt, self.config.timeout_seconds)
        try:
            response = await run_before(
                self.gateway.initiate_mpesa_payment(
                    phone_number=attempt.phone_number,
                    amount=attempt.amount,
                    order_id=order_id,
                    description=description or self.config.description,
                    idempotency_key=attempt.idempotency_key,
                ),
                deadline,
                self.clock,
            )
        except asyncio.TimeoutError:
            logger.warning("M-Pesa initiation for %s outlived the payment deadline", order_id)
            if self._attempt is attempt:
                return self._set(transitions.expire(attempt))
            return self._attempt
        except StorefrontException as e:
            return self._after_initiation_error(attempt, e.message)
        except Exception as e:
            logger.error("M-Pesa initiation error: %s", e)
            return self._after_initiation_error(attempt, str(e) or transitions.MSG_FAILED)

        current = self._attempt
        if current is not attempt:
            # cancelled or torn down while the request was in flight
            return current
        attempt = self._set(transitions.mark_initiated(attempt, response))
        if attempt.is_terminal:
            return attempt

        self._poll_task = DeadlineTask(
            self._poll_loop(deadline),
            deadline=deadline,
            clock=self.clock,
            name=f"mpesa-poll-{attempt.checkout_request_id}",
        )
        return attempt

    def _after_initiation_error(self, attempt: PaymentAttempt, message: str) -> PaymentAttempt:
        current = self._attempt
        if current is not attempt:
            return current
        return self._set(transitions.fail(attempt, message, "initiation_failed"))

    async def _poll_loop(self, deadline: float) -> None:
        delay = self.config.first_poll_delay
        while True:
            remaining = deadline - self.clock.now()
            if remaining <= 0:
                self._expire()
                return
            await self.clock.sleep(min(delay, remaining))

            attempt = self._attempt
            if attempt is None or attempt.is_terminal:
                return
            if self.clock.now() >= deadline:
                self._expire()
                return

            try:
                response = await run_before(
                    self.gateway.get_mpesa_status(
                        attempt.checkout_request_id,
                        idempotency_key=attempt.idempotency_key,
                    ),
                    deadline,
                    self.clock,
                )
            except asyncio.TimeoutError:
                if self.clock.now() >= deadline:
                    logger.warning("Status poll for %s hit the payment deadline", attempt.checkout_request_id)
                    self._expire()
                    return
                logger.warning("Status poll timed out for %s", attempt.checkout_request_id)
            except StorefrontException as e:
                logger.warning("Status poll failed for %s: %s", attempt.checkout_request_id, e.message)
            except Exception as e:
                logger.warning("Status poll failed for %s: %s", attempt.checkout_request_id, e)
            else:
                current = self._attempt
                if current is not attempt or current.is_terminal:
                    return
                report = parse_status_report(response)
                if self._set(transitions.apply_poll(current, report, self.clock.now())).is_terminal:
                    return
            delay = self.config.poll_interval

    def _expire(self) -> None:
        attempt = self._attempt
        if attempt is not None and not attempt.is_terminal:
            self._set(transitions.expire(attempt))

    async def wait(self) -> PaymentAttempt | None:
        """Wait for the current attempt to reach a terminal state."""
        task = self._poll_task
        if task is not None:
            try:
                await task.wait()
            except Exception as e:
                logger.error("Payment polling crashed: %s", e)
                attempt = self._attempt
                if attempt is not None and not attempt.is_terminal:
                    self._set(transitions.fail(attempt, transitions.MSG_UNVERIFIABLE, "polling_error"))
        return self._attempt

    async def run(
        self,
        phone_number: str,
        amount: Any,
        order_id: str | None = None,
        description: str | None = None,
    ) -> PaymentAttempt:
        """Submit and wait for the terminal outcome."""
        attempt = await self.submit(phone_number, amount, order_id=order_id, description=description)
        if attempt.is_terminal:
            return attempt
        return await self.wait()

    def cancel(self) -> PaymentAttempt | None:
        """User cancel: mark CANCELLED and stop polling. No-op once terminal."""
        attempt = self._attempt
        if attempt is not None and attempt.is_active:
            attempt = self._set(transitions.cancel(attempt))
        if self._poll_task is not None:
            self._poll_task.cancel()
        return attempt

    async def close(self) -> None:
        """Teardown: cancel any attempt and wait for the poller to exit."""
        self.cancel()
        task, self._poll_task = self._poll_task, None
        if task is not None:
            await task.wait()

    def reset(self) -> None:
        """Forget a finished attempt so the next ``submit`` starts clean."""
        if self.is_active:
            raise PaymentInProgressException(self._attempt.checkout_request_id)
        self._attempt = None
        self._poll_task = None
