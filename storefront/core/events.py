"""
Domain events for the cart, sync and payment layers.

The core never renders notifications itself. Stores and machines publish
structured events on an EventBus; a presentation layer subscribes and
turns them into toasts, banners or logs.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Types of domain events."""

    # Cart
    CART_UPDATED = "cart_updated"
    ITEM_ADDED = "item_added"
    ITEM_MERGED = "item_merged"
    ITEM_REMOVED = "item_removed"
    CART_CLEARED = "cart_cleared"
    LIMITED_STOCK = "limited_stock"
    CART_ERROR = "cart_error"

    # Wishlist
    WISHLIST_UPDATED = "wishlist_updated"
    WISHLIST_DUPLICATE = "wishlist_duplicate"

    # Catalog sync
    SYNC_STARTED = "sync_started"
    SYNC_COMPLETED = "sync_completed"
    SYNC_FAILED = "sync_failed"
    ITEMS_UNAVAILABLE = "items_unavailable"

    # Payment
    PAYMENT_STATE_CHANGED = "payment_state_changed"

    # Checkout
    CHECKOUT_STEP_CHANGED = "checkout_step_changed"
    CHECKOUT_BLOCKED = "checkout_blocked"
    ORDER_SUBMITTED = "order_submitted"
    ORDER_RECORDING_FAILED = "order_recording_failed"


@dataclass
class DomainEvent:
    """Event payload."""

    type: EventType
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type.value,
            "message": self.message,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
        }


EventHandler = Callable[[DomainEvent], None]


class EventBus:
    """In-process synchronous pub/sub.

    Handlers run in subscription order. A failing handler is logged and
    never breaks the publisher or the other handlers.
    """

    def __init__(self) -> None:
        self._handlers: list[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register handler; returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(handler)

        return _unsubscribe

    def unsubscribe(self, handler: EventHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error("Event handler error for %s: %s", event.type.value, e)

    def emit(self, event_type: EventType, message: str = "", **data: Any) -> DomainEvent:
        event = DomainEvent(type=event_type, message=message, data=data)
        self.publish(event)
        return event

    @property
    def handler_count(self) -> int:
        return len(self._handlers)
