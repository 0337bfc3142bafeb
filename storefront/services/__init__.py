"""Services layer: stateful components built on the domain rules."""

from storefront.services.cart_store import CartStore, get_cart_store
from storefront.services.catalog_sync import CatalogSyncService, SyncReport
from storefront.services.checkout import CheckoutOrchestrator
from storefront.services.payment_machine import PaymentStateMachine

__all__ = [
    "CartStore",
    "CatalogSyncService",
    "CheckoutOrchestrator",
    "PaymentStateMachine",
    "SyncReport",
    "get_cart_store",
]
