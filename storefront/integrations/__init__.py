"""External integrations."""

from storefront.integrations.storefront_api import StorefrontApiClient

__all__ = ["StorefrontApiClient"]
