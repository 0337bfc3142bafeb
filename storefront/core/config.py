"""Environment-driven configuration objects for the storefront core."""
from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from storefront.core import constants
from storefront.core.exceptions import ConfigurationException


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigurationException(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as exc:
        raise ConfigurationException(f"{name} must be a number, got {raw!r}") from exc


@dataclass(slots=True)
class ApiConfig:
    base_url: str = constants.API_BASE_URL
    timeout_seconds: float = constants.API_TIMEOUT_SECONDS
    retry_attempts: int = constants.API_RETRY_ATTEMPTS
    retry_initial_delay: float = constants.API_RETRY_INITIAL_DELAY
    retry_max_delay: float = constants.API_RETRY_MAX_DELAY


@dataclass(slots=True)
class CartConfig:
    namespace: str = constants.DEFAULT_NAMESPACE
    shipping_fee: int = constants.DEFAULT_SHIPPING_FEE
    default_size: str = constants.DEFAULT_VARIANT_SIZE
    default_sku: str = constants.DEFAULT_SKU
    default_stock_limit: int = constants.DEFAULT_STOCK_LIMIT

    def __post_init__(self) -> None:
        if self.shipping_fee < 0:
            raise ConfigurationException("SHIPPING_FEE must not be negative")
        if self.default_stock_limit < 1:
            raise ConfigurationException("default stock limit must be at least 1")


@dataclass(slots=True)
class SyncConfig:
    stale_after_seconds: float = constants.SYNC_STALE_SECONDS
    interval_seconds: float = constants.SYNC_INTERVAL_SECONDS


@dataclass(slots=True)
class PaymentConfig:
    timeout_seconds: float = constants.MPESA_TIMEOUT_SECONDS
    first_poll_delay: float = constants.MPESA_FIRST_POLL_DELAY
    poll_interval: float = constants.MPESA_POLL_INTERVAL
    description: str = constants.DEFAULT_PAYMENT_DESCRIPTION

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ConfigurationException("MPESA_TIMEOUT_SECONDS must be positive")
        if self.poll_interval <= 0:
            raise ConfigurationException("MPESA_POLL_INTERVAL must be positive")
        if self.first_poll_delay < 0:
            raise ConfigurationException("MPESA_FIRST_POLL_DELAY must not be negative")


@dataclass(slots=True)
class Settings:
    api: ApiConfig = field(default_factory=ApiConfig)
    cart: CartConfig = field(default_factory=CartConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    payment: PaymentConfig = field(default_factory=PaymentConfig)
    redis_url: str | None = None
    order_prefix: str = constants.ORDER_NUMBER_PREFIX
    sentry_dsn: str | None = None
    environment: str = "production"


def load_settings() -> Settings:
    """Load environment variables once and expose typed settings."""
    load_dotenv()

    api = ApiConfig(
        base_url=os.getenv("STOREFRONT_API_URL", constants.API_BASE_URL).rstrip("/"),
        timeout_seconds=_float_env("API_TIMEOUT_SECONDS", constants.API_TIMEOUT_SECONDS),
        retry_attempts=max(1, _int_env("API_RETRY_ATTEMPTS", constants.API_RETRY_ATTEMPTS)),
    )
    cart = CartConfig(
        namespace=os.getenv("STOREFRONT_NAMESPACE", constants.DEFAULT_NAMESPACE),
        shipping_fee=_int_env("SHIPPING_FEE", constants.DEFAULT_SHIPPING_FEE),
    )
    sync = SyncConfig(
        stale_after_seconds=_float_env("CART_SYNC_STALE_SECONDS", constants.SYNC_STALE_SECONDS),
        interval_seconds=_float_env("CART_SYNC_INTERVAL_SECONDS", constants.SYNC_INTERVAL_SECONDS),
    )
    payment = PaymentConfig(
        timeout_seconds=_float_env("MPESA_TIMEOUT_SECONDS", constants.MPESA_TIMEOUT_SECONDS),
        first_poll_delay=_float_env("MPESA_FIRST_POLL_DELAY", constants.MPESA_FIRST_POLL_DELAY),
        poll_interval=_float_env("MPESA_POLL_INTERVAL", constants.MPESA_POLL_INTERVAL),
    )

    return Settings(
        api=api,
        cart=cart,
        sync=sync,
        payment=payment,
        redis_url=os.getenv("REDIS_URL") or None,
        order_prefix=os.getenv("ORDER_NUMBER_PREFIX", constants.ORDER_NUMBER_PREFIX),
        sentry_dsn=os.getenv("SENTRY_DSN") or None,
        environment=os.getenv("ENVIRONMENT", "production"),
    )
