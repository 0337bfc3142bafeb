"""Application-wide constants and default configuration values.

Centralizes magic numbers so the cart, sync and payment layers agree on them.
"""

# ============== TIME CONSTANTS (seconds) ==============
SECONDS_PER_MINUTE = 60
SECONDS_PER_DAY = 86400

# ============== STORAGE ==============
DEFAULT_NAMESPACE = "lindas"
CART_KEY = "cart"
WISHLIST_KEY = "wishlist"
STORAGE_EXPIRY_SECONDS = 30 * SECONDS_PER_DAY

# ============== CART ==============
DEFAULT_VARIANT_SIZE = "370g"
DEFAULT_SKU = "SKU-DEFAULT"
DEFAULT_STOCK_LIMIT = 999  # sentinel when the catalog reports no stock figure
DEFAULT_PRODUCT_NAME = "Unknown Product"
PLACEHOLDER_IMAGE = "/images/placeholder.png"
MIN_QUANTITY = 1

# ============== PRICING ==============
DEFAULT_SHIPPING_FEE = 500  # flat fee, applied whenever subtotal > 0

# ============== CATALOG SYNC ==============
SYNC_STALE_SECONDS = 5 * SECONDS_PER_MINUTE
SYNC_INTERVAL_SECONDS = 5 * SECONDS_PER_MINUTE
CATALOG_FETCH_LIMIT = 100
RELATED_PRODUCTS_LIMIT = 4

# ============== M-PESA ==============
MPESA_TIMEOUT_SECONDS = 60
MPESA_FIRST_POLL_DELAY = 10
MPESA_POLL_INTERVAL = 5
MPESA_MIN_AMOUNT = 1
MPESA_COUNTRY_CODE = "254"
PAYMENT_METHOD_MPESA = "mpesa"
DEFAULT_PAYMENT_DESCRIPTION = "Linda's Nut Butter - Order Payment"

# ============== ORDERS ==============
ORDER_NUMBER_PREFIX = "LNB"
ORDER_STATUS_PROCESSING = "processing"

# ============== API ==============
API_BASE_URL = "http://localhost:5000/api"
API_TIMEOUT_SECONDS = 30
API_RETRY_ATTEMPTS = 3
API_RETRY_INITIAL_DELAY = 0.5
API_RETRY_MAX_DELAY = 4.0
NON_RETRYABLE_STATUSES = frozenset({400, 401, 403, 404, 422})
IDEMPOTENCY_HEADER = "X-Idempotency-Key"
