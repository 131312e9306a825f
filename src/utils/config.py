# runtime settings, overridable via environment; tests patch the constants directly
import os

DB_PATH = os.getenv("SHOP_DB_PATH", "data/store.sqlite")
CACHE_PATH = os.getenv("SHOP_CACHE_PATH", "data/local_cache.sqlite")

TAX_RATE = 0.18  # flat GST
CURRENCY_PLACES = 2

LOW_STOCK_THRESHOLD = 10
RECENTLY_VIEWED_LIMIT = 10
DELIVERY_ESTIMATE_DAYS = 5

CART_KEY = "drift_enterprises_cart"
SAVED_FOR_LATER_KEY = "drift_enterprises_saved_for_later"
ORDERS_KEY = "drift_enterprises_orders"
WISHLIST_KEY = "drift_wishlist"
RECENTLY_VIEWED_KEY = "drift_recently_viewed"

REQUIRED_ADDRESS_FIELDS = (
    "firstName",
    "lastName",
    "phone",
    "address",
    "city",
    "state",
    "pincode",
)

PROMO_CODES = {
    "DRIFT10": 10,
    "WELCOME20": 20,
    "SAVE50": 50,
}
