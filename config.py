"""
Runtime settings for the MarketPlace TG API

Values come from the environment with sensible defaults for local use.
Business constants (commission split, limits, shipping table) are fixed and
not meant to be overridden at runtime.
"""
import os
from decimal import Decimal

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Security/JWT
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

# Server
PORT = int(os.getenv("PORT", "8000"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "1").lower() in ("1", "true", "yes")

# Simulated mobile money
MOCK_OTP_CODE = os.getenv("MOCK_OTP_CODE", "123456")
OTP_LENGTH = 6

# Commission split
PLATFORM_RATE = Decimal("0.10")
SELLER_RATE = 1 - PLATFORM_RATE

# Catalog
PAGE_SIZE = 12

# Listing limits
MIN_PRICE = 0  # exclusive
MAX_PRICE = 10_000_000
PRICE_DECIMALS = 2
MAX_LISTING_STOCK = 1000
NAME_LENGTH = (3, 100)
DESCRIPTION_LENGTH = (10, 2000)
MAX_IMAGE_BYTES = 5 * 1024 * 1024

PHONE_PATTERN = r"^\+228[0-9]{8}$"

# Flat shipping cost in XOF, keyed by city
SHIPPING_RATES = {
    "lome": 500,
    "kara": 1500,
    "sokode": 1500,
    "palimero": 2000,
    "atsapame": 2000,
    "aného": 1000,
    "bassar": 2000,
    "tsévié": 1000,
    "mango": 2500,
    "bafilo": 2000,
}
DEFAULT_SHIPPING = 1000

# Collections
USERS = "users"
PRODUCTS = "products"
ORDERS = "orders"
CARTS = "carts"
COMMISSIONS = "commissions"
PAYMENT_SESSIONS = "payment_sessions"
FILES = "files"
