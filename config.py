"""
Runtime settings

Everything is read from the environment once at import time.
DATABASE_URL / DATABASE_NAME select the MongoDB gateway; when DATABASE_URL
is unset the storefront runs against the in-memory gateway.
"""
import os

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")

# Shared admin secret (plaintext, compared as-is)
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD", "595510")

# Seconds before a gateway write is abandoned
WRITE_TIMEOUT = float(os.getenv("WRITE_TIMEOUT", "10"))

# Change feed reconnect policy
FEED_MAX_RETRIES = int(os.getenv("FEED_MAX_RETRIES", "5"))
FEED_BACKOFF_BASE = float(os.getenv("FEED_BACKOFF_BASE", "0.5"))
FEED_BACKOFF_CAP = float(os.getenv("FEED_BACKOFF_CAP", "30"))

CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "R$")
SEED_DEMO_DATA = os.getenv("SEED_DEMO_DATA", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
