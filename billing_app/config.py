# billing_app/config.py
import os
from dotenv import load_dotenv
load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


def _optional_int(name: str):
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
STRIPE_WEBHOOK_TOLERANCE = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE", "300"))
STRIPE_API_VERSION = os.getenv("STRIPE_API_VERSION", "")
WEBHOOK_ENDPOINT = "/api/stripe/webhook"

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./billing.db").strip()
DB_ECHO = _flag("DB_ECHO")
SEED_DEFAULT_PLANS = _flag("SEED_DEFAULT_PLANS", "true")

# Reconciliation
PAYMENT_RETRY_HOURS = int(os.getenv("PAYMENT_RETRY_HOURS", "24"))
UNMAPPED_CUSTOMER_POLICY = os.getenv("UNMAPPED_CUSTOMER_POLICY", "skip").lower()  # skip | placeholder
PLACEHOLDER_USER_ID = _optional_int("PLACEHOLDER_USER_ID")
PLACEHOLDER_SUBSCRIPTION_ID = _optional_int("PLACEHOLDER_SUBSCRIPTION_ID")

# Push channel
WS_PATH = "/api/ws"
WS_AUTH_TOKEN = os.getenv("WS_AUTH_TOKEN", "")
WS_QUEUE_SIZE = int(os.getenv("WS_QUEUE_SIZE", "100"))

# HTTP
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")
CORS_ALLOW_ALL = _flag("CORS_ALLOW_ALL")
PORT = int(os.getenv("PORT", "8000"))
