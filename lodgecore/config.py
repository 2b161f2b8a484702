"""
Booking engine configuration (environment variables)
"""
import os
from decimal import Decimal

import stripe
from dotenv import load_dotenv

load_dotenv()

# Database
DB_USER = os.getenv("DB_USER", "postgres")
DB_PASSWORD = os.getenv("DB_PASSWORD", "postgres")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("DB_NAME", "lodge")
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}",
)

# Hotel defaults
HOTEL_TIMEZONE = os.getenv("HOTEL_TIMEZONE", "UTC")

# Payment Configuration
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "usd")
PAYMENT_PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PAYMENT_PROVIDER_TIMEOUT_SECONDS", "15"))
PAYMENT_CALLBACK_URL = os.getenv("PAYMENT_CALLBACK_URL", "http://localhost:8000/payments/callback")
REQUIRED_DEPOSIT_PERCENT = Decimal(os.getenv("REQUIRED_DEPOSIT_PERCENT", "100"))

# Booking policy
PENDING_HOLD_MINUTES = int(os.getenv("PENDING_HOLD_MINUTES", "60"))
BOOKING_REFERENCE_PREFIX = os.getenv("BOOKING_REFERENCE_PREFIX", "LDG")
BOOKING_REFERENCE_MAX_ATTEMPTS = int(os.getenv("BOOKING_REFERENCE_MAX_ATTEMPTS", "10"))
AUTO_CONFIRM_PAY_AT_LODGE = os.getenv("AUTO_CONFIRM_PAY_AT_LODGE", "true").lower() == "true"

# Stripe Configuration
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")

# Generic gateway (mobile money / bank transfer)
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "")
GATEWAY_API_KEY = os.getenv("GATEWAY_API_KEY", "")

# HTTP adapter
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",") if o.strip()]

# Logging
LOG_FILE = os.getenv("LOG_FILE", "lodge_logs.txt")

if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY


def is_stripe_configured() -> bool:
    """True when a Stripe secret key is present"""
    return bool(STRIPE_SECRET_KEY)


def is_gateway_configured() -> bool:
    return bool(GATEWAY_BASE_URL)
