# backend/stagebook/config.py
"""
Runtime settings read from the environment.

The database URL lives in db.py and the Redis URL in redis_tools.py, next to
the clients that use them.
"""
import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
DEBUG = _flag("DEBUG", "0")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Static key gate for every /api/* route. Empty disables the gate (local dev).
API_KEY = os.getenv("API_KEY", "")
# Stand-in for the external admin identity provider.
ADMIN_KEY = os.getenv("ADMIN_KEY", "change_me_admin_key")

JWT_SECRET = os.getenv("JWT_SECRET", "change_me_jwt_secret")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 10080))

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
PAYMENT_CURRENCY = os.getenv("PAYMENT_CURRENCY", "inr")

# Gateway bookings still pending/unpaid after this long are cancelled by the sweep.
PENDING_BOOKING_TTL_MINUTES = int(os.getenv("PENDING_BOOKING_TTL_MINUTES", 30))

SWEEP_ENABLED = _flag("SWEEP_ENABLED", "1")
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", 3600))

OTP_TTL_SECONDS = int(os.getenv("OTP_TTL_SECONDS", 300))
OTP_MAX_ATTEMPTS = int(os.getenv("OTP_MAX_ATTEMPTS", 5))


def is_production() -> bool:
    return ENVIRONMENT.lower() == "production"
