import os

from dotenv import load_dotenv

load_dotenv()


def _csv(value: str) -> list:
    return [item.strip().lower() for item in (value or "").split(",") if item.strip()]


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "muziris")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", "10000"))

# Security
JWT_SECRET = os.getenv("JWT_SECRET", "change-this-secret")
ADMIN_EMAILS = _csv(os.getenv("ADMIN_EMAILS", ""))
VERIFICATION_TOKEN_TTL_HOURS = int(os.getenv("VERIFICATION_TOKEN_TTL_HOURS", "1"))
ADMIN_LINK_RATE_LIMIT = int(os.getenv("ADMIN_LINK_RATE_LIMIT", "3"))
ADMIN_LINK_RATE_WINDOW_SECONDS = int(os.getenv("ADMIN_LINK_RATE_WINDOW_SECONDS", "60"))
# Peers whose X-Forwarded-For header is believed (e.g. the load balancer)
TRUSTED_PROXIES = _csv(os.getenv("TRUSTED_PROXIES", ""))

# Email
SITE_URL = os.getenv("SITE_URL", "https://houseofmuziris.com").rstrip("/")
RESEND_API_KEY = (os.getenv("RESEND_API_KEY") or "").strip()
RESEND_FROM_EMAIL = os.getenv("RESEND_FROM_EMAIL", "House of Muziris <noreply@houseofmuziris.com>")

# Commerce
PRIMARY_CURRENCY = os.getenv("PRIMARY_CURRENCY", "USD")
SECONDARY_CURRENCY = os.getenv("SECONDARY_CURRENCY", "INR")
SECONDARY_EXCHANGE_RATE = float(os.getenv("SECONDARY_EXCHANGE_RATE", "83.0"))
UPI_ID = os.getenv("UPI_ID", "houseofmuziris@upi")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
