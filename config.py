"""
Runtime configuration read from the environment.

A local `.env` file is loaded first so development setups don't need to export
anything by hand.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Tokens
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_ALGO = "HS256"
JWT_EXPIRES_HOURS = int(os.getenv("JWT_EXPIRES_HOURS", "24"))
RESET_TOKEN_EXPIRES_MINUTES = 60
MIN_PASSWORD_LENGTH = 6

# Public URLs
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")
BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000").rstrip("/")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# SSLCommerz
SSLCOMMERZ_STORE_ID = os.getenv("SSLCOMMERZ_STORE_ID", "")
SSLCOMMERZ_STORE_PASSWORD = os.getenv("SSLCOMMERZ_STORE_PASSWORD", "")
SSLCOMMERZ_IS_LIVE = env_flag("SSLCOMMERZ_IS_LIVE")
SSLCOMMERZ_CURRENCY = os.getenv("SSLCOMMERZ_CURRENCY", "USD")
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", "30"))

# Mail
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "465"))
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
MAIL_FROM = os.getenv("MAIL_FROM") or SMTP_USER

# Images: "local" or "cloudinary"
IMAGE_STORAGE = os.getenv("IMAGE_STORAGE", "local").lower()
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")
CLOUDINARY_FOLDER = os.getenv("CLOUDINARY_FOLDER", "clothy-products")

# Order policies
ONE_ORDER_PER_PHONE = env_flag("ONE_ORDER_PER_PHONE")
RESERVE_STOCK = env_flag("RESERVE_STOCK", default=True)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", "8000"))
