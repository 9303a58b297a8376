import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "electronics_hub")
# Multi-document transactions need a replica set; turn off for standalone servers
MONGO_TRANSACTIONS = _flag("MONGO_TRANSACTIONS", "true")

# Auth
JWT_SECRET = os.getenv("JWT_SECRET", "devsecret")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "devrefreshsecret")
JWT_ALGO = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", 7))
JWT_REFRESH_EXPIRE_DAYS = int(os.getenv("JWT_REFRESH_EXPIRE_DAYS", 30))

# Shop
DELIVERY_CHARGE = float(os.getenv("DELIVERY_CHARGE", 50))
CURRENCY = "INR"

# Razorpay
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID")
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET")

# SendGrid
SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY")
SENDGRID_FROM_EMAIL = os.getenv("SENDGRID_FROM_EMAIL", "noreply@electronicshub.com")
SENDGRID_FROM_NAME = os.getenv("SENDGRID_FROM_NAME", "Electronics Hub")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# App
SEED_DEMO_DATA = _flag("SEED_DEMO_DATA", "true")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))
