import os


def _csv(value):
    return [v.strip().rstrip("/") for v in value.split(",") if v.strip()]


class Config:
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_NAME = os.environ.get("DATABASE_NAME")

    RAZORPAY_KEY_ID = os.environ.get("RAZORPAY_KEY_ID")
    RAZORPAY_KEY_SECRET = os.environ.get("RAZORPAY_KEY_SECRET")
    CURRENCY = "INR"

    FRONTEND_URL = (os.environ.get("FRONTEND_URL") or "http://localhost:5173").rstrip("/")
    CORS_ORIGINS = _csv(os.environ.get("CORS_ORIGINS", "")) or [
        FRONTEND_URL,
        "http://localhost:5173",
        "http://localhost:5174",
        "http://localhost:5175",
    ]

    OWNER_EMAIL = os.environ.get("OWNER_EMAIL")
    OWNER_PASSWORD = os.environ.get("OWNER_PASSWORD")
    OWNER_NAME = os.environ.get("OWNER_NAME") or "Salon Owner"

    SESSION_COOKIE_NAME = os.environ.get("SESSION_COOKIE_NAME") or "salon_sid"
    SESSION_TTL_HOURS = int(os.environ.get("SESSION_TTL_HOURS") or 8)
    COOKIE_SECURE = os.environ.get("COOKIE_SECURE", "").lower() in ("1", "true", "yes")

    LOG_LEVEL = os.environ.get("LOG_LEVEL") or "INFO"
