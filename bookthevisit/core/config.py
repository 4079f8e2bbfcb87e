import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bookthevisit.db")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:5173"])

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")
DEFAULT_SLOT_INTERVAL_MINUTES = int(os.getenv("DEFAULT_SLOT_INTERVAL_MINUTES", "30"))
OVERRIDE_SLOT_INTERVAL_MINUTES = int(os.getenv("OVERRIDE_SLOT_INTERVAL_MINUTES", "30"))
CLOSURE_HORIZON_DAYS = int(os.getenv("CLOSURE_HORIZON_DAYS", "365"))
MAX_PATIENT_NOTE_LENGTH = 600

BOOKING_SITE_DOMAIN = os.getenv("BOOKING_SITE_DOMAIN", "bookthevisit.com")

EMAIL_API_URL = os.getenv("EMAIL_API_URL", "")
EMAIL_TIMEOUT_SECONDS = float(os.getenv("EMAIL_TIMEOUT_SECONDS", "10"))
SEND_EMAILS = _get_bool(os.getenv("SEND_EMAILS"), default=True)

# Reminder windows, minutes before the appointment start.
REMINDER_WINDOWS = {
    "2h": (90, 150),
    "24h": (1380, 1470),
}


def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("DATABASE_URL must point at PostgreSQL in production.")
    if APP_ENV.lower() == "production" and SEND_EMAILS and not EMAIL_API_URL:
        raise RuntimeError("EMAIL_API_URL must be set in production.")
