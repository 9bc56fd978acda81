import os
from datetime import datetime
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

from app.errors import ConfigurationError

load_dotenv()


def _int_env(name: str, default: int, *, positive: bool = True) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from None
    if positive and value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


def _bool_env(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self) -> None:
        # --- Database ---
        self.DATABASE_URL = os.environ.get("DATABASE_URL")
        self.DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

        # --- Redis (Celery broker + pass lock) ---
        self.REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

        # --- Dispatch loop ---
        self.MAX_RETRIES = _int_env("MAX_RETRIES", 3)
        self.POLL_INTERVAL_MINUTES = _int_env("POLL_INTERVAL_MINUTES", 1)
        self.SEND_TIMEOUT_SECONDS = _int_env("SEND_TIMEOUT_SECONDS", 30)
        self.MAX_CONCURRENT_SENDS = _int_env("MAX_CONCURRENT_SENDS", 10)
        self.PASS_LOCK_TIMEOUT_SECONDS = _int_env("PASS_LOCK_TIMEOUT_SECONDS", 300)
        # single-process deployments without Redis may turn the shared pass lock off
        self.PASS_LOCK_ENABLED = _bool_env("PASS_LOCK_ENABLED", True)
        self.RUN_DISPATCHER_IN_API = _bool_env("RUN_DISPATCHER_IN_API", True)

        # --- Reference clock ---
        self.REFERENCE_TIMEZONE = os.environ.get("REFERENCE_TIMEZONE", "UTC")
        try:
            self.tz = ZoneInfo(self.REFERENCE_TIMEZONE)
        except Exception:  # noqa: BLE001
            raise ConfigurationError(
                f"REFERENCE_TIMEZONE '{self.REFERENCE_TIMEZONE}' is not a valid Olson timezone string"
            ) from None

        # --- Telnyx (SMS) ---
        self.TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
        self.TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")

        # --- SMTP (email) ---
        self.SMTP_SERVER = os.environ.get("SMTP_SERVER")
        self.SMTP_PORT = _int_env("SMTP_PORT", 587)
        self.SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
        self.SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
        self.SMTP_FROM_EMAIL = os.environ.get("SMTP_FROM_EMAIL", self.SMTP_USERNAME)
        self.SMTP_TIMEOUT_SECONDS = _int_env("SMTP_TIMEOUT_SECONDS", 30)

        # --- Logging ---
        self.ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")
        self.LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    @property
    def poll_interval_seconds(self) -> float:
        return self.POLL_INTERVAL_MINUTES * 60.0

    def now(self) -> datetime:
        """Current instant on the reference clock."""
        return datetime.now(tz=self.tz)


settings = Settings()
