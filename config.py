import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis (Celery broker / result backend) ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")
    TELNYX_MESSAGING_PROFILE_ID = os.environ.get("TELNYX_MESSAGING_PROFILE_ID")

    # --- Gateway ---
    GATEWAY_DEV_MODE = _flag("GATEWAY_DEV_MODE")
    GATEWAY_CHANNEL = os.environ.get("GATEWAY_CHANNEL", "sms")
    GATEWAY_BATCH_SIZE = int(os.environ.get("GATEWAY_BATCH_SIZE", "50"))
    GATEWAY_QUEUE_INTERVAL = float(os.environ.get("GATEWAY_QUEUE_INTERVAL", "60"))
    GATEWAY_CALL_TIMEOUT = float(os.environ.get("GATEWAY_CALL_TIMEOUT", "15"))

    # --- Quiet hours / proactive limits ---
    QUIET_HOURS_WAKE_HOUR = int(os.environ.get("QUIET_HOURS_WAKE_HOUR", "7"))
    QUIET_HOURS_START = os.environ.get("QUIET_HOURS_START", "22:00")
    QUIET_HOURS_END = os.environ.get("QUIET_HOURS_END", "07:00")
    PROACTIVE_DAILY_LIMIT = int(os.environ.get("PROACTIVE_DAILY_LIMIT", "5"))

    # --- Default Timezone / Logging ---
    DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "America/Los_Angeles")
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

settings = Settings()
