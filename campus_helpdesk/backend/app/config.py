# campus_helpdesk/backend/app/config.py
import os

from dotenv import load_dotenv

# Load settings from .env at project root
load_dotenv()


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


DATABASE_URL = os.getenv("DATABASE_URL")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Lifecycle
DEFAULT_TAT_HOURS = _int("DEFAULT_TAT_HOURS", 48)
ACK_TAT_HOURS = _int("ACK_TAT_HOURS", 24)
FORWARD_LIMIT = _int("FORWARD_LIMIT", 3)
TAT_EXTENSION_ESCALATION_THRESHOLD = _int("TAT_EXTENSION_ESCALATION_THRESHOLD", 3)
AUTO_ESCALATION_COOLDOWN_HOURS = _int("AUTO_ESCALATION_COOLDOWN_HOURS", 48)
METADATA_MAX_BYTES = _int("METADATA_MAX_BYTES", 64 * 1024)

# Routing
GENERAL_DOMAIN_NAME = os.getenv("GENERAL_DOMAIN_NAME", "General")
STATUS_CACHE_TTL = _float("STATUS_CACHE_TTL", 300.0)
DIRECTORY_CACHE_TTL = _float("DIRECTORY_CACHE_TTL", 300.0)

# Outbox dispatcher
OUTBOX_BATCH_SIZE = _int("OUTBOX_BATCH_SIZE", 10)
OUTBOX_MAX_ATTEMPTS = _int("OUTBOX_MAX_ATTEMPTS", 3)
OUTBOX_POLL_INTERVAL = _float("OUTBOX_POLL_INTERVAL", 5.0)
OUTBOX_HANDLER_TIMEOUT = _float("OUTBOX_HANDLER_TIMEOUT", 5.0)
OUTBOX_CLAIM_LEASE = _int("OUTBOX_CLAIM_LEASE", 300)
OUTBOX_MAX_BACKOFF_MINUTES = _int("OUTBOX_MAX_BACKOFF_MINUTES", 60)
AUTO_ESCALATION_INTERVAL = _float("AUTO_ESCALATION_INTERVAL", 600.0)

# Identity
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRY_HOURS = _int("JWT_EXPIRY_HOURS", 24)

# Notification channels (unset -> dry run)
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL")
SMTP_HOST = os.getenv("SMTP_HOST")
SMTP_PORT = _int("SMTP_PORT", 587)
SMTP_USER = os.getenv("SMTP_USER")
SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
SMTP_FROM = os.getenv("SMTP_FROM", "noreply@campus-helpdesk.local")
