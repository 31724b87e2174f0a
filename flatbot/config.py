"""
Configuration module — loads environment variables and defines constants.

Everything is read once at import time from the process environment and an
optional .env file at the project root. validate_config() lists the required
values that are missing; main.py refuses to start when that list is not empty.
"""

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from project root (one level up from flatbot/)
_project_root = Path(__file__).resolve().parent.parent
load_dotenv(_project_root / ".env")


class ConfigError(RuntimeError):
    """Raised at startup when a required setting is missing."""


# --- Telegram ---
TELEGRAM_BOT_TOKEN: str = os.environ.get("TELEGRAM_BOT_TOKEN", "")

# --- Generative AI (field extraction) ---
GEMINI_API_KEY: str = os.environ.get("GEMINI_API_KEY", "")
GEMINI_MODEL: str = os.environ.get("GEMINI_MODEL", "gemini-2.0-flash")
EXTRACTION_TIMEOUT_SECONDS: float = 30.0
# Extraction confidence above this goes straight to confirmation
CONFIDENCE_THRESHOLD: float = 0.7

# --- Google Vision OCR ---
GOOGLE_VISION_API_KEY: str = os.environ.get("GOOGLE_VISION_API_KEY", "")

# --- Google Sheets ---
GOOGLE_SHEETS_CREDS_JSON: str = os.environ.get("GOOGLE_SHEETS_CREDS_JSON", "")  # base64
SPREADSHEET_ID: str = os.environ.get("SPREADSHEET_ID", "")
COLLECTION_SPREADSHEET_ID: str = os.environ.get("COLLECTION_SPREADSHEET_ID", "")

# --- Google Drive (receipt uploads) ---
GOOGLE_DRIVE_FOLDER_ID: str = os.environ.get("GOOGLE_DRIVE_FOLDER_ID", "")

# --- Webhook ---
WEBHOOK_SECRET: str = os.environ.get("WEBHOOK_SECRET", "")
WEBHOOK_URL: str = os.environ.get("WEBHOOK_URL", "")

# --- Sessions ---
SESSION_TTL_HOURS: float = float(os.environ.get("SESSION_TTL_HOURS", "2"))

# --- Display ---
CURRENCY_SYMBOL: str = os.environ.get("CURRENCY_SYMBOL", "₹")


def parse_allowed_user_ids(raw: str) -> set[int]:
    """Parse a comma-separated list of Telegram user ids.

    Entries that are not integers are skipped with a warning.
    """
    allowed: set[int] = set()
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            allowed.add(int(part))
        except ValueError:
            logger.warning("Ignoring invalid user id in ALLOWED_TELEGRAM_USER_IDS: %r", part)
    return allowed


# --- Authorization ---
# Only these Telegram user ids may use the bot.
ALLOWED_USER_IDS: set[int] = parse_allowed_user_ids(
    os.environ.get("ALLOWED_TELEGRAM_USER_IDS", "")
)

_REQUIRED = {
    "TELEGRAM_BOT_TOKEN": lambda: TELEGRAM_BOT_TOKEN,
    "GEMINI_API_KEY": lambda: GEMINI_API_KEY,
    "GOOGLE_VISION_API_KEY": lambda: GOOGLE_VISION_API_KEY,
    "GOOGLE_SHEETS_CREDS_JSON": lambda: GOOGLE_SHEETS_CREDS_JSON,
    "SPREADSHEET_ID": lambda: SPREADSHEET_ID,
    "COLLECTION_SPREADSHEET_ID": lambda: COLLECTION_SPREADSHEET_ID,
    "GOOGLE_DRIVE_FOLDER_ID": lambda: GOOGLE_DRIVE_FOLDER_ID,
    "ALLOWED_TELEGRAM_USER_IDS": lambda: ALLOWED_USER_IDS,
}


def validate_config() -> list[str]:
    """Return the names of required settings that are missing or empty."""
    return [name for name, getter in _REQUIRED.items() if not getter()]


# ---------------------------------------------------------------------------
# Prompts and limits
# ---------------------------------------------------------------------------

# Suggested categories shown in prompts
CATEGORY_EXAMPLES = ("Maintenance", "Utilities", "Dues")

# Longest label accepted for an "other" collection (keeps callback data < 64 bytes)
MAX_COLLECTION_LABEL_LENGTH = 20

# Longest flat number accepted; "update_flat|<flat>|other|September|<year>|<label>"
# with a full-length label must still fit in 64 bytes of callback data
MAX_FLAT_NUMBER_LENGTH = 10
