"""Static configuration for rollcall.

All user-editable settings (storage, portal, chat login, logging) live in a
single JSON file for quick edits without touching Python. Secrets stay in the
environment (.env).
"""

import json
import os

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# config.json sits at the project root unless ROLLCALL_CONFIG points elsewhere.
CONFIG_PATH = os.getenv("ROLLCALL_CONFIG") or os.path.join(PROJECT_ROOT, "config.json")


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise FileNotFoundError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _project_path(path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.join(PROJECT_ROOT, path)


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Storage backend: "sqlite" (local file) or "mongo" (MONGODB_URI from .env).
_storage = _CONFIG.get("storage", {})
STORAGE_BACKEND = str(_storage.get("backend", "sqlite")).lower()
SQLITE_PATH = _project_path(_storage.get("sqlite_path", "attendance.db"))
MONGO_DATABASE = _storage.get("mongo_database") or None
MONGO_TIMEOUT_MS = int(_storage.get("mongo_timeout_ms", 5000))

# Chat login: how long one QR code stays valid and how many are issued.
_chat = _CONFIG.get("chat", {})
QR_TIMEOUT_SECONDS = int(_chat.get("qr_timeout_seconds", 120))
QR_ATTEMPTS = int(_chat.get("qr_attempts", 3))

# Portal replay. attendance_url takes {group} and {date}; roll_selector takes {roll_no}.
_portal = _CONFIG.get("portal", {})
PORTAL_ENTRY_URL = _portal.get("entry_url", "")
PORTAL_ATTENDANCE_URL = _portal.get("attendance_url", "")
PORTAL_ROLL_SELECTOR = _portal.get(
    "roll_selector", 'input[type="checkbox"][data-rollno="{roll_no}"]'
)
PORTAL_LOGIN_TIMEOUT_SECONDS = float(_portal.get("login_timeout_seconds", 60))
PORTAL_NAVIGATION_TIMEOUT_SECONDS = float(_portal.get("navigation_timeout_seconds", 30))
PORTAL_ELEMENT_TIMEOUT_MS = int(_portal.get("element_timeout_ms", 0))
PORTAL_MARK_DELAY_MS = int(_portal.get("mark_delay_ms", 300))
PORTAL_HEADLESS = bool(_portal.get("headless", False))
# Automated login is used only when enabled and PORTAL_USERNAME/PORTAL_PASSWORD are set.
PORTAL_AUTO_LOGIN = _portal.get("auto_login", {})

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
