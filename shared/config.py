import os
from typing import Iterable, List, Optional

_TRUTHY = {"1", "true", "yes", "y", "on"}
_FALSY = {"0", "false", "no", "n", "off"}


def get_setting(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return an environment setting; empty values count as unset."""
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def get_bool_setting(names: Iterable[str], default: bool = False) -> bool:
    """First recognised boolean among several alias variables."""
    for name in names:
        raw = get_setting(name)
        if raw is None:
            continue
        if raw.lower() in _TRUTHY:
            return True
        if raw.lower() in _FALSY:
            return False
    return default


def get_database_url() -> str:
    """
    Return the database URL for SQLAlchemy.
    Defaults to a local SQLite file for development if not provided.
    """
    return get_setting("DATABASE_URL") or get_setting("POSTGRES_CONNECTION_STRING") or "sqlite:///./crm.db"


def get_openai_settings() -> dict:
    """
    Settings for the chat completion API used by the AI endpoints.
    api_key is None when AI features are not configured.
    """
    try:
        timeout = float(get_setting("OPENAI_TIMEOUT_SECONDS", "30"))
    except ValueError:
        timeout = 30.0
    return {
        "api_key": get_setting("OPENAI_API_KEY"),
        "base_url": get_setting("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/"),
        "model": get_setting("OPENAI_MODEL", "gpt-4o-mini"),
        "timeout": timeout,
    }


def get_email_settings() -> dict:
    """
    Resend settings for notification email.
    Values are optional; delivery is skipped when api_key is missing.
    """
    return {
        "api_key": get_setting("RESEND_API_KEY"),
        "api_url": get_setting("RESEND_API_URL", "https://api.resend.com/emails"),
        "from_email": get_setting("NOTIFICATION_FROM_EMAIL", "Concinnity Platform <noreply@concinnity.vision>"),
    }


def get_session_ttl_hours() -> int:
    raw = get_setting("SESSION_TTL_HOURS", "24")
    try:
        parsed = int(raw)
    except ValueError:
        parsed = 24
    return max(1, parsed)


def get_cors_origins() -> List[str]:
    """
    Comma-separated allow-list from ALLOWED_ORIGINS (or CORS_ALLOWED_ORIGINS).
    A "*" anywhere in the list means any origin.
    """
    raw = get_setting("ALLOWED_ORIGINS") or get_setting("CORS_ALLOWED_ORIGINS") or "*"
    origins = [item.strip().rstrip("/") for item in raw.split(",")]
    origins = [item for item in origins if item]
    return ["*"] if "*" in origins or not origins else origins
