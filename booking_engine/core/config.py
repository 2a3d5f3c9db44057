import os



def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

CORS_ALLOW_ORIGINS = _get_list(os.getenv("CORS_ALLOW_ORIGINS"), ["http://localhost:4200"])

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MINUTES = int(os.getenv("JWT_EXPIRES_MINUTES", "60"))
OAUTH_STATE_EXPIRES_MINUTES = int(os.getenv("OAUTH_STATE_EXPIRES_MINUTES", "10"))

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI", "http://localhost:8000/calendar/oauth/callback")
GOOGLE_OAUTH_SCOPES = _get_list(
    os.getenv("GOOGLE_OAUTH_SCOPES"),
    ["https://www.googleapis.com/auth/calendar.events", "https://www.googleapis.com/auth/calendar.readonly"],
)
# Where the browser lands after the OAuth callback; empty returns JSON instead.
CALENDAR_CONNECTED_REDIRECT_URL = os.getenv("CALENDAR_CONNECTED_REDIRECT_URL", "")

# Access tokens live for 60 minutes; refresh a little early.
CALENDAR_TOKEN_REFRESH_MINUTES = int(os.getenv("CALENDAR_TOKEN_REFRESH_MINUTES", "50"))
CALENDAR_HTTP_TIMEOUT_SECONDS = float(os.getenv("CALENDAR_HTTP_TIMEOUT_SECONDS", "10"))
CALENDAR_SYNC_MAX_ATTEMPTS = int(os.getenv("CALENDAR_SYNC_MAX_ATTEMPTS", "5"))
# Retract the calendar event during the cancel request instead of leaving it to the outbox runner.
CALENDAR_RETRACT_ON_CANCEL = _get_bool(os.getenv("CALENDAR_RETRACT_ON_CANCEL"), default=True)

DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/New_York")
DEFAULT_MEETING_DURATION_MINUTES = int(os.getenv("DEFAULT_MEETING_DURATION_MINUTES", "30"))
DEFAULT_DAYS_AHEAD = int(os.getenv("DEFAULT_DAYS_AHEAD", "3"))
MAX_SLOTS_RETURNED = int(os.getenv("MAX_SLOTS_RETURNED", "10"))
MAX_SLOTS_NARRATED = int(os.getenv("MAX_SLOTS_NARRATED", "5"))

def validate_runtime_config() -> None:
    if APP_ENV.lower() == "production" and JWT_SECRET_KEY == "change-me":
        raise RuntimeError("JWT_SECRET_KEY must be set in production.")
    if APP_ENV.lower() == "production" and not (GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET):
        raise RuntimeError("GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set in production.")
