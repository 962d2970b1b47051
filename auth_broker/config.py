"""
Auth broker configuration. Values come from the environment.
Client secret is never given a default; it must be provided at deploy time.
"""
import os

# Listening address for `python -m auth_broker.main`
HOST = os.environ.get("HOST", "127.0.0.1")
PORT = int(os.environ.get("PORT", "3001"))

# Google OAuth client registered in the Google Cloud console
GOOGLE_CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "").strip() or None
GOOGLE_CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "").strip() or None

# Callback for the popup flow; must match the URI registered at Google exactly
CALLBACK_URI = os.environ.get("GOOGLE_CALLBACK_URI", f"http://localhost:{PORT}/auth/google/callback")

# Redirect URI for the legacy one-shot exchange (auth-code flow from a JS SDK)
LEGACY_REDIRECT_URI = os.environ.get("GOOGLE_REDIRECT_URI", "postmessage")

# Origins allowed to call the broker from the embedding page
_DEFAULT_ORIGINS = ",".join(
    [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:8080",
        "http://127.0.0.1:5500",
        "http://mytest.local:8080",
        "http://mytest.local:5173",
    ]
)
ALLOWED_ORIGINS = [o.strip() for o in os.environ.get("ALLOWED_ORIGINS", _DEFAULT_ORIGINS).split(",") if o.strip()]

# Provider endpoints
AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"

SCOPE = "openid email profile"

# Pending/terminal records live this long (seconds); the popup client polls for the same window
AUTH_TTL_SECONDS = int(os.environ.get("AUTH_TTL_SECONDS", "300"))
SWEEP_INTERVAL_SECONDS = int(os.environ.get("SWEEP_INTERVAL_SECONDS", "60"))

# Timeout for outbound calls to the provider
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "10"))


class ConfigurationError(Exception):
    """Broker is missing provider credentials. Needs a server fix, not a client retry."""


def require_client_id() -> str:
    if not GOOGLE_CLIENT_ID:
        raise ConfigurationError("Missing GOOGLE_CLIENT_ID")
    return GOOGLE_CLIENT_ID


def require_client_credentials() -> tuple[str, str]:
    if not GOOGLE_CLIENT_ID or not GOOGLE_CLIENT_SECRET:
        raise ConfigurationError("Missing GOOGLE_CLIENT_ID or GOOGLE_CLIENT_SECRET")
    return GOOGLE_CLIENT_ID, GOOGLE_CLIENT_SECRET
