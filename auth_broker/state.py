"""
State token and provider authorization URL for the popup flow.
The state token is both the session key and the CSRF nonce echoed back by Google.
"""
import secrets
from urllib.parse import urlencode


def generate_state() -> str:
    """Opaque value; 32 random bytes, hex-encoded (64 chars)."""
    return secrets.token_hex(32)


def build_authorize_url(
    *,
    authorize_url: str,
    client_id: str,
    redirect_uri: str,
    scope: str,
    state: str,
) -> str:
    """Build the consent URL the popup is pointed at. Asks for a refresh token and forces consent."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": scope,
        "state": state,
        "access_type": "offline",
        "prompt": "consent",
    }
    return f"{authorize_url}?{urlencode(params)}"
