"""
Calls to the auth broker used by the popup controller: start a login, check its status.
"""
import httpx

from popup_client.config import BROKER_URL, REQUEST_TIMEOUT


def start_auth(base_url: str = BROKER_URL) -> dict:
    """GET /auth/google/start -> {"state": ..., "popupUrl": ...}. Raises httpx.HTTPError on failure."""
    r = httpx.get(f"{base_url}/auth/google/start", timeout=REQUEST_TIMEOUT)
    r.raise_for_status()
    return r.json()


def check_status(state: str, base_url: str = BROKER_URL) -> dict:
    """
    GET /auth/google/status/{state}. The broker answers not_found with a 404; that is a
    result (stop polling), not a transport failure, so it is returned rather than raised.
    A body that is not a JSON object raises ValueError (the poller retries it).
    """
    r = httpx.get(f"{base_url}/auth/google/status/{state}", timeout=REQUEST_TIMEOUT)
    if r.status_code == 404:
        is_json = r.headers.get("content-type", "").startswith("application/json")
        body = r.json() if is_json else {}
        error = body.get("error") if isinstance(body, dict) else None
        return {"status": "not_found", "error": error or "State not found or expired"}
    r.raise_for_status()
    body = r.json()
    if not isinstance(body, dict):
        raise ValueError("unexpected status response from auth broker")
    return body
