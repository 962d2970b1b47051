"""Tests for the popup flow routes: /start, /callback, /status, /health."""
import asyncio
import json
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient

from auth_broker.main import _sweep_periodically, app
from auth_broker.provider import ExchangeError
from auth_broker.session_store import STATUS_PENDING, SessionStore

CLIENT_ID = "test-client.apps.googleusercontent.com"

GOOD_CLAIMS = {
    "aud": CLIENT_ID,
    "sub": "1234567890",
    "email": "ada@example.com",
    "email_verified": "true",
    "name": "Ada Lovelace",
    "picture": "https://example.com/ada.png",
    "given_name": "Ada",
    "family_name": "Lovelace",
}


class MockResponse:
    def __init__(self, status_code=200, body=None):
        self.status_code = status_code
        self._body = body
        self.headers = {"content-type": "application/json"}
        self.text = ""

    def json(self):
        return self._body


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def store(client) -> SessionStore:
    return client.app.state.session_store


def _start(client) -> str:
    r = client.get("/auth/google/start")
    assert r.status_code == 200
    return r.json()["state"]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok", "service": "auth_broker"}


# --- /start ---


def test_start_returns_state_and_popup_url(client, store):
    r = client.get("/auth/google/start")
    assert r.status_code == 200
    body = r.json()
    state = body["state"]
    assert len(state) == 64
    params = {k: v[0] for k, v in parse_qs(urlparse(body["popupUrl"]).query).items()}
    assert body["popupUrl"].startswith("https://accounts.google.com/o/oauth2/v2/auth?")
    assert params["client_id"] == CLIENT_ID
    assert params["redirect_uri"] == "http://localhost:3001/auth/google/callback"
    assert params["response_type"] == "code"
    assert params["scope"] == "openid email profile"
    assert params["state"] == state
    assert params["access_type"] == "offline"
    assert params["prompt"] == "consent"
    assert store.read(state).status == STATUS_PENDING


def test_start_twice_gives_distinct_states(client):
    assert _start(client) != _start(client)


def test_start_without_client_id_is_config_error(client, store):
    with patch("auth_broker.config.GOOGLE_CLIENT_ID", None):
        r = client.get("/auth/google/start")
    assert r.status_code == 500
    assert r.json() == {"error": "Missing GOOGLE_CLIENT_ID"}
    assert len(store) == 0


# --- /status ---


def test_status_unknown_state_is_not_found(client):
    r = client.get("/auth/google/status/does-not-exist")
    assert r.status_code == 404
    assert r.json() == {"status": "not_found", "error": "State not found or expired"}


def test_status_pending_keeps_record(client, store):
    state = _start(client)
    for _ in range(3):
        r = client.get(f"/auth/google/status/{state}")
        assert r.status_code == 200
        assert r.json() == {"status": "pending"}
    assert state in store


def test_status_after_sweep_is_not_found(client, store):
    state = _start(client)
    store.sweep(now=store.now_fn() + 301)
    r = client.get(f"/auth/google/status/{state}")
    assert r.status_code == 404
    assert r.json()["status"] == "not_found"


# --- /callback ---


def test_end_to_end_popup_flow(client):
    with patch("auth_broker.main.generate_state", return_value="abc"):
        r = client.get("/auth/google/start")
    body = r.json()
    assert body["state"] == "abc"
    assert "state=abc" in body["popupUrl"]

    token_data = {"access_token": "T", "id_token": "I", "expires_in": 3599, "refresh_token": "R"}
    with patch("auth_broker.main.exchange_code", return_value=token_data) as exchange, patch(
        "auth_broker.main.verify_id_token", return_value=GOOD_CLAIMS
    ) as verify:
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": "abc"})
    assert r.status_code == 200
    assert "successful" in r.text
    assert "window.close()" in r.text
    exchange.assert_called_once_with(
        "xyz",
        client_id=CLIENT_ID,
        client_secret="test-secret",
        redirect_uri="http://localhost:3001/auth/google/callback",
    )
    verify.assert_called_once_with("I", client_id=CLIENT_ID)

    r = client.get("/auth/google/status/abc")
    assert r.status_code == 200
    result = r.json()
    assert result["status"] == "complete"
    assert result["access_token"] == "T"
    assert result["id_token"] == "I"
    assert result["refresh_token"] == "R"
    assert result["expires_in"] == 3599
    assert result["user"]["sub"] == "1234567890"
    assert result["user"]["email"] == "ada@example.com"
    assert result["user"]["email_verified"] is True

    r = client.get("/auth/google/status/abc")
    assert r.status_code == 404
    assert r.json()["status"] == "not_found"


def test_callback_through_provider_calls(client):
    """Same flow with only httpx patched, so the real exchange and verification code runs."""
    state = _start(client)
    with patch(
        "auth_broker.provider.httpx.post",
        return_value=MockResponse(body={"access_token": "T", "id_token": "I", "expires_in": 3599}),
    ), patch("auth_broker.provider.httpx.get", return_value=MockResponse(body=GOOD_CLAIMS)):
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    assert r.status_code == 200
    result = client.get(f"/auth/google/status/{state}").json()
    assert result["status"] == "complete"
    assert result["user"]["name"] == "Ada Lovelace"


def test_callback_without_id_token_completes_without_user(client):
    state = _start(client)
    with patch("auth_broker.main.exchange_code", return_value={"access_token": "T", "expires_in": 10}), patch(
        "auth_broker.main.verify_id_token"
    ) as verify:
        client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    verify.assert_not_called()
    result = client.get(f"/auth/google/status/{state}").json()
    assert result["status"] == "complete"
    assert result["user"] is None
    assert result["id_token"] is None


def test_callback_audience_mismatch_is_error(client):
    state = _start(client)
    wrong = {**GOOD_CLAIMS, "aud": "other-client.apps.googleusercontent.com"}
    with patch(
        "auth_broker.provider.httpx.post",
        return_value=MockResponse(body={"access_token": "T", "id_token": "I", "expires_in": 3599}),
    ), patch("auth_broker.provider.httpx.get", return_value=MockResponse(body=wrong)):
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    assert r.status_code == 200
    assert "failed" in r.text
    result = client.get(f"/auth/google/status/{state}").json()
    assert result == {"status": "error", "error": "Token audience mismatch"}


def test_callback_provider_error_access_denied(client):
    state = _start(client)
    r = client.get("/auth/google/callback", params={"error": "access_denied", "state": state})
    assert r.status_code == 200
    assert "cancelled or failed" in r.text
    r = client.get(f"/auth/google/status/{state}")
    assert r.json() == {"status": "error", "error": "access_denied"}
    assert client.get(f"/auth/google/status/{state}").status_code == 404


def test_callback_provider_error_unknown_state_touches_nothing(client, store):
    r = client.get("/auth/google/callback", params={"error": "access_denied", "state": "unknown"})
    assert r.status_code == 200
    assert len(store) == 0


def test_callback_missing_state(client):
    with patch("auth_broker.main.exchange_code") as exchange:
        r = client.get("/auth/google/callback", params={"code": "xyz"})
    assert r.status_code == 400
    assert "Invalid or expired state" in r.text
    exchange.assert_not_called()


def test_callback_unknown_state(client, store):
    with patch("auth_broker.main.exchange_code") as exchange:
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": "unknown-state"})
    assert r.status_code == 400
    exchange.assert_not_called()
    assert len(store) == 0


def test_callback_missing_code(client):
    state = _start(client)
    r = client.get("/auth/google/callback", params={"state": state})
    assert r.status_code == 200
    assert "No authorization code received" in r.text
    result = client.get(f"/auth/google/status/{state}").json()
    assert result == {"status": "error", "error": "No authorization code received"}


def test_callback_exchange_failure_records_provider_description(client):
    state = _start(client)
    err = ExchangeError("Bad Request", status_code=400, body={"error": "invalid_grant", "error_description": "Bad Request"})
    with patch("auth_broker.main.exchange_code", side_effect=err):
        r = client.get("/auth/google/callback", params={"code": "used", "state": state})
    assert r.status_code == 200
    assert "Authentication failed: Bad Request" in r.text
    result = client.get(f"/auth/google/status/{state}").json()
    assert result == {"status": "error", "error": "Bad Request"}


def test_callback_missing_secret_records_error(client):
    state = _start(client)
    with patch("auth_broker.config.GOOGLE_CLIENT_SECRET", None), patch("auth_broker.main.exchange_code") as exchange:
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    assert r.status_code == 200
    exchange.assert_not_called()
    result = client.get(f"/auth/google/status/{state}").json()
    assert result["status"] == "error"
    assert "GOOGLE_CLIENT_SECRET" in result["error"]


def test_callback_replayed_after_delivery_is_rejected(client):
    state = _start(client)
    with patch("auth_broker.main.exchange_code", return_value={"access_token": "T", "expires_in": 10}):
        client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    assert client.get(f"/auth/google/status/{state}").json()["status"] == "complete"
    with patch("auth_broker.main.exchange_code") as exchange:
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    assert r.status_code == 400
    exchange.assert_not_called()


def test_callback_message_is_escaped(client):
    state = _start(client)
    with patch("auth_broker.main.exchange_code", side_effect=ExchangeError("<script>alert(1)</script>")):
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    assert "<script>alert(1)</script>" not in r.text
    assert "&lt;script&gt;" in r.text


# --- CORS and background sweep ---


def test_cors_preflight_allows_configured_origin(client):
    r = client.options(
        "/auth/google/start",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "GET"},
    )
    assert r.status_code == 200
    assert r.headers["access-control-allow-origin"] == "http://localhost:5173"


def test_cors_rejects_unknown_origin(client):
    r = client.get("/health", headers={"Origin": "https://evil.example"})
    assert "access-control-allow-origin" not in r.headers


def test_periodic_sweep_task_removes_expired():
    now = [1000.0]
    store = SessionStore(ttl=300, now_fn=lambda: now[0])
    store.create("old")
    now[0] += 301

    async def run():
        task = asyncio.create_task(_sweep_periodically(store, 0.01))
        for _ in range(100):
            await asyncio.sleep(0.01)
            if "old" not in store:
                break
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(run())
    assert "old" not in store


class HtmlResponse:
    status_code = 200
    headers = {"content-type": "text/html"}
    text = "<html>upstream hiccup</html>"

    def json(self):
        raise json.JSONDecodeError("Expecting value", self.text, 0)


def test_callback_non_json_tokeninfo_records_error(client):
    state = _start(client)
    with patch(
        "auth_broker.provider.httpx.post",
        return_value=MockResponse(body={"access_token": "T", "id_token": "I", "expires_in": 3599}),
    ), patch("auth_broker.provider.httpx.get", return_value=HtmlResponse()):
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    assert r.status_code == 200
    assert "window.close()" in r.text
    result = client.get(f"/auth/google/status/{state}").json()
    assert result == {"status": "error", "error": "Token verification failed"}


def test_callback_non_json_token_response_records_error(client):
    state = _start(client)
    with patch("auth_broker.provider.httpx.post", return_value=HtmlResponse()):
        r = client.get("/auth/google/callback", params={"code": "xyz", "state": state})
    assert r.status_code == 200
    result = client.get(f"/auth/google/status/{state}").json()
    assert result == {"status": "error", "error": "Token exchange failed"}
