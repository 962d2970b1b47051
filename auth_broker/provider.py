"""
Outbound calls to Google: authorization code -> tokens, and id_token -> verified claims.
Stateless; knows nothing about sessions. No caching and no retries (codes are single-use).
"""
import logging
from typing import Any

import httpx

from auth_broker.config import HTTP_TIMEOUT, TOKEN_URL, TOKENINFO_URL

logger = logging.getLogger(__name__)


class ExchangeError(Exception):
    """
    Code exchange or id_token verification failed. `message` is the provider's
    error_description when it sent one. `status_code` and `body` are set when the
    provider answered with an error response.
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class AudienceMismatchError(ExchangeError):
    """id_token was issued for a different client."""


def _json_object(r: httpx.Response, default: str) -> dict:
    """Successful responses must carry a JSON object; anything else is a failed exchange."""
    try:
        body = r.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        logger.warning("Unexpected non-JSON response from provider (%s)", r.status_code)
        raise ExchangeError(default)
    return body


def _error_from_response(r: httpx.Response, default: str) -> ExchangeError:
    body = r.text
    if r.headers.get("content-type", "").startswith("application/json"):
        try:
            body = r.json()
        except ValueError:
            pass
    err = body if isinstance(body, dict) else {}
    message = err.get("error_description") or err.get("error") or default
    return ExchangeError(str(message), status_code=r.status_code, body=body)


def exchange_code(code: str, *, client_id: str, client_secret: str, redirect_uri: str) -> dict:
    """POST the authorization code to the token endpoint. Returns the token response."""
    try:
        r = httpx.post(
            TOKEN_URL,
            data={
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
            timeout=HTTP_TIMEOUT,
        )
    except httpx.HTTPError as e:
        logger.warning("Token endpoint unreachable: %s", e)
        raise ExchangeError(str(e) or "Token exchange failed") from e
    if r.status_code != 200:
        err = _error_from_response(r, "Token exchange failed")
        logger.warning("Token exchange rejected (%s): %s", r.status_code, err.message)
        raise err
    return _json_object(r, "Token exchange failed")


def verify_id_token(id_token: str, *, client_id: str) -> dict:
    """Resolve id_token to claims via tokeninfo; the aud claim must be our client id."""
    try:
        r = httpx.get(TOKENINFO_URL, params={"id_token": id_token}, timeout=HTTP_TIMEOUT)
    except httpx.HTTPError as e:
        logger.warning("Tokeninfo endpoint unreachable: %s", e)
        raise ExchangeError(str(e) or "Token verification failed") from e
    if r.status_code != 200:
        raise _error_from_response(r, "Token verification failed")
    claims = _json_object(r, "Token verification failed")
    if claims.get("aud") != client_id:
        logger.warning("id_token audience mismatch")
        raise AudienceMismatchError("Token audience mismatch")
    return claims


def user_from_claims(claims: dict, *, extended: bool = False) -> dict:
    """
    Identity claims handed to the embedding page. tokeninfo returns email_verified as
    the string "true"/"false". `extended` adds locale, iat and exp (legacy exchange).
    """
    user = {
        "sub": claims.get("sub"),
        "email": claims.get("email"),
        "email_verified": claims.get("email_verified") in ("true", True),
        "name": claims.get("name"),
        "picture": claims.get("picture"),
        "given_name": claims.get("given_name"),
        "family_name": claims.get("family_name"),
    }
    if extended:
        user["locale"] = claims.get("locale")
        user["iat"] = claims.get("iat")
        user["exp"] = claims.get("exp")
    return user
