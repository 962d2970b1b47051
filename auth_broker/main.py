"""
Auth broker: Google sign-in for pages embedded in an iframe.
The iframe cannot redirect the top window, so it opens a popup (/start), Google redirects the
popup to /callback where the code is exchanged server-side, and the iframe polls /status.
Port 3001 by default.
"""
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from auth_broker import config
from auth_broker.config import (
    ALLOWED_ORIGINS,
    AUTH_TTL_SECONDS,
    AUTHORIZE_URL,
    CALLBACK_URI,
    LEGACY_REDIRECT_URI,
    SCOPE,
    SWEEP_INTERVAL_SECONDS,
    ConfigurationError,
)
from auth_broker.pages import popup_close_page
from auth_broker.provider import AudienceMismatchError, ExchangeError, exchange_code, user_from_claims, verify_id_token
from auth_broker.session_store import STATUS_COMPLETE, STATUS_ERROR, SessionStore
from auth_broker.state import build_authorize_url, generate_state

logger = logging.getLogger(__name__)


async def _sweep_periodically(store: SessionStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        store.sweep()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the session store for the life of the process; sweep expired records in the background."""
    store = SessionStore(ttl=AUTH_TTL_SECONDS)
    app.state.session_store = store
    sweeper = asyncio.create_task(_sweep_periodically(store, SWEEP_INTERVAL_SECONDS))
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Auth Broker", version="0.2.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def get_store(request: Request) -> SessionStore:
    return request.app.state.session_store


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Configuration error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "service": "auth_broker"}


@app.get("/auth/google/start")
def start(store: SessionStore = Depends(get_store)):
    """
    Create a pending session and return the consent URL for the popup.
    The iframe keeps `state` and polls /auth/google/status/{state} with it.
    """
    client_id = config.require_client_id()
    state = generate_state()
    store.create(state)
    popup_url = build_authorize_url(
        authorize_url=AUTHORIZE_URL,
        client_id=client_id,
        redirect_uri=CALLBACK_URI,
        scope=SCOPE,
        state=state,
    )
    logger.info("Started popup login %s...", state[:8])
    return {"state": state, "popupUrl": popup_url}


@app.get("/auth/google/callback", response_class=HTMLResponse)
def callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    store: SessionStore = Depends(get_store),
):
    """
    Google redirects the popup here. Exchange the code, record the outcome under `state`,
    and render a page that closes the popup. The result itself is delivered by /status.
    """
    if error:
        if state and store.read(state) is not None:
            store.set_terminal(state, STATUS_ERROR, error=error)
        logger.info("Provider returned error %r for login %s...", error, (state or "")[:8])
        return HTMLResponse(popup_close_page("Authentication cancelled or failed.", False))

    if not state or store.read(state) is None:
        return HTMLResponse(popup_close_page("Invalid or expired state.", False), status_code=400)

    if not code:
        store.set_terminal(state, STATUS_ERROR, error="No authorization code received")
        return HTMLResponse(popup_close_page("No authorization code received.", False))

    try:
        client_id, client_secret = config.require_client_credentials()
        token_data = exchange_code(
            code,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=CALLBACK_URI,
        )
        user = None
        id_token = token_data.get("id_token")
        if id_token:
            user = user_from_claims(verify_id_token(id_token, client_id=client_id))
    except (ExchangeError, ConfigurationError) as e:
        message = getattr(e, "message", None) or str(e) or "Token exchange failed"
        store.set_terminal(state, STATUS_ERROR, error=message)
        logger.info("Login %s... failed: %s", state[:8], message)
        return HTMLResponse(popup_close_page(f"Authentication failed: {message}", False))

    store.set_terminal(
        state,
        STATUS_COMPLETE,
        access_token=token_data.get("access_token"),
        refresh_token=token_data.get("refresh_token"),
        id_token=id_token,
        expires_in=token_data.get("expires_in"),
        user=user,
    )
    logger.info("Login %s... complete", state[:8])
    return HTMLResponse(popup_close_page("Authentication successful! You can close this window.", True))


@app.get("/auth/google/status/{state}")
def status(state: str, store: SessionStore = Depends(get_store)):
    """
    pending -> keep polling. complete/error -> returned once, then deleted.
    not_found (404) -> unknown, expired, or already delivered; stop polling.
    """
    record = store.consume(state)
    if record is None:
        return JSONResponse(status_code=404, content={"status": "not_found", "error": "State not found or expired"})
    return record.to_status_payload()


class ExchangeRequest(BaseModel):
    code: str | None = None


@app.post("/auth/google/exchange")
def exchange(body: ExchangeRequest):
    """
    Legacy one-shot exchange for a code obtained by a JS SDK auth-code flow.
    No session involved; the token bundle is returned directly.
    """
    if not body.code:
        return JSONResponse(status_code=400, content={"error": "Missing authorization code"})
    client_id, client_secret = config.require_client_credentials()

    try:
        token_data = exchange_code(
            body.code,
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=LEGACY_REDIRECT_URI,
        )
        user = None
        if token_data.get("id_token"):
            user = user_from_claims(verify_id_token(token_data["id_token"], client_id=client_id), extended=True)
    except AudienceMismatchError:
        return JSONResponse(status_code=401, content={"error": "Token was not issued for this application"})
    except ExchangeError as e:
        return JSONResponse(status_code=e.status_code or 502, content={"error": e.body or e.message})

    return {
        "token_type": token_data.get("token_type"),
        "access_token": token_data.get("access_token"),
        "expires_in": token_data.get("expires_in"),
        "refresh_token": token_data.get("refresh_token"),
        "id_token": token_data.get("id_token"),
        "scope": token_data.get("scope"),
        "user": user,
        "verified": user is not None,
    }


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    uvicorn.run(
        "auth_broker.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=True,
    )
