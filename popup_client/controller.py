"""
Popup controller: open Google's consent page in a popup and poll the broker for the result.

The popup's own page only closes itself; the login result is read from
/auth/google/status/{state}. Polling runs once per interval until a terminal status
arrives, the attempt budget runs out, or reset() is called. A closed popup is only
logged: the callback may have finished right before the window went away.
"""
import logging
import threading
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from popup_client.api import check_status, start_auth
from popup_client.config import MAX_POLL_ATTEMPTS, POLL_INTERVAL, POPUP_HEIGHT, POPUP_WIDTH

logger = logging.getLogger(__name__)

POPUP_BLOCKED = "Popup blocked. Please allow popups for this site."
TIMED_OUT = "Authentication timed out. Please try again."
SESSION_EXPIRED = "Session expired. Please try again."
AUTH_FAILED = "Authentication failed"
START_FAILED = "Failed to start authentication"


@dataclass
class ParentWindow:
    screen_x: int = 0
    screen_y: int = 0
    outer_width: int = 1280
    outer_height: int = 800


@dataclass
class PopupGeometry:
    left: int
    top: int
    width: int
    height: int

    def features(self) -> str:
        """window.open() feature string."""
        return f"width={self.width},height={self.height},left={self.left},top={self.top},popup=yes"


def popup_geometry(parent: ParentWindow, width: int = POPUP_WIDTH, height: int = POPUP_HEIGHT) -> PopupGeometry:
    """Center the popup over the parent window."""
    left = parent.screen_x + (parent.outer_width - width) // 2
    top = parent.screen_y + (parent.outer_height - height) // 2
    return PopupGeometry(left=left, top=top, width=width, height=height)


class PopupWindow(Protocol):
    @property
    def closed(self) -> bool: ...


class BrowserPopup:
    """Handle for a URL opened with the webbrowser module. Closure cannot be observed there."""

    def __init__(self, url: str):
        self.url = url

    @property
    def closed(self) -> bool:
        return False


def open_browser_popup(url: str, geometry: PopupGeometry) -> BrowserPopup | None:
    """Open url in a new browser window. None when no browser could be launched (treated as blocked)."""
    if not webbrowser.open(url, new=1):
        return None
    return BrowserPopup(url)


@dataclass
class AuthState:
    loading: bool = False
    polling: bool = False
    error: str | None = None
    success: bool = False
    access_token: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    user: dict[str, Any] | None = None


class PopupController:
    def __init__(
        self,
        *,
        start: Callable[[], dict] = start_auth,
        check: Callable[[str], dict] = check_status,
        open_popup: Callable[[str, PopupGeometry], PopupWindow | None] = open_browser_popup,
        interval: float = POLL_INTERVAL,
        max_attempts: int = MAX_POLL_ATTEMPTS,
        on_result: Callable[[AuthState], None] | None = None,
    ):
        self._start = start
        self._check = check
        self._open_popup = open_popup
        self.interval = interval
        self.max_attempts = max_attempts
        self.on_result = on_result
        self.state = AuthState()
        self.attempts = 0
        self._cancel = threading.Event()

    def login(self, parent: ParentWindow | None = None) -> AuthState:
        """
        Start a login, open the popup and poll until a result. Blocks the calling thread.
        A reset() from another thread at any point cancels it.
        """
        self._cancel.clear()
        self.state = AuthState(loading=True)
        try:
            started = self._start()
            state, popup_url = started["state"], started["popupUrl"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.warning("Could not start login: %s", e)
            return self._finish(AuthState(error=str(e) or START_FAILED))
        if self._cancel.is_set():
            return self._cancelled()

        popup = self._open_popup(popup_url, popup_geometry(parent or ParentWindow()))
        if popup is None:
            return self._finish(AuthState(error=POPUP_BLOCKED))
        return self.poll(state, popup)

    def poll(self, state: str, popup: PopupWindow | None = None) -> AuthState:
        """
        Check status once per interval. Transport errors are retried until the attempt
        budget runs out. Returns the terminal AuthState, or a cleared one if reset() was called.
        """
        self.state = AuthState(loading=True, polling=True)
        self.attempts = 0
        popup_closed = False
        while not self._cancel.wait(self.interval):
            self.attempts += 1
            if self.attempts > self.max_attempts:
                return self._finish(AuthState(error=TIMED_OUT))

            if popup is not None and not popup_closed and popup.closed:
                popup_closed = True
                logger.info("Popup closed; polling continues in case the callback already ran")

            try:
                result = self._check(state)
            except (httpx.HTTPError, ValueError) as e:
                logger.warning("Polling error: %s", e)
                continue
            if self._cancel.is_set():
                break
            if not isinstance(result, dict):
                logger.warning("Polling error: unexpected status body")
                continue

            status = result.get("status")
            if status == "complete":
                return self._finish(
                    AuthState(
                        success=True,
                        access_token=result.get("access_token"),
                        refresh_token=result.get("refresh_token"),
                        id_token=result.get("id_token"),
                        expires_in=result.get("expires_in"),
                        user=result.get("user"),
                    )
                )
            if status == "error":
                return self._finish(AuthState(error=result.get("error") or AUTH_FAILED))
            if status == "not_found":
                return self._finish(AuthState(error=SESSION_EXPIRED))

        logger.debug("Polling cancelled after %d attempt(s)", self.attempts)
        return self._cancelled()

    def reset(self) -> None:
        """Stop any poll in progress and forget the current result (sign-out)."""
        self._cancel.set()
        self.attempts = 0
        self.state = AuthState()

    def _cancelled(self) -> AuthState:
        self.state = AuthState()
        return self.state

    def _finish(self, result: AuthState) -> AuthState:
        self.state = result
        if self.on_result is not None:
            self.on_result(result)
        return result


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    outcome = PopupController().login()
    if outcome.success:
        user = outcome.user or {}
        print(f"Signed in as {user.get('email') or user.get('sub') or 'unknown user'}")
    else:
        print(f"Sign-in failed: {outcome.error}")
