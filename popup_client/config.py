"""
Popup client configuration. Poll budget mirrors the broker's 5 minute session TTL.
"""
import os

# Auth broker base URL (the FastAPI app in auth_broker)
BROKER_URL = os.environ.get("AUTH_BROKER_URL", "http://localhost:3001").rstrip("/")

# Per-request timeout for calls to the broker (seconds)
REQUEST_TIMEOUT = float(os.environ.get("AUTH_BROKER_TIMEOUT", "8"))

# One status check per second, at most 300 checks (5 minutes)
POLL_INTERVAL = 1.0
MAX_POLL_ATTEMPTS = 300

# Consent popup size; centered over the parent window
POPUP_WIDTH = 500
POPUP_HEIGHT = 600
