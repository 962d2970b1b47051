"""
Pytest configuration for auth_broker. Provider credentials are set before config is imported;
no real Google endpoints are contacted (outbound calls are patched in each test).
"""
import os

os.environ["GOOGLE_CLIENT_ID"] = "test-client.apps.googleusercontent.com"
os.environ["GOOGLE_CLIENT_SECRET"] = "test-secret"
os.environ["GOOGLE_CALLBACK_URI"] = "http://localhost:3001/auth/google/callback"
os.environ.pop("GOOGLE_REDIRECT_URI", None)
