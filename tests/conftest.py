"""
Pytest configuration and shared fixtures.

Each test gets its own SQLite file and fresh settings read from
environment variables set through monkeypatch.
"""

import base64
import hashlib
import hmac

import pytest
from fastapi.testclient import TestClient

from twilio_inbox.config import get_settings
from twilio_inbox.storage import init_db, open_session


TEST_AUTH_TOKEN = "test-twilio-auth-token"
WEBHOOK_URL = "http://testserver/webhook"


def twilio_signature(url: str, data: dict, token: str) -> str:
    """Compute X-Twilio-Signature the way Twilio documents it."""
    signed = url + "".join(f"{key}{data[key]}" for key in sorted(data))
    digest = hmac.new(token.encode("utf-8"), signed.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


@pytest.fixture
def callback_data() -> dict:
    """A text-only WhatsApp callback as Twilio posts it."""
    return {
        "From": "whatsapp:+15551234567",
        "WaId": "15551234567",
        "ProfileName": "Alice",
        "To": "whatsapp:+14155238886",
        "Body": "Hi",
        "NumMedia": "0",
        "MessageSid": "SM123",
    }


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'inbox.db'}"


@pytest.fixture
def env(monkeypatch, database_url):
    """Configure the app through environment variables."""
    monkeypatch.setenv("DATABASE_URL", database_url)
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    monkeypatch.delenv("TWILIO_AUTH_TOKEN", raising=False)
    get_settings.cache_clear()
    yield monkeypatch
    get_settings.cache_clear()


@pytest.fixture
def auth_token(env) -> str:
    """Enable signature checks."""
    env.setenv("TWILIO_AUTH_TOKEN", TEST_AUTH_TOKEN)
    get_settings.cache_clear()
    return TEST_AUTH_TOKEN


@pytest.fixture
def client(env):
    """Test client; startup creates the tables."""
    from twilio_inbox.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db(env, database_url):
    """Session on the same database the app writes to."""
    init_db(database_url)
    with open_session(database_url) as session:
        yield session
