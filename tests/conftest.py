"""
Shared test fixtures.

Provides a FastAPI TestClient wired to:
  • a temporary SQLite database (via app lifespan)
  • development mode with the console SMS provider (OTPs are echoed back)
  • IP rate limiting disabled

The `client` fixture runs the full lifespan (DB init / shutdown), so the
per-phone rate limiter and OTP service are the real ones.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app import db
from app.main import app
from tests.mocks.models import SIGNUP_PAYLOAD


# ── Fixtures ───────────────────────────────────────────────────────────────


@pytest.fixture()
def _test_env(monkeypatch, tmp_path):
    """
    Internal fixture that points the app at a temp database and keeps
    SMS delivery local.
    """
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "test.db"))

    monkeypatch.setattr("app.config.ENVIRONMENT", "development")
    monkeypatch.setattr("app.config.MESSAGEBIRD_API_KEY", "")
    monkeypatch.setattr("app.config.TWILIO_ACCOUNT_SID", "")

    # ── Disable IP rate limiting in tests ─────────────────────────────
    from app.rate_limit import limiter as _limiter
    monkeypatch.setattr(_limiter, "enabled", False)


@pytest.fixture()
def client(_test_env) -> TestClient:
    """FastAPI TestClient with a fresh database and the full lifespan."""
    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc


@pytest.fixture()
def registered_client(client: TestClient) -> TestClient:
    """Client with one account (SIGNUP_PAYLOAD) already signed up."""
    resp = client.post("/signup", json=SIGNUP_PAYLOAD)
    assert resp.status_code == 201, resp.text
    return client


@pytest.fixture()
async def test_db(monkeypatch, tmp_path):
    """Open a temp database directly, for service-level tests without HTTP."""
    monkeypatch.setattr(db, "DB_PATH", str(tmp_path / "service.db"))
    await db.init_db()
    yield
    await db.close_db()
