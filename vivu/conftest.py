# vivu/conftest.py
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add repo root to PYTHONPATH so `vivu.*` imports resolve
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from vivu.core.clock import FixedClock  # noqa: E402
from vivu.core.config import settings  # noqa: E402
from vivu.core.database import create_all_tables, dispose_engine  # noqa: E402

TEST_ADMIN_KEY = "test-admin-key"
TEST_JWT_SECRET = "test-jwt-secret-with-at-least-32-bytes"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings; billing stays disabled unless a test enables it."""
    monkeypatch.setattr(settings, "ADMIN_KEY", TEST_ADMIN_KEY)
    monkeypatch.setattr(settings, "JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setattr(settings, "ALLOW_HEADER_AUTH", True)
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", None)
    yield


@pytest.fixture(autouse=True)
def db(tmp_path, monkeypatch):
    """
    Fresh SQLite file database per test.

    A file (not :memory:) so threads in the concurrency tests share it.
    """
    monkeypatch.setenv("TEST_DATABASE_URL", f"sqlite:///{tmp_path / 'vivu_test.db'}")
    dispose_engine()
    create_all_tables()
    yield
    dispose_engine()


@pytest.fixture
def clock():
    return FixedClock(datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def client(clock):
    from fastapi.testclient import TestClient
    from vivu.main import app

    app.state.clock = clock
    try:
        yield TestClient(app)
    finally:
        app.state.clock = None


@pytest.fixture
def admin_headers():
    return {"X-Admin-Key": TEST_ADMIN_KEY}
