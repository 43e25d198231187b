"""
Pytest configuration and fixtures

Settings are pinned before any forswags import: the engine, SECRET_KEY and
friends are read at import time. Every test gets freshly created tables.
"""
import os
import tempfile
from datetime import datetime
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="forswags-tests-"))
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"
os.environ["CRON_SECRET"] = "cron-test-secret"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["BILLING_ENABLED"] = "true"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["STRIPE_PRICE_PRO_MONTHLY"] = "price_pro_monthly"
os.environ["STRIPE_PRICE_CHAMPIONSHIP_YEARLY"] = "price_championship_yearly"
os.environ["APP_BASE_URL"] = "https://app.forswags.test"
os.environ.pop("SEED_ADMIN", None)

import pytest
from fastapi.testclient import TestClient

from forswags import auth, models
from forswags.database import Base, SessionLocal, engine
from forswags.main import app

FIXED_NOW = datetime(2026, 3, 2, 12, 0, 0)


class FakeSender:
    """Stands in for the SMTP emailer: (to, subject, body) -> sent?"""

    def __init__(self, ok=True, raises=None):
        self.ok = ok
        self.raises = raises
        self.sent = []

    def __call__(self, to_email, subject, body):
        if self.raises is not None:
            raise self.raises
        self.sent.append({"to": to_email, "subject": subject, "body": body})
        return self.ok


@pytest.fixture(autouse=True)
def _fresh_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    app.state.tier_cache.clear()
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def failing_sender():
    return FakeSender(ok=False)


@pytest.fixture
def raising_sender():
    return FakeSender(raises=ConnectionError("smtp down"))


@pytest.fixture
def make_user(db):
    """Factory: make_user("a@x.com", roles=("coach",), full_name="A", password="...")"""

    def _make(email, roles=(), full_name=None, password="password123", is_active=True):
        user = models.User(
            email=email.lower(),
            hashed_password=auth.hash_password(password),
            user_metadata={},
            is_active=is_active,
        )
        db.add(user)
        db.flush()
        db.add(models.Profile(id=user.id, email=user.email, full_name=full_name))
        for role in roles:
            db.add(models.UserRole(user_id=user.id, role=role))
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_membership(db):
    def _make(user, tier, status="active", start_date=None, end_date=None):
        m = models.Membership(
            user_id=user.id,
            tier=tier,
            status=status,
            start_date=start_date or datetime(2026, 1, 1),
            end_date=end_date,
        )
        db.add(m)
        db.commit()
        db.refresh(m)
        return m

    return _make


@pytest.fixture
def headers_for():
    def _headers(user):
        return {"Authorization": f"Bearer {auth.create_access_token(user.id)}"}

    return _headers
