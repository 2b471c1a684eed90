import itertools
import os
import tempfile
from decimal import Decimal
from types import SimpleNamespace

# config.Config refuses to load without a secret key
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "global-wallet-test-logs"))

import pytest
from flask import has_app_context

from app import create_app
from bonus.settings_store import SettingsStore
from config import TestConfig
from extensions import db
from models import SubscriptionStatus, User


DEFAULT_PIN = "1234"
DEFAULT_RECOVERY_KEY = "482913"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        SettingsStore.ensure_settings()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    """For tests that call helpers directly instead of going through HTTP."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    """
    Insert a user and return a plain (id, mobile) reference.
    Uses the active app context when there is one.
    """
    counter = itertools.count(1)

    def _create(name, mobile, pin, referrer, is_admin, premium_cycle, wallet_balance):
        n = next(counter)
        user = User(
            full_name=name or f"Member {n}",
            mobile=mobile or f"+91900000{n:04d}",
            referred_by=referrer.mobile if referrer is not None else None,
            is_admin=is_admin,
        )
        user.set_pin(pin)
        user.set_recovery_key(DEFAULT_RECOVERY_KEY)
        if premium_cycle:
            user.subscription_status = SubscriptionStatus.PREMIUM.value
            user.activation_cycle = premium_cycle
        if wallet_balance is not None:
            user.wallet_balance = Decimal(str(wallet_balance))
        db.session.add(user)
        db.session.commit()
        return SimpleNamespace(id=user.id, mobile=user.mobile)

    def _make(name=None, mobile=None, pin=DEFAULT_PIN, referrer=None, is_admin=False,
              premium_cycle=None, wallet_balance=None):
        args = (name, mobile, pin, referrer, is_admin, premium_cycle, wallet_balance)
        if has_app_context():
            return _create(*args)
        with app.app_context():
            return _create(*args)

    return _make


def login(client, mobile, pin=DEFAULT_PIN, device="device-a"):
    return client.post(
        "/api/login",
        json={"mobile": mobile, "pin": pin},
        headers={"X-Device-Id": device},
    )


@pytest.fixture
def login_client(app):
    """Return a test client already logged in as the given user."""

    def _login(user, device="device-a"):
        client = app.test_client()
        response = login(client, user.mobile, device=device)
        assert response.status_code == 200, response.get_json()
        return client

    return _login
