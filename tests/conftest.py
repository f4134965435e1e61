"""
Shared test setup.

Points the app at a throwaway SQLite file before anything from bankswift is
imported, and provides helpers to register users and seed balances.
"""

import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="bankswift-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["LOG_DIR"] = os.path.join(_TMP_DIR, "logs")
os.environ["BCRYPT_ROUNDS"] = "4"

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import update

from bankswift.main import app
from bankswift.database import Base, SessionLocal, engine
from bankswift.models.account import Account

API = "/api/v1"


@pytest.fixture(autouse=True)
def setup_database():
    """Create fresh tables for each test."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(client):
    """Register and log in a user; returns ids, accounts and auth headers."""
    def _make_user(fullname, email, password="password123"):
        response = client.post(
            f"{API}/users",
            json={"fullname": fullname, "email": email, "phone": "555-0100", "password": password}
        )
        assert response.status_code == 201, response.text
        user = response.json()

        login = client.post(f"{API}/auth/login", json={"email": email, "password": password})
        assert login.status_code == 200, login.text

        accounts = {a["type"]: a["account_id"] for a in user["accounts"]}
        return {
            "id": user["id"],
            "email": email,
            "checking": accounts["checking"],
            "savings": accounts["savings"],
            "headers": {"Authorization": f"Bearer {login.json()['access_token']}"},
        }
    return _make_user


@pytest.fixture
def fund():
    """Seed an account balance directly, as an operator migration would."""
    def _fund(account_id, amount):
        amount = Decimal(str(amount))
        with SessionLocal() as session:
            session.execute(
                update(Account)
                .where(Account.account_id == account_id)
                .values(balance=amount, available=amount)
            )
            session.commit()
    return _fund


@pytest.fixture
def balance_of(client):
    def _balance_of(user, account_type="checking"):
        response = client.get(
            f"{API}/accounts/{user[account_type]}/balance", headers=user["headers"]
        )
        assert response.status_code == 200, response.text
        return Decimal(response.json()["balance"])
    return _balance_of
