"""Pytest configuration and fixtures."""

from unittest.mock import MagicMock

import mongomock
import pytest
from fastapi.testclient import TestClient

from database import ensure_indexes, get_db
from main import app, get_checkout


@pytest.fixture
def db():
    """Fresh in-memory Mongo database for each test."""
    database = mongomock.MongoClient().db
    ensure_indexes(database)
    return database


@pytest.fixture
def checkout():
    """Stand-in for the Stripe checkout session resource."""
    gateway = MagicMock()
    gateway.create.return_value = {"id": "cs_test_123", "url": "https://checkout.stripe.com/c/pay/cs_test_123"}
    return gateway


@pytest.fixture
def client(db, checkout):
    """Create a test client wired to the in-memory database and fake checkout."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_checkout] = lambda: checkout
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def login(client, db):
    """Store a user with the given role and sign the client in as that user."""

    def _login(email="user@example.com", role="user", **extra):
        user = {"name": email.split("@")[0], "email": email, "role": role, "status": "active", **extra}
        db.users.update_one({"email": email}, {"$set": user}, upsert=True)
        response = client.post("/jwt", json={"email": email, "role": role})
        assert response.status_code == 200
        return user

    return _login
