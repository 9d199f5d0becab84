"""
Shared pytest fixtures.

MongoDB is replaced by a mongomock database injected through
``app.dependency_overrides``, so no server is needed. The application
lifespan is never entered: TestClient is used without a ``with`` block.
"""
import os

# Must be set before the application modules read them at import time
os.environ["JWT_SECRET"] = "test-secret-not-real"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ.pop("COOKIE_NAME", None)

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token
from database import POTION_COLLECTION, ensure_indexes, get_db
from main import app

PASSWORD = "s3cret-potion"


@pytest.fixture
def mongo_db():
    client = mongomock.MongoClient()
    db = client["potions_test"]
    ensure_indexes(db)
    yield db
    client.close()


@pytest.fixture
def client(mongo_db):
    app.dependency_overrides[get_db] = lambda: mongo_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def register(client):
    def _register(username="alchemist", password=PASSWORD):
        return client.post("/auth/register", json={"username": username, "password": password})
    return _register


@pytest.fixture
def auth_client(client, register):
    """A client holding a valid session cookie for user 'alchemist'."""
    assert register().status_code == 201
    response = client.post("/auth/login", json={"username": "alchemist", "password": PASSWORD})
    assert response.status_code == 200
    return client


@pytest.fixture
def bearer_headers():
    token = create_access_token({"sub": "65f000000000000000000001", "username": "tester"})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def sample_potions(mongo_db):
    """Five potions across three vendors; returns name -> ObjectId."""
    docs = [
        {
            "name": "Elixir of Vigor",
            "price": 10,
            "score": 4,
            "count": 3,
            "ingredients": ["mandrake", "honey"],
            "ratings": {"strength": 8, "flavor": 4},
            "categories": ["a", "b"],
            "vendor_id": "v1",
        },
        {
            "name": "Draught of Calm",
            "price": 15,
            "score": 8,
            "count": 5,
            "ingredients": ["lavender"],
            "ratings": {"strength": 3, "flavor": 6},
            "categories": ["b", "c"],
            "vendor_id": "v1",
        },
        {
            "name": "Philter of Sight",
            "price": 20,
            "score": 6,
            "count": 1,
            "ingredients": ["eyebright"],
            "ratings": {"strength": 5, "flavor": 0},
            "categories": ["c"],
            "vendor_id": "v2",
        },
        {
            "name": "Tonic of Haste",
            "price": 19.99,
            "score": 2,
            "count": 7,
            "ingredients": [],
            "ratings": {"strength": 0, "flavor": 0},
            "categories": [],
            "vendor_id": "v3",
        },
        {
            "name": "Brew of Night",
            "price": 10.01,
            "score": 10,
            "count": 2,
            "ingredients": ["nightshade"],
            "categories": ["a"],
            "vendor_id": "v3",
        },
    ]
    result = mongo_db[POTION_COLLECTION].insert_many(docs)
    return {doc["name"]: oid for doc, oid in zip(docs, result.inserted_ids)}
