"""
Pytest configuration and fixtures for the marketplace API tests
"""
import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import USERS, ensure_indexes, get_db
from main import app

PASSWORD = "secret123"


@pytest.fixture
def mongo_db():
    """Fresh in-memory database per test"""
    db = mongomock.MongoClient().db["marketplace_test"]
    ensure_indexes(db)
    return db


@pytest.fixture
def client(mongo_db):
    app.dependency_overrides[get_db] = lambda: mongo_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Register a user through the API; returns (user id, auth headers)"""
    def _signup(name, email, role="customer"):
        response = client.post("/auth/signup", json={
            "name": name, "email": email, "password": PASSWORD, "role": role,
        })
        assert response.status_code == 201, response.text
        data = response.json()
        return data["user"]["id"], {"Authorization": f"Bearer {data['token']}"}
    return _signup


@pytest.fixture
def approve(mongo_db):
    def _approve(user_id, approved=True):
        mongo_db[USERS].update_one({"_id": ObjectId(user_id)}, {"$set": {"isApproved": approved}})
    return _approve


@pytest.fixture
def customer(signup):
    return signup("Carla Cliente", "carla@example.com")


@pytest.fixture
def handyman(signup, approve):
    user_id, headers = signup("Hugo Operario", "hugo@example.com", role="handyman")
    approve(user_id)
    return user_id, headers


@pytest.fixture
def supplier(signup, approve):
    user_id, headers = signup("Ferretería Central", "ventas@ferreteria.com", role="supplier")
    approve(user_id)
    return user_id, headers


@pytest.fixture
def admin(signup, mongo_db):
    user_id, headers = signup("Ana Admin", "admin@example.com")
    mongo_db[USERS].update_one({"_id": ObjectId(user_id)}, {"$set": {"role": "admin"}})
    return user_id, headers
