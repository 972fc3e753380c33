import os
import tempfile

os.environ.setdefault("STORAGE_DIR", tempfile.mkdtemp(prefix="patrol-store-"))
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("ROLE_SOURCE", "account")

import mongomock
import pytest
from fastapi.testclient import TestClient

import auth
import database


@pytest.fixture(autouse=True)
def mongo(monkeypatch):
    db = mongomock.MongoClient()["patrol_store_test"]
    monkeypatch.setattr(database, "db", db)
    return db


@pytest.fixture
def account_table(mongo):
    mongo.create_collection(auth.ACCOUNTS)
    return mongo[auth.ACCOUNTS]


@pytest.fixture
def client():
    from main import app
    app.dependency_overrides.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def member(account_table):
    return auth.provider.sign_up("rookie@alpinepatrol.org", "powderday", full_name="Rookie Patroller")


@pytest.fixture
def admin_session(account_table):
    session = auth.provider.sign_up("chief@alpinepatrol.org", "avalanche1", full_name="Patrol Chief")
    database.update_document(auth.ACCOUNTS, session.user["id"], {"role": "admin"})
    auth.provider.update_user(session.user["id"], user_metadata={"role": "admin"})
    return session


@pytest.fixture
def products():
    kit = database.create_document("product", {
        "name": "Avalanche Kit",
        "price": 149.0,
        "description": "Beacon, probe and shovel checklists",
        "rating": 5,
        "stripe_price_id": "price_kit",
        "variations": [{"name": "Size", "options": [
            {"value": "Standard", "price_adjustment": 0},
            {"value": "Extended", "price_adjustment": 25},
        ]}],
    })
    radio = database.create_document("product", {
        "name": "Radio Beacon",
        "price": 89.5,
        "description": "Dispatch log pack",
        "rating": 4,
        "stripe_price_id": "price_radio",
    })
    scheduler = database.create_document("product", {
        "name": "Patrol Scheduler",
        "price": 29.0,
        "description": "Shift scheduling",
        "is_subscription": True,
        "subscription_interval": "monthly",
        "stripe_price_id": "price_sched_once",
        "stripe_recurring_price_id": "price_sched_monthly",
    })
    return {"kit": kit, "radio": radio, "scheduler": scheduler}
