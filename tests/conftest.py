import os

os.environ["ADMIN_EMAILS"] = "curator@houseofmuziris.com, Owner@HouseOfMuziris.com"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["RESEND_API_KEY"] = "re_test_key"
os.environ["SITE_URL"] = "https://muziris.test"
os.environ.pop("DATABASE_URL", None)

import mongomock
import pytest
import resend
from pymongo.errors import PyMongoError

import database

# Must be installed before any module does `from database import db`.
database.db = mongomock.MongoClient()["muziris_test"]

from fastapi.testclient import TestClient  # noqa: E402

from main import app  # noqa: E402
from security import create_session_token  # noqa: E402

ADMIN_EMAIL = "curator@houseofmuziris.com"


@pytest.fixture(autouse=True)
def clean_db():
    for name in database.db.list_collection_names():
        database.db.drop_collection(name)
    yield


@pytest.fixture
def outbox(monkeypatch):
    sent = []

    def fake_send(params):
        sent.append(params)
        return {"id": f"email-{len(sent)}"}

    monkeypatch.setattr(resend.Emails, "send", fake_send)
    return sent


@pytest.fixture
def failing_email(monkeypatch):
    def fake_send(params):
        raise RuntimeError("resend is down")

    monkeypatch.setattr(resend.Emails, "send", fake_send)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def admin_headers():
    user = {"_id": "admin-1", "email": ADMIN_EMAIL, "display_name": "Curator", "providers": ["emailLink"],
            "loyalty_points": 0}
    database.db["users"].insert_one(user)
    return {"Authorization": f"Bearer {create_session_token(user)}"}


def make_member(email="chef@example.com", name="Chef X", points=0):
    """Insert an approved, verified member with a session; returns (user doc, headers)."""
    database.db["requests"].insert_one({
        "member_type": "private", "name": name, "email": email, "status": "approved",
        "email_verified": True, "created_at": database.utcnow(),
    })
    user = {"_id": f"user-{email}", "email": email, "display_name": name, "providers": ["password"],
            "loyalty_points": points}
    database.db["users"].insert_one(user)
    database.db["profiles"].insert_one({
        "_id": user["_id"], "user_id": user["_id"], "email": email, "display_name": name,
        "loyalty_points": points, "has_set_password": True,
    })
    return user, {"Authorization": f"Bearer {create_session_token(user)}"}


@pytest.fixture
def member():
    return make_member(points=100)


@pytest.fixture
def member_factory():
    return make_member


class UnreachableCollection:
    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise PyMongoError("connection refused")
        return fail


class UnreachableDatabase:
    def __getitem__(self, name):
        return UnreachableCollection()


@pytest.fixture
def database_down(monkeypatch):
    """Swap the `db` handle of the given modules for one whose every call fails."""
    def take_down(*modules):
        for module in modules:
            monkeypatch.setattr(module, "db", UnreachableDatabase())
    return take_down
