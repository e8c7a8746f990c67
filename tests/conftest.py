"""
Pytest configuration and fixtures for Smart Health Vault API tests
"""
import os
import sys
from datetime import datetime

import mongomock
import pytest

# Settings are read at import time
os.environ["REMINDER_SCHEDULER_ENABLED"] = "false"
os.environ["JWT_SECRET"] = "test-secret-key"
os.environ.pop("FIREBASE_CREDENTIALS", None)
os.environ["FRONTEND_URL"] = "https://vault.example.com"

# Add parent directory to path to import the app modules
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from fastapi.testclient import TestClient

from auth import create_token
from database import get_db
from gateways import BlobStore, NotificationGateway, SmsResult, UploadResult
from main import app, get_blob_store, get_sms_gateway


class FakeSmsGateway(NotificationGateway):
    """Records messages instead of sending them."""

    def __init__(self, available=True, fail_for=()):
        self.available = available
        self.fail_for = set(fail_for)
        self.sent = []

    def is_available(self):
        return self.available

    def send_sms(self, to, body):
        if to in self.fail_for:
            raise RuntimeError(f"carrier rejected {to}")
        self.sent.append({"to": to, "body": body})
        return SmsResult(sid=f"SM{len(self.sent):04d}", status="queued", to=to)


class FakeBlobStore(BlobStore):
    name = "fake"

    def __init__(self, error=None):
        self.error = error
        self.uploads = []

    def is_available(self):
        return True

    def upload(self, data, file_name, content_type, owner_id):
        if self.error:
            raise self.error
        self.uploads.append({"file_name": file_name, "owner_id": owner_id, "size": len(data)})
        return UploadResult(
            url=f"https://files.example.com/{owner_id}/{file_name}",
            file_name=file_name,
            size=len(data),
            type=content_type,
        )


@pytest.fixture
def mongo_db():
    """Fresh in-memory database per test"""
    return mongomock.MongoClient().vault


@pytest.fixture
def sms_gateway():
    return FakeSmsGateway()


@pytest.fixture
def blob_store():
    return FakeBlobStore()


@pytest.fixture
def client(mongo_db, sms_gateway, blob_store):
    """Test client wired to the in-memory database and fake gateways"""
    app.dependency_overrides[get_db] = lambda: mongo_db
    app.dependency_overrides[get_sms_gateway] = lambda: sms_gateway
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(mongo_db):
    """Insert a user document directly and return it"""
    def _make_user(uid="uid-alice", email="alice@example.com", full_name="Alice Doe", phone="5551234567", date_of_birth=None):
        doc = {
            "firebaseUid": uid,
            "email": email,
            "fullName": full_name,
            "phone": phone,
            "dateOfBirth": date_of_birth,
            "createdAt": datetime.utcnow(),
        }
        doc["_id"] = mongo_db["user"].insert_one(doc).inserted_id
        return doc
    return _make_user


@pytest.fixture
def test_user(make_user):
    return make_user(date_of_birth=datetime(1990, 3, 10))


def auth_headers(uid):
    return {"Authorization": f"Bearer {create_token(uid)}"}


@pytest.fixture
def alice_headers(test_user):
    return auth_headers(test_user["firebaseUid"])
