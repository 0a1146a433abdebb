import copy
import threading
from types import SimpleNamespace

import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import main
from config import Settings
from errors import UpstreamError


def _matches(doc, query):
    for key, expected in query.items():
        if isinstance(expected, dict) and "$in" in expected:
            if doc.get(key) not in expected["$in"]:
                return False
        elif doc.get(key) != expected:
            return False
    return True


class FakeCursor(list):
    def sort(self, key, direction=1):
        return FakeCursor(sorted(self, key=lambda d: d.get(key), reverse=direction < 0))


class FakeCollection:
    """Just enough of a pymongo collection for the stores."""

    def __init__(self):
        self.docs = []

    def insert_one(self, doc):
        doc = copy.deepcopy(doc)
        doc.setdefault("_id", ObjectId())
        self.docs.append(doc)
        return SimpleNamespace(inserted_id=doc["_id"])

    def find_one(self, query):
        for doc in self.docs:
            if _matches(doc, query):
                return copy.deepcopy(doc)
        return None

    def find(self, query=None):
        return FakeCursor(copy.deepcopy(d) for d in self.docs if _matches(d, query or {}))

    def update_one(self, query, update, upsert=False):
        for doc in self.docs:
            if _matches(doc, query):
                doc.update(copy.deepcopy(update.get("$set", {})))
                for key, step in update.get("$inc", {}).items():
                    doc[key] = doc.get(key, 0) + step
                return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.update(update.get("$set", {}))
            res = self.insert_one(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=res.inserted_id)
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    def delete_one(self, query):
        for i, doc in enumerate(self.docs):
            if _matches(doc, query):
                del self.docs[i]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    def create_index(self, *args, **kwargs):
        return "index"


class FakeDatabase:
    name = "unimart_test"

    def __init__(self):
        self.collections = {}

    def __getitem__(self, name):
        return self.collections.setdefault(name, FakeCollection())

    def list_collection_names(self):
        return list(self.collections)


class FakeMedia:
    def __init__(self):
        self.uploads = []
        self.destroyed = []
        self.fail_payloads = set()
        self.fail_destroy = False
        self._lock = threading.Lock()

    def upload(self, payload, folder):
        with self._lock:
            self.uploads.append(payload)
        if payload in self.fail_payloads:
            raise UpstreamError("Image upload failed", detail=f"rejected {payload}")
        return {"url": f"https://img.test/{payload}.jpg", "public_id": f"{folder}/{payload}"}

    def destroy(self, public_id):
        with self._lock:
            self.destroyed.append(public_id)
        if self.fail_destroy:
            raise UpstreamError("Image destroy failed")


class FakeMailer:
    def __init__(self):
        self.sent = []
        self.fail = False

    def send_reset_code(self, email, code, valid_minutes):
        if self.fail:
            raise UpstreamError("Failed to send reset code. Please try again later.", detail="smtp down")
        self.sent.append((email, code, valid_minutes))


@pytest.fixture
def settings():
    return Settings(environment="development", jwt_secret="test-secret")


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def client(settings, fake_db, media, mailer):
    overrides = {
        main.get_database: lambda: fake_db,
        main.get_media: lambda: media,
        main.get_mailer: lambda: mailer,
    }
    main.app.dependency_overrides.update(overrides)
    with TestClient(main.app) as c:
        main.app.state.settings = settings
        yield c
    main.app.dependency_overrides.clear()


def register(client, email, name="Ada Vendor", password="password123", is_vendor=True, complete=True,
             school="University of Lagos"):
    """Create an account and return its bearer token; the client's cookie jar is left empty."""
    res = client.post("/auth/signup", json={"name": name, "email": email, "password": password, "isVendor": is_vendor})
    assert res.status_code == 201, res.text
    token = res.cookies.get("token")
    if complete:
        res = client.post("/auth/complete-profile",
                          json={"email": email, "school": school, "whatsappNumber": "08012345678"})
        assert res.status_code == 200, res.text
        token = res.cookies.get("token")
    client.cookies.clear()
    return token


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
