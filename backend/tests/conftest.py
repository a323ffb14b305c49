"""
Pytest configuration and shared test helpers for backend tests.
"""
import os
import sys
from pathlib import Path

# Skip heavy server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_dummy")
os.environ.setdefault("STRIPE_PUBLISHABLE_KEY", "pk_test_dummy")
os.environ.setdefault("PUBLIC_API_URL", "http://testserver")

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest
from unittest.mock import AsyncMock, MagicMock
from pymongo.errors import DuplicateKeyError

# Shared TestClient fixture so tests can use in-process requests without a running server.
from fastapi.testclient import TestClient
from server import app
from auth import create_access_token
from models import UserRole

USER_ID = "user-123"
USER_EMAIL = "owner@example.com"
ADMIN_ID = "admin-1"
ADMIN_EMAIL = "admin@example.com"


def auth_headers(user_id: str = USER_ID, email: str = USER_EMAIL, role: UserRole = UserRole.ROLE_USER) -> dict:
    token = create_access_token({"user_id": user_id, "email": email, "role": role.value})
    return {"Authorization": f"Bearer {token}"}


def admin_headers() -> dict:
    return auth_headers(ADMIN_ID, ADMIN_EMAIL, UserRole.ROLE_ADMIN)


def mock_collection() -> MagicMock:
    """A motor collection whose awaitable methods are AsyncMocks."""
    coll = MagicMock()
    coll.find_one = AsyncMock(return_value=None)
    coll.insert_one = AsyncMock()
    coll.update_one = AsyncMock()
    coll.delete_one = AsyncMock(return_value=MagicMock(deleted_count=1))
    coll.find_one_and_update = AsyncMock(return_value=None)
    coll.count_documents = AsyncMock(return_value=0)
    return coll


def mock_cursor(rows) -> MagicMock:
    """find(...).sort(...).limit(...).to_list(...) chain returning rows."""
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=rows)
    return cursor


class InMemoryCollection:
    """Equality-match stand-in for a motor collection with optional unique fields."""

    def __init__(self, docs=None, unique=()):
        self.docs = [dict(d) for d in (docs or [])]
        self.unique = unique

    def _matches(self, doc, query):
        return all(doc.get(k) == v for k, v in query.items())

    def _check_unique(self, candidate, skip=None):
        for field in self.unique:
            value = candidate.get(field)
            if value is None:
                continue
            for doc in self.docs:
                if doc is not skip and doc.get(field) == value:
                    raise DuplicateKeyError(f"E11000 duplicate key error dup key: {{ {field}: \"{value}\" }}")

    async def find_one(self, query, projection=None, **kwargs):
        for doc in self.docs:
            if self._matches(doc, query):
                return dict(doc)
        return None

    def find(self, query=None, projection=None):
        return mock_cursor([dict(d) for d in self.docs if self._matches(d, query or {})])

    async def insert_one(self, doc):
        self._check_unique(doc)
        self.docs.append(dict(doc))
        return MagicMock(inserted_id=doc.get("id"))

    async def update_one(self, query, update, upsert=False):
        for doc in self.docs:
            if self._matches(doc, query):
                changed = {**doc, **update.get("$set", {})}
                self._check_unique(changed, skip=doc)
                doc.update(update.get("$set", {}))
                return MagicMock(matched_count=1, upserted_id=None)
        if upsert:
            doc = {**query, **update.get("$setOnInsert", {}), **update.get("$set", {})}
            self.docs.append(doc)
            return MagicMock(matched_count=0, upserted_id=doc.get("id", "new"))
        return MagicMock(matched_count=0, upserted_id=None)

    async def update_many(self, query, update):
        matched = [doc for doc in self.docs if self._matches(doc, query)]
        for doc in matched:
            doc.update(update.get("$set", {}))
        return MagicMock(matched_count=len(matched), modified_count=len(matched))

    async def find_one_and_update(self, query, update, projection=None, return_document=None):
        for doc in self.docs:
            if self._matches(doc, query):
                changed = {**doc, **update.get("$set", {})}
                self._check_unique(changed, skip=doc)
                doc.update(update.get("$set", {}))
                return dict(doc)
        return None

    async def delete_one(self, query):
        for doc in self.docs:
            if self._matches(doc, query):
                self.docs.remove(doc)
                return MagicMock(deleted_count=1)
        return MagicMock(deleted_count=0)

    async def count_documents(self, query):
        return len([d for d in self.docs if self._matches(d, query)])


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    return TestClient(app)


@pytest.fixture
def db():
    """Mock database with the collections the app touches."""
    database_mock = MagicMock()
    for name in ("users", "profiles", "admins", "businesses", "wizard_sessions", "stripe_events", "password_tokens", "audit_logs"):
        setattr(database_mock, name, mock_collection())
    # admin_route_guard checks the admins collection
    database_mock.admins.find_one = AsyncMock(return_value={"email": ADMIN_EMAIL, "role": "admin"})
    return database_mock
