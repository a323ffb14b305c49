"""
Admin area: guard, flattened business listing, users with nested businesses,
stats, protected-field edits and document slot management.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from conftest import ADMIN_ID, USER_ID, InMemoryCollection, admin_headers, auth_headers, mock_cursor
from database import database
from services.storage_adapter import storage_adapter

PDF = b"%PDF-1.4 replacement"
BUSINESS_ID = "biz-001"

COMPLETED = {
    "id": BUSINESS_ID,
    "userId": USER_ID,
    "status": "completed",
    "country": {"name": "United States"},
    "package": {"name": "Connecticut", "price": 159},
    "company": {"name": "Acme & Co", "type": "llc", "industry": "tech"},
    "paymentDetails": {"amount": 15900, "currency": "usd", "status": "paid"},
    "documents": {"einTaxId": {"url": "http://testserver/api/files/users/user-123/documents/1.pdf", "name": "ein.pdf"}},
}


@pytest.fixture
def store(db):
    db.users = InMemoryCollection([
        {"uid": USER_ID, "email": "owner@example.com"},
        {"uid": "user-456", "email": "second@example.com"},
    ])
    db.businesses = InMemoryCollection([dict(COMPLETED)], unique=("id", "checkoutSessionId"))
    with patch.object(database, "get_db", return_value=db):
        yield db


class TestGuard:

    def test_regular_user_is_forbidden(self, client, store):
        response = client.get("/api/businesses", headers=auth_headers())
        assert response.status_code == 403
        assert response.json()["detail"] == "Insufficient permissions"

    def test_revoked_admin_is_forbidden(self, client, store):
        store.admins.find_one = AsyncMock(return_value=None)
        response = client.get("/api/users", headers=admin_headers())
        assert response.status_code == 403
        assert response.json()["detail"] == "Not authorized as admin"

    def test_anonymous_is_unauthorized(self, client):
        assert client.get("/api/businesses").status_code == 401


class TestListings:

    def test_businesses_are_flattened_with_owner_email_and_path(self, client, store):
        response = client.get("/api/businesses", headers=admin_headers())
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["total"] == 1
        business = body["businesses"][0]
        assert business["userEmail"] == "owner@example.com"
        assert business["path"] == f"/users/{USER_ID}/businesses/{BUSINESS_ID}"

    def test_failing_user_is_skipped(self, client, db):
        db.users.find = MagicMock(return_value=mock_cursor([
            {"uid": "broken", "email": "broken@example.com"},
            {"uid": USER_ID, "email": "owner@example.com"},
        ]))

        def find_businesses(query, projection=None):
            if query["userId"] == "broken":
                raise RuntimeError("read failed")
            return mock_cursor([dict(COMPLETED)])

        db.businesses.find = MagicMock(side_effect=find_businesses)
        with patch.object(database, "get_db", return_value=db):
            response = client.get("/api/businesses", headers=admin_headers())

        assert response.status_code == 200
        assert [b["userEmail"] for b in response.json()["businesses"]] == ["owner@example.com"]

    def test_users_have_nested_businesses_without_password(self, client, db):
        db.users.find = MagicMock(return_value=mock_cursor([
            {"uid": USER_ID, "email": "owner@example.com"},
            {"uid": "user-456", "email": "second@example.com"},
        ]))
        db.businesses.find = MagicMock(return_value=mock_cursor([dict(COMPLETED)]))
        with patch.object(database, "get_db", return_value=db):
            response = client.get("/api/users", headers=admin_headers())

        assert response.status_code == 200
        users = {u["uid"]: u for u in response.json()["users"]}
        assert [b["id"] for b in users[USER_ID]["businesses"]] == [BUSINESS_ID]
        assert users["user-456"]["businesses"] == []
        projection = db.users.find.call_args[0][1]
        assert projection["passwordHash"] == 0

    def test_stats(self, client, db):
        db.users.count_documents = AsyncMock(return_value=3)
        db.businesses.count_documents = AsyncMock(side_effect=[5, 2])
        db.businesses.aggregate = MagicMock(return_value=mock_cursor([{"_id": None, "total": 31800}]))
        db.businesses.find = MagicMock(return_value=mock_cursor([dict(COMPLETED)]))
        with patch.object(database, "get_db", return_value=db):
            response = client.get("/api/admin/stats", headers=admin_headers())

        assert response.status_code == 200
        body = response.json()
        assert body["totalUsers"] == 3
        assert body["totalBusinesses"] == 5
        assert body["completedBusinesses"] == 2
        assert body["totalRevenue"] == 31800
        assert len(body["recentBusinesses"]) == 1


class TestEdit:

    def test_merge_company_fields(self, client, store):
        response = client.put(
            f"/api/businesses/{USER_ID}/{BUSINESS_ID}",
            json={"company": {"name": "Acme Holdings", "type": "corp", "industry": "finance"}},
            headers=admin_headers(),
        )
        assert response.status_code == 200, response.text
        data = response.json()["data"]
        assert data["company"]["name"] == "Acme Holdings"
        assert data["status"] == "completed"
        assert data["paymentDetails"]["amount"] == 15900

    @pytest.mark.parametrize("body", [
        {"status": "draft"},
        {"paymentDetails": {"amount": 1}},
    ])
    def test_status_and_payment_are_read_only(self, client, store, body):
        response = client.put(f"/api/businesses/{USER_ID}/{BUSINESS_ID}", json=body, headers=admin_headers())
        assert response.status_code == 400
        assert store.businesses.docs[0]["status"] == "completed"

    def test_invalid_json_is_400(self, client, store):
        response = client.put(
            f"/api/businesses/{USER_ID}/{BUSINESS_ID}",
            content=b"{not json",
            headers={**admin_headers(), "Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_unknown_business_is_404(self, client, store):
        response = client.put(
            f"/api/businesses/{USER_ID}/missing",
            json={"company": {"name": "Acme"}},
            headers=admin_headers(),
        )
        assert response.status_code == 404


class TestDocuments:

    def test_replace_merges_new_slot(self, client, store):
        with patch.object(storage_adapter, "put", AsyncMock(return_value="file-id")) as put:
            response = client.post(
                f"/api/businesses/{USER_ID}/{BUSINESS_ID}/documents",
                files={"boiReport": ("boi.pdf", PDF, "application/pdf")},
                headers=admin_headers(),
            )
        assert response.status_code == 200, response.text
        documents = response.json()["data"]["documents"]
        assert set(documents) == {"einTaxId", "boiReport"}
        assert documents["boiReport"]["name"] == "boi.pdf"
        assert put.await_args.kwargs["metadata"]["uploaded_by"] == ADMIN_ID

    def test_unknown_slot_for_country(self, client, store):
        with patch.object(storage_adapter, "put", AsyncMock()) as put:
            response = client.post(
                f"/api/businesses/{USER_ID}/{BUSINESS_ID}/documents",
                files={"businessRegistration": ("reg.pdf", PDF, "application/pdf")},
                headers=admin_headers(),
            )
        assert response.status_code == 400
        put.assert_not_called()

    def test_replacement_follows_upload_policy(self, client, store):
        with patch.object(storage_adapter, "put", AsyncMock()) as put:
            response = client.post(
                f"/api/businesses/{USER_ID}/{BUSINESS_ID}/documents",
                files={"einTaxId": ("ein.gif", b"GIF89a", "image/gif")},
                headers=admin_headers(),
            )
        assert response.status_code == 400
        put.assert_not_called()
        assert store.businesses.docs[0]["documents"]["einTaxId"]["name"] == "ein.pdf"

    def test_remove_document(self, client, store):
        response = client.delete(f"/api/businesses/{USER_ID}/{BUSINESS_ID}/documents/einTaxId", headers=admin_headers())
        assert response.status_code == 200
        assert response.json()["data"]["documents"] == {}

    def test_remove_absent_slot_is_404(self, client, store):
        response = client.delete(f"/api/businesses/{USER_ID}/{BUSINESS_ID}/documents/boiReport", headers=admin_headers())
        assert response.status_code == 404


def test_my_businesses_filters_by_status(client, db):
    db.businesses = InMemoryCollection([
        dict(COMPLETED),
        {"id": "biz-002", "userId": USER_ID, "status": "draft"},
    ])
    with patch.object(database, "get_db", return_value=db):
        response = client.get("/api/my/businesses?status=draft", headers=auth_headers())
    assert response.status_code == 200
    assert [b["id"] for b in response.json()["businesses"]] == ["biz-002"]
