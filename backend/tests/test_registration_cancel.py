"""
Registration flow over HTTP: steps persist a draft and a resumable snapshot;
cancelling removes uploaded documents best-effort, drops the draft and clears
the snapshot; the stale-session job applies the same contract.
"""
import pytest
from unittest.mock import AsyncMock, patch

from conftest import USER_ID, InMemoryCollection, auth_headers
from database import database
from job_runner import run_stale_wizard_session_cleanup
from services import registration_service, wizard_session_store
from services.storage_adapter import storage_adapter
from services.stripe_webhook_service import stripe_webhook_service
from services.wizard import WizardSession

DOC_1 = f"http://testserver/api/files/users/{USER_ID}/documents/1700000000001.pdf"
DOC_2 = f"http://testserver/api/files/users/{USER_ID}/documents/1700000000002.png"
FOREIGN_DOC = "http://testserver/api/files/users/someone-else/documents/1700000000009.pdf"

OWNERS = [{
    "fullName": "Ann Owner",
    "ownership": "100",
    "birthDate": "1985-04-12",
    "documentUrl": DOC_1,
    "documentName": "passport.pdf",
}]


@pytest.fixture
def store(db):
    db.businesses = InMemoryCollection(unique=("id", "checkoutSessionId"))
    db.wizard_sessions = InMemoryCollection(unique=("userId",))
    with patch.object(database, "get_db", return_value=db):
        yield db


def _in_progress_session(business_id="draft-1"):
    return WizardSession(step=5, form={
        "businessId": business_id,
        "country": {"name": "United States"},
        "package": {"name": "Connecticut", "price": 159},
        "owner": [{"fullName": "Ann Owner", "ownership": 100, "isCEO": True, "documentUrl": DOC_1}],
        "uploadedDocuments": [DOC_1, DOC_2],
    })


class TestWizardRoutes:

    def test_steps_persist_draft_and_snapshot(self, client, store):
        headers = auth_headers()
        assert client.get("/api/wizard?register=true", headers=headers).json()["step"] == 1

        for data in (
            {"name": "United States"},
            {"name": "Connecticut"},
            {"name": "Acme & Co", "type": "llc", "industry": "tech"},
            OWNERS,
        ):
            response = client.post("/api/wizard/next", json={"data": data}, headers=headers)
            assert response.status_code == 200, response.text

        body = response.json()
        assert body["step"] == 5
        assert body["form"]["owner"][0]["isCEO"] is True

        drafts = store.businesses.docs
        assert len(drafts) == 1
        assert drafts[0]["status"] == "draft"
        assert drafts[0]["company"]["name"] == "Acme & Co"
        assert body["form"]["businessId"] == drafts[0]["id"]

        # A reload restores the same step and form
        restored = client.get("/api/wizard", headers=headers).json()
        assert restored["step"] == 5
        assert restored["form"] == body["form"]

    def test_invalid_step_is_422_and_not_saved(self, client, store):
        headers = auth_headers()
        client.get("/api/wizard?register=true", headers=headers)
        client.post("/api/wizard/next", json={"data": {"name": "United States"}}, headers=headers)
        client.post("/api/wizard/next", json={"data": {"name": "Connecticut"}}, headers=headers)

        response = client.post(
            "/api/wizard/next",
            json={"data": {"name": "Acme!", "type": "llc", "industry": "tech"}},
            headers=headers,
        )
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["step"] == 3
        assert detail["message"] == "Only letters, numbers, spaces, and '&' symbol are allowed"
        assert client.get("/api/wizard", headers=headers).json()["step"] == 3

    def test_list_payload_on_country_step_is_422(self, client, store):
        headers = auth_headers()
        client.get("/api/wizard?register=true", headers=headers)

        response = client.post("/api/wizard/next", json={"data": [{"name": "United States"}]}, headers=headers)
        assert response.status_code == 422
        assert response.json()["detail"]["step"] == 1
        assert response.json()["detail"]["errors"][0]["field"] == "data"

    def test_owner_document_of_another_user_is_rejected(self, client, store):
        headers = auth_headers()
        client.get("/api/wizard?register=true", headers=headers)
        for data in (
            {"name": "United States"},
            {"name": "Connecticut"},
            {"name": "Acme & Co", "type": "llc", "industry": "tech"},
        ):
            client.post("/api/wizard/next", json={"data": data}, headers=headers)

        owners = [{**OWNERS[0], "documentUrl": FOREIGN_DOC}]
        response = client.post("/api/wizard/next", json={"data": owners}, headers=headers)
        assert response.status_code == 422
        assert response.json()["detail"]["errors"][0]["field"] == "owners[0].documentUrl"

        with patch.object(storage_adapter, "delete", AsyncMock(return_value=True)) as delete:
            cancelled = client.post("/api/wizard/cancel", headers=headers)
        assert cancelled.status_code == 200
        delete.assert_not_called()

    def test_review_sends_incomplete_form_back(self, client, store):
        store.wizard_sessions.docs.append({"userId": USER_ID, **WizardSession(step=6, form={
            "country": {"name": "United States"},
            "package": {"name": "Connecticut", "price": 159},
        }).to_storage()})

        body = client.get("/api/wizard/review", headers=auth_headers()).json()
        assert body["complete"] is False
        assert body["redirectStep"] == 3
        assert body["session"]["step"] == 3

    def test_checkout_before_review_is_409(self, client, store):
        store.wizard_sessions.docs.append({"userId": USER_ID, **_in_progress_session().to_storage()})
        response = client.post("/api/wizard/checkout", headers=auth_headers())
        assert response.status_code == 409

    def test_back_at_first_step_cancels(self, client, store):
        headers = auth_headers()
        client.get("/api/wizard?register=true", headers=headers)
        body = client.post("/api/wizard/back", headers=headers).json()
        assert body["cancelled"] is True
        assert body["redirect"] == "/dashboard"


class TestCancel:

    @pytest.mark.asyncio
    async def test_cancel_removes_documents_draft_and_snapshot(self, store):
        store.businesses.docs.append({"id": "draft-1", "userId": USER_ID, "status": "draft"})
        await wizard_session_store.save_session(USER_ID, _in_progress_session())

        with patch.object(storage_adapter, "delete", AsyncMock(return_value=True)) as delete:
            result = await registration_service.cancel_registration(USER_ID)

        assert result["cancelled"] is True
        assert result["redirect"] == "/dashboard"
        assert result["documentsRemoved"] == 2
        assert result["draftDeleted"] is True
        assert result["session"]["step"] == 1
        assert [c.args[0] for c in delete.await_args_list] == [
            f"users/{USER_ID}/documents/1700000000001.pdf",
            f"users/{USER_ID}/documents/1700000000002.png",
        ]
        assert store.businesses.docs == []
        assert store.wizard_sessions.docs == []

    @pytest.mark.asyncio
    async def test_failed_delete_does_not_stop_cancellation(self, store):
        store.businesses.docs.append({"id": "draft-1", "userId": USER_ID, "status": "draft"})
        await wizard_session_store.save_session(USER_ID, _in_progress_session())

        with patch.object(storage_adapter, "delete", AsyncMock(side_effect=[RuntimeError("storage down"), True])) as delete:
            result = await registration_service.cancel_registration(USER_ID)

        assert delete.await_count == 2
        assert result["documentsRemoved"] == 1
        assert result["draftDeleted"] is True
        assert store.wizard_sessions.docs == []

    @pytest.mark.asyncio
    async def test_paid_business_keeps_record_and_documents(self, store):
        store.businesses.docs.append({"id": "draft-1", "userId": USER_ID, "status": "completed"})

        with patch.object(storage_adapter, "delete", AsyncMock(return_value=True)) as delete:
            result = await registration_service.cancel_registration(USER_ID, session=_in_progress_session())

        delete.assert_not_called()
        assert result["documentsRemoved"] == 0
        assert result["draftDeleted"] is False
        assert len(store.businesses.docs) == 1

    @pytest.mark.asyncio
    async def test_other_users_files_are_never_deleted(self, store):
        session = _in_progress_session()
        session.form["owner"][0]["documentUrl"] = FOREIGN_DOC
        session.form["uploadedDocuments"] = [FOREIGN_DOC, DOC_2]

        with patch.object(storage_adapter, "delete", AsyncMock(return_value=True)) as delete:
            result = await registration_service.cancel_registration(USER_ID, session=session)

        assert [c.args[0] for c in delete.await_args_list] == [f"users/{USER_ID}/documents/1700000000002.png"]
        assert result["documentsRemoved"] == 1

    @pytest.mark.asyncio
    async def test_cancel_is_audited(self, store):
        with patch.object(storage_adapter, "delete", AsyncMock(return_value=True)):
            await registration_service.cancel_registration(USER_ID, session=_in_progress_session())
        audit = store.audit_logs.insert_one.await_args.args[0]
        assert audit["action"] == "WIZARD_CANCELLED"
        assert audit["metadata"]["documents_removed"] == 2


class TestStaleSessionJob:

    @pytest.mark.asyncio
    async def test_stale_sessions_are_cancelled(self, store):
        stale = {"userId": USER_ID, **_in_progress_session().to_storage()}
        store.wizard_sessions.docs.append(dict(stale))
        store.businesses.docs.append({"id": "draft-1", "userId": USER_ID, "status": "draft"})

        with patch.object(wizard_session_store, "find_stale_sessions", AsyncMock(return_value=[stale])), \
             patch.object(storage_adapter, "delete", AsyncMock(return_value=True)):
            result = await run_stale_wizard_session_cleanup()

        assert result["count"] == 1
        assert store.businesses.docs == []
        assert store.wizard_sessions.docs == []
        audit = store.audit_logs.insert_one.await_args.args[0]
        assert audit["action"] == "WIZARD_SESSION_EXPIRED"

    @pytest.mark.asyncio
    async def test_webhook_payment_then_cleanup_keeps_documents(self, store):
        store.stripe_events = InMemoryCollection(unique=("event_id",))
        store.businesses.docs.append({"id": "draft-1", "userId": USER_ID, "status": "draft"})
        await wizard_session_store.save_session(USER_ID, _in_progress_session())
        snapshot = dict(store.wizard_sessions.docs[0])

        event = {
            "id": "evt_paid_1",
            "type": "checkout.session.completed",
            "data": {"object": {
                "id": "cs_paid_1",
                "mode": "payment",
                "payment_status": "paid",
                "amount_total": 15900,
                "currency": "usd",
                "payment_method_types": ["card"],
                "payment_intent": "pi_paid_1",
                "metadata": {"userId": USER_ID, "businessId": "draft-1"},
            }},
        }
        with patch("stripe.Webhook.construct_event", return_value=event):
            await stripe_webhook_service.process_webhook(b"{}", "sig")

        assert store.businesses.docs[0]["status"] == "completed"
        assert store.wizard_sessions.docs == []

        # A cleanup run that read the snapshot before the webhook landed
        with patch.object(wizard_session_store, "find_stale_sessions", AsyncMock(return_value=[snapshot])), \
             patch.object(storage_adapter, "delete", AsyncMock(return_value=True)) as delete:
            result = await run_stale_wizard_session_cleanup()

        assert result["count"] == 1
        delete.assert_not_called()
        assert store.businesses.docs[0]["status"] == "completed"

    @pytest.mark.asyncio
    async def test_one_failing_user_does_not_stop_the_job(self, store):
        sessions = [{"userId": "u1"}, {"userId": "u2"}]
        with patch.object(wizard_session_store, "find_stale_sessions", AsyncMock(return_value=sessions)), \
             patch("services.registration_service.cancel_registration", AsyncMock(side_effect=[RuntimeError("x"), {}])):
            result = await run_stale_wizard_session_cleanup()
        assert result["count"] == 1
