"""
Wizard state machine: full main-flow walk, snapshot round-trip, country change,
review redirect, back at step 1 and the alternate flow's Complete step.
"""
import pytest

from services import wizard
from services.wizard import (
    DATA_KEY,
    STEP_KEY,
    IncompleteRegistrationError,
    InvalidTransitionError,
    StepValidationError,
    WizardFlow,
    WizardSession,
)

DOC_URL = "http://testserver/api/files/users/user-123/documents/1700000000000.pdf"

COMPANY = {"name": "Acme & Co", "type": "llc", "industry": "tech"}
OWNERS = [{
    "fullName": "Ann Owner",
    "ownership": "100",
    "isCEO": True,
    "birthDate": "1985-04-12",
    "documentUrl": DOC_URL,
    "documentName": "passport.pdf",
}]
ADDRESS = {
    "street": "1 Main St",
    "city": "Hartford",
    "state": "Connecticut",
    "postalCode": "06103",
    "country": "United States",
}


def _walk_to_review(flow=WizardFlow.MAIN):
    session = WizardSession.fresh(flow)
    session = wizard.next_step(session, {"name": "United States"})
    session = wizard.next_step(session, {"name": "Connecticut", "price": 159})
    session = wizard.next_step(session, COMPANY)
    session = wizard.next_step(session, OWNERS)
    session = wizard.next_step(session, ADDRESS)
    return session


class TestMainFlow:

    def test_walk_to_payment_quotes_catalog_price(self):
        session = _walk_to_review()
        assert session.step == wizard.REVIEW_STEP

        summary = wizard.review(session)
        assert summary["complete"] is True
        assert summary["amount"] == 15900
        assert summary["displayAmount"] == "$159"

        session = wizard.next_step(session)
        assert session.step == wizard.PAYMENT_STEP
        assert wizard.payment_summary(session)["displayAmount"] == "$159"

    def test_main_flow_ends_at_payment(self):
        session = wizard.next_step(_walk_to_review())
        with pytest.raises(InvalidTransitionError):
            wizard.next_step(session)
        assert session.to_dict()["totalSteps"] == 7

    def test_invalid_step_data_leaves_session_untouched(self):
        session = WizardSession.fresh()
        session = wizard.next_step(session, {"name": "United States"})
        session = wizard.next_step(session, {"name": "Connecticut"})
        with pytest.raises(StepValidationError) as exc:
            wizard.next_step(session, {"name": "Acme!", "type": "llc", "industry": "tech"})
        assert exc.value.step == 3
        assert session.step == 3
        assert "company" not in session.form

    def test_transitions_do_not_mutate_input(self):
        session = WizardSession.fresh()
        updated = wizard.next_step(session, {"name": "United States"})
        assert session.step == 1
        assert session.form == {}
        assert updated.form["country"]["name"] == "United States"


class TestNavigation:

    def test_back_at_first_step_returns_none(self):
        assert wizard.previous_step(WizardSession.fresh()) is None

    def test_back_keeps_form(self):
        session = _walk_to_review()
        previous = wizard.previous_step(session)
        assert previous.step == 5
        assert previous.form == session.form

    def test_edit_only_jumps_backwards(self):
        session = _walk_to_review()
        assert wizard.edit_step(session, 3).step == 3
        with pytest.raises(InvalidTransitionError):
            wizard.edit_step(session, 7)

    def test_country_change_drops_package(self):
        session = _walk_to_review()
        session = wizard.edit_step(session, 1)
        session = wizard.next_step(session, {"name": "United Kingdom"})
        assert "package" not in session.form
        assert session.step == 2

    def test_same_country_keeps_package(self):
        session = wizard.edit_step(_walk_to_review(), 1)
        session = wizard.next_step(session, {"name": "United States"})
        assert session.form["package"]["name"] == "Connecticut"


class TestReview:

    def test_incomplete_form_redirects_to_first_gap(self):
        session = _walk_to_review()
        del session.form["company"]
        result = wizard.review(session)
        assert result["complete"] is False
        assert result["missing"] == ["Company Details"]
        assert result["redirectStep"] == 3

    def test_leaving_review_with_missing_sections_raises(self):
        session = _walk_to_review()
        session.form["owner"][0]["ownership"] = 90
        with pytest.raises(IncompleteRegistrationError) as exc:
            wizard.next_step(session)
        assert exc.value.missing == ["Owner Information"]
        assert exc.value.redirect_step == 4


class TestAlternateFlow:

    def test_payment_advances_to_complete(self):
        session = wizard.next_step(_walk_to_review(WizardFlow.ALTERNATE))
        session = wizard.next_step(session)
        assert session.step == wizard.COMPLETE_STEP
        assert session.to_dict()["title"] == "Complete"
        with pytest.raises(InvalidTransitionError):
            wizard.next_step(session)


class TestStorage:

    def test_round_trip_restores_step_and_form(self):
        session = _walk_to_review()
        stored = session.to_storage()
        assert stored[STEP_KEY] == "6"
        assert isinstance(stored[DATA_KEY], str)

        restored = WizardSession.from_storage(stored)
        assert restored.step == session.step
        assert restored.form == session.form
        assert restored.flow == session.flow

    def test_missing_snapshot_is_fresh(self):
        assert WizardSession.from_storage(None).step == 1
        assert WizardSession.from_storage({}).form == {}

    @pytest.mark.parametrize("stored", [
        {STEP_KEY: "abc", DATA_KEY: "{}"},
        {STEP_KEY: "2", DATA_KEY: "{not json"},
        {STEP_KEY: "9", DATA_KEY: "{}"},
        {STEP_KEY: "2", DATA_KEY: "[]"},
    ])
    def test_unreadable_snapshot_is_discarded(self, stored):
        restored = WizardSession.from_storage(stored)
        assert restored.step == 1
        assert restored.form == {}


def test_owner_document_urls_include_tracked_uploads():
    form = {
        "owner": [{"documentUrl": DOC_URL}, {"documentUrl": None}],
        "uploadedDocuments": [DOC_URL, "http://testserver/api/files/users/user-123/documents/2.png"],
    }
    assert wizard.owner_document_urls(form) == [
        DOC_URL,
        "http://testserver/api/files/users/user-123/documents/2.png",
    ]


def test_owner_document_urls_only_keep_the_users_own_files():
    foreign = "http://testserver/api/files/users/victim/documents/9.pdf"
    form = {"owner": [{"documentUrl": foreign}], "uploadedDocuments": [DOC_URL]}
    assert wizard.owner_document_urls(form, user_id="user-123") == [DOC_URL]


def test_owner_step_rejects_document_of_another_user():
    session = WizardSession.fresh()
    for data in ({"name": "United States"}, {"name": "Connecticut"}, COMPANY):
        session = wizard.next_step(session, data, user_id="user-123")

    foreign = [{**OWNERS[0], "documentUrl": "http://testserver/api/files/users/victim/documents/9.pdf"}]
    with pytest.raises(StepValidationError):
        wizard.next_step(session, foreign, user_id="user-123")
    assert wizard.next_step(session, OWNERS, user_id="user-123").step == 5
