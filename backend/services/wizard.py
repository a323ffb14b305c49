"""
Registration Wizard - explicit state machine over a serializable session value.

Steps (main flow):      1 Country, 2 Package, 3 Company, 4 Owner, 5 Address, 6 Review, 7 Payment
Alternate flow adds:    8 Complete

Every operation takes a WizardSession and returns a new one; nothing here
touches the database. Persistence lives in services.wizard_session_store.
"""
import copy
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from services import catalog
from services.step_validators import validate_step
from services.storage_adapter import url_belongs_to
from utils.serialization import format_amount

logger = logging.getLogger(__name__)

STEP_KEY = "businessRegistrationStep"
DATA_KEY = "businessRegistrationData"


class WizardFlow(str, Enum):
    MAIN = "main"
    ALTERNATE = "alternate"


# (number, title, form key) - only the first five steps collect data
STEPS = [
    (1, "Country", "country"),
    (2, "Package", "package"),
    (3, "Company", "company"),
    (4, "Owner", "owner"),
    (5, "Address", "address"),
    (6, "Review", None),
    (7, "Payment", None),
    (8, "Complete", None),
]

REVIEW_STEP = 6
PAYMENT_STEP = 7
COMPLETE_STEP = 8

# Display names used when review lists what is still missing
SECTION_NAMES = {
    "country": "Country",
    "package": "Package",
    "company": "Company Details",
    "owner": "Owner Information",
    "address": "Address Details",
}


class WizardError(Exception):
    """Base error for illegal wizard operations."""
    pass


class InvalidTransitionError(WizardError):
    pass


class StepValidationError(WizardError):
    def __init__(self, step: int, errors: List[Dict[str, str]]):
        self.step = step
        self.errors = errors
        super().__init__(errors[0]["message"] if errors else "Invalid step data")


class IncompleteRegistrationError(WizardError):
    def __init__(self, missing: List[str], redirect_step: int):
        self.missing = missing
        self.redirect_step = redirect_step
        super().__init__(f"Please complete: {', '.join(missing)}")


def step_count(flow: WizardFlow) -> int:
    return COMPLETE_STEP if flow == WizardFlow.ALTERNATE else PAYMENT_STEP


def step_title(step: int) -> str:
    return STEPS[step - 1][1]


def form_key_for(step: int) -> Optional[str]:
    return STEPS[step - 1][2]


@dataclass
class WizardSession:
    step: int = 1
    form: Dict[str, Any] = field(default_factory=dict)
    flow: WizardFlow = WizardFlow.MAIN

    @classmethod
    def fresh(cls, flow: WizardFlow = WizardFlow.MAIN) -> "WizardSession":
        return cls(step=1, form={}, flow=flow)

    def copy(self) -> "WizardSession":
        return WizardSession(step=self.step, form=copy.deepcopy(self.form), flow=self.flow)

    # Storage round-trip: the step is a string and the form a JSON document,
    # so a reload restores exactly what was saved.
    def to_storage(self) -> Dict[str, str]:
        return {
            STEP_KEY: str(self.step),
            DATA_KEY: json.dumps(self.form, sort_keys=True),
            "flow": self.flow.value,
        }

    @classmethod
    def from_storage(cls, stored: Optional[Dict[str, Any]]) -> "WizardSession":
        if not stored or STEP_KEY not in stored:
            return cls.fresh()
        flow = WizardFlow(stored.get("flow") or WizardFlow.MAIN.value)
        try:
            step = int(stored[STEP_KEY])
            form = json.loads(stored.get(DATA_KEY) or "{}")
        except (TypeError, ValueError) as e:
            logger.warning(f"Discarding unreadable wizard snapshot: {e}")
            return cls.fresh(flow)
        if not 1 <= step <= step_count(flow) or not isinstance(form, dict):
            logger.warning("Discarding out-of-range wizard snapshot step=%s", stored.get(STEP_KEY))
            return cls.fresh(flow)
        return cls(step=step, form=form, flow=flow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "title": step_title(self.step),
            "totalSteps": step_count(self.flow),
            "flow": self.flow.value,
            "form": self.form,
            "steps": [
                {"step": number, "title": title}
                for number, title, _ in STEPS[:step_count(self.flow)]
            ],
        }


# =========================================================================
# Completeness
# =========================================================================

def missing_sections(form: Dict[str, Any]) -> List[str]:
    """Display names of sections that are absent or no longer valid."""
    missing = []
    for _, _, key in STEPS[:5]:
        value = form.get(key)
        if not value or not validate_step(key, value, form).can_continue:
            missing.append(SECTION_NAMES[key])
    return missing


def first_incomplete_step(form: Dict[str, Any]) -> Optional[int]:
    missing = set(missing_sections(form))
    for number, _, key in STEPS[:5]:
        if SECTION_NAMES[key] in missing:
            return number
    return None


def total_amount_cents(form: Dict[str, Any]) -> int:
    pkg = form.get("package") or {}
    if "price" not in pkg:
        return 0
    return catalog.to_cents(pkg["price"])


# =========================================================================
# Transitions
# =========================================================================

def next_step(session: WizardSession, step_data: Any = None, user_id: Optional[str] = None) -> WizardSession:
    """Validate the current step's data, merge it and advance.

    user_id, when given, is the owner of the registration; uploaded document
    URLs must belong to them.

    Raises StepValidationError when the step rejects its data (the session is
    left untouched), IncompleteRegistrationError when leaving Review with
    sections missing, and InvalidTransitionError past the last step.
    """
    current = session.step
    key = form_key_for(current)
    updated = session.copy()

    if key:
        result = validate_step(key, step_data, session.form, user_id=user_id)
        if not result.can_continue:
            raise StepValidationError(current, result.errors)
        if key == "country" and (session.form.get("country") or {}).get("name") != result.data["name"]:
            # Packages are country specific
            updated.form.pop("package", None)
        updated.form[key] = result.data
    elif current == REVIEW_STEP:
        missing = missing_sections(session.form)
        if missing:
            raise IncompleteRegistrationError(missing, first_incomplete_step(session.form))
    elif current == PAYMENT_STEP and session.flow != WizardFlow.ALTERNATE:
        raise InvalidTransitionError("Payment is completed through checkout")
    elif current >= step_count(session.flow):
        raise InvalidTransitionError("Registration is already complete")

    updated.step = current + 1
    return updated


def previous_step(session: WizardSession) -> Optional[WizardSession]:
    """Step back one. Returns None at step 1: the caller cancels the registration."""
    if session.step <= 1:
        return None
    updated = session.copy()
    updated.step = session.step - 1
    return updated


def edit_step(session: WizardSession, step: int) -> WizardSession:
    """Jump back to an earlier step (edit links on the review screen)."""
    if step < 1 or step > session.step:
        raise InvalidTransitionError(f"Cannot jump to step {step} from step {session.step}")
    updated = session.copy()
    updated.step = step
    return updated


def review(session: WizardSession, currency: str = "usd") -> Dict[str, Any]:
    """Review summary, or the first incomplete step to send the user back to."""
    missing = missing_sections(session.form)
    if missing:
        return {
            "complete": False,
            "missing": missing,
            "redirectStep": first_incomplete_step(session.form),
        }
    amount = total_amount_cents(session.form)
    return {
        "complete": True,
        "missing": [],
        "summary": {key: session.form.get(key) for _, _, key in STEPS[:5]},
        "amount": amount,
        "currency": currency,
        "displayAmount": format_amount(amount, currency),
    }


def payment_summary(session: WizardSession, currency: str = "usd") -> Dict[str, Any]:
    amount = total_amount_cents(session.form)
    return {
        "country": (session.form.get("country") or {}).get("name"),
        "package": session.form.get("package"),
        "amount": amount,
        "currency": currency,
        "displayAmount": format_amount(amount, currency),
    }


def owner_document_urls(form: Dict[str, Any], user_id: Optional[str] = None) -> List[str]:
    """Identity documents uploaded during this registration.

    With a user_id, URLs outside that user's own storage folder are left out.
    """
    urls = [o.get("documentUrl") for o in form.get("owner") or [] if isinstance(o, dict)]
    urls.extend(form.get("uploadedDocuments") or [])
    seen = []
    for url in urls:
        if not url or (user_id and not url_belongs_to(url, user_id)):
            continue
        if url not in seen:
            seen.append(url)
    return seen
