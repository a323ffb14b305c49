"""
Step Validators - field-level checks that gate each wizard step.

Each validator takes the raw step payload and the form collected so far and
returns a StepResult. A step may only advance when can_continue is True; the
normalized data (trimmed strings, numeric ownership, catalog prices) is what
gets merged into the form.
"""
import re
import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional

from models import CompanyType, Industry
from services import catalog
from services.storage_adapter import url_belongs_to

COMPANY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9 &]+$")
COMPANY_NAME_MESSAGE = "Only letters, numbers, spaces, and '&' symbol are allowed"

ADDRESS_FIELDS = {
    "street": "Street address is required",
    "city": "City is required",
    "state": "State/Province is required",
    "postalCode": "Postal code is required",
    "country": "Country is required",
}


@dataclass
class StepResult:
    can_continue: bool
    data: Any = None
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def message(self) -> Optional[str]:
        """Primary message: the first failing rule."""
        return self.errors[0]["message"] if self.errors else None

    def to_dict(self) -> Dict[str, Any]:
        return {"can_continue": self.can_continue, "message": self.message, "errors": self.errors}


def _fail(errors: List[Dict[str, str]]) -> StepResult:
    return StepResult(can_continue=False, errors=errors)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def parse_ownership(value: Any) -> Optional[float]:
    """Ownership arrives as a string from form inputs; returns None when not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        raw = _text(value).rstrip("%").strip()
        if not raw:
            return None
        try:
            number = float(raw)
        except ValueError:
            return None
    return int(number) if number.is_integer() else number


def _format_percent(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def ownership_message(total: float) -> Optional[str]:
    """Human-readable shortfall/excess, or None when the total is exactly 100."""
    if total == 100:
        return None
    if total < 100:
        return (
            f"Total ownership is {_format_percent(total)}%. "
            f"You need {_format_percent(100 - total)}% more to reach 100%."
        )
    return (
        f"Total ownership is {_format_percent(total)}%. "
        f"Please reduce by {_format_percent(total - 100)}% to reach 100%."
    )


# =========================================================================
# Step validators
# =========================================================================

def validate_country(payload: Dict[str, Any], form: Dict[str, Any]) -> StepResult:
    name = _text(payload.get("name"))
    if not name:
        return _fail([{"field": "name", "message": "Please select a country"}])
    if not catalog.get_country(name):
        return _fail([{"field": "name", "message": f"Registrations are not available in {name}"}])
    return StepResult(can_continue=True, data={"name": name})


def validate_package(payload: Dict[str, Any], form: Dict[str, Any]) -> StepResult:
    country_name = (form.get("country") or {}).get("name")
    if not country_name:
        return _fail([{"field": "country", "message": "Please select a country first"}])

    name = _text(payload.get("name"))
    if not name:
        return _fail([{"field": "name", "message": "Please select a package"}])

    pkg = catalog.get_package(country_name, name)
    if not pkg:
        return _fail([{"field": "name", "message": f"Package '{name}' is not available for {country_name}"}])

    # Price always comes from the catalog, never from the client
    return StepResult(can_continue=True, data={"name": pkg["name"], "price": pkg["price"]})


def validate_company(payload: Dict[str, Any], form: Dict[str, Any]) -> StepResult:
    errors = []
    name = _text(payload.get("name"))
    company_type = _text(payload.get("type"))
    industry = _text(payload.get("industry"))

    if not name:
        errors.append({"field": "name", "message": "Company name is required"})
    elif not COMPANY_NAME_PATTERN.match(name):
        errors.append({"field": "name", "message": COMPANY_NAME_MESSAGE})

    if not company_type:
        errors.append({"field": "type", "message": "Company type is required"})
    elif company_type not in {t.value for t in CompanyType}:
        errors.append({"field": "type", "message": f"Unknown company type: {company_type}"})

    if not industry:
        errors.append({"field": "industry", "message": "Industry is required"})
    elif industry not in {i.value for i in Industry}:
        errors.append({"field": "industry", "message": f"Unknown industry: {industry}"})

    if errors:
        return _fail(errors)
    return StepResult(can_continue=True, data={"name": name, "type": company_type, "industry": industry})


def _valid_birth_date(value: str) -> bool:
    try:
        born = date.fromisoformat(value[:10])
    except ValueError:
        return False
    return born <= date.today()


def validate_owners(payload: Any, form: Dict[str, Any], user_id: Optional[str] = None) -> StepResult:
    """Owner step: per-owner fields, then ownership sum, then CEO rules, then CEO documents.

    With a user_id, every documentUrl must point into that user's own uploads.
    """
    owners_in = payload.get("owners") if isinstance(payload, dict) else payload
    if not isinstance(owners_in, list) or not owners_in:
        return _fail([{"field": "owners", "message": "At least one owner is required"}])

    errors = []
    owners = []
    for index, raw in enumerate(owners_in):
        raw = raw if isinstance(raw, dict) else {}
        full_name = _text(raw.get("fullName"))
        ownership = parse_ownership(raw.get("ownership"))
        if not full_name:
            errors.append({"field": f"owners[{index}].fullName", "message": "Full name is required"})
        if ownership is None:
            errors.append({"field": f"owners[{index}].ownership", "message": "Ownership percentage is required"})
        elif ownership < 0 or ownership > 100:
            errors.append({"field": f"owners[{index}].ownership", "message": "Ownership must be between 0 and 100"})
        document_url = _text(raw.get("documentUrl"))
        if document_url and user_id and not url_belongs_to(document_url, user_id):
            errors.append({"field": f"owners[{index}].documentUrl", "message": "Please upload the identity document again"})
        owners.append({
            "id": _text(raw.get("id")) or str(uuid.uuid4()),
            "fullName": full_name,
            "ownership": ownership,
            "isCEO": bool(raw.get("isCEO")),
            "birthDate": _text(raw.get("birthDate")) or None,
            "documentUrl": document_url or None,
            "documentName": _text(raw.get("documentName")) or None,
        })
    if errors:
        return _fail(errors)

    total = round(sum(o["ownership"] for o in owners), 6)
    sum_message = ownership_message(total)
    if sum_message:
        return _fail([{"field": "ownership", "message": sum_message}])

    ceos = [o for o in owners if o["isCEO"]]
    if len(owners) > 1:
        if not ceos:
            return _fail([{"field": "isCEO", "message": "Please designate one owner as the CEO."}])
        if len(ceos) > 1:
            return _fail([{"field": "isCEO", "message": "Only one owner can be designated as the CEO."}])
        lead = ceos[0]
    else:
        lead = owners[0]
        lead["isCEO"] = True

    lead_index = owners.index(lead)
    if not lead["birthDate"]:
        errors.append({"field": f"owners[{lead_index}].birthDate", "message": "Date of birth is required for the CEO"})
    elif not _valid_birth_date(lead["birthDate"]):
        errors.append({"field": f"owners[{lead_index}].birthDate", "message": "Please enter a valid date of birth"})
    if not lead["documentUrl"]:
        errors.append({"field": f"owners[{lead_index}].documentUrl", "message": "An identity document is required for the CEO"})
    if errors:
        return _fail(errors)

    return StepResult(can_continue=True, data=owners)


def validate_address(payload: Dict[str, Any], form: Dict[str, Any]) -> StepResult:
    data = {}
    errors = []
    for key, message in ADDRESS_FIELDS.items():
        value = _text(payload.get(key))
        if not value:
            errors.append({"field": key, "message": message})
        data[key] = value
    if errors:
        return _fail(errors)
    return StepResult(can_continue=True, data=data)


STEP_VALIDATORS: Dict[str, Callable[[Any, Dict[str, Any]], StepResult]] = {
    "country": validate_country,
    "package": validate_package,
    "company": validate_company,
    "owner": validate_owners,
    "address": validate_address,
}


def validate_step(
    form_key: str,
    payload: Any,
    form: Dict[str, Any],
    user_id: Optional[str] = None,
) -> StepResult:
    payload = payload if payload is not None else {}
    if form_key == "owner":
        return validate_owners(payload, form, user_id=user_id)
    if not isinstance(payload, dict):
        return _fail([{"field": "data", "message": f"Invalid data for the {form_key} step"}])
    return STEP_VALIDATORS[form_key](payload, form)
