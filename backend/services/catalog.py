"""
Registration catalog - countries, packages, company types and document slots.

US registrations are priced by state filing; UK registrations pick a Basic or
Premium package. Prices here are whole dollars; amounts charged and stored are
always converted with to_cents().
"""
from typing import Dict, List, Optional

from models import CompanyType, Industry

US = "United States"
UK = "United Kingdom"

COUNTRIES: List[Dict[str, str]] = [
    {"code": "US", "name": US},
    {"code": "UK", "name": UK},
]

US_STATE_PACKAGES: List[Dict] = [
    {"name": "Alabama", "price": 99},
    {"name": "Alaska", "price": 149},
    {"name": "Arizona", "price": 129},
    {"name": "Arkansas", "price": 89},
    {"name": "California", "price": 199},
    {"name": "Colorado", "price": 139},
    {"name": "Connecticut", "price": 159},
    {"name": "Delaware", "price": 179},
    {"name": "Florida", "price": 169},
    {"name": "Georgia", "price": 119},
    {"name": "Hawaii", "price": 189},
    {"name": "Idaho", "price": 99},
    {"name": "Illinois", "price": 149},
    {"name": "Indiana", "price": 109},
    {"name": "Iowa", "price": 89},
    {"name": "Kansas", "price": 99},
    {"name": "Kentucky", "price": 109},
    {"name": "Louisiana", "price": 119},
    {"name": "Maine", "price": 129},
    {"name": "Maryland", "price": 149},
    {"name": "Massachusetts", "price": 169},
    {"name": "Michigan", "price": 139},
    {"name": "Minnesota", "price": 129},
    {"name": "Mississippi", "price": 89},
    {"name": "Missouri", "price": 109},
    {"name": "Montana", "price": 99},
    {"name": "Nebraska", "price": 89},
    {"name": "Nevada", "price": 159},
    {"name": "New Hampshire", "price": 139},
    {"name": "New Jersey", "price": 179},
    {"name": "New York", "price": 199},
    {"name": "North Carolina", "price": 129},
    {"name": "North Dakota", "price": 89},
    {"name": "Ohio", "price": 139},
    {"name": "Oklahoma", "price": 99},
    {"name": "Oregon", "price": 129},
    {"name": "Pennsylvania", "price": 159},
    {"name": "Rhode Island", "price": 149},
    {"name": "South Carolina", "price": 119},
    {"name": "South Dakota", "price": 89},
    {"name": "Tennessee", "price": 129},
    {"name": "Texas", "price": 179},
    {"name": "Utah", "price": 119},
    {"name": "Vermont", "price": 129},
    {"name": "Virginia", "price": 149},
    {"name": "Washington", "price": 169},
    {"name": "West Virginia", "price": 99},
    {"name": "Wisconsin", "price": 129},
    {"name": "Wyoming", "price": 109},
]

UK_PACKAGES: List[Dict] = [
    {
        "name": "Basic",
        "price": 599,
        "description": "Essential features for small businesses",
        "features": [
            {"name": "Business Formation", "included": True},
            {"name": "EIN Registration", "included": True},
            {"name": "Registered Agent (1 year)", "included": True},
            {"name": "Operating Agreement", "included": True},
            {"name": "Banking Resolution", "included": False},
            {"name": "Priority Support", "included": False},
        ],
    },
    {
        "name": "Premium",
        "price": 999,
        "description": "Advanced features for growing businesses",
        "features": [
            {"name": "Business Formation", "included": True},
            {"name": "EIN Registration", "included": True},
            {"name": "Registered Agent (1 year)", "included": True},
            {"name": "Operating Agreement", "included": True},
            {"name": "Banking Resolution", "included": True},
            {"name": "Priority Support", "included": True},
        ],
    },
]

PACKAGES_BY_COUNTRY: Dict[str, List[Dict]] = {
    US: US_STATE_PACKAGES,
    UK: UK_PACKAGES,
}

ADDRESS_COUNTRIES: List[Dict[str, str]] = [
    {"value": "us", "label": "United States"},
    {"value": "uk", "label": "United Kingdom"},
    {"value": "ca", "label": "Canada"},
]

# Admin document slots per registration country (semantic keys)
DOCUMENT_SLOTS: Dict[str, Dict[str, str]] = {
    US: {
        "filedArticles": "Filed Articles of Organization",
        "einTaxId": "EIN Tax ID",
        "organizerStatement": "Statement of Organizer",
        "boiReport": "BOI Report",
    },
    UK: {
        "businessRegistration": "Business Registration",
    },
}


def get_country(name: Optional[str]) -> Optional[Dict[str, str]]:
    for country in COUNTRIES:
        if country["name"] == name:
            return country
    return None


def get_packages(country_name: Optional[str]) -> List[Dict]:
    return PACKAGES_BY_COUNTRY.get(country_name or "", [])


def get_package(country_name: Optional[str], package_name: Optional[str]) -> Optional[Dict]:
    for pkg in get_packages(country_name):
        if pkg["name"] == package_name:
            return pkg
    return None


def get_document_slots(country_name: Optional[str]) -> Dict[str, str]:
    return DOCUMENT_SLOTS.get(country_name or "", {})


def to_cents(price) -> int:
    return int(round(float(price) * 100))


def catalog_payload() -> Dict:
    """Everything the wizard UI needs to render its choices."""
    return {
        "countries": COUNTRIES,
        "packages": PACKAGES_BY_COUNTRY,
        "companyTypes": [t.value for t in CompanyType],
        "industries": [i.value for i in Industry],
        "addressCountries": ADDRESS_COUNTRIES,
        "documentSlots": DOCUMENT_SLOTS,
    }
