from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any, List, Union
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    ROLE_USER = "ROLE_USER"
    ROLE_ADMIN = "ROLE_ADMIN"

class BusinessStatus(str, Enum):
    DRAFT = "draft"
    COMPLETED = "completed"

class CompanyType(str, Enum):
    LLC = "llc"
    CORP = "corp"
    PARTNERSHIP = "partnership"

class Industry(str, Enum):
    TECH = "tech"
    RETAIL = "retail"
    HEALTHCARE = "healthcare"
    FINANCE = "finance"
    OTHER = "other"

class AuditAction(str, Enum):
    # Auth
    USER_SIGNUP = "USER_SIGNUP"
    USER_LOGIN_SUCCESS = "USER_LOGIN_SUCCESS"
    USER_LOGIN_FAILED = "USER_LOGIN_FAILED"
    ADMIN_SIGNUP = "ADMIN_SIGNUP"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"

    # Registration
    BUSINESS_DRAFT_CREATED = "BUSINESS_DRAFT_CREATED"
    BUSINESS_COMPLETED = "BUSINESS_COMPLETED"
    BUSINESS_UPDATED = "BUSINESS_UPDATED"
    WIZARD_CANCELLED = "WIZARD_CANCELLED"
    WIZARD_SESSION_EXPIRED = "WIZARD_SESSION_EXPIRED"

    # Documents
    DOCUMENT_UPLOADED = "DOCUMENT_UPLOADED"
    DOCUMENTS_REPLACED = "DOCUMENTS_REPLACED"
    DOCUMENT_REMOVED = "DOCUMENT_REMOVED"

    # Payments
    CHECKOUT_SESSION_CREATED = "CHECKOUT_SESSION_CREATED"
    STRIPE_EVENT_FAILED = "STRIPE_EVENT_FAILED"

# ============================================================================
# BUSINESS RECORD (embedded shapes use the camelCase keys stored in Mongo)
# ============================================================================

class Company(BaseModel):
    name: Optional[str] = None
    type: Optional[CompanyType] = None
    industry: Optional[Industry] = None

class Country(BaseModel):
    name: str

class Package(BaseModel):
    name: str
    price: Union[int, float]

class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postalCode: Optional[str] = None
    country: Optional[str] = None

class Owner(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    fullName: str
    ownership: Union[int, float] = Field(ge=0, le=100)
    isCEO: bool = False
    birthDate: Optional[str] = None
    documentUrl: Optional[str] = None
    documentName: Optional[str] = None

class Document(BaseModel):
    url: str
    name: str

class PaymentDetails(BaseModel):
    amount: int
    currency: str
    paymentMethod: Optional[str] = None
    status: str
    stripePaymentIntentId: Optional[str] = None
    createdAt: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

class BusinessUpdate(BaseModel):
    """Fields an admin may change through PUT /api/businesses/{userId}/{businessId}."""
    model_config = ConfigDict(extra="forbid")

    company: Optional[Company] = None
    country: Optional[Country] = None
    package: Optional[Package] = None
    address: Optional[Address] = None
    owner: Optional[List[Owner]] = None
    documents: Optional[Dict[str, Document]] = None

# Written only by the payment path or at creation time.
PROTECTED_BUSINESS_FIELDS = ("status", "paymentDetails", "id", "userId", "checkoutSessionId", "createdAt")

# ============================================================================
# REQUEST MODELS
# ============================================================================

class SignupRequest(BaseModel):
    firstName: str = Field(min_length=1)
    lastName: str = Field(min_length=1)
    email: EmailStr
    phone: str
    password: str

class SigninRequest(BaseModel):
    email: EmailStr
    password: str

class AdminSignupRequest(BaseModel):
    email: EmailStr
    password: str
    displayName: Optional[str] = None

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(BaseModel):
    token: str = Field(min_length=1)
    password: str

class WizardStepRequest(BaseModel):
    # Owner step sends a list of owners; the other steps send an object
    data: Union[Dict[str, Any], List[Dict[str, Any]]] = Field(default_factory=dict)

class ConfirmPaymentRequest(BaseModel):
    sessionId: str = Field(min_length=1)

# ============================================================================
# AUDIT
# ============================================================================

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore")

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[UserRole] = None
    actor_id: Optional[str] = None
    user_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
