"""Stripe Service - hosted checkout for business registrations.

This service handles:
- Creating one-off payment checkout sessions for a registration draft
- Confirming a paid session and finalizing the business (idempotent)

Key Principles:
- The amount is derived server-side from the catalog price, in cents
- Metadata carries userId + businessId for webhook tracing, plus a chunked
  copy of the business data so the record can be rebuilt if the draft is gone
- Finalizing the same session twice never creates a second business
"""
import json
import logging
from typing import Any, Dict, Optional

import stripe

from config import (
    get_frontend_url,
    get_payment_currency,
    get_stripe_publishable_key,
    get_stripe_secret_key,
)
from models import AuditAction, PaymentDetails, UserRole
from services import business_service, wizard_session_store
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

# Stripe metadata limits: 50 keys, 500 characters per value
METADATA_VALUE_LIMIT = 500
METADATA_CHUNK_PREFIX = "businessData_"
MAX_METADATA_CHUNKS = 40


class PaymentError(Exception):
    pass


class PaymentNotCompletedError(PaymentError):
    pass


class PaymentVerificationError(PaymentError):
    pass


def stripe_value(obj: Any, name: str, default: Any = None) -> Any:
    """Read a field from a plain dict or a StripeObject."""
    if obj is None:
        return default
    try:
        value = obj[name]
    except (KeyError, TypeError):
        return getattr(obj, name, default)
    return default if value is None else value


def stripe_dict(obj: Any) -> Dict[str, Any]:
    if not obj:
        return {}
    if isinstance(obj, dict):
        return dict(obj)
    return {key: obj[key] for key in obj.keys()}


def encode_business_metadata(business_data: Dict[str, Any]) -> Dict[str, str]:
    """Split the JSON business copy across metadata keys; empty when it does not fit."""
    raw = json.dumps(business_data, separators=(",", ":"), sort_keys=True, default=str)
    chunks = [raw[i:i + METADATA_VALUE_LIMIT] for i in range(0, len(raw), METADATA_VALUE_LIMIT)]
    if len(chunks) > MAX_METADATA_CHUNKS:
        logger.warning("Business data too large for checkout metadata (%s chars), relying on draft", len(raw))
        return {}
    encoded = {f"{METADATA_CHUNK_PREFIX}{i}": chunk for i, chunk in enumerate(chunks)}
    encoded["businessDataChunks"] = str(len(chunks))
    return encoded


def decode_business_metadata(metadata: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        count = int(metadata.get("businessDataChunks") or 0)
    except (TypeError, ValueError):
        return None
    if not count:
        return None
    try:
        raw = "".join(metadata[f"{METADATA_CHUNK_PREFIX}{i}"] for i in range(count))
        return json.loads(raw)
    except (KeyError, ValueError) as e:
        logger.error(f"Unreadable business data in checkout metadata: {e}")
        return None


def build_payment_details(session: Any) -> Dict[str, Any]:
    payment_intent = stripe_value(session, "payment_intent")
    if payment_intent is not None and not isinstance(payment_intent, str):
        payment_intent = stripe_value(payment_intent, "id")
    method_types = stripe_value(session, "payment_method_types") or []
    details = PaymentDetails(
        amount=int(stripe_value(session, "amount_total", 0)),
        currency=stripe_value(session, "currency", get_payment_currency()),
        paymentMethod=method_types[0] if method_types else None,
        status=stripe_value(session, "payment_status", "unknown"),
        stripePaymentIntentId=payment_intent,
    )
    return details.model_dump()


class StripeService:
    """Stripe checkout operations for registrations."""

    def _ensure_key(self) -> None:
        stripe.api_key = get_stripe_secret_key()
        if not stripe.api_key:
            raise PaymentError("STRIPE_SECRET_KEY is not set. Configure env and restart.")

    async def create_checkout_session(
        self,
        user_id: str,
        business_id: str,
        amount_cents: int,
        business_data: Dict[str, Any],
        customer_email: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a one-off payment checkout session for a registration.

        Returns:
            Dict with sessionId, url and publishableKey
        """
        self._ensure_key()
        if amount_cents <= 0:
            raise PaymentError("Registration amount must be greater than zero")

        company = (business_data.get("company") or {}).get("name") or "Business"
        package = business_data.get("package") or {}
        frontend_url = get_frontend_url()

        metadata = {
            "userId": user_id,
            "businessId": business_id,
            **encode_business_metadata(business_data),
        }

        session = stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": get_payment_currency(),
                    "product_data": {
                        "name": f"Business Registration - {package.get('name', '')}".strip(" -"),
                        "description": company,
                    },
                    "unit_amount": amount_cents,
                },
                "quantity": 1,
            }],
            customer_email=customer_email,
            success_url=f"{frontend_url}/dashboard/business/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{frontend_url}/dashboard/business/register",
            metadata=metadata,
        )

        await business_service.attach_checkout_session(user_id, business_id, session.id)
        logger.info(f"Checkout session created: {session.id} for business {business_id}")

        await create_audit_log(
            action=AuditAction.CHECKOUT_SESSION_CREATED,
            actor_role=UserRole.ROLE_USER,
            actor_id=user_id,
            user_id=user_id,
            resource_type="business",
            resource_id=business_id,
            metadata={"checkout_session_id": session.id, "amount": amount_cents},
        )

        return {
            "sessionId": session.id,
            "url": session.url,
            "publishableKey": get_stripe_publishable_key(),
        }

    async def finalize_session(self, session: Any, expected_user_id: Optional[str] = None) -> Dict[str, Any]:
        """Persist a paid checkout session as a completed business (idempotent)."""
        metadata = stripe_dict(stripe_value(session, "metadata"))
        user_id = metadata.get("userId")
        business_id = metadata.get("businessId")
        if not user_id or not business_id:
            raise PaymentVerificationError("Missing business or user information")
        if expected_user_id and expected_user_id != user_id:
            raise PaymentVerificationError("Checkout session does not belong to this user")

        if stripe_value(session, "payment_status") != "paid":
            raise PaymentNotCompletedError("Payment not completed")

        business = await business_service.complete_business(
            user_id=user_id,
            business_id=business_id,
            session_id=stripe_value(session, "id"),
            payment_details=build_payment_details(session),
            business_data=decode_business_metadata(metadata),
        )

        # The wizard snapshot of a paid registration must not be cancelled later
        try:
            await wizard_session_store.clear_session_for_business(user_id, business["id"])
        except Exception as e:
            logger.warning(f"Could not clear wizard session for user {user_id}: {e}")

        return business

    async def confirm_payment(self, session_id: str, expected_user_id: Optional[str] = None) -> Dict[str, Any]:
        """Retrieve a checkout session, verify it is paid, and finalize the business."""
        self._ensure_key()
        session = stripe.checkout.Session.retrieve(session_id, expand=["payment_intent"])
        business = await self.finalize_session(session, expected_user_id)
        details = business.get("paymentDetails") or {}
        return {
            "businessId": business["id"],
            "userId": business["userId"],
            "amount": details.get("amount"),
            "currency": details.get("currency"),
            "stripePaymentIntentId": details.get("stripePaymentIntentId"),
            "createdAt": details.get("createdAt"),
        }


stripe_service = StripeService()
