"""
Payment Routes - checkout confirmation and the user's payment history.
"""
from fastapi import APIRouter, HTTPException, Request, status
import logging
import stripe

from middleware import require_auth, is_admin
from models import BusinessStatus, ConfirmPaymentRequest
from services import business_service
from services.business_service import BusinessNotFoundError, BusinessStateError
from services.stripe_service import (
    stripe_service,
    PaymentError,
    PaymentNotCompletedError,
    PaymentVerificationError,
)
from utils.serialization import format_amount, to_json_safe

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["payments"])


@router.post("/confirm-payment")
async def confirm_payment(request: Request, payload: ConfirmPaymentRequest):
    """
    Confirm a checkout session after redirect from Stripe.

    Idempotent: confirming the same session again returns the same business.
    """
    user = await require_auth(request)
    expected_user_id = None if is_admin(user) else user["user_id"]

    try:
        result = await stripe_service.confirm_payment(payload.sessionId, expected_user_id)
    except PaymentNotCompletedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except PaymentVerificationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except BusinessStateError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except BusinessNotFoundError as e:
        logger.error(f"Confirm payment could not find a record for {payload.sessionId}: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    except stripe.InvalidRequestError as e:
        logger.warning(f"Unknown checkout session {payload.sessionId}: {e}")
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checkout session not found")
    except stripe.StripeError as e:
        logger.error(f"Stripe error confirming {payload.sessionId}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider error. Please try again."
        )
    except PaymentError as e:
        logger.error(f"Error confirming payment: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Error confirming payment"
        )

    return to_json_safe(result)


@router.get("/payments")
async def list_payments(request: Request):
    """Completed registrations of the caller with their payment details."""
    user = await require_auth(request)
    businesses = await business_service.list_user_businesses(user["user_id"], BusinessStatus.COMPLETED)
    payments = []
    for business in businesses:
        details = business.get("paymentDetails") or {}
        payments.append({
            "businessId": business["id"],
            "companyName": (business.get("company") or {}).get("name"),
            "package": business.get("package"),
            **details,
            "displayAmount": format_amount(details.get("amount") or 0, details.get("currency") or "usd"),
        })
    return to_json_safe({"payments": payments, "total": len(payments)})
