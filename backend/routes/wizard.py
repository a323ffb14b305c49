"""
Registration Wizard Routes - server-side wizard state for the signed-in user.

The session snapshot replaces browser session storage: every response carries
the full session so the client can render the current step after a reload.
"""
from fastapi import APIRouter, HTTPException, Request, status
from typing import Optional
import logging

from middleware import require_auth
from models import WizardStepRequest
from services import catalog, registration_service
from services.business_service import BusinessStateError
from services.stripe_service import PaymentError
from services.wizard import (
    WizardFlow,
    StepValidationError,
    IncompleteRegistrationError,
    InvalidTransitionError,
)
import stripe

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/wizard", tags=["wizard"])


def _wizard_error(e: Exception) -> HTTPException:
    if isinstance(e, StepValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "step": e.step, "errors": e.errors},
        )
    if isinstance(e, IncompleteRegistrationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": str(e), "missing": e.missing, "redirectStep": e.redirect_step},
        )
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@router.get("/catalog")
async def get_catalog():
    """Countries, packages, company types and industries for the wizard steps."""
    return catalog.catalog_payload()


@router.get("")
async def get_wizard(
    request: Request,
    register: bool = False,
    clean: bool = False,
    flow: Optional[WizardFlow] = None,
):
    """Current wizard session (restored from the stored snapshot)."""
    user = await require_auth(request)
    session = await registration_service.open_wizard(user["user_id"], register=register, clean=clean, flow=flow)
    return session.to_dict()


@router.post("/next")
async def next_step(request: Request, payload: WizardStepRequest):
    """Submit the current step's data and advance."""
    user = await require_auth(request)
    try:
        session = await registration_service.advance(user["user_id"], payload.data)
    except (StepValidationError, IncompleteRegistrationError, InvalidTransitionError, BusinessStateError) as e:
        raise _wizard_error(e)
    return session.to_dict()


@router.post("/back")
async def back(request: Request):
    """Previous step; at the first step this cancels the registration."""
    user = await require_auth(request)
    return await registration_service.go_back(user["user_id"])


@router.post("/edit/{step}")
async def edit(step: int, request: Request):
    """Jump back to an earlier step from the review screen."""
    user = await require_auth(request)
    try:
        session = await registration_service.edit(user["user_id"], step)
    except InvalidTransitionError as e:
        raise _wizard_error(e)
    return session.to_dict()


@router.get("/review")
async def review(request: Request):
    user = await require_auth(request)
    return await registration_service.review(user["user_id"])


@router.get("/payment")
async def payment(request: Request):
    user = await require_auth(request)
    return await registration_service.payment_summary(user["user_id"])


@router.post("/checkout")
async def checkout(request: Request):
    """Create the hosted checkout session for the registration being paid."""
    user = await require_auth(request)
    try:
        return await registration_service.start_checkout(user["user_id"], email=user.get("email"))
    except (IncompleteRegistrationError, InvalidTransitionError, BusinessStateError) as e:
        raise _wizard_error(e)
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout creation failed for user {user['user_id']}: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment provider error. Please try again."
        )
    except PaymentError as e:
        logger.error(f"Checkout creation failed for user {user['user_id']}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create checkout session"
        )


@router.post("/cancel")
async def cancel(request: Request):
    """Abandon the registration: remove uploaded owner documents and the draft."""
    user = await require_auth(request)
    return await registration_service.cancel_registration(user["user_id"])
