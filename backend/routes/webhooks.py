"""
Webhook Routes - Stripe events.

Security:
- Verifies the Stripe signature; a bad signature is rejected with 400 and no side effects
- Idempotency via the stripe_events collection
"""
from fastapi import APIRouter, HTTPException, Request, Header, status
from typing import Optional
import logging

from services.stripe_webhook_service import stripe_webhook_service, WebhookSignatureError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["webhooks"])


@router.post("/api/stripe-webhook")
async def stripe_webhook(request: Request, stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature")):
    """
    Handled Events:
    - checkout.session.completed (finalizes the registration)

    Always answers {"received": true} once the signature is valid, even when
    processing fails (the failure is logged and recorded on the event).
    """
    payload = await request.body()
    try:
        message, details = await stripe_webhook_service.process_webhook(
            payload=payload,
            signature=stripe_signature or "",
        )
    except WebhookSignatureError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Webhook Error: {e}")
    except Exception as e:
        # Recording the event itself failed; acknowledge to avoid a retry storm
        logger.error(f"Stripe webhook handler error: {e}", exc_info=True)
        return {"received": True}

    logger.info(f"Stripe webhook handled: {message}")
    return {"received": True}
