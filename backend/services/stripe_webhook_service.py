"""Stripe Webhook Service - signature verification and idempotent event handling.

Key Principles:
1. Signature verification: unsigned or tampered payloads are rejected with no side effects
2. Idempotency: every event id is processed once (stripe_events collection)
3. Processing failures are recorded and logged, never surfaced to Stripe

Events Handled:
- checkout.session.completed (finalizes the registration)
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import stripe

from config import get_stripe_webhook_secret
from database import database
from models import AuditAction
from services.stripe_service import stripe_dict, stripe_value, stripe_service
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)


class WebhookSignatureError(Exception):
    pass


def _extract_webhook_context(event: Any) -> Dict[str, Any]:
    """Safe fields for structured logging."""
    obj = stripe_value(stripe_value(event, "data"), "object")
    metadata = stripe_dict(stripe_value(obj, "metadata"))
    return {
        "event_id": stripe_value(event, "id"),
        "event_type": stripe_value(event, "type"),
        "livemode": stripe_value(event, "livemode"),
        "user_id": metadata.get("userId"),
        "business_id": metadata.get("businessId"),
        "checkout_session_id": stripe_value(obj, "id") if stripe_value(event, "type") == "checkout.session.completed" else None,
    }


class StripeWebhookService:
    """Stripe webhook handler with idempotency."""

    # =========================================================================
    # Event Processing Entry Point
    # =========================================================================

    def verify_event(self, payload: bytes, signature: str) -> Any:
        """Raises WebhookSignatureError for a bad signature or payload."""
        webhook_secret = get_stripe_webhook_secret()
        if not webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET is not configured")
        try:
            return stripe.Webhook.construct_event(payload, signature, webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.error("Webhook signature verification failed: %s (check STRIPE_WEBHOOK_SECRET vs Stripe key mode)", e)
            raise WebhookSignatureError(str(e))
        except ValueError as e:
            logger.error(f"Webhook parse error: {e}")
            raise WebhookSignatureError(str(e))

    async def process_webhook(self, payload: bytes, signature: str) -> Tuple[str, Optional[Dict]]:
        """
        Main webhook entry point. Signature errors propagate; everything after
        verification is recorded and reported as handled.

        Returns:
            (message, details)
        """
        event = self.verify_event(payload, signature)

        event_id = stripe_value(event, "id")
        event_type = stripe_value(event, "type")
        ctx = _extract_webhook_context(event)
        logger.info(
            "WEBHOOK_RECEIVED event_id=%s event_type=%s livemode=%s user_id=%s business_id=%s checkout_session_id=%s",
            event_id, event_type, ctx.get("livemode"), ctx.get("user_id"), ctx.get("business_id"), ctx.get("checkout_session_id"),
        )

        db = database.get_db()
        existing = await db.stripe_events.find_one({"event_id": event_id})
        if existing and existing.get("status") == "PROCESSED":
            logger.info(f"Event {event_id} already processed - skipping")
            return "Already processed", {"event_id": event_id}

        event_record = {
            "event_id": event_id,
            "type": event_type,
            "created": datetime.now(timezone.utc),
            "processed_at": None,
            "status": "PROCESSING",
            "error": None,
            "related_user_id": ctx.get("user_id"),
            "related_business_id": ctx.get("business_id"),
        }

        if existing:
            await db.stripe_events.update_one({"event_id": event_id}, {"$set": event_record})
        else:
            try:
                await db.stripe_events.insert_one(event_record)
            except Exception as insert_err:
                if "duplicate key" in str(insert_err).lower() or "E11000" in str(insert_err):
                    logger.info(f"Event {event_id} duplicate insert (race) - skipping")
                    return "Already processed", {"event_id": event_id}
                raise

        try:
            result = await self._handle_event(event)
            await db.stripe_events.update_one(
                {"event_id": event_id},
                {"$set": {"status": "PROCESSED", "processed_at": datetime.now(timezone.utc)}},
            )
            logger.info("WEBHOOK_PROCESSED_OK event_id=%s event_type=%s", event_id, event_type)
            return "Processed", result

        except Exception as e:
            logger.error(
                "WEBHOOK_PROCESSING_FAILED event_id=%s event_type=%s error=%s",
                event_id, event_type, str(e),
            )
            await db.stripe_events.update_one(
                {"event_id": event_id},
                {"$set": {"status": "FAILED", "processed_at": datetime.now(timezone.utc), "error": str(e)}},
            )
            await create_audit_log(
                action=AuditAction.STRIPE_EVENT_FAILED,
                user_id=ctx.get("user_id"),
                resource_type="business",
                resource_id=ctx.get("business_id"),
                metadata={"event_id": event_id, "event_type": event_type, "error": str(e)},
            )
            # Acknowledge anyway so Stripe does not retry (failure is recorded)
            return "Event logged with error", {"error": str(e), "event_id": event_id}

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _handle_event(self, event: Any) -> Dict:
        event_type = stripe_value(event, "type")
        data = stripe_value(stripe_value(event, "data"), "object")

        handlers = {
            "checkout.session.completed": self._handle_checkout_completed,
        }
        handler = handlers.get(event_type)
        if handler:
            return await handler(data)

        logger.info(f"Ignoring unhandled event type: {event_type}")
        return {"handled": False, "event_type": event_type}

    async def _handle_checkout_completed(self, session: Any) -> Dict:
        if stripe_value(session, "mode") not in (None, "payment"):
            logger.info(f"Ignoring checkout mode: {stripe_value(session, 'mode')}")
            return {"handled": False, "mode": stripe_value(session, "mode")}
        business = await stripe_service.finalize_session(session)
        return {"handled": True, "business_id": business["id"], "user_id": business["userId"]}


stripe_webhook_service = StripeWebhookService()
