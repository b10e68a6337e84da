# payrecon/integrations/stripe.py

"""
Stripe webhook payloads.

Verifies the signature of incoming events and turns the payment events
into IngestPaymentInput. The tenant (and optionally the account and the
billing period) travel in the object's metadata, set at checkout.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional
import stripe

from payrecon.config import get_settings
from payrecon.models import IngestPaymentInput

logger = logging.getLogger(__name__)

PROVIDER = "stripe"

HANDLED_EVENTS = (
    "charge.succeeded",
    "charge.refunded",
    "payment_intent.succeeded",
)


class WebhookError(Exception):
    """Webhook payload that cannot be trusted or read."""


def construct_event(payload: bytes, sig_header: str) -> dict:
    """
    Verify the Stripe-Signature header and return the event as a dict.

    Raises WebhookError when the secret is not configured, the signature
    does not match or the body is not JSON.
    """
    secret = get_settings().stripe_webhook_secret
    if not secret:
        raise WebhookError("Stripe webhook secret is not configured")

    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"),
            sig_header,
            secret,
            stripe.Webhook.DEFAULT_TOLERANCE,
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookError(f"Invalid Stripe signature: {e}")

    try:
        return json.loads(payload)
    except ValueError as e:
        raise WebhookError(f"Invalid Stripe payload: {e}")


def _payer_name(obj: dict) -> str:
    billing = obj.get("billing_details") or {}
    metadata = obj.get("metadata") or {}
    return (
        metadata.get("payer_name")
        or billing.get("name")
        or obj.get("receipt_email")
        or billing.get("email")
        or ""
    )


def event_to_ingest_input(event: dict) -> Optional[IngestPaymentInput]:
    """
    Convert a verified event into an ingestion input.

    Returns None for events this service does not record or objects
    without a tenant in their metadata.
    """
    event_type = event.get("type")
    if event_type not in HANDLED_EVENTS:
        logger.debug("Ignoring Stripe event %s", event_type)
        return None

    obj = (event.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}
    tenant_id = metadata.get("tenant_id")
    if not tenant_id:
        logger.warning("Stripe event %s (%s) has no tenant_id metadata", event.get("id"), event_type)
        return None

    if event_type == "payment_intent.succeeded":
        amount = obj.get("amount_received", obj.get("amount"))
        status = "approved"
    elif event_type == "charge.refunded":
        amount = obj.get("amount")
        status = "refunded" if obj.get("refunded") else "approved"
    else:
        amount = obj.get("amount")
        status = "approved"

    if event_type == "payment_intent.succeeded":
        provider_payment_id = obj.get("id")
    else:
        # A charge of a PaymentIntent is keyed on the intent, so the intent's
        # success event, the charge events and refunds all land on one payment
        provider_payment_id = obj.get("payment_intent") or obj.get("id")

    created = obj.get("created")
    return IngestPaymentInput(
        tenant_id=tenant_id,
        provider=PROVIDER,
        provider_payment_id=provider_payment_id,
        payer_raw=_payer_name(obj),
        account_id=metadata.get("account_id"),
        amount=amount / 100.0 if amount is not None else None,
        currency=(obj.get("currency") or "").upper() or None,
        paid_at=datetime.fromtimestamp(created, tz=timezone.utc) if created else None,
        period=metadata.get("period"),
        reference=obj.get("description"),
        status=status,
    )
