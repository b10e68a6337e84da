# payrecon/routers/webhooks.py

"""
Provider webhooks.

Acknowledged fast: verification, then one ingestion call. Repeated
deliveries are answered 200 so the provider stops retrying.
"""

import logging
from fastapi import APIRouter, Header, HTTPException, Request

from payrecon.core.ingestion import ingest_payment
from payrecon.integrations.stripe import WebhookError, construct_event, event_to_ingest_input

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/stripe")
async def stripe_webhook(request: Request, stripe_signature: str = Header(None)):
    """Record a Stripe payment event."""
    if not stripe_signature:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    payload = await request.body()
    try:
        event = construct_event(payload, stripe_signature)
    except WebhookError as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    data = event_to_ingest_input(event)
    if data is None:
        return {"received": True, "ignored": True}

    result = await ingest_payment(data)

    return {
        "received": True,
        "ignored": False,
        **result.model_dump(),
    }
