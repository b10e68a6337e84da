# payrecon/routers/payments.py

"""
Payment routes.

Listing, suggestions while typing, and the human confirmation / rejection
of matches.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from typing import Optional

from payrecon import database
from payrecon.config import get_settings
from payrecon.core.exceptions import NotFoundError
from payrecon.core.feedback import confirm_match, reject_match
from payrecon.core.matching import build_accounts, suggest
from payrecon.dependencies import CurrentUser, get_current_user, require_reviewer

router = APIRouter()


# ============================================
# Request Models
# ============================================

class ConfirmRequest(BaseModel):
    account_id: str


class RejectRequest(BaseModel):
    reason: Optional[str] = None


# ============================================
# Get Payments
# ============================================

@router.get("")
async def list_payments(
    user: CurrentUser = Depends(get_current_user),
    batch_id: Optional[str] = Query(None, description="Filter by import batch"),
    match_status: Optional[str] = Query(None, description="Filter by match status"),
    duplicate_status: Optional[str] = Query(None, description="Filter by duplicate status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """
    List payments of the user's tenant with optional filters.
    """
    payments, total = await database.get_payments(
        tenant_id=user.tenant_id,
        batch_id=batch_id,
        match_status=match_status,
        duplicate_status=duplicate_status,
        limit=limit,
        offset=offset,
    )
    total = total or 0

    return {
        "success": True,
        "payments": payments,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < total,
        },
    }


@router.get("/suggest")
async def suggest_accounts(
    q: str = Query(..., min_length=1, description="Payer name being typed"),
    user: CurrentUser = Depends(get_current_user),
    limit: Optional[int] = Query(None, ge=1, le=20),
):
    """Candidate accounts for a payer name."""
    accounts = build_accounts(await database.get_accounts(user.tenant_id))
    candidates = suggest(q, accounts, limit or get_settings().top_candidates)

    return {
        "success": True,
        "query": q,
        "candidates": [c.model_dump() for c in candidates],
    }


@router.get("/{payment_id}")
async def get_payment(payment_id: str, user: CurrentUser = Depends(get_current_user)):
    """Get a single payment with its match result."""
    payment = await database.get_payment(user.tenant_id, payment_id)

    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")

    match = await database.get_match_result(user.tenant_id, f"match_{payment_id}")

    return {
        "success": True,
        "payment": payment,
        "match": match,
    }


# ============================================
# Confirm / Reject
# ============================================

@router.post("/{payment_id}/confirm")
async def confirm_payment(
    payment_id: str,
    request: ConfirmRequest,
    user: CurrentUser = Depends(require_reviewer),
):
    """
    Confirm a payment belongs to an account.

    Learns an alias for the payer name, so the same payer is matched
    automatically next time.
    """
    try:
        result = await confirm_match(user.tenant_id, payment_id, request.account_id, user.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "success": True,
        **result,
    }


@router.post("/{payment_id}/reject")
async def reject_payment(
    payment_id: str,
    request: RejectRequest,
    user: CurrentUser = Depends(require_reviewer),
):
    """Reject the suggested account of a payment."""
    try:
        await reject_match(user.tenant_id, payment_id, user.user_id, request.reason)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "success": True,
        "payment_id": payment_id,
        "match_status": "rejected",
    }
