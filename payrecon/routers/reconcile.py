# payrecon/routers/reconcile.py

"""
Reconciliation routes.

The main endpoint that runs a batch of payment rows through matching and
duplicate detection.
"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Optional

from payrecon import database
from payrecon.core.batch import reconcile_rows
from payrecon.core.exceptions import BatchRejectedError, PersistenceError
from payrecon.dependencies import CurrentUser, get_current_user
from payrecon.models import PaymentRow

logger = logging.getLogger(__name__)
router = APIRouter()


class AccountInput(BaseModel):
    id: str
    display_name: str


class ReconcileRequest(BaseModel):
    rows: list[PaymentRow]
    source: str = "import"
    batch_id: Optional[str] = None
    # Use these instead of the tenant's stored accounts
    accounts: Optional[list[AccountInput]] = None


class ReconcileResponse(BaseModel):
    success: bool
    batch_id: str
    state: str
    cancelled: bool
    rows_total: int
    rows_processed: int
    counts: dict
    errors: list
    results: list
    suspected_duplicates: int
    technical_duplicates: int
    duplicate_cases: list[str] = Field(default_factory=list)
    duration_ms: int


# ============================================
# Main Reconciliation Endpoint
# ============================================

@router.post("/reconcile", response_model=ReconcileResponse)
async def run_reconciliation(request: ReconcileRequest, user: CurrentUser = Depends(get_current_user)):
    """
    Reconcile a batch of parsed payment rows for the user's tenant.

    1. Loads accounts, aliases and recorded payments of the same periods
    2. Matches every row and detects duplicates
    3. Saves payments, match results, duplicate cases and the batch summary

    Row errors come back in the response; only structural problems fail
    the request.
    """
    accounts = [a.model_dump() for a in request.accounts] if request.accounts is not None else None

    try:
        result, _ = await reconcile_rows(
            user.tenant_id,
            request.rows,
            source=request.source,
            batch_id=request.batch_id,
            accounts=accounts,
            user_id=user.user_id,
        )
    except BatchRejectedError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceError as e:
        logger.error("Reconciliation persistence failed after %d chunks: %s", e.committed_chunks, e)
        raise HTTPException(status_code=502, detail=f"Failed to save results: {e}")

    return ReconcileResponse(success=True, **result.to_dict())


# ============================================
# Batch History
# ============================================

@router.get("/reconcile/batches")
async def list_batches(
    user: CurrentUser = Depends(get_current_user),
    limit: int = Query(30, ge=1, le=100),
):
    """Get the reconciliation batch history of the tenant."""
    batches = await database.get_import_batches(user.tenant_id, limit=limit)

    return {
        "success": True,
        "batches": batches,
        "count": len(batches),
    }


@router.get("/reconcile/batches/{batch_id}")
async def get_batch(batch_id: str, user: CurrentUser = Depends(get_current_user)):
    """Get one batch summary."""
    batch = await database.get_import_batch(user.tenant_id, batch_id)

    if not batch:
        raise HTTPException(status_code=404, detail="Batch not found")

    return {
        "success": True,
        "batch": batch,
    }
