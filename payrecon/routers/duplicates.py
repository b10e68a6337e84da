# payrecon/routers/duplicates.py

"""
Duplicate case routes.

Cases are opened by imports and webhooks; a reviewer closes them.
"""

from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from typing import Optional

from payrecon import database
from payrecon.core.exceptions import InvalidResolutionError, NotFoundError
from payrecon.core.resolution import resolve_duplicate_case
from payrecon.dependencies import CurrentUser, get_current_user, require_reviewer
from payrecon.models import DuplicateCaseStatus, DuplicateResolution, ResolutionKind

router = APIRouter()


class ResolveRequest(BaseModel):
    kind: ResolutionKind
    chosen_payment_ids: list[str] = Field(default_factory=list)
    notes: str = ""


@router.get("")
async def list_cases(
    user: CurrentUser = Depends(get_current_user),
    status: Optional[DuplicateCaseStatus] = Query(None, description="Filter by case status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    """List duplicate cases of the tenant."""
    cases, total = await database.list_duplicate_cases(user.tenant_id, status, limit, offset)
    total = total or 0

    return {
        "success": True,
        "cases": cases,
        "pagination": {
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": offset + limit < total,
        },
    }


@router.get("/{case_id}")
async def get_case(case_id: str, user: CurrentUser = Depends(get_current_user)):
    """Get a case with the payments it groups."""
    case = await database.get_duplicate_case(user.tenant_id, case_id)

    if not case:
        raise HTTPException(status_code=404, detail="Duplicate case not found")

    payments = await database.get_payments_by_ids(user.tenant_id, case.get("payment_ids") or [])

    return {
        "success": True,
        "case": case,
        "payments": payments,
    }


@router.post("/{case_id}/resolve")
async def resolve_case(
    case_id: str,
    request: ResolveRequest,
    user: CurrentUser = Depends(require_reviewer),
):
    """
    Resolve a duplicate case.

    - resolved_single: keep the one chosen payment
    - resolved_all: every payment is genuine
    - refunded: the chosen payments were refunded
    - ignored: not a duplicate
    """
    resolution = DuplicateResolution(
        kind=request.kind,
        chosen_payment_ids=request.chosen_payment_ids,
        notes=request.notes,
        resolved_by=user.user_id,
        resolved_at=datetime.now(timezone.utc),
    )

    try:
        case = await resolve_duplicate_case(user.tenant_id, case_id, resolution)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidResolutionError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "success": True,
        "case": case.model_dump(mode="json"),
    }
