# payrecon/routers/aliases.py

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from typing import Optional

from payrecon import database
from payrecon.core.aliases import bulk_import_aliases, confirm_pending_alias
from payrecon.core.exceptions import NotFoundError
from payrecon.core.matching import build_accounts, suggest
from payrecon.dependencies import CurrentUser, get_current_user, require_reviewer
from payrecon.models import AliasProvenance, TargetKind

router = APIRouter()


class AliasInput(BaseModel):
    payer: str
    # Without a target_id the pair is queued as pending (target_raw names the client)
    target_id: Optional[str] = None
    target_kind: TargetKind = "account"
    target_raw: Optional[str] = None


class AliasImportRequest(BaseModel):
    aliases: list[AliasInput]
    provenance: AliasProvenance = "import"


class ConfirmPendingRequest(BaseModel):
    account_id: str


@router.get("")
async def list_aliases(
    user: CurrentUser = Depends(get_current_user),
    target_kind: Optional[TargetKind] = Query(None),
):
    """List the learned payer aliases of the tenant."""
    aliases = await database.get_payer_aliases(user.tenant_id, target_kind)

    return {
        "success": True,
        "aliases": aliases,
        "count": len(aliases),
    }


@router.get("/history")
async def alias_history(
    user: CurrentUser = Depends(get_current_user),
    payer_key: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
):
    """Audit trail of alias overwrites."""
    history = await database.get_alias_history(user.tenant_id, payer_key, limit)

    return {
        "success": True,
        "history": history,
    }


@router.post("")
async def import_aliases(request: AliasImportRequest, user: CurrentUser = Depends(require_reviewer)):
    """
    Bulk import of payer -> account associations (e.g. from a spreadsheet).

    Rows naming the client without an account id wait in the pending list.
    """
    result = await bulk_import_aliases(
        user.tenant_id,
        [a.model_dump() for a in request.aliases],
        provenance=request.provenance,
        user_id=user.user_id,
    )

    return {
        "success": True,
        **result,
    }


# ============================================
# Pending aliases
# ============================================

@router.get("/pending")
async def list_pending_aliases(
    user: CurrentUser = Depends(get_current_user),
    limit: int = Query(200, ge=1, le=500),
):
    """Queued payer -> client pairs, each with candidate accounts for the client name."""
    pending = await database.get_pending_aliases(user.tenant_id, limit)
    accounts = build_accounts(await database.get_accounts(user.tenant_id))

    items = [
        {
            **p,
            "candidates": [c.model_dump() for c in suggest(p.get("target_raw") or "", accounts)],
        }
        for p in pending
    ]

    return {
        "success": True,
        "items": items,
        "count": len(items),
    }


@router.post("/pending/{pending_id}/confirm")
async def confirm_pending(
    pending_id: str,
    request: ConfirmPendingRequest,
    user: CurrentUser = Depends(require_reviewer),
):
    """Assign a pending payer to an account; it becomes a regular alias."""
    try:
        alias = await confirm_pending_alias(user.tenant_id, pending_id, request.account_id, user.user_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "success": True,
        "alias": alias.model_dump(mode="json"),
    }
