# payrecon/core/resolution.py

from datetime import datetime, timezone
import logging

from payrecon import database
from payrecon.core.duplicates import apply_resolution
from payrecon.core.exceptions import NotFoundError
from payrecon.models import DuplicateCase, DuplicateResolution

logger = logging.getLogger(__name__)


async def resolve_duplicate_case(
    tenant_id: str,
    case_id: str,
    resolution: DuplicateResolution,
) -> DuplicateCase:
    """
    Close a duplicate case and reflect the decision on its payments.

    Payments are updated before the case is closed, so a failure part way
    leaves the case open and the call can be repeated.
    """
    row = await database.get_duplicate_case(tenant_id, case_id)
    if not row:
        raise NotFoundError(f"Duplicate case {case_id} not found")

    case = DuplicateCase(**row)
    closed, updates = apply_resolution(case, resolution)
    now = datetime.now(timezone.utc).isoformat()

    for payment_id, update in updates.items():
        await database.update_payment(payment_id, {**update, "updated_at": now})

    await database.save_duplicate_cases([closed.model_dump(mode="json")])

    logger.info(
        "Duplicate case %s resolved as %s by %s (%d payments)",
        closed.id, closed.status, resolution.resolved_by, len(updates),
    )
    return closed
