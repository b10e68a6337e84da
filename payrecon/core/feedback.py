# payrecon/core/feedback.py

"""
Human confirmation and rejection of matches.

Confirming a payment against an account is the learning step: the payer
string becomes an alias, so the next identical payer is matched
automatically with score 100.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from payrecon import database
from payrecon.core.aliases import upsert_alias
from payrecon.core.duplicates import fingerprint_payment
from payrecon.core.exceptions import NotFoundError
from payrecon.core.ingestion import detect_duplicates
from payrecon.core.normalizers import normalize_name
from payrecon.models import MatchRecord, Payment

logger = logging.getLogger(__name__)


async def _load_payment(tenant_id: str, payment_id: str) -> Payment:
    row = await database.get_payment(tenant_id, payment_id)
    if not row:
        raise NotFoundError(f"Payment {payment_id} not found")
    return Payment(**row)


async def _load_match_record(payment: Payment) -> MatchRecord:
    row = await database.get_match_result(payment.tenant_id, f"match_{payment.id}")
    if row:
        return MatchRecord(**row)
    decision = payment.match_status if payment.match_status in ("auto", "review", "no_match", "conflict") else "review"
    return MatchRecord(
        id=f"match_{payment.id}",
        tenant_id=payment.tenant_id,
        payment_id=payment.id,
        batch_id=payment.batch_id,
        decision=decision,
        created_at=datetime.now(timezone.utc),
    )


async def confirm_match(
    tenant_id: str,
    payment_id: str,
    account_id: str,
    user_id: Optional[str] = None,
) -> dict:
    """
    Confirm a payment belongs to an account.

    - Payment: account set, match status confirmed
    - Match record: confirmed by the user
    - Alias: payer key -> account (provenance manual), overwriting and
      auditing any earlier target

    A payment with no duplicate case yet is re-fingerprinted under its
    account, which can open a case.
    """
    payment = await _load_payment(tenant_id, payment_id)
    account = await database.get_account(tenant_id, account_id)
    if not account:
        raise NotFoundError(f"Account {account_id} not found")

    now = datetime.now(timezone.utc)

    # ============================================
    # Payment
    # ============================================
    payment = payment.model_copy(update={
        "account_id": account_id,
        "match_status": "confirmed",
        "updated_at": now,
    })
    if payment.duplicate_status == "none":
        payment = payment.model_copy(update={"fingerprint": fingerprint_payment(payment)})

    await database.update_payment(payment.id, {
        "account_id": account_id,
        "match_status": "confirmed",
        "fingerprint": payment.fingerprint,
        "updated_at": now.isoformat(),
    })

    # ============================================
    # Match record
    # ============================================
    record = await _load_match_record(payment)
    record = record.model_copy(update={
        "account_id": account_id,
        "status": "confirmed",
        "confirmed_by": user_id,
        "confirmed_at": now,
        "rejected_reason": None,
        "updated_at": now,
    })
    await database.upsert_match_result(record.model_dump(mode="json"))

    # ============================================
    # Learning: alias
    # ============================================
    payer_key = payment.payer_key or normalize_name(payment.payer_raw)
    alias = None
    if payer_key:
        alias = await upsert_alias(
            tenant_id,
            payer_key,
            "account",
            account_id,
            "manual",
            payer_raw=payment.payer_raw,
            target_raw=account.get("display_name") or "",
            user_id=user_id,
        )
    else:
        logger.warning("Payment %s has no payer name; no alias learned", payment.id)

    if payment.duplicate_status == "none":
        payment, _ = await detect_duplicates(payment)

    logger.info("Payment %s confirmed -> %s by %s", payment.id, account_id, user_id)
    return {
        "alias_upserted": alias is not None,
        "alias": alias.model_dump(mode="json") if alias else None,
        "payment": payment.model_dump(mode="json"),
    }


async def reject_match(
    tenant_id: str,
    payment_id: str,
    user_id: Optional[str] = None,
    reason: Optional[str] = None,
) -> dict:
    """Reject the suggested account of a payment; the payment stays unmatched."""
    payment = await _load_payment(tenant_id, payment_id)
    now = datetime.now(timezone.utc)

    await database.update_payment(payment.id, {
        "account_id": None,
        "match_status": "rejected",
        "updated_at": now.isoformat(),
    })

    record = await _load_match_record(payment)
    record = record.model_copy(update={
        "account_id": None,
        "status": "rejected",
        "confirmed_by": user_id,
        "confirmed_at": now,
        "rejected_reason": reason,
        "updated_at": now,
    })
    await database.upsert_match_result(record.model_dump(mode="json"))

    logger.info("Payment %s match rejected by %s", payment.id, user_id)
    return {}
