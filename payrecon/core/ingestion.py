# payrecon/core/ingestion.py

"""
Single-payment ingestion (provider webhooks).

Webhooks are delivered at least once, so the same event can arrive many
times. The idempotency key is checked first; the insert itself is a
create-if-absent on the deterministic payment id, so two concurrent
deliveries still produce one record.
"""

from datetime import datetime, timezone
from typing import Optional
import logging

from payrecon import database
from payrecon.config import get_settings
from payrecon.core.aliases import load_alias_snapshot
from payrecon.core.duplicates import (
    DuplicateIndex,
    apply_classification,
    classify_duplicate,
    fingerprint_payment,
    idempotency_key,
)
from payrecon.core.matching import build_accounts, make_payment_id, match
from payrecon.core.normalizers import normalize_currency, normalize_name, normalize_period
from payrecon.models import (
    DuplicateCase,
    IngestPaymentInput,
    IngestPaymentResult,
    MatchRecord,
    Payment,
)

logger = logging.getLogger(__name__)


async def ingest_payment(data: IngestPaymentInput) -> IngestPaymentResult:
    """
    Record one provider payment.

    1. Idempotency: a known event is a technical duplicate, or a status
       change of the recorded payment (e.g. a refund)
    2. Match the payer when the provider did not name the account
    3. Create-if-absent
    4. Fingerprint collisions open or extend a duplicate case
    """
    now = datetime.now(timezone.utc)
    key = idempotency_key(data.provider, data.provider_payment_id)

    # ============================================
    # Technical duplicates
    # ============================================
    if key:
        row = await database.get_payment_by_idempotency_key(data.tenant_id, key)
        if row:
            existing = Payment(**row)
            if existing.status != data.status:
                await database.update_payment(existing.id, {
                    "status": data.status,
                    "updated_at": now.isoformat(),
                })
                logger.info("Payment %s status %s -> %s", existing.id, existing.status, data.status)
                return IngestPaymentResult(
                    payment_id=existing.id,
                    created=False,
                    duplicate_status=existing.duplicate_status,
                    duplicate_case_id=existing.duplicate_case_id,
                    match_status=existing.match_status,
                )

            logger.info("Ignoring repeated delivery %s (payment %s)", key, existing.id)
            return IngestPaymentResult(
                payment_id=existing.id,
                created=False,
                is_duplicate_technical=True,
                duplicate_status=existing.duplicate_status,
                duplicate_case_id=existing.duplicate_case_id,
                match_status=existing.match_status,
            )

    # ============================================
    # Build the payment
    # ============================================
    payer_key = normalize_name(data.payer_raw)
    payment_id = (
        make_payment_id(data.tenant_id, "webhook", key)
        if key
        else make_payment_id(
            data.tenant_id, "webhook", data.provider, payer_key, data.amount,
            data.paid_at.isoformat() if data.paid_at else None,
        )
    )

    account_id = data.account_id
    match_status = "confirmed" if account_id else "no_match"
    match_record: Optional[MatchRecord] = None

    if not account_id and payer_key:
        accounts = build_accounts(await database.get_accounts(data.tenant_id))
        aliases = await load_alias_snapshot(data.tenant_id, accounts)
        result = match(data.payer_raw, accounts, aliases)
        account_id = result.account_id
        match_status = result.decision
        match_record = MatchRecord(
            id=f"match_{payment_id}",
            tenant_id=data.tenant_id,
            payment_id=payment_id,
            account_id=result.account_id,
            decision=result.decision,
            status="auto" if result.decision == "auto" else "pending",
            score=result.score,
            candidates=result.candidates,
            explanation=result.explanation,
            reason=result.reason,
            created_at=now,
            updated_at=now,
        )

    payment = Payment(
        id=payment_id,
        tenant_id=data.tenant_id,
        amount=data.amount,
        currency=normalize_currency(data.currency, get_settings().default_currency),
        payer_raw=data.payer_raw,
        payer_key=payer_key,
        account_id=account_id,
        match_status=match_status,
        status=data.status,
        provider=data.provider,
        provider_payment_id=data.provider_payment_id,
        idempotency_key=key,
        period=normalize_period(data.period, data.paid_at),
        paid_at=data.paid_at,
        reference=data.reference,
        source="webhook",
        created_at=now,
        updated_at=now,
    )
    payment = payment.model_copy(update={"fingerprint": fingerprint_payment(payment)})

    # ============================================
    # Create-if-absent
    # ============================================
    inserted = await database.insert_payment_if_absent(payment.model_dump(mode="json"))
    if inserted is None:
        # A concurrent delivery won the insert
        logger.info("Payment %s already recorded by a concurrent delivery", payment.id)
        return IngestPaymentResult(
            payment_id=payment.id,
            created=False,
            is_duplicate_technical=True,
            match_status=payment.match_status,
        )

    if match_record is not None:
        await database.upsert_match_result(match_record.model_dump(mode="json"))

    payment, case = await detect_duplicates(payment)

    logger.info(
        "Ingested %s payment %s (match=%s, duplicate=%s)",
        data.provider, payment.id, payment.match_status, payment.duplicate_status,
    )
    return IngestPaymentResult(
        payment_id=payment.id,
        created=True,
        duplicate_status=payment.duplicate_status,
        duplicate_case_id=case.id if case else None,
        match_status=payment.match_status,
    )


async def detect_duplicates(payment: Payment) -> tuple[Payment, Optional[DuplicateCase]]:
    """
    Check a recorded payment against others with the same fingerprint.

    Writes the case and the duplicate marks of every payment involved.
    """
    if not payment.fingerprint:
        return payment, None

    rows = await database.get_payments_by_fingerprint(payment.tenant_id, payment.fingerprint)
    recorded = [Payment(**row) for row in rows if row.get("id") != payment.id]
    if not recorded:
        return payment, None

    case_rows = await database.get_duplicate_cases(
        payment.tenant_id,
        {p.duplicate_case_id for p in recorded if p.duplicate_case_id},
    )
    index = DuplicateIndex(recorded, [DuplicateCase(**row) for row in case_rows])

    classification = classify_duplicate(payment, index)
    if classification.status != "suspected":
        return payment, None

    stored, case, updates = apply_classification(payment, classification, index)
    now = datetime.now(timezone.utc).isoformat()

    await database.save_duplicate_cases([case.model_dump(mode="json")])
    await database.update_payment(stored.id, {
        "duplicate_status": stored.duplicate_status,
        "duplicate_case_id": stored.duplicate_case_id,
        "fingerprint": stored.fingerprint,
        "updated_at": now,
    })
    if updates:
        await database.update_payments(list(updates), {
            "duplicate_status": "suspected",
            "duplicate_case_id": case.id,
            "updated_at": now,
        })

    logger.warning(
        "Suspected duplicate: payment %s collides with %s (case %s)",
        stored.id, ", ".join(classification.colliding_payment_ids), case.id,
    )
    return stored, case
