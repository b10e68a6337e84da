# payrecon/core/duplicates.py

"""
Duplicate payment detection.

Two separate concepts:
- Technical duplicate: the same upstream event delivered again. Caught by
  an idempotency key built from provider + provider transaction id.
- Suspected (accounting) duplicate: two different payments that may be the
  same real payment. Caught by a fingerprint of identity + amount +
  currency + billing period, and grouped into a DuplicateCase for a human.
"""

from datetime import datetime, timezone
from typing import Iterable, Optional
import hashlib
import logging

from payrecon.core.exceptions import InvalidResolutionError
from payrecon.models import (
    DuplicateCase,
    DuplicateClassification,
    DuplicateResolution,
    Payment,
)

logger = logging.getLogger(__name__)

# Duplicate statuses that can still collide with a new payment
_COLLIDABLE = ("none", "suspected")


# ============================================
# Keys
# ============================================

def idempotency_key(provider: str | None, provider_payment_id: str | None) -> str | None:
    """Key unique to one upstream event, or None when the provider gave no id."""
    if not provider or provider_payment_id is None or not str(provider_payment_id).strip():
        return None
    return f"{provider}_{str(provider_payment_id).strip()}"


def fingerprint_identity(account_id: str | None, payer_key: str | None) -> str | None:
    """Who paid: the matched account once known, else the normalized payer."""
    if account_id:
        return f"account:{account_id}"
    if payer_key:
        return f"payer:{payer_key}"
    return None


def compute_fingerprint(
    identity: str | None,
    amount: float | None,
    currency: str | None,
    period: str | None,
) -> str | None:
    """
    Fingerprint hash for accounting-duplicate detection.

    Independent of provider transaction ids. Returns None when any part is
    missing; detection is then inconclusive.
    """
    if not identity or amount is None or not period:
        return None

    payload = "|".join([
        identity,
        f"{amount:.2f}",
        (currency or "").upper(),
        period,
    ])
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def fingerprint_payment(payment: Payment) -> str | None:
    """Fingerprint a payment, logging a warning when it cannot be computed."""
    identity = fingerprint_identity(payment.account_id, payment.payer_key)
    fingerprint = compute_fingerprint(identity, payment.amount, payment.currency, payment.period)
    if fingerprint is None:
        missing = [
            name for name, value in (
                ("identity", identity),
                ("amount", payment.amount),
                ("period", payment.period),
            ) if value is None or value == ""
        ]
        logger.warning(
            "Duplicate detection inconclusive for payment %s: missing %s",
            payment.id, ", ".join(missing),
        )
    return fingerprint


def case_id_for(tenant_id: str, fingerprint: str, payment_ids: Iterable[str]) -> str:
    """Deterministic case id, so re-running an import reuses the same case."""
    anchor = min(payment_ids)
    payload = "|".join([tenant_id, fingerprint, anchor])
    return "dup_" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:24]


# ============================================
# Index of recorded payments
# ============================================

class DuplicateIndex:
    """
    In-memory index of recorded payments and duplicate cases.

    Built once from the store, then updated as payments are registered so
    that collisions inside one batch are detected too.
    """

    def __init__(
        self,
        payments: Iterable[Payment] = (),
        cases: Iterable[DuplicateCase] = (),
    ):
        self._payments: dict[str, Payment] = {}
        self._by_key: dict[str, str] = {}
        self._by_fingerprint: dict[str, list[str]] = {}
        self._cases: dict[str, DuplicateCase] = {}

        for payment in payments:
            self.register(payment)
        for case in cases:
            self.add_case(case)

    def register(self, payment: Payment) -> None:
        """Add or replace a payment."""
        previous = self._payments.get(payment.id)
        if previous is not None and previous.fingerprint and previous.fingerprint != payment.fingerprint:
            ids = self._by_fingerprint.get(previous.fingerprint, [])
            if payment.id in ids:
                ids.remove(payment.id)

        self._payments[payment.id] = payment
        if payment.idempotency_key:
            self._by_key[payment.idempotency_key] = payment.id
        if payment.fingerprint:
            ids = self._by_fingerprint.setdefault(payment.fingerprint, [])
            if payment.id not in ids:
                ids.append(payment.id)

    def get(self, payment_id: str) -> Optional[Payment]:
        return self._payments.get(payment_id)

    def find_by_idempotency_key(self, key: str | None) -> Optional[Payment]:
        if not key:
            return None
        payment_id = self._by_key.get(key)
        return self._payments.get(payment_id) if payment_id else None

    def find_by_fingerprint(self, fingerprint: str | None) -> list[Payment]:
        if not fingerprint:
            return []
        return [self._payments[pid] for pid in self._by_fingerprint.get(fingerprint, [])]

    def add_case(self, case: DuplicateCase) -> None:
        self._cases[case.id] = case

    def case(self, case_id: str | None) -> Optional[DuplicateCase]:
        return self._cases.get(case_id) if case_id else None

    @property
    def cases(self) -> list[DuplicateCase]:
        return list(self._cases.values())


# ============================================
# Classification
# ============================================

def classify_duplicate(payment: Payment, index: DuplicateIndex) -> DuplicateClassification:
    """
    Classify an incoming payment against the recorded ones.

    Pure: the index is not modified (see apply_classification).
    """
    existing = index.find_by_idempotency_key(payment.idempotency_key)
    if existing is not None and existing.status == "approved":
        return DuplicateClassification(
            status="technical_duplicate",
            fingerprint=existing.fingerprint,
            existing_payment_id=existing.id,
            duplicate_case_id=existing.duplicate_case_id,
        )

    fingerprint = payment.fingerprint
    if not fingerprint:
        return DuplicateClassification(status="new")

    colliding = [
        p for p in index.find_by_fingerprint(fingerprint)
        if p.id != payment.id
        and p.duplicate_status in _COLLIDABLE
        and p.status != "refunded"
    ]
    if not colliding:
        return DuplicateClassification(status="new", fingerprint=fingerprint)

    colliding_ids = [p.id for p in colliding]

    # Append to an open case one of the colliding payments already belongs to
    for p in colliding:
        case = index.case(p.duplicate_case_id)
        if p.duplicate_case_id and (case is None or case.is_open):
            return DuplicateClassification(
                status="suspected",
                fingerprint=fingerprint,
                duplicate_case_id=p.duplicate_case_id,
                colliding_payment_ids=colliding_ids,
            )

    return DuplicateClassification(
        status="suspected",
        fingerprint=fingerprint,
        duplicate_case_id=case_id_for(payment.tenant_id, fingerprint, colliding_ids + [payment.id]),
        colliding_payment_ids=colliding_ids,
        case_created=True,
    )


def apply_classification(
    payment: Payment,
    classification: DuplicateClassification,
    index: DuplicateIndex,
    now: datetime | None = None,
) -> tuple[Payment, Optional[DuplicateCase], dict[str, dict]]:
    """
    Record a classified payment in the index.

    Returns the payment as it should be stored, the created or updated
    case (if any), and updates for other payments pulled into the case.
    """
    if classification.status == "technical_duplicate":
        existing = index.get(classification.existing_payment_id)
        return existing or payment, None, {}

    if classification.status == "new":
        index.register(payment)
        return payment, None, {}

    now = now or datetime.now(timezone.utc)
    case_id = classification.duplicate_case_id
    case = index.case(case_id)
    if case is None:
        case = DuplicateCase(
            id=case_id,
            tenant_id=payment.tenant_id,
            fingerprint=classification.fingerprint,
            identity=fingerprint_identity(payment.account_id, payment.payer_key) or "",
            payment_ids=[],
            created_at=now,
        )

    payment_ids = list(case.payment_ids)
    for pid in classification.colliding_payment_ids + [payment.id]:
        if pid not in payment_ids:
            payment_ids.append(pid)
    case = case.model_copy(update={"payment_ids": payment_ids, "updated_at": now})
    index.add_case(case)

    marks = {"duplicate_status": "suspected", "duplicate_case_id": case.id}
    payment = payment.model_copy(update=marks)
    index.register(payment)

    updates: dict[str, dict] = {}
    for pid in classification.colliding_payment_ids:
        other = index.get(pid)
        if other is None:
            continue
        if other.duplicate_status == "suspected" and other.duplicate_case_id == case.id:
            continue
        index.register(other.model_copy(update=marks))
        updates[pid] = dict(marks)

    logger.info("Payment %s suspected duplicate in case %s (%d payments)", payment.id, case.id, len(payment_ids))
    return payment, case, updates


# ============================================
# Resolution
# ============================================

def apply_resolution(
    case: DuplicateCase,
    resolution: DuplicateResolution,
    now: datetime | None = None,
) -> tuple[DuplicateCase, dict[str, dict]]:
    """
    Apply a human resolution to a case.

    Returns the closed case and the updates for every payment in it:
    - resolved_single: the chosen payment is confirmed, the rest ignored
    - resolved_all: every payment is confirmed
    - refunded: the chosen payments are refunded (and ignored), the rest confirmed
    - ignored: not a duplicate after all, every flag is ignored
    """
    if not case.is_open:
        raise InvalidResolutionError(f"Duplicate case {case.id} is already {case.status}")

    chosen = list(dict.fromkeys(resolution.chosen_payment_ids))
    unknown = [pid for pid in chosen if pid not in case.payment_ids]
    if unknown:
        raise InvalidResolutionError(f"Payments {', '.join(unknown)} do not belong to case {case.id}")

    now = now or datetime.now(timezone.utc)
    updates: dict[str, dict] = {}

    if resolution.kind == "resolved_single":
        if len(chosen) != 1:
            raise InvalidResolutionError("resolved_single needs exactly one chosen payment")
        for pid in case.payment_ids:
            updates[pid] = {"duplicate_status": "confirmed" if pid in chosen else "ignored"}

    elif resolution.kind == "resolved_all":
        for pid in case.payment_ids:
            updates[pid] = {"duplicate_status": "confirmed"}

    elif resolution.kind == "refunded":
        if not chosen or len(chosen) >= len(case.payment_ids):
            raise InvalidResolutionError("refunded needs at least one payment refunded and one kept")
        for pid in case.payment_ids:
            if pid in chosen:
                updates[pid] = {"duplicate_status": "ignored", "status": "refunded"}
            else:
                updates[pid] = {"duplicate_status": "confirmed"}

    elif resolution.kind == "ignored":
        for pid in case.payment_ids:
            updates[pid] = {"duplicate_status": "ignored"}

    else:
        raise InvalidResolutionError(f"Unknown resolution kind: {resolution.kind}")

    closed = case.model_copy(update={
        "status": resolution.kind,
        "resolution": resolution.model_copy(update={
            "chosen_payment_ids": chosen,
            "resolved_at": resolution.resolved_at or now,
        }),
        "updated_at": now,
    })
    return closed, updates
