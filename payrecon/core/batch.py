# payrecon/core/batch.py

"""
Reconciliation batch orchestrator.

Drives a bulk import of payment rows:
1. Load: accounts and the alias snapshot once, plus the recorded payments
   of the batch's billing periods for duplicate detection
2. Iterate: match every row (fanned out over a fixed thread pool), then
   classify duplicates sequentially in row order
3. Persist: chunked writes of payments, match records and duplicate cases
4. Summarize: one ImportBatch record with the per-decision counts

Only structural problems reject a batch. Row problems are reported as
RowErrors and the batch still completes.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, time, timezone
from threading import Event
from typing import Any, Iterable, Optional, Sequence
import asyncio
import hashlib
import json
import logging

from payrecon import database
from payrecon.config import get_settings
from payrecon.core.aliases import AliasSnapshot, load_alias_snapshot
from payrecon.core.duplicates import (
    DuplicateIndex,
    apply_classification,
    classify_duplicate,
    fingerprint_payment,
    idempotency_key,
)
from payrecon.core.exceptions import BatchRejectedError, PersistenceError
from payrecon.core.matching import build_accounts, make_payment_id, match
from payrecon.core.normalizers import (
    build_payer_raw,
    normalize_currency,
    normalize_date,
    normalize_name,
    normalize_period,
    normalize_reference,
    parse_amount,
)
from payrecon.models import (
    AccountRecord,
    BatchState,
    DecisionCounts,
    DuplicateCase,
    ImportBatch,
    MatchPolicy,
    MatchRecord,
    MatchResult,
    Payment,
    PaymentRow,
    RowError,
    RowResult,
)

logger = logging.getLogger(__name__)


class BatchResult:
    """Result of a reconciliation batch run."""

    def __init__(self, tenant_id: str, batch_id: str, source: str):
        self.tenant_id = tenant_id
        self.batch_id = batch_id
        self.source = source
        self.state: BatchState = "loading"
        self.cancelled = False
        self.created_by: Optional[str] = None

        self.rows_total = 0
        self.counts = DecisionCounts()
        self.errors: list[RowError] = []
        self.results: list[RowResult] = []

        self.payments: list[Payment] = []
        self.matches: list[MatchRecord] = []
        self.duplicate_cases: list[DuplicateCase] = []
        # Updates for payments recorded before this batch
        self.payment_updates: dict[str, dict] = {}
        self.technical_duplicates = 0

        self.duration_ms: int = 0

    @property
    def rows_processed(self) -> int:
        return len(self.results) + len(self.errors)

    @property
    def suspected_duplicates(self) -> int:
        return sum(1 for p in self.payments if p.duplicate_status == "suspected")

    def summary(self) -> ImportBatch:
        return ImportBatch(
            id=self.batch_id,
            tenant_id=self.tenant_id,
            source=self.source,
            state=self.state,
            rows_total=self.rows_total,
            rows_processed=self.rows_processed,
            error_count=len(self.errors),
            auto_count=self.counts.auto,
            review_count=self.counts.review,
            no_match_count=self.counts.no_match,
            conflict_count=self.counts.conflict,
            suspected_duplicates=self.suspected_duplicates,
            cancelled=self.cancelled,
            created_by=self.created_by,
            duration_ms=self.duration_ms,
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        return {
            "batch_id": self.batch_id,
            "state": self.state,
            "cancelled": self.cancelled,
            "rows_total": self.rows_total,
            "rows_processed": self.rows_processed,
            "counts": self.counts.model_dump(),
            "errors": [e.model_dump() for e in self.errors],
            "results": [r.model_dump() for r in self.results],
            "suspected_duplicates": self.suspected_duplicates,
            "technical_duplicates": self.technical_duplicates,
            "duplicate_cases": [c.id for c in self.duplicate_cases],
            "duration_ms": self.duration_ms,
        }


# ============================================
# Ids
# ============================================

def make_batch_id(tenant_id: str, source: str, rows: Sequence[PaymentRow]) -> str:
    """Stable batch id from the rows, so importing the same file twice is a re-run."""
    digest = hashlib.sha256()
    digest.update(f"{tenant_id}|{source}".encode("utf-8"))
    for row in rows:
        digest.update(json.dumps(row.model_dump(mode="json"), sort_keys=True, default=str).encode("utf-8"))
    return "batch_" + digest.hexdigest()[:24]


def match_record_id(payment_id: str) -> str:
    return f"match_{payment_id}"


# ============================================
# Validation
# ============================================

def _row_payer(row: PaymentRow) -> str:
    if row.payer_raw is not None and str(row.payer_raw).strip():
        return str(row.payer_raw)
    return build_payer_raw(*row.payer_parts)


def validate_rows(rows: Sequence[PaymentRow]) -> None:
    """
    Structural checks; nothing is processed when one fails.

    A column is considered missing when no row carries a value for it.
    """
    if not rows:
        raise BatchRejectedError("Empty dataset: no rows to reconcile")

    if not any(_row_payer(row) for row in rows):
        raise BatchRejectedError("Missing payer column: no row has a payer name")

    if not any(row.amount is not None and str(row.amount).strip() for row in rows):
        raise BatchRejectedError("Missing amount column: no row has an amount")


# ============================================
# Row processing
# ============================================

def _match_row(
    position: int,
    row: PaymentRow,
    accounts: Sequence[AccountRecord],
    aliases: AliasSnapshot,
    policy: MatchPolicy,
    cancel_event: Optional[Event],
) -> Optional[tuple[int, str, Optional[float], Optional[MatchResult], list[RowError]]]:
    """Match one row. Returns None when the batch was cancelled before it started."""
    if cancel_event is not None and cancel_event.is_set():
        return None

    row_index = row.row_index if row.row_index is not None else position
    payer_raw = _row_payer(row)
    amount = parse_amount(row.amount)

    errors = []
    if not normalize_name(payer_raw):
        errors.append(RowError(row_index=row_index, field="payer", message="Empty payer name"))
    if amount is None:
        errors.append(RowError(row_index=row_index, field="amount", message=f"Malformed amount: {row.amount!r}"))
    if errors:
        return row_index, payer_raw, amount, None, errors

    return row_index, payer_raw, amount, match(payer_raw, accounts, aliases, policy), []


def run_batch(
    rows: Iterable[Any],
    accounts: Iterable[Any],
    aliases: Optional[AliasSnapshot] = None,
    *,
    tenant_id: str,
    source: str = "import",
    batch_id: str = None,
    existing_payments: Iterable[Payment] = (),
    existing_cases: Iterable[DuplicateCase] = (),
    policy: Optional[MatchPolicy] = None,
    max_workers: int = None,
    cancel_event: Optional[Event] = None,
    created_by: str = None,
) -> BatchResult:
    """
    Reconcile a batch of payment rows.

    Matching is pure over read-only account and alias maps, so rows are
    matched in parallel. Duplicate classification shares one index and
    runs in row order, which keeps case ids deterministic.
    """
    start_time = datetime.now()
    settings = get_settings()

    # ============================================
    # Loading
    # ============================================
    rows = [r if isinstance(r, PaymentRow) else PaymentRow(**r) for r in rows]
    batch_id = batch_id or (make_batch_id(tenant_id, source, rows) if rows else "batch_empty")
    result = BatchResult(tenant_id, batch_id, source)
    result.created_by = created_by
    result.rows_total = len(rows)

    try:
        validate_rows(rows)
    except BatchRejectedError:
        result.state = "rejected"
        logger.warning("Batch %s rejected for tenant %s", batch_id, tenant_id)
        raise

    policy = policy or MatchPolicy.from_settings()
    account_records = build_accounts(accounts)
    aliases = aliases if aliases is not None else AliasSnapshot()
    existing_payments = list(existing_payments)
    index = DuplicateIndex(existing_payments, existing_cases)
    known_payment_ids = {p.id for p in existing_payments}

    # ============================================
    # Iterating: matching fan-out
    # ============================================
    result.state = "iterating"
    workers = max_workers or settings.batch_max_workers
    with ThreadPoolExecutor(max_workers=workers) as executor:
        outcomes = list(executor.map(
            lambda item: _match_row(item[0], item[1], account_records, aliases, policy, cancel_event),
            enumerate(rows),
        ))

    # ============================================
    # Iterating: duplicate classification, in row order
    # ============================================
    now = datetime.now(timezone.utc)
    created: list[str] = []
    match_results: dict[str, MatchResult] = {}
    cases: dict[str, DuplicateCase] = {}

    for row, outcome in zip(rows, outcomes):
        if outcome is None:
            result.cancelled = True
            continue

        row_index, payer_raw, amount, match_result, errors = outcome
        if errors:
            result.errors.extend(errors)
            continue

        result.counts.add(match_result.decision)

        paid_on = normalize_date(row.date)
        payment = Payment(
            id=make_payment_id(
                tenant_id,
                batch_id,
                row.external_id or row_index,
                match_result.payer_key,
                f"{amount:.2f}",
                normalize_reference(row.reference),
            ),
            tenant_id=tenant_id,
            amount=amount,
            currency=normalize_currency(row.currency, settings.default_currency),
            payer_raw=payer_raw,
            payer_key=match_result.payer_key,
            account_id=match_result.account_id,
            match_status=match_result.decision,
            provider=source if row.external_id else None,
            provider_payment_id=row.external_id,
            idempotency_key=idempotency_key(source, row.external_id),
            period=normalize_period(row.period, row.date),
            paid_at=datetime.combine(paid_on, time.min) if paid_on else None,
            reference=row.reference,
            source=source,
            batch_id=batch_id,
            row_index=row_index,
            created_at=now,
            updated_at=now,
        )
        payment = payment.model_copy(update={"fingerprint": fingerprint_payment(payment)})

        # Row already recorded (earlier run of this batch, or a repeated row): keep what is stored
        recorded = index.get(payment.id)
        if recorded is not None:
            result.results.append(RowResult(
                row_index=row_index,
                payment_id=recorded.id,
                match=match_result,
                duplicate_status=recorded.duplicate_status,
                duplicate_case_id=recorded.duplicate_case_id,
            ))
            continue

        classification = classify_duplicate(payment, index)
        stored, case, updates = apply_classification(payment, classification, index, now)

        if classification.status == "technical_duplicate":
            result.technical_duplicates += 1
            logger.info("Row %s is a technical duplicate of payment %s", row_index, stored.id)
        else:
            created.append(stored.id)
            match_results[stored.id] = match_result

        if case is not None:
            cases[case.id] = case
        for pid, update in updates.items():
            if pid in known_payment_ids:
                result.payment_updates.setdefault(pid, {}).update(update)

        result.results.append(RowResult(
            row_index=row_index,
            payment_id=stored.id,
            match=match_result,
            duplicate_status=(
                "technical_duplicate" if classification.status == "technical_duplicate"
                else stored.duplicate_status
            ),
            duplicate_case_id=stored.duplicate_case_id,
        ))

    # Final state of the rows created here, after later collisions marked them
    result.payments = [index.get(pid) for pid in created]
    result.matches = [
        MatchRecord(
            id=match_record_id(p.id),
            tenant_id=tenant_id,
            payment_id=p.id,
            batch_id=batch_id,
            account_id=match_results[p.id].account_id,
            decision=match_results[p.id].decision,
            status="auto" if match_results[p.id].decision == "auto" else "pending",
            score=match_results[p.id].score,
            candidates=match_results[p.id].candidates,
            explanation=match_results[p.id].explanation,
            reason=match_results[p.id].reason,
            created_at=now,
            updated_at=now,
        )
        for p in result.payments
    ]
    result.duplicate_cases = list(cases.values())
    created_ids = set(created)
    for row_result in result.results:
        stored = index.get(row_result.payment_id)
        if row_result.payment_id in created_ids:
            row_result.duplicate_status = stored.duplicate_status
            row_result.duplicate_case_id = stored.duplicate_case_id

    result.state = "persisting"
    result.duration_ms = int((datetime.now() - start_time).total_seconds() * 1000)

    logger.info(
        "Batch %s: %d rows, auto=%d review=%d no_match=%d conflict=%d errors=%d suspected=%d%s",
        batch_id, result.rows_total,
        result.counts.auto, result.counts.review, result.counts.no_match, result.counts.conflict,
        len(result.errors), result.suspected_duplicates,
        " (cancelled)" if result.cancelled else "",
    )
    return result


# ============================================
# Persistence
# ============================================

async def persist_batch(result: BatchResult, chunk_size: int = None) -> ImportBatch:
    """
    Write a batch result in chunks, then its summary.

    Chunks are independent: a failure leaves earlier chunks committed and
    raises PersistenceError. Ids are deterministic, so retrying the whole
    batch is safe.
    """
    chunk_size = chunk_size or get_settings().write_chunk_size
    result.state = "persisting"
    committed = 0

    async def write(label: str, writer, items: list) -> None:
        nonlocal committed
        for start in range(0, len(items), chunk_size):
            chunk = items[start:start + chunk_size]
            try:
                await writer(chunk)
            except Exception as e:
                logger.error("Batch %s: writing %s failed at item %d: %s", result.batch_id, label, start, e)
                raise PersistenceError(
                    f"Failed to write {label} for batch {result.batch_id}: {e}",
                    committed_chunks=committed,
                ) from e
            committed += 1

    await write("payments", database.save_payments, [p.model_dump(mode="json") for p in result.payments])
    await write("match results", database.save_match_results, [m.model_dump(mode="json") for m in result.matches])
    await write("duplicate cases", database.save_duplicate_cases, [c.model_dump(mode="json") for c in result.duplicate_cases])

    # Pre-existing payments pulled into a case, grouped by identical update
    grouped: dict[str, tuple[dict, list[str]]] = {}
    for pid, update in result.payment_updates.items():
        key = json.dumps(update, sort_keys=True)
        grouped.setdefault(key, (update, []))[1].append(pid)
    for update, ids in grouped.values():
        async def update_chunk(chunk: list[str], update=update) -> int:
            return await database.update_payments(chunk, update)
        await write("payment updates", update_chunk, ids)

    result.state = "summarizing"
    summary = result.summary().model_copy(update={"state": "completed"})
    try:
        await database.save_import_batch(summary.model_dump(mode="json"))
    except Exception as e:
        logger.error("Batch %s: saving summary failed: %s", result.batch_id, e)
        raise PersistenceError(f"Failed to save summary of batch {result.batch_id}: {e}", committed) from e

    result.state = "completed"
    logger.info("Batch %s persisted in %d chunks", result.batch_id, committed)
    return summary


# ============================================
# Database-backed entry point
# ============================================

async def reconcile_rows(
    tenant_id: str,
    rows: Iterable[Any],
    *,
    source: str = "import",
    batch_id: str = None,
    accounts: Iterable[Any] = None,
    user_id: str = None,
    cancel_event: Optional[Event] = None,
) -> tuple[BatchResult, ImportBatch]:
    """
    Load everything a batch needs, run it and persist it.

    Accounts come from the store unless given by the caller.
    """
    rows = [r if isinstance(r, PaymentRow) else PaymentRow(**r) for r in rows]
    validate_rows(rows)

    account_records = build_accounts(accounts if accounts is not None else await database.get_accounts(tenant_id))
    aliases = await load_alias_snapshot(tenant_id, account_records)

    batch_id = batch_id or make_batch_id(tenant_id, source, rows)

    # Same-period payments for duplicate detection, plus whatever an earlier
    # run of this batch wrote (rows without a period included)
    periods = {normalize_period(r.period, r.date) for r in rows}
    recorded: dict[str, dict] = {}
    for p in await database.get_payments_by_periods(tenant_id, periods):
        recorded[p["id"]] = p
    for p in await database.get_payments_by_batch(tenant_id, batch_id):
        recorded.setdefault(p["id"], p)
    existing = [Payment(**p) for p in recorded.values()]
    case_ids = {p.duplicate_case_id for p in existing if p.duplicate_case_id}
    cases = [DuplicateCase(**c) for c in await database.get_duplicate_cases(tenant_id, case_ids)]

    logger.info(
        "Reconciling %d rows for tenant %s against %d accounts, %d recorded payments",
        len(rows), tenant_id, len(account_records), len(existing),
    )

    result = await asyncio.to_thread(
        run_batch,
        rows,
        account_records,
        aliases,
        tenant_id=tenant_id,
        source=source,
        batch_id=batch_id,
        existing_payments=existing,
        existing_cases=cases,
        cancel_event=cancel_event,
        created_by=user_id,
    )
    summary = await persist_batch(result)
    return result, summary
