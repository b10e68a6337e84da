# payrecon/core/__init__.py

from payrecon.core.matching import match, suggest, classify, build_accounts
from payrecon.core.scoring import score, top_candidates
from payrecon.core.aliases import AliasSnapshot, upsert_alias, bulk_import_aliases, confirm_pending_alias
from payrecon.core.duplicates import (
    DuplicateIndex,
    classify_duplicate,
    apply_resolution,
    compute_fingerprint,
    idempotency_key,
)
from payrecon.core.batch import run_batch, persist_batch, reconcile_rows, BatchResult
from payrecon.core.feedback import confirm_match, reject_match
from payrecon.core.ingestion import ingest_payment
from payrecon.core.resolution import resolve_duplicate_case
from payrecon.core.normalizers import (
    normalize,
    normalize_name,
    parse_amount,
    normalize_period,
)

__all__ = [
    "match",
    "suggest",
    "classify",
    "build_accounts",
    "score",
    "top_candidates",
    "AliasSnapshot",
    "upsert_alias",
    "bulk_import_aliases",
    "confirm_pending_alias",
    "DuplicateIndex",
    "classify_duplicate",
    "apply_resolution",
    "compute_fingerprint",
    "idempotency_key",
    "run_batch",
    "persist_batch",
    "reconcile_rows",
    "BatchResult",
    "confirm_match",
    "reject_match",
    "ingest_payment",
    "resolve_duplicate_case",
    "normalize",
    "normalize_name",
    "parse_amount",
    "normalize_period",
]
