# payrecon/models/__init__.py

from payrecon.models.account import (
    PayerRecord,
    AccountRecord,
    PayerAlias,
    AliasHistoryEntry,
    AliasProvenance,
    PendingAlias,
    TargetKind,
)
from payrecon.models.match import (
    MatchCandidate,
    MatchDecision,
    MatchPolicy,
    MatchReason,
    MatchRecord,
    MatchRecordStatus,
    MatchResult,
)
from payrecon.models.payment import (
    Payment,
    PaymentRow,
    PaymentStatus,
    PaymentMatchStatus,
    DuplicateStatus,
    IngestPaymentInput,
    IngestPaymentResult,
)
from payrecon.models.duplicate import (
    DuplicateCase,
    DuplicateCaseStatus,
    DuplicateClassification,
    DuplicateResolution,
    ResolutionKind,
)
from payrecon.models.batch import (
    BatchState,
    DecisionCounts,
    ImportBatch,
    RowError,
    RowResult,
)

__all__ = [
    # Accounts & aliases
    "PayerRecord",
    "AccountRecord",
    "PayerAlias",
    "AliasHistoryEntry",
    "AliasProvenance",
    "PendingAlias",
    "TargetKind",
    # Match
    "MatchCandidate",
    "MatchDecision",
    "MatchPolicy",
    "MatchReason",
    "MatchRecord",
    "MatchRecordStatus",
    "MatchResult",
    # Payment
    "Payment",
    "PaymentRow",
    "PaymentStatus",
    "PaymentMatchStatus",
    "DuplicateStatus",
    "IngestPaymentInput",
    "IngestPaymentResult",
    # Duplicates
    "DuplicateCase",
    "DuplicateCaseStatus",
    "DuplicateClassification",
    "DuplicateResolution",
    "ResolutionKind",
    # Batch
    "BatchState",
    "DecisionCounts",
    "ImportBatch",
    "RowError",
    "RowResult",
]
