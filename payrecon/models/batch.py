# payrecon/models/batch.py

from datetime import datetime, timezone
from typing import Optional, Literal
from pydantic import BaseModel, Field

from payrecon.models.match import MatchResult


# ============================================
# Batch state
# ============================================

BatchState = Literal["loading", "iterating", "persisting", "summarizing", "completed", "rejected"]


class RowError(BaseModel):
    """Input error for one row; the row is skipped, the batch continues."""

    row_index: int
    field: str
    message: str


class DecisionCounts(BaseModel):
    auto: int = 0
    review: int = 0
    no_match: int = 0
    conflict: int = 0

    def add(self, decision: str) -> None:
        setattr(self, decision, getattr(self, decision) + 1)

    @property
    def total(self) -> int:
        return self.auto + self.review + self.no_match + self.conflict


class RowResult(BaseModel):
    """Per-row outcome of a batch run."""

    row_index: int
    payment_id: str
    match: MatchResult
    duplicate_status: str = "none"
    duplicate_case_id: Optional[str] = None


# ============================================
# Import batch (persisted summary)
# ============================================

class ImportBatch(BaseModel):
    """A reconciliation run record."""

    id: str
    tenant_id: str
    source: str = "import"
    state: BatchState = "completed"

    rows_total: int = 0
    rows_processed: int = 0
    error_count: int = 0
    auto_count: int = 0
    review_count: int = 0
    no_match_count: int = 0
    conflict_count: int = 0
    suspected_duplicates: int = 0
    cancelled: bool = False

    created_by: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: Optional[int] = None
