# payrecon/models/duplicate.py

from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, Field


# ============================================
# Duplicate cases
# ============================================

DuplicateCaseStatus = Literal["open", "resolved_single", "resolved_all", "refunded", "ignored"]

ResolutionKind = Literal["resolved_single", "resolved_all", "refunded", "ignored"]


class DuplicateResolution(BaseModel):
    """Outcome of a human resolving a duplicate case."""

    kind: ResolutionKind
    chosen_payment_ids: list[str] = Field(default_factory=list)
    notes: str = ""
    resolved_by: Optional[str] = None
    resolved_at: Optional[datetime] = None


class DuplicateCase(BaseModel):
    """Payments suspected to be the same real-world transaction."""

    id: str
    tenant_id: str
    fingerprint: str
    identity: str = ""
    payment_ids: list[str] = Field(default_factory=list)
    status: DuplicateCaseStatus = "open"
    resolution: Optional[DuplicateResolution] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"


# ============================================
# Classification
# ============================================

DuplicateClassificationStatus = Literal["new", "technical_duplicate", "suspected"]


class DuplicateClassification(BaseModel):
    """How an incoming payment relates to the ones already recorded."""

    status: DuplicateClassificationStatus
    fingerprint: Optional[str] = None
    duplicate_case_id: Optional[str] = None
    existing_payment_id: Optional[str] = None
    colliding_payment_ids: list[str] = Field(default_factory=list)
    case_created: bool = False
