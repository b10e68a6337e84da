# payrecon/models/match.py

from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, Field

from payrecon.config import get_settings


# ============================================
# Decision policy
# ============================================

MatchDecision = Literal["auto", "review", "no_match", "conflict"]

MatchReason = Literal["alias", "exact", "fuzzy", "empty_payer"]


class MatchPolicy(BaseModel):
    """Thresholds used to classify scored candidates."""

    auto_threshold: int = Field(default=90, ge=0, le=100)
    review_threshold: int = Field(default=75, ge=0, le=100)
    auto_gap: int = Field(default=10, ge=0, le=100)
    conflict_gap: int = Field(default=5, ge=0, le=100)
    top_n: int = Field(default=5, ge=1)

    @classmethod
    def from_settings(cls) -> "MatchPolicy":
        settings = get_settings()
        return cls(
            auto_threshold=settings.auto_match_threshold,
            review_threshold=settings.review_threshold,
            auto_gap=settings.auto_match_gap,
            conflict_gap=settings.conflict_gap,
            top_n=settings.top_candidates,
        )


# ============================================
# Match results
# ============================================

class MatchCandidate(BaseModel):
    """An account scored against one payer."""

    account_id: str
    display_name: str
    score: int = Field(ge=0, le=100)


class MatchResult(BaseModel):
    """Decision for one transaction."""

    account_id: Optional[str] = None
    decision: MatchDecision
    score: int = Field(default=0, ge=0, le=100)
    candidates: list[MatchCandidate] = Field(default_factory=list)
    explanation: str = ""
    reason: Optional[MatchReason] = None
    payer_key: str = ""


MatchRecordStatus = Literal["auto", "pending", "confirmed", "rejected"]


class MatchRecord(BaseModel):
    """Match result as stored in database."""

    id: str
    tenant_id: str
    payment_id: str
    batch_id: Optional[str] = None

    account_id: Optional[str] = None
    decision: MatchDecision
    status: MatchRecordStatus = "pending"
    score: int = 0
    candidates: list[MatchCandidate] = Field(default_factory=list)
    explanation: str = ""
    reason: Optional[MatchReason] = None

    confirmed_by: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    rejected_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
