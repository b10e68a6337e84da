# payrecon/models/payment.py

from datetime import datetime
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field

PaymentMatchStatus = Literal["auto", "review", "no_match", "conflict", "confirmed", "rejected"]

PaymentStatus = Literal["pending", "approved", "rejected", "refunded"]

DuplicateStatus = Literal["none", "suspected", "confirmed", "ignored"]


class Payment(BaseModel):
    """A financial transaction attributed (or not yet) to an account."""

    id: str
    tenant_id: str
    amount: Optional[float] = None
    currency: str = "ARS"
    payer_raw: str = ""
    payer_key: str = ""

    account_id: Optional[str] = None
    match_status: PaymentMatchStatus = "no_match"
    status: PaymentStatus = "approved"

    provider: Optional[str] = None
    provider_payment_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    period: Optional[str] = None
    paid_at: Optional[datetime] = None
    reference: Optional[str] = None

    fingerprint: Optional[str] = None
    duplicate_status: DuplicateStatus = "none"
    duplicate_case_id: Optional[str] = None

    source: str = "import"
    batch_id: Optional[str] = None
    row_index: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentRow(BaseModel):
    """
    One parsed transaction row.

    Column mapping happens upstream; this is the fixed shape the
    reconciliation core accepts. Values stay loose so malformed cells
    can be reported per row instead of failing validation of the batch.
    """

    payer_raw: Optional[str] = None
    payer_parts: list[str] = Field(default_factory=list)
    amount: Any = None
    date: Any = None
    period: Optional[str] = None
    currency: Optional[str] = None
    reference: Optional[str] = None
    external_id: Optional[str] = None
    row_index: Optional[int] = None


# ============================================
# Webhook ingestion
# ============================================

class IngestPaymentInput(BaseModel):
    """Provider payload reduced to what ingestion needs."""

    tenant_id: str
    provider: str
    provider_payment_id: Optional[str] = None
    payer_raw: str = ""
    account_id: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    period: Optional[str] = None
    reference: Optional[str] = None
    status: PaymentStatus = "approved"


class IngestPaymentResult(BaseModel):
    payment_id: str
    created: bool
    is_duplicate_technical: bool = False
    duplicate_status: DuplicateStatus = "none"
    duplicate_case_id: Optional[str] = None
    match_status: Optional[PaymentMatchStatus] = None
