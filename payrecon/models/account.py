# payrecon/models/account.py

from datetime import datetime, timezone
from typing import Optional, Literal
from pydantic import BaseModel, ConfigDict, Field


# ============================================
# Names
# ============================================

class PayerRecord(BaseModel):
    """Payer description of a single incoming transaction."""

    model_config = ConfigDict(frozen=True)

    raw: str
    normalized: str
    tokens: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.tokens


class AccountRecord(BaseModel):
    """Internal account (client) taking part in matching."""

    model_config = ConfigDict(frozen=True)

    account_id: str
    display_name: str
    normalized: str
    tokens: tuple[str, ...] = ()


# ============================================
# Payer aliases
# ============================================

TargetKind = Literal["account", "payer_entity"]

AliasProvenance = Literal["import", "bank_import", "manual"]


class PayerAlias(BaseModel):
    """Learned payer -> target association."""

    payer_key: str
    payer_raw: str = ""
    target_kind: TargetKind = "account"
    target_id: str
    target_raw: str = ""
    provenance: AliasProvenance = "manual"
    mapping_id: Optional[str] = None
    tenant_id: Optional[str] = None

    previous_target_id: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    notes: Optional[str] = None


class AliasHistoryEntry(BaseModel):
    """Audit row written when an alias is pointed at a different target."""

    tenant_id: str
    payer_key: str
    target_kind: TargetKind
    previous_target_id: Optional[str] = None
    new_target_id: str
    changed_by: Optional[str] = None
    changed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PendingAlias(BaseModel):
    """
    Payer -> client pair waiting for a reviewer to pick the account.

    Queued by imports that name the client but cannot point at an account;
    confirming one turns it into a regular alias and removes it.
    """

    id: str
    tenant_id: str
    payer_key: str
    payer_raw: str = ""
    target_raw: str = ""
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
