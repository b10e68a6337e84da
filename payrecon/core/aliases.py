# payrecon/core/aliases.py

"""
Payer alias store accessor.

Reads are bulk: one snapshot per batch, keyed by normalized payer string.
Writes are single atomic upserts keyed by (tenant, payer_key, target_kind),
so concurrent confirmations resolve last-write-wins without lost updates.
"""

from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional
import hashlib
import logging

from payrecon import database
from payrecon.config import get_settings
from payrecon.core.exceptions import NotFoundError
from payrecon.core.normalizers import normalize, normalize_name
from payrecon.core.scoring import score
from payrecon.models import (
    AccountRecord,
    AliasHistoryEntry,
    AliasProvenance,
    PayerAlias,
    PendingAlias,
    TargetKind,
)

logger = logging.getLogger(__name__)


def mapping_id(payer_key: str, target_kind: str, target_id: str) -> str:
    """Deterministic id of one payer -> target association."""
    payload = "|".join([payer_key, target_kind, target_id])
    return "map_" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


class AliasSnapshot:
    """
    Read-only view of the account aliases for one run.

    Refreshed at batch start and shared by all workers.
    """

    def __init__(self, aliases: Optional[Mapping[str, PayerAlias]] = None):
        self._aliases: dict[str, PayerAlias] = dict(aliases or {})

    def lookup(self, payer_key: str) -> Optional[PayerAlias]:
        if not payer_key:
            return None
        return self._aliases.get(payer_key)

    def __contains__(self, payer_key: str) -> bool:
        return payer_key in self._aliases

    def __len__(self) -> int:
        return len(self._aliases)

    @classmethod
    def build(
        cls,
        aliases: Iterable[PayerAlias],
        accounts: Iterable[AccountRecord] = (),
        entity_names: Optional[Mapping[str, str]] = None,
    ) -> "AliasSnapshot":
        """
        Index aliases by payer key.

        Account aliases are used as-is. Aliases pointing at a payer entity
        are resolved to the account carrying the entity's name: exact
        normalized name first, else the best token score at or above
        entity_alias_min_score. Unresolvable entity aliases are skipped.
        """
        accounts = list(accounts)
        entity_names = entity_names or {}
        min_score = get_settings().entity_alias_min_score

        resolved: dict[str, PayerAlias] = {}
        entity_aliases: list[PayerAlias] = []

        for alias in aliases:
            if alias.target_kind == "account":
                resolved[alias.payer_key] = alias
            else:
                entity_aliases.append(alias)

        for alias in entity_aliases:
            # An account alias for the same key wins
            if alias.payer_key in resolved:
                continue
            name = entity_names.get(alias.target_id) or alias.target_raw
            account = _resolve_entity_account(name, accounts, min_score)
            if account is None:
                logger.debug("Entity alias %s -> %s has no account", alias.payer_key, alias.target_id)
                continue
            resolved[alias.payer_key] = alias.model_copy(update={
                "target_kind": "account",
                "target_id": account.account_id,
                "target_raw": account.display_name,
            })

        return cls(resolved)


def _resolve_entity_account(
    name: str | None,
    accounts: list[AccountRecord],
    min_score: int,
) -> Optional[AccountRecord]:
    entity = normalize(name)
    if entity.is_empty:
        return None

    for account in accounts:
        if account.normalized == entity.normalized:
            return account

    best: Optional[AccountRecord] = None
    best_score = 0
    for account in accounts:
        s = score(entity.tokens, account.tokens)
        if s >= min_score and s > best_score:
            best, best_score = account, s
    return best


# ============================================
# Database-backed operations
# ============================================

async def load_alias_snapshot(
    tenant_id: str,
    accounts: Iterable[AccountRecord] = (),
) -> AliasSnapshot:
    """Bulk-load all aliases of a tenant into a snapshot."""
    rows = await database.get_payer_aliases(tenant_id)
    aliases = [PayerAlias(**row) for row in rows]

    entity_ids = {a.target_id for a in aliases if a.target_kind == "payer_entity"}
    entity_names = await database.get_payer_entity_names(tenant_id, entity_ids) if entity_ids else {}

    snapshot = AliasSnapshot.build(aliases, accounts, entity_names)
    logger.info("Loaded %d aliases for tenant %s", len(snapshot), tenant_id)
    return snapshot


async def lookup_alias(
    tenant_id: str,
    payer_text: str,
    target_kind: TargetKind = "account",
) -> Optional[PayerAlias]:
    """Single alias read by payer text (normalized here)."""
    payer_key = normalize_name(payer_text)
    if not payer_key:
        return None
    row = await database.get_payer_alias(tenant_id, payer_key, target_kind)
    return PayerAlias(**row) if row else None


async def upsert_alias(
    tenant_id: str,
    payer_key: str,
    target_kind: TargetKind,
    target_id: str,
    provenance: AliasProvenance,
    *,
    payer_raw: str = "",
    target_raw: str = "",
    user_id: str | None = None,
) -> PayerAlias:
    """
    Create or overwrite the alias for a payer key.

    The upsert itself is atomic. The previous target is read only to audit
    the overwrite; re-confirming the same target writes no history.
    """
    if not payer_key:
        raise ValueError("payer_key is required")

    previous = await database.get_payer_alias(tenant_id, payer_key, target_kind) or {}
    previous_target = previous.get("target_id")
    moved = bool(previous_target) and previous_target != target_id
    now = datetime.now(timezone.utc)

    alias = PayerAlias(
        tenant_id=tenant_id,
        payer_key=payer_key,
        payer_raw=payer_raw or previous.get("payer_raw", ""),
        target_kind=target_kind,
        target_id=target_id,
        target_raw=target_raw,
        provenance=provenance,
        mapping_id=mapping_id(payer_key, target_kind, target_id),
        previous_target_id=previous_target if moved else previous.get("previous_target_id"),
        created_at=previous.get("created_at") or now,
        created_by=previous.get("created_by") or user_id,
        updated_at=now,
        updated_by=user_id,
    )

    saved = await database.upsert_payer_alias(alias.model_dump(mode="json"))

    if moved:
        entry = AliasHistoryEntry(
            tenant_id=tenant_id,
            payer_key=payer_key,
            target_kind=target_kind,
            previous_target_id=previous_target,
            new_target_id=target_id,
            changed_by=user_id,
            changed_at=now,
        )
        await database.save_alias_history(entry.model_dump(mode="json"))
        logger.info("Alias %r moved %s -> %s by %s", payer_key, previous_target, target_id, user_id)

    return PayerAlias(**saved) if saved else alias


def pending_alias_id(payer_key: str, target_raw: str) -> str:
    """Deterministic id of a queued payer -> client name pair."""
    payload = "|".join([payer_key, normalize_name(target_raw)])
    return "pend_" + hashlib.sha256(payload.encode("utf-8")).hexdigest()[:32]


async def bulk_import_aliases(
    tenant_id: str,
    mappings: Iterable[dict],
    *,
    provenance: AliasProvenance = "import",
    user_id: str | None = None,
    chunk_size: int | None = None,
) -> dict:
    """
    Import many payer -> account associations at once.

    Each item needs a payer, normalized into the key. Items with a
    target_id become aliases. Items naming the client only (target_raw)
    are queued as pending aliases for a reviewer. Anything else is skipped.

    Returns {"imported", "pending", "skipped"} counts.
    """
    chunk_size = chunk_size or get_settings().write_chunk_size
    now = datetime.now(timezone.utc)

    rows: dict[tuple[str, str], dict] = {}
    pending: dict[str, dict] = {}
    skipped = 0
    for item in mappings:
        payer_key = normalize_name(item.get("payer"))
        target_id = str(item.get("target_id") or "").strip()
        target_kind = item.get("target_kind") or "account"
        target_raw = str(item.get("target_raw") or "").strip()
        if not payer_key:
            skipped += 1
            continue
        if not target_id:
            if not normalize_name(target_raw):
                skipped += 1
                continue
            queued = PendingAlias(
                id=pending_alias_id(payer_key, target_raw),
                tenant_id=tenant_id,
                payer_key=payer_key,
                payer_raw=str(item.get("payer")),
                target_raw=target_raw,
                created_at=now,
                created_by=user_id,
            )
            pending[queued.id] = queued.model_dump(mode="json")
            continue
        alias = PayerAlias(
            tenant_id=tenant_id,
            payer_key=payer_key,
            payer_raw=str(item.get("payer")),
            target_kind=target_kind,
            target_id=target_id,
            target_raw=str(item.get("target_raw") or target_id),
            provenance=provenance,
            mapping_id=mapping_id(payer_key, target_kind, target_id),
            created_at=now,
            created_by=user_id,
            updated_at=now,
            updated_by=user_id,
        )
        # Later rows for the same key win
        rows[(payer_key, target_kind)] = alias.model_dump(mode="json")

    values = list(rows.values())
    written = 0
    for start in range(0, len(values), chunk_size):
        written += await database.upsert_payer_aliases(values[start:start + chunk_size])

    queued = list(pending.values())
    queued_count = 0
    for start in range(0, len(queued), chunk_size):
        queued_count += await database.upsert_pending_aliases(queued[start:start + chunk_size])

    logger.info(
        "Imported %d aliases for tenant %s (%d pending, %d skipped)",
        written, tenant_id, queued_count, skipped,
    )
    return {"imported": written, "pending": queued_count, "skipped": skipped}


# ============================================
# Pending aliases
# ============================================

async def confirm_pending_alias(
    tenant_id: str,
    pending_id: str,
    account_id: str,
    user_id: str | None = None,
) -> PayerAlias:
    """
    Assign a queued payer to an account.

    Writes a manual alias for the payer key and removes the queued pair.
    """
    row = await database.get_pending_alias(tenant_id, pending_id)
    if not row:
        raise NotFoundError(f"Pending alias {pending_id} not found")
    pending = PendingAlias(**row)

    account = await database.get_account(tenant_id, account_id)
    if not account:
        raise NotFoundError(f"Account {account_id} not found")

    alias = await upsert_alias(
        tenant_id,
        pending.payer_key,
        "account",
        account_id,
        "manual",
        payer_raw=pending.payer_raw,
        target_raw=account.get("display_name") or "",
        user_id=user_id,
    )
    await database.delete_pending_alias(tenant_id, pending_id)

    logger.info("Pending alias %r assigned to %s by %s", pending.payer_key, account_id, user_id)
    return alias
