# payrecon/database.py

from functools import lru_cache
from typing import Iterable

from supabase import create_client, Client
from payrecon.config import get_settings


@lru_cache()
def get_supabase() -> Client:
    """Public client (respects RLS)."""
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_anon_key)


@lru_cache()
def get_supabase_admin() -> Client:
    """Admin client (bypasses RLS - use carefully)."""
    settings = get_settings()
    return create_client(settings.supabase_url, settings.supabase_service_role_key)


def _table(name: str):
    return get_supabase_admin().table(name)


# ============================================
# Accounts
# ============================================

async def get_accounts(tenant_id: str) -> list[dict]:
    """Get all accounts of a tenant (id + display_name)."""
    response = _table("accounts").select("id, display_name").eq("tenant_id", tenant_id).execute()
    return response.data


async def get_account(tenant_id: str, account_id: str) -> dict | None:
    response = (
        _table("accounts")
        .select("id, display_name")
        .eq("tenant_id", tenant_id)
        .eq("id", account_id)
        .execute()
    )
    return response.data[0] if response.data else None


async def get_payer_entity_names(tenant_id: str, entity_ids: Iterable[str]) -> dict[str, str]:
    """Display names of payer entities targeted by aliases."""
    ids = list(entity_ids)
    if not ids:
        return {}
    response = (
        _table("payer_entities")
        .select("id, display_name")
        .eq("tenant_id", tenant_id)
        .in_("id", ids)
        .execute()
    )
    return {row["id"]: row.get("display_name") or "" for row in response.data}


# ============================================
# Payer aliases
# ============================================

async def get_payer_aliases(tenant_id: str, target_kind: str = None) -> list[dict]:
    """Bulk read of a tenant's aliases."""
    query = _table("payer_aliases").select("*").eq("tenant_id", tenant_id)
    if target_kind:
        query = query.eq("target_kind", target_kind)
    response = query.execute()
    return response.data


async def get_payer_alias(tenant_id: str, payer_key: str, target_kind: str) -> dict | None:
    """Get the active alias for a payer key."""
    response = (
        _table("payer_aliases")
        .select("*")
        .eq("tenant_id", tenant_id)
        .eq("payer_key", payer_key)
        .eq("target_kind", target_kind)
        .execute()
    )
    return response.data[0] if response.data else None


async def upsert_payer_alias(alias: dict) -> dict | None:
    """Atomic upsert of one alias; one active row per key and target kind."""
    response = _table("payer_aliases").upsert(
        alias,
        on_conflict="tenant_id,payer_key,target_kind",
    ).execute()
    return response.data[0] if response.data else None


async def upsert_payer_aliases(aliases: list[dict]) -> int:
    """Upsert a chunk of aliases."""
    if not aliases:
        return 0
    response = _table("payer_aliases").upsert(
        aliases,
        on_conflict="tenant_id,payer_key,target_kind",
    ).execute()
    return len(response.data) if response.data else 0


async def save_alias_history(entry: dict) -> dict | None:
    """Record an alias overwrite."""
    response = _table("payer_alias_history").insert(entry).execute()
    return response.data[0] if response.data else None


async def get_alias_history(tenant_id: str, payer_key: str = None, limit: int = 50) -> list[dict]:
    query = _table("payer_alias_history").select("*").eq("tenant_id", tenant_id)
    if payer_key:
        query = query.eq("payer_key", payer_key)
    response = query.order("changed_at", desc=True).limit(limit).execute()
    return response.data


# ============================================
# Pending aliases
# ============================================

async def get_pending_aliases(tenant_id: str, limit: int = 200) -> list[dict]:
    """Pending payer -> client pairs, newest first."""
    response = (
        _table("pending_payer_aliases")
        .select("*")
        .eq("tenant_id", tenant_id)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return response.data


async def get_pending_alias(tenant_id: str, pending_id: str) -> dict | None:
    response = (
        _table("pending_payer_aliases")
        .select("*")
        .eq("tenant_id", tenant_id)
        .eq("id", pending_id)
        .execute()
    )
    return response.data[0] if response.data else None


async def upsert_pending_aliases(pending: list[dict]) -> int:
    """Queue a chunk of pending aliases; the same pair always lands on one row."""
    if not pending:
        return 0
    response = _table("pending_payer_aliases").upsert(pending, on_conflict="id").execute()
    return len(response.data) if response.data else 0


async def delete_pending_alias(tenant_id: str, pending_id: str) -> None:
    _table("pending_payer_aliases").delete().eq("tenant_id", tenant_id).eq("id", pending_id).execute()


# ============================================
# Payments
# ============================================

async def get_payment(tenant_id: str, payment_id: str) -> dict | None:
    """Get a single payment."""
    response = _table("payments").select("*").eq("tenant_id", tenant_id).eq("id", payment_id).execute()
    return response.data[0] if response.data else None


async def get_payment_by_idempotency_key(tenant_id: str, key: str) -> dict | None:
    response = (
        _table("payments")
        .select("*")
        .eq("tenant_id", tenant_id)
        .eq("idempotency_key", key)
        .execute()
    )
    return response.data[0] if response.data else None


async def get_payments(
    tenant_id: str,
    batch_id: str = None,
    match_status: str = None,
    duplicate_status: str = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    """Get payments with filters."""
    query = _table("payments").select("*", count="exact").eq("tenant_id", tenant_id)

    if batch_id:
        query = query.eq("batch_id", batch_id)
    if match_status:
        query = query.eq("match_status", match_status)
    if duplicate_status:
        query = query.eq("duplicate_status", duplicate_status)

    response = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
    return response.data, response.count


async def get_payments_by_ids(tenant_id: str, payment_ids: Iterable[str]) -> list[dict]:
    ids = list(payment_ids)
    if not ids:
        return []
    response = _table("payments").select("*").eq("tenant_id", tenant_id).in_("id", ids).execute()
    return response.data


async def get_payments_by_periods(tenant_id: str, periods: Iterable[str]) -> list[dict]:
    """Payments of the given billing periods (duplicate index for a batch)."""
    values = sorted(set(p for p in periods if p))
    if not values:
        return []
    response = _table("payments").select("*").eq("tenant_id", tenant_id).in_("period", values).execute()
    return response.data


async def get_payments_by_batch(tenant_id: str, batch_id: str) -> list[dict]:
    """Payments already written by a batch (re-runs keep them as stored)."""
    response = _table("payments").select("*").eq("tenant_id", tenant_id).eq("batch_id", batch_id).execute()
    return response.data


async def get_payments_by_fingerprint(tenant_id: str, fingerprint: str) -> list[dict]:
    response = (
        _table("payments")
        .select("*")
        .eq("tenant_id", tenant_id)
        .eq("fingerprint", fingerprint)
        .execute()
    )
    return response.data


async def insert_payment_if_absent(payment: dict) -> dict | None:
    """
    Create a payment unless its id exists.

    Returns the inserted row, or None when a row with that id was already
    there (store-level create-if-absent).
    """
    response = _table("payments").upsert(
        payment,
        on_conflict="id",
        ignore_duplicates=True,
    ).execute()
    return response.data[0] if response.data else None


async def save_payments(payments: list[dict]) -> int:
    """Upsert a chunk of payments by deterministic id."""
    if not payments:
        return 0
    response = _table("payments").upsert(payments, on_conflict="id").execute()
    return len(response.data) if response.data else 0


async def update_payment(payment_id: str, updates: dict) -> dict | None:
    """Update a payment."""
    response = _table("payments").update(updates).eq("id", payment_id).execute()
    return response.data[0] if response.data else None


async def update_payments(payment_ids: list[str], updates: dict) -> int:
    """Apply the same update to several payments."""
    if not payment_ids:
        return 0
    response = _table("payments").update(updates).in_("id", payment_ids).execute()
    return len(response.data) if response.data else 0


# ============================================
# Match results
# ============================================

async def save_match_results(matches: list[dict]) -> int:
    """Upsert a chunk of match results."""
    if not matches:
        return 0
    response = _table("match_results").upsert(matches, on_conflict="id").execute()
    return len(response.data) if response.data else 0


async def get_match_result(tenant_id: str, match_id: str) -> dict | None:
    response = _table("match_results").select("*").eq("tenant_id", tenant_id).eq("id", match_id).execute()
    return response.data[0] if response.data else None


async def upsert_match_result(match: dict) -> dict | None:
    response = _table("match_results").upsert(match, on_conflict="id").execute()
    return response.data[0] if response.data else None


# ============================================
# Duplicate cases
# ============================================

async def get_duplicate_case(tenant_id: str, case_id: str) -> dict | None:
    response = (
        _table("duplicate_cases")
        .select("*")
        .eq("tenant_id", tenant_id)
        .eq("id", case_id)
        .execute()
    )
    return response.data[0] if response.data else None


async def list_duplicate_cases(
    tenant_id: str,
    status: str = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[dict], int]:
    query = _table("duplicate_cases").select("*", count="exact").eq("tenant_id", tenant_id)
    if status:
        query = query.eq("status", status)
    response = query.order("created_at", desc=True).range(offset, offset + limit - 1).execute()
    return response.data, response.count


async def get_duplicate_cases(tenant_id: str, case_ids: Iterable[str]) -> list[dict]:
    """Cases referenced by already loaded payments."""
    ids = sorted(set(c for c in case_ids if c))
    if not ids:
        return []
    response = _table("duplicate_cases").select("*").eq("tenant_id", tenant_id).in_("id", ids).execute()
    return response.data


async def save_duplicate_cases(cases: list[dict]) -> int:
    """Upsert a chunk of duplicate cases."""
    if not cases:
        return 0
    response = _table("duplicate_cases").upsert(cases, on_conflict="id").execute()
    return len(response.data) if response.data else 0


# ============================================
# Import batches
# ============================================

async def save_import_batch(batch: dict) -> dict | None:
    """Save a reconciliation batch summary."""
    response = _table("import_batches").upsert(batch, on_conflict="id").execute()
    return response.data[0] if response.data else None


async def get_import_batch(tenant_id: str, batch_id: str) -> dict | None:
    response = (
        _table("import_batches")
        .select("*")
        .eq("tenant_id", tenant_id)
        .eq("id", batch_id)
        .execute()
    )
    return response.data[0] if response.data else None


async def get_import_batches(tenant_id: str, limit: int = 30) -> list[dict]:
    """Get batch history for a tenant."""
    response = (
        _table("import_batches")
        .select("*")
        .eq("tenant_id", tenant_id)
        .order("created_at", desc=True)
        .limit(limit)
        .execute()
    )
    return response.data
