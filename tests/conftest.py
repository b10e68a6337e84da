# tests/conftest.py

"""
Shared fixtures.

FakeDatabase keeps every table in memory and replaces the functions of
payrecon.database, so core services and routes run without Supabase.
"""

import pytest

from payrecon import database
from payrecon.core.normalizers import to_account_record


class FakeDatabase:
    def __init__(self):
        self.accounts: dict[str, dict] = {}
        self.payer_entities: dict[str, dict] = {}
        self.aliases: dict[tuple, dict] = {}
        self.alias_history: list[dict] = []
        self.pending_aliases: dict[str, dict] = {}
        self.payments: dict[str, dict] = {}
        self.match_results: dict[str, dict] = {}
        self.duplicate_cases: dict[str, dict] = {}
        self.import_batches: dict[str, dict] = {}
        # Fail the Nth call of save_payments (1-based), for persistence tests
        self.fail_payment_write_at: int | None = None
        self.payment_writes = 0

    # ============================================
    # Seeding helpers
    # ============================================

    def add_account(self, tenant_id: str, account_id: str, display_name: str) -> None:
        self.accounts[account_id] = {"id": account_id, "tenant_id": tenant_id, "display_name": display_name}

    def add_payment(self, payment) -> None:
        self.payments[payment.id] = payment.model_dump(mode="json")

    # ============================================
    # Accounts
    # ============================================

    async def get_accounts(self, tenant_id):
        return [
            {"id": a["id"], "display_name": a["display_name"]}
            for a in self.accounts.values() if a["tenant_id"] == tenant_id
        ]

    async def get_account(self, tenant_id, account_id):
        account = self.accounts.get(account_id)
        if account and account["tenant_id"] == tenant_id:
            return {"id": account["id"], "display_name": account["display_name"]}
        return None

    async def get_payer_entity_names(self, tenant_id, entity_ids):
        return {
            eid: self.payer_entities[eid]["display_name"]
            for eid in entity_ids if eid in self.payer_entities
        }

    # ============================================
    # Aliases
    # ============================================

    async def get_payer_aliases(self, tenant_id, target_kind=None):
        return [
            dict(a) for (tenant, _, kind), a in self.aliases.items()
            if tenant == tenant_id and (target_kind is None or kind == target_kind)
        ]

    async def get_payer_alias(self, tenant_id, payer_key, target_kind):
        alias = self.aliases.get((tenant_id, payer_key, target_kind))
        return dict(alias) if alias else None

    async def upsert_payer_alias(self, alias):
        self.aliases[(alias["tenant_id"], alias["payer_key"], alias["target_kind"])] = dict(alias)
        return dict(alias)

    async def upsert_payer_aliases(self, aliases):
        for alias in aliases:
            await self.upsert_payer_alias(alias)
        return len(aliases)

    async def save_alias_history(self, entry):
        self.alias_history.append(dict(entry))
        return dict(entry)

    async def get_alias_history(self, tenant_id, payer_key=None, limit=50):
        rows = [
            h for h in self.alias_history
            if h["tenant_id"] == tenant_id and (payer_key is None or h["payer_key"] == payer_key)
        ]
        return rows[:limit]

    async def get_pending_aliases(self, tenant_id, limit=200):
        return [dict(p) for p in self.pending_aliases.values() if p["tenant_id"] == tenant_id][:limit]

    async def get_pending_alias(self, tenant_id, pending_id):
        pending = self.pending_aliases.get(pending_id)
        return dict(pending) if pending and pending["tenant_id"] == tenant_id else None

    async def upsert_pending_aliases(self, pending):
        for p in pending:
            self.pending_aliases[p["id"]] = dict(p)
        return len(pending)

    async def delete_pending_alias(self, tenant_id, pending_id):
        self.pending_aliases.pop(pending_id, None)

    # ============================================
    # Payments
    # ============================================

    def _tenant_payments(self, tenant_id):
        return [dict(p) for p in self.payments.values() if p["tenant_id"] == tenant_id]

    async def get_payment(self, tenant_id, payment_id):
        payment = self.payments.get(payment_id)
        return dict(payment) if payment and payment["tenant_id"] == tenant_id else None

    async def get_payment_by_idempotency_key(self, tenant_id, key):
        for p in self._tenant_payments(tenant_id):
            if p.get("idempotency_key") == key:
                return p
        return None

    async def get_payments(self, tenant_id, batch_id=None, match_status=None, duplicate_status=None, limit=50, offset=0):
        rows = [
            p for p in self._tenant_payments(tenant_id)
            if (batch_id is None or p.get("batch_id") == batch_id)
            and (match_status is None or p.get("match_status") == match_status)
            and (duplicate_status is None or p.get("duplicate_status") == duplicate_status)
        ]
        return rows[offset:offset + limit], len(rows)

    async def get_payments_by_ids(self, tenant_id, payment_ids):
        ids = set(payment_ids)
        return [p for p in self._tenant_payments(tenant_id) if p["id"] in ids]

    async def get_payments_by_periods(self, tenant_id, periods):
        values = {p for p in periods if p}
        return [p for p in self._tenant_payments(tenant_id) if p.get("period") in values]

    async def get_payments_by_batch(self, tenant_id, batch_id):
        return [p for p in self._tenant_payments(tenant_id) if p.get("batch_id") == batch_id]

    async def get_payments_by_fingerprint(self, tenant_id, fingerprint):
        return [p for p in self._tenant_payments(tenant_id) if p.get("fingerprint") == fingerprint]

    async def insert_payment_if_absent(self, payment):
        if payment["id"] in self.payments:
            return None
        self.payments[payment["id"]] = dict(payment)
        return dict(payment)

    async def save_payments(self, payments):
        self.payment_writes += 1
        if self.fail_payment_write_at == self.payment_writes:
            raise RuntimeError("connection reset")
        for p in payments:
            self.payments[p["id"]] = dict(p)
        return len(payments)

    async def update_payment(self, payment_id, updates):
        if payment_id not in self.payments:
            return None
        self.payments[payment_id].update(updates)
        return dict(self.payments[payment_id])

    async def update_payments(self, payment_ids, updates):
        count = 0
        for pid in payment_ids:
            if await self.update_payment(pid, updates):
                count += 1
        return count

    # ============================================
    # Match results
    # ============================================

    async def save_match_results(self, matches):
        for m in matches:
            self.match_results[m["id"]] = dict(m)
        return len(matches)

    async def get_match_result(self, tenant_id, match_id):
        record = self.match_results.get(match_id)
        return dict(record) if record and record["tenant_id"] == tenant_id else None

    async def upsert_match_result(self, match):
        self.match_results[match["id"]] = dict(match)
        return dict(match)

    # ============================================
    # Duplicate cases
    # ============================================

    async def get_duplicate_case(self, tenant_id, case_id):
        case = self.duplicate_cases.get(case_id)
        return dict(case) if case and case["tenant_id"] == tenant_id else None

    async def get_duplicate_cases(self, tenant_id, case_ids):
        return [dict(self.duplicate_cases[c]) for c in case_ids if c in self.duplicate_cases]

    async def list_duplicate_cases(self, tenant_id, status=None, limit=50, offset=0):
        rows = [
            dict(c) for c in self.duplicate_cases.values()
            if c["tenant_id"] == tenant_id and (status is None or c["status"] == status)
        ]
        return rows[offset:offset + limit], len(rows)

    async def save_duplicate_cases(self, cases):
        for c in cases:
            self.duplicate_cases[c["id"]] = dict(c)
        return len(cases)

    # ============================================
    # Import batches
    # ============================================

    async def save_import_batch(self, batch):
        self.import_batches[batch["id"]] = dict(batch)
        return dict(batch)

    async def get_import_batch(self, tenant_id, batch_id):
        batch = self.import_batches.get(batch_id)
        return dict(batch) if batch and batch["tenant_id"] == tenant_id else None

    async def get_import_batches(self, tenant_id, limit=30):
        return [dict(b) for b in self.import_batches.values() if b["tenant_id"] == tenant_id][:limit]


_FAKED = [
    name for name in dir(FakeDatabase)
    if not name.startswith("_") and not name.startswith("add_") and callable(getattr(FakeDatabase, name))
]


@pytest.fixture
def fake_db(monkeypatch) -> FakeDatabase:
    fake = FakeDatabase()
    for name in _FAKED:
        assert hasattr(database, name), name
        monkeypatch.setattr(database, name, getattr(fake, name))
    return fake


TENANT = "tenant-1"


@pytest.fixture
def accounts():
    return [
        to_account_record("ACC-1", "JUAN PEREZ"),
        to_account_record("ACC-2", "JOSE PEREZ"),
        to_account_record("ACC-3", "MARIA GONZALEZ"),
        to_account_record("ACC-42", "GOMEZ ROBERTO"),
    ]


@pytest.fixture
def seeded_db(fake_db, accounts) -> FakeDatabase:
    for account in accounts:
        fake_db.add_account(TENANT, account.account_id, account.display_name)
    return fake_db
