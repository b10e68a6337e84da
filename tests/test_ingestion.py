# tests/test_ingestion.py

"""
Tests for webhook ingestion and duplicate case resolution.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from payrecon.core.exceptions import InvalidResolutionError, NotFoundError
from payrecon.core.ingestion import ingest_payment
from payrecon.core.resolution import resolve_duplicate_case
from payrecon.integrations.stripe import event_to_ingest_input
from payrecon.models import DuplicateResolution, IngestPaymentInput

from test_stripe import make_event

TENANT = "tenant-1"


def make_input(provider_payment_id: str = "ch_1", **kwargs) -> IngestPaymentInput:
    values = {
        "tenant_id": TENANT,
        "provider": "stripe",
        "provider_payment_id": provider_payment_id,
        "payer_raw": "Juan Perez",
        "amount": 1500.0,
        "currency": "ARS",
        "paid_at": datetime(2024, 3, 10, tzinfo=timezone.utc),
    }
    values.update(kwargs)
    return IngestPaymentInput(**values)


def ingest(data: IngestPaymentInput):
    return asyncio.run(ingest_payment(data))


# ============================================
# Ingestion
# ============================================

class TestIngestPayment:

    def test_same_webhook_twice_creates_one_payment(self, seeded_db):
        first = ingest(make_input())
        second = ingest(make_input())

        assert first.created
        assert not first.is_duplicate_technical
        assert not second.created
        assert second.is_duplicate_technical
        assert second.payment_id == first.payment_id
        assert len(seeded_db.payments) == 1

    def test_payer_is_matched_when_account_unknown(self, seeded_db):
        result = ingest(make_input())
        payment = seeded_db.payments[result.payment_id]

        assert result.match_status == "auto"
        assert payment["account_id"] == "ACC-1"
        assert payment["period"] == "2024-03"
        assert payment["idempotency_key"] == "stripe_ch_1"
        assert seeded_db.match_results[f"match_{result.payment_id}"]["reason"] == "exact"

    def test_account_from_provider_is_trusted(self, seeded_db):
        result = ingest(make_input(account_id="ACC-3", payer_raw="Someone Else"))

        assert result.match_status == "confirmed"
        assert seeded_db.payments[result.payment_id]["account_id"] == "ACC-3"
        assert seeded_db.match_results == {}

    def test_status_change_updates_existing(self, seeded_db):
        first = ingest(make_input())
        refund = ingest(make_input(status="refunded"))

        assert not refund.created
        assert not refund.is_duplicate_technical
        assert refund.payment_id == first.payment_id
        assert seeded_db.payments[first.payment_id]["status"] == "refunded"
        assert len(seeded_db.payments) == 1

    def test_different_event_same_fingerprint_is_suspected(self, seeded_db):
        first = ingest(make_input("ch_1"))
        second = ingest(make_input("ch_2", payer_raw="Perez, Juan"))

        assert second.created
        assert second.duplicate_status == "suspected"
        case = seeded_db.duplicate_cases[second.duplicate_case_id]
        assert sorted(case["payment_ids"]) == sorted([first.payment_id, second.payment_id])
        assert seeded_db.payments[first.payment_id]["duplicate_status"] == "suspected"

    def test_missing_amount_is_inconclusive(self, seeded_db, caplog):
        result = ingest(make_input(amount=None))

        assert result.created
        assert result.duplicate_status == "none"
        assert seeded_db.payments[result.payment_id]["fingerprint"] is None
        assert "inconclusive" in caplog.text

    def test_lost_insert_race_is_technical_duplicate(self, seeded_db, monkeypatch):
        first = ingest(make_input())

        # The idempotency read misses, the insert finds the row
        async def no_key(tenant_id, key):
            return None

        monkeypatch.setattr("payrecon.database.get_payment_by_idempotency_key", no_key)
        second = ingest(make_input())

        assert second.is_duplicate_technical
        assert second.payment_id == first.payment_id
        assert len(seeded_db.payments) == 1


# ============================================
# Stripe events of one payment
# ============================================

class TestStripeEvents:

    def test_intent_and_charge_are_one_payment(self, seeded_db):
        intent = ingest(event_to_ingest_input(make_event(
            "payment_intent.succeeded", id="pi_1", object="payment_intent", amount_received=150000,
        )))
        charge = ingest(event_to_ingest_input(make_event(payment_intent="pi_1")))

        assert intent.created
        assert charge.is_duplicate_technical
        assert charge.payment_id == intent.payment_id
        assert len(seeded_db.payments) == 1
        assert seeded_db.duplicate_cases == {}

    def test_charge_refund_updates_intent_payment(self, seeded_db):
        intent = ingest(event_to_ingest_input(make_event(
            "payment_intent.succeeded", id="pi_1", object="payment_intent", amount_received=150000,
        )))
        refund = ingest(event_to_ingest_input(make_event("charge.refunded", payment_intent="pi_1", refunded=True)))

        assert refund.payment_id == intent.payment_id
        assert not refund.is_duplicate_technical
        assert seeded_db.payments[intent.payment_id]["status"] == "refunded"


# ============================================
# Case resolution
# ============================================

class TestResolveDuplicateCase:

    def open_case(self) -> tuple[str, str, str]:
        first = ingest(make_input("ch_1"))
        second = ingest(make_input("ch_2"))
        return second.duplicate_case_id, first.payment_id, second.payment_id

    def test_resolve_single(self, seeded_db):
        case_id, p1, p2 = self.open_case()

        case = asyncio.run(resolve_duplicate_case(
            TENANT, case_id,
            DuplicateResolution(kind="resolved_single", chosen_payment_ids=[p1], resolved_by="u1"),
        ))

        assert case.status == "resolved_single"
        assert seeded_db.duplicate_cases[case_id]["status"] == "resolved_single"
        assert seeded_db.payments[p1]["duplicate_status"] == "confirmed"
        assert seeded_db.payments[p2]["duplicate_status"] == "ignored"

    def test_refund(self, seeded_db):
        case_id, p1, p2 = self.open_case()

        asyncio.run(resolve_duplicate_case(
            TENANT, case_id, DuplicateResolution(kind="refunded", chosen_payment_ids=[p2]),
        ))

        assert seeded_db.payments[p2]["status"] == "refunded"
        assert seeded_db.payments[p1]["duplicate_status"] == "confirmed"

    def test_resolving_twice_fails(self, seeded_db):
        case_id, _, _ = self.open_case()
        asyncio.run(resolve_duplicate_case(TENANT, case_id, DuplicateResolution(kind="ignored")))

        with pytest.raises(InvalidResolutionError):
            asyncio.run(resolve_duplicate_case(TENANT, case_id, DuplicateResolution(kind="ignored")))

    def test_unknown_case(self, seeded_db):
        with pytest.raises(NotFoundError):
            asyncio.run(resolve_duplicate_case(TENANT, "dup_nope", DuplicateResolution(kind="ignored")))

    def test_resolved_payments_do_not_collide_again(self, seeded_db):
        case_id, _, _ = self.open_case()
        asyncio.run(resolve_duplicate_case(TENANT, case_id, DuplicateResolution(kind="resolved_all")))

        third = ingest(make_input("ch_3"))

        assert third.duplicate_status == "none"
