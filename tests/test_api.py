# tests/test_api.py

"""
Route tests with FastAPI's TestClient; auth is overridden and the
database replaced by the in-memory fake.
"""

import json

import pytest
from fastapi.testclient import TestClient

from payrecon.config import Settings
from payrecon.dependencies import CurrentUser, get_current_user
from payrecon.integrations import stripe as stripe_webhooks
from payrecon.main import app

from test_stripe import SECRET, make_event, sign

TENANT = "tenant-1"


@pytest.fixture
def client(seeded_db):
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(
        user_id="u1", tenant_id=TENANT, role="reviewer",
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def viewer_client(seeded_db):
    app.dependency_overrides[get_current_user] = lambda: CurrentUser(
        user_id="u2", tenant_id=TENANT, role="viewer",
    )
    yield TestClient(app)
    app.dependency_overrides.clear()


ROWS = [
    {"payer_raw": "Pérez, Juan", "amount": "1500", "date": "2024-03-10"},
    {"payer_raw": "J. Perez", "amount": 1000, "date": "2024-03-11"},
    {"payer_raw": "", "amount": 100, "date": "2024-03-14"},
]


# ============================================
# Health
# ============================================

class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"


# ============================================
# Reconcile
# ============================================

class TestReconcileRoutes:

    def test_reconcile(self, client, seeded_db):
        response = client.post("/reconcile", json={"rows": ROWS})

        assert response.status_code == 200
        body = response.json()
        assert body["counts"] == {"auto": 1, "review": 0, "no_match": 0, "conflict": 1}
        assert len(body["errors"]) == 1
        assert len(seeded_db.payments) == 2

        batch = client.get(f"/reconcile/batches/{body['batch_id']}").json()["batch"]
        assert batch["state"] == "completed"
        assert client.get("/reconcile/batches").json()["count"] == 1

    def test_reconcile_with_accounts_in_request(self, client):
        response = client.post("/reconcile", json={
            "rows": [{"payer_raw": "Acme SA", "amount": 10, "period": "2024-03"}],
            "accounts": [{"id": "X-1", "display_name": "ACME SA"}],
        })

        assert response.json()["counts"]["auto"] == 1

    def test_empty_batch_is_rejected(self, client):
        response = client.post("/reconcile", json={"rows": []})
        assert response.status_code == 400

    def test_unknown_batch(self, client):
        assert client.get("/reconcile/batches/batch_nope").status_code == 404


# ============================================
# Payments
# ============================================

class TestPaymentRoutes:

    def test_list_and_filter(self, client):
        client.post("/reconcile", json={"rows": ROWS})

        body = client.get("/payments", params={"match_status": "conflict"}).json()

        assert body["pagination"]["total"] == 1
        assert body["payments"][0]["payer_raw"] == "J. Perez"

    def test_suggest(self, client):
        body = client.get("/payments/suggest", params={"q": "perez"}).json()
        assert [c["account_id"] for c in body["candidates"]] == ["ACC-1", "ACC-2"]

    def test_confirm_and_reject(self, client, seeded_db):
        client.post("/reconcile", json={"rows": ROWS})
        payment_id = client.get("/payments", params={"match_status": "conflict"}).json()["payments"][0]["id"]

        response = client.post(f"/payments/{payment_id}/confirm", json={"account_id": "ACC-2"})
        assert response.status_code == 200
        assert response.json()["alias_upserted"] is True
        assert client.get("/aliases").json()["count"] == 1

        response = client.post(f"/payments/{payment_id}/reject", json={"reason": "wrong"})
        assert response.status_code == 200
        assert seeded_db.payments[payment_id]["match_status"] == "rejected"

    def test_confirm_unknown_payment(self, client):
        response = client.post("/payments/nope/confirm", json={"account_id": "ACC-1"})
        assert response.status_code == 404

    def test_viewer_cannot_confirm(self, viewer_client):
        response = viewer_client.post("/payments/any/confirm", json={"account_id": "ACC-1"})
        assert response.status_code == 403


# ============================================
# Aliases & Duplicate cases
# ============================================

class TestAliasAndCaseRoutes:

    def test_import_aliases(self, client):
        response = client.post("/aliases", json={"aliases": [
            {"payer": "Sucesión de Gómez", "target_id": "ACC-42"},
            {"payer": "...", "target_id": "ACC-1"},
        ]})

        assert response.json()["imported"] == 1
        assert response.json()["skipped"] == 1
        assert client.get("/aliases").json()["aliases"][0]["payer_key"] == "SUCESION DE GOMEZ"

    def test_pending_alias_flow(self, client, seeded_db):
        response = client.post("/aliases", json={"aliases": [
            {"payer": "Plasbe SA", "target_raw": "Maria Gonzalez"},
        ]})
        assert response.json()["pending"] == 1

        items = client.get("/aliases/pending").json()["items"]
        assert len(items) == 1
        assert items[0]["payer_key"] == "PLASBE SA"
        assert items[0]["candidates"][0]["account_id"] == "ACC-3"

        missing = client.post("/aliases/pending/pend_nope/confirm", json={"account_id": "ACC-3"})
        assert missing.status_code == 404

        confirmed = client.post(f"/aliases/pending/{items[0]['id']}/confirm", json={"account_id": "ACC-3"})
        assert confirmed.status_code == 200
        assert confirmed.json()["alias"]["target_id"] == "ACC-3"
        assert client.get("/aliases/pending").json()["count"] == 0
        assert client.get("/aliases").json()["aliases"][0]["payer_key"] == "PLASBE SA"

    def test_viewer_cannot_confirm_pending(self, viewer_client):
        response = viewer_client.post("/aliases/pending/pend_1/confirm", json={"account_id": "ACC-3"})
        assert response.status_code == 403

    def test_resolve_case(self, client, seeded_db):
        client.post("/reconcile", json={"rows": [
            {"payer_raw": "Juan Perez", "amount": 1500, "period": "2024-03", "external_id": "A1"},
            {"payer_raw": "Juan Perez", "amount": 1500, "period": "2024-03", "external_id": "A2"},
        ]})
        cases = client.get("/duplicate-cases", params={"status": "open"}).json()["cases"]
        assert len(cases) == 1
        case_id = cases[0]["id"]

        detail = client.get(f"/duplicate-cases/{case_id}").json()
        assert len(detail["payments"]) == 2

        bad = client.post(f"/duplicate-cases/{case_id}/resolve", json={"kind": "resolved_single"})
        assert bad.status_code == 400

        chosen = cases[0]["payment_ids"][0]
        response = client.post(f"/duplicate-cases/{case_id}/resolve", json={
            "kind": "resolved_single", "chosen_payment_ids": [chosen],
        })
        assert response.status_code == 200
        assert response.json()["case"]["resolution"]["resolved_by"] == "u1"
        assert seeded_db.payments[chosen]["duplicate_status"] == "confirmed"

    def test_unknown_case(self, client):
        assert client.get("/duplicate-cases/dup_nope").status_code == 404
        response = client.post("/duplicate-cases/dup_nope/resolve", json={"kind": "ignored"})
        assert response.status_code == 404


# ============================================
# Webhooks
# ============================================

class TestWebhookRoutes:

    def test_missing_signature(self, client):
        assert client.post("/webhooks/stripe", content=b"{}").status_code == 400

    def test_signed_event_is_ingested_once(self, client, seeded_db, monkeypatch):
        monkeypatch.setattr(stripe_webhooks, "get_settings", lambda: Settings(stripe_webhook_secret=SECRET))
        payload = json.dumps(make_event())

        for _ in range(2):
            response = client.post(
                "/webhooks/stripe",
                content=payload.encode("utf-8"),
                headers={"Stripe-Signature": sign(payload)},
            )
            assert response.status_code == 200

        assert response.json()["is_duplicate_technical"] is True
        assert len(seeded_db.payments) == 1

    def test_bad_signature(self, client, monkeypatch):
        monkeypatch.setattr(stripe_webhooks, "get_settings", lambda: Settings(stripe_webhook_secret=SECRET))
        payload = json.dumps(make_event())

        response = client.post(
            "/webhooks/stripe",
            content=payload.encode("utf-8"),
            headers={"Stripe-Signature": sign(payload, "whsec_other")},
        )
        assert response.status_code == 400
