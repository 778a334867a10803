"""
API tests through FastAPI's TestClient.

Each test gets a fresh SQLite database, the fake ledger, and a
facilitator answered by httpx.MockTransport.
"""
import asyncio
from decimal import Decimal

import httpx
import pytest
from fastapi.testclient import TestClient

from rewardai.config import Settings
from rewardai.main import create_app
from tests.conftest import ALICE, BOB, CAROL, NETWORK, VAULT, make_facilitator, payment_header


class FacilitatorStub:
    """Canned facilitator answers, switchable per test."""

    def __init__(self):
        self.verify = httpx.Response(200, json={"isValid": True})
        self.settle = httpx.Response(200, json={"success": True, "txHash": "SETTLED1", "networkId": NETWORK})
        self.supported = httpx.Response(200, json={"kinds": [{"scheme": "exact", "network": NETWORK}]})

    def __call__(self, request):
        return {
            "/verify": self.verify,
            "/settle": self.settle,
            "/supported": self.supported,
        }[request.url.path]


@pytest.fixture
def facilitator():
    return FacilitatorStub()


@pytest.fixture
def app(tmp_path, ledger, clock, facilitator):
    settings = Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'rewardai.db'}",
        xrpl_network="testnet",
    )
    return create_app(
        settings,
        ledger=ledger,
        facilitator_client=make_facilitator(facilitator),
        clock=clock,
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def create_invoice(client, amount="100", asset="XRP"):
    response = client.post("/api/v1/invoices", json={"asset": asset, "amount": amount, "pay_to": VAULT})
    assert response.status_code == 201
    return response.json()


def settled_invoice(client, amount="100"):
    invoice = create_invoice(client, amount)
    client.post(f"/api/v1/invoices/{invoice['id']}/verify", json={"payment_header": payment_header()})
    response = client.post(f"/api/v1/invoices/{invoice['id']}/settle")
    assert response.json()["status"] == "settled"
    return response.json()


RECIPIENTS = [
    {"address": ALICE, "amount": "10", "label": "alice"},
    {"address": BOB, "amount": "20"},
    {"address": CAROL, "amount": "30"},
]


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"
        assert response.json()["xrpl_network"] == "testnet"


class TestInvoices:

    def test_create_and_get(self, client):
        invoice = create_invoice(client)

        assert invoice["status"] == "pending"
        assert invoice["amount"] == "100"
        assert invoice["network"] == NETWORK

        fetched = client.get(f"/api/v1/invoices/{invoice['id']}").json()
        assert fetched["id"] == invoice["id"]
        assert fetched["expires_at"] == invoice["expires_at"]

    def test_create_rejects_bad_vault(self, client):
        response = client.post("/api/v1/invoices", json={"asset": "XRP", "amount": "1", "pay_to": "bogus"})

        assert response.status_code == 400
        assert response.json()["code"] == "address_invalid"

    def test_create_rejects_non_positive_amount(self, client):
        response = client.post("/api/v1/invoices", json={"asset": "XRP", "amount": "0", "pay_to": VAULT})

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_input"

    def test_unknown_invoice(self, client):
        response = client.get("/api/v1/invoices/x402_missing")

        assert response.status_code == 404
        assert response.json()["code"] == "invoice_not_found"

    def test_requirements(self, client):
        invoice = create_invoice(client)

        body = client.get(f"/api/v1/invoices/{invoice['id']}/requirements").json()

        assert body["x402Version"] == 1
        assert body["accepts"][0]["payTo"] == VAULT
        assert body["accepts"][0]["maxAmountRequired"] == "100"

    def test_verify_and_settle(self, client):
        invoice = settled_invoice(client)

        assert invoice["settlement_tx_hash"] == "SETTLED1"
        assert client.get(f"/api/v1/invoices/{invoice['id']}").json()["status"] == "settled"

    def test_rejected_payment_fails_invoice(self, client, facilitator):
        facilitator.verify = httpx.Response(200, json={"isValid": False, "invalidReason": "bad signature"})
        invoice = create_invoice(client)

        response = client.post(
            f"/api/v1/invoices/{invoice['id']}/verify", json={"payment_header": payment_header()}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["failure_code"] == "facilitator_rejected"

    def test_settle_before_verify_conflicts(self, client):
        invoice = create_invoice(client)

        response = client.post(f"/api/v1/invoices/{invoice['id']}/settle")

        assert response.status_code == 409
        assert response.json()["code"] == "invalid_transition"

    def test_expiry(self, client, clock):
        invoice = create_invoice(client)
        clock.advance(301)

        response = client.post(
            f"/api/v1/invoices/{invoice['id']}/verify", json={"payment_header": payment_header()}
        )

        assert response.status_code == 410
        stored = client.get(f"/api/v1/invoices/{invoice['id']}").json()
        assert stored["status"] == "expired"
        assert stored["failure_code"] == "invoice_expired"


class TestFacilitator:

    def test_supported(self, client):
        response = client.get("/api/v1/facilitator/supported")

        assert response.json() == [{"scheme": "exact", "network": NETWORK}]

    def test_unreachable(self, client, facilitator):
        facilitator.supported = httpx.Response(503, text="down")

        response = client.get("/api/v1/facilitator/supported")

        assert response.status_code == 503
        assert response.json()["code"] == "facilitator_unreachable"


class TestDistributions:

    def test_dry_run(self, client, ledger):
        response = client.post("/api/v1/distributions", json={
            "source_address": VAULT,
            "recipients": RECIPIENTS,
        })

        body = response.json()
        assert response.status_code == 200
        assert body["mode"] == "dry_run"
        assert body["success"] is True
        assert body["total_amount_requested"] == "60"
        assert [o["address"] for o in body["outcomes"]] == [ALICE, BOB, CAROL]
        assert ledger.calls == 0

    def test_allocation_reports_remainder(self, client):
        response = client.post("/api/v1/distributions", json={
            "source_address": VAULT,
            "allocation": {
                "policy": "equal_split",
                "entries": [{"address": ALICE}, {"address": BOB}, {"address": CAROL}],
                "total_amount": "100",
            },
        })

        body = response.json()
        assert [o["amount"] for o in body["outcomes"]] == ["33", "33", "33"]
        assert body["undistributed_remainder"] == "1"

    def test_allocation_missing_input(self, client):
        response = client.post("/api/v1/distributions", json={
            "source_address": VAULT,
            "allocation": {"policy": "fixed", "entries": [{"address": ALICE}]},
        })

        assert response.status_code == 400
        assert response.json()["code"] == "allocation_invalid_input"

    def test_recipients_or_allocation_required(self, client):
        response = client.post("/api/v1/distributions", json={"source_address": VAULT})

        assert response.status_code == 400

    def test_invalid_recipient_rejects_batch(self, client, ledger):
        response = client.post("/api/v1/distributions", json={
            "source_address": VAULT,
            "recipients": RECIPIENTS + [{"address": "bogus", "amount": "1"}],
        })

        body = response.json()
        assert response.status_code == 422
        assert body["code"] == "recipients_invalid"
        assert body["rejections"][0]["index"] == 3
        assert body["rejections"][0]["address"] == "bogus"

    def test_invalid_source(self, client):
        response = client.post("/api/v1/distributions", json={
            "source_address": "bogus",
            "recipients": RECIPIENTS,
        })

        assert response.status_code == 400

    def test_live_requires_funding(self, client, ledger):
        response = client.post("/api/v1/distributions", json={
            "source_address": VAULT,
            "recipients": RECIPIENTS,
            "mode": "live",
        })

        assert response.status_code == 402
        assert response.json()["code"] == "funding_required"
        assert ledger.calls == 0

    def test_live_with_unknown_invoice(self, client):
        response = client.post("/api/v1/distributions", json={
            "source_address": VAULT,
            "recipients": RECIPIENTS,
            "mode": "live",
            "funding_invoice_id": "x402_missing",
        })

        assert response.status_code == 404

    def test_live_funded_run(self, client, ledger, submission_failed):
        ledger.submit_failures[BOB] = submission_failed
        invoice = settled_invoice(client)

        response = client.post("/api/v1/distributions", json={
            "source_address": VAULT,
            "recipients": RECIPIENTS,
            "mode": "live",
            "funding_invoice_id": invoice["id"],
        })

        body = response.json()
        assert response.status_code == 200
        assert [o["status"] for o in body["outcomes"]] == ["succeeded", "failed", "succeeded"]
        assert body["outcomes"][1]["error_code"] == "ledger_submission_failed"
        assert body["success"] is True
        assert len(ledger.submitted) == 3

    def test_invoice_funds_one_distribution(self, client, ledger):
        invoice = settled_invoice(client)
        payload = {
            "source_address": VAULT,
            "recipients": RECIPIENTS,
            "mode": "live",
            "funding_invoice_id": invoice["id"],
        }

        first = client.post("/api/v1/distributions", json=payload)
        second = client.post("/api/v1/distributions", json=payload)

        assert first.status_code == 200
        assert second.status_code == 402
        assert len(ledger.submitted) == 3

    @pytest.mark.asyncio
    async def test_concurrent_runs_cannot_share_an_invoice(self, app, ledger):
        for address in (ALICE, BOB, CAROL):
            ledger.confirm_delays[address] = 0.05

        async with app.router.lifespan_context(app):
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
                created = await client.post(
                    "/api/v1/invoices", json={"asset": "XRP", "amount": "60", "pay_to": VAULT}
                )
                invoice_id = created.json()["id"]
                await client.post(
                    f"/api/v1/invoices/{invoice_id}/verify", json={"payment_header": payment_header()}
                )
                settled = await client.post(f"/api/v1/invoices/{invoice_id}/settle")
                assert settled.json()["status"] == "settled"

                payload = {
                    "source_address": VAULT,
                    "recipients": RECIPIENTS,
                    "mode": "live",
                    "funding_invoice_id": invoice_id,
                }
                responses = await asyncio.gather(
                    client.post("/api/v1/distributions", json=payload),
                    client.post("/api/v1/distributions", json=payload),
                )

        assert sorted(r.status_code for r in responses) == [200, 402]
        assert len(ledger.submitted) == 3

    def test_rejected_batch_leaves_invoice_unspent(self, client, ledger):
        invoice = settled_invoice(client)
        payload = {
            "source_address": VAULT,
            "recipients": RECIPIENTS,
            "mode": "live",
            "funding_invoice_id": invoice["id"],
        }

        rejected = client.post("/api/v1/distributions", json={
            **payload,
            "recipients": RECIPIENTS + [{"address": "bogus", "amount": "1"}],
        })
        accepted = client.post("/api/v1/distributions", json=payload)

        assert rejected.status_code == 422
        assert accepted.status_code == 200
        assert len(ledger.submitted) == 3

    def test_unsettled_invoice_is_not_consumed(self, client, ledger):
        invoice = create_invoice(client)
        payload = {
            "source_address": VAULT,
            "recipients": RECIPIENTS,
            "mode": "live",
            "funding_invoice_id": invoice["id"],
        }

        early = client.post("/api/v1/distributions", json=payload)
        client.post(f"/api/v1/invoices/{invoice['id']}/verify", json={"payment_header": payment_header()})
        client.post(f"/api/v1/invoices/{invoice['id']}/settle")
        funded = client.post("/api/v1/distributions", json=payload)

        assert early.status_code == 402
        assert funded.status_code == 200
        assert len(ledger.submitted) == 3

    def test_insufficient_invoice(self, client):
        invoice = settled_invoice(client, amount="59")

        response = client.post("/api/v1/distributions", json={
            "source_address": VAULT,
            "recipients": RECIPIENTS,
            "mode": "live",
            "funding_invoice_id": invoice["id"],
        })

        assert response.status_code == 402


class TestAccounts:

    def test_balance(self, client, ledger):
        ledger.balances[(ALICE, "XRP")] = Decimal("42.5")

        response = client.get(f"/api/v1/accounts/{ALICE}/balance")

        assert response.json() == {"address": ALICE, "asset": "XRP", "balance": "42.5"}

    def test_invalid_address(self, client):
        response = client.get("/api/v1/accounts/bogus/balance")

        assert response.status_code == 400
