"""
API tests for wallet top-ups, neighbor donations and the payment webhook.
"""
from app.core.config import settings


def _succeeded(intent_id: str, kind: str) -> dict:
    return {
        "id": f"evt_{intent_id}",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": intent_id, "metadata": {"type": kind}}},
    }


class TestWallet:
    async def test_topup_settles_after_webhook(self, parent_client):
        res = await parent_client.post("/payments/wallet/topup", json={"amount_cents": 2500})
        assert res.status_code == 201, res.text
        topup = res.json()
        assert topup["demo"] is True
        assert topup["status"] == "PENDING"
        assert topup["client_secret"]

        wallet = (await parent_client.get("/payments/wallet")).json()
        assert wallet["wallet_balance_cents"] == 0
        assert wallet["pending_cents"] == 2500

        res = await parent_client.post("/payments/webhook", json=_succeeded(topup["payment_intent_id"], "wallet_topup"))
        assert res.status_code == 200
        assert res.json() == {
            "received": True,
            "handled": True,
            "ledger": "wallet",
            "entry_id": topup["entry_id"],
            "status": "SUCCEEDED",
            "changed": True,
        }

        wallet = (await parent_client.get("/payments/wallet")).json()
        assert wallet["wallet_balance_cents"] == 2500
        assert wallet["pending_cents"] == 0
        assert wallet["entries"][0]["status"] == "SUCCEEDED"

    async def test_webhook_redelivery(self, parent_client):
        topup = (await parent_client.post("/payments/wallet/topup", json={"amount_cents": 500})).json()
        event = _succeeded(topup["payment_intent_id"], "wallet_topup")

        await parent_client.post("/payments/webhook", json=event)
        again = await parent_client.post("/payments/webhook", json=event)

        assert again.status_code == 200
        assert again.json()["changed"] is False
        assert (await parent_client.get("/payments/wallet")).json()["wallet_balance_cents"] == 500

    async def test_topup_limits(self, parent_client):
        res = await parent_client.post("/payments/wallet/topup", json={"amount_cents": 10})
        assert res.status_code == 400
        assert res.json()["error"] == "LimitExceeded"

    async def test_topup_requires_login(self, async_client):
        res = await async_client.post("/payments/wallet/topup", json={"amount_cents": 1000})
        assert res.status_code == 401


class TestDonations:
    async def test_public_donation(self, parent_client, async_client):
        child = (await parent_client.post("/children", json={"display_name": "Tim"})).json()
        # Donors are not signed in.
        async_client.cookies.clear()

        res = await async_client.post(
            f"/payments/donate/{child['share_slug']}",
            json={"amount_cents": 1200, "from_name": "Mr. Frost", "message": "Be good!"},
        )
        assert res.status_code == 201, res.text
        donation = res.json()
        assert donation["child_name"] == "Tim"

        res = await async_client.post("/payments/webhook", json=_succeeded(donation["payment_intent_id"], "donation"))
        assert res.json()["ledger"] == "neighbor"

    async def test_donation_updates_child(self, parent_client):
        child = (await parent_client.post("/children", json={"display_name": "Tim"})).json()
        donation = (
            await parent_client.post(f"/payments/donate/{child['share_slug']}", json={"amount_cents": 1200})
        ).json()
        await parent_client.post("/payments/webhook", json=_succeeded(donation["payment_intent_id"], "donation"))

        child = (await parent_client.get(f"/children/{child['id']}")).json()
        assert child["neighbor_balance_cents"] == 1200
        assert child["available_points"] == 12
        assert child["donor_count"] == 1
        assert child["score365"] == 0

    async def test_unknown_child(self, async_client):
        res = await async_client.post("/payments/donate/no-such-child", json={"amount_cents": 500})
        assert res.status_code == 404

    async def test_disabled_donations(self, parent_client):
        child = (
            await parent_client.post("/children", json={"display_name": "Tim", "donations_enabled": False})
        ).json()

        res = await parent_client.post(f"/payments/donate/{child['share_slug']}", json={"amount_cents": 500})

        assert res.status_code == 400
        assert res.json()["error"] == "FeatureDisabled"


class TestWebhook:
    async def test_garbage_payload(self, async_client):
        res = await async_client.post("/payments/webhook", content=b"not json")
        assert res.status_code == 400
        assert res.json()["error"] == "WebhookRejected"

    async def test_unsigned_event_rejected_outside_demo(self, async_client):
        prev_demo = settings.payments_demo_mode
        prev_key = settings.stripe_secret_key
        prev_secret = settings.stripe_webhook_secret
        settings.payments_demo_mode = False
        settings.stripe_secret_key = "sk_test_123"
        settings.stripe_webhook_secret = "whsec_test"
        try:
            res = await async_client.post("/payments/webhook", json=_succeeded("pi_x", "wallet_topup"))
        finally:
            settings.payments_demo_mode = prev_demo
            settings.stripe_secret_key = prev_key
            settings.stripe_webhook_secret = prev_secret

        assert res.status_code == 400
        assert res.json()["error"] == "WebhookRejected"

    async def test_unrelated_event(self, async_client):
        res = await async_client.post("/payments/webhook", json={"type": "customer.created", "data": {"object": {}}})
        assert res.status_code == 200
        assert res.json()["handled"] is False
