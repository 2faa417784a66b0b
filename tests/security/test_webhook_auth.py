"""P1 CRITICAL: Webhook authentication over HTTP.

Verifies:
- Only correctly signed deliveries change ledger state
- Unsigned, forged and stale deliveries are rejected with the right status
- Unconfigured processors fail closed
- Replays are rejected after the first successful delivery
"""

from __future__ import annotations

import json
import time

import pytest
from fastapi.testclient import TestClient

from tipgate.config import Settings
from tipgate.app import create_app
from tipgate.ledger.models import TipStatus


def _bold(tip_id: str, status: str = "APPROVED") -> dict:
    return {"reference": tip_id, "status": status, "amount": 5000, "transaction_id": "TX-1"}


class TestSignedDelivery:

    def test_signed_bold_webhook_completes_tip(self, client, tip, sign_bold):
        body, headers = sign_bold(_bold(tip.id))
        resp = client.post("/webhooks/bold", content=body, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["result"]["status"] == "completed"
        assert tip.status == TipStatus.COMPLETED

    @pytest.mark.parametrize("header", ["X-Bold-Signature", "X-Signature", "Bold-Signature"])
    def test_header_names_case_insensitive(self, client, tip, sign_bold, header):
        body, headers = sign_bold(_bold(tip.id), header=header)
        assert client.post("/webhooks/bold", content=body, headers=headers).status_code == 200

    def test_signed_paypal_webhook(self, client, usd_tip, sign_paypal):
        payload = {
            "event_type": "PAYMENT.CAPTURE.COMPLETED",
            "resource": {"id": "CAP-1", "custom_id": usd_tip.id},
        }
        body, headers = sign_paypal(payload)
        resp = client.post("/webhooks/paypal", content=body, headers=headers)
        assert resp.status_code == 200
        assert usd_tip.status == TipStatus.COMPLETED

    def test_replay_rejected(self, client, tip, sign_bold):
        body, headers = sign_bold(_bold(tip.id))
        assert client.post("/webhooks/bold", content=body, headers=headers).status_code == 200
        resp = client.post("/webhooks/bold", content=body, headers=headers)
        assert resp.status_code == 409
        assert resp.json()["reason"] == "already_processed"


class TestRejectedDelivery:

    def test_unsigned_rejected(self, client, tip):
        resp = client.post("/webhooks/bold", content=json.dumps(_bold(tip.id)))
        assert resp.status_code == 400
        assert resp.json()["reason"] == "missing_signature"
        assert tip.status == TipStatus.PENDING

    def test_forged_signature_rejected(self, client, tip, sign_bold):
        body, headers = sign_bold(_bold(tip.id), secret="attacker-secret")
        resp = client.post("/webhooks/bold", content=body, headers=headers)
        assert resp.status_code == 401
        assert tip.status == TipStatus.PENDING

    def test_body_swap_rejected(self, client, tip, sign_bold):
        _, headers = sign_bold(_bold(tip.id, "DECLINED"))
        body = json.dumps(_bold(tip.id)).encode()
        assert client.post("/webhooks/bold", content=body, headers=headers).status_code == 401

    def test_stale_stripe_rejected(self, client, usd_tip, sign_stripe):
        payload = {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_1", "metadata": {"tip_id": usd_tip.id}}},
        }
        body, headers = sign_stripe(payload, timestamp=int(time.time()) - 3600)
        resp = client.post("/webhooks/stripe", content=body, headers=headers)
        assert resp.status_code == 401
        assert resp.json()["reason"] == "stale"

    def test_unknown_processor_404(self, client):
        assert client.post("/webhooks/venmo", content=b"{}").status_code == 404

    def test_get_on_webhook_not_allowed(self, client):
        assert client.get("/webhooks/bold").status_code == 405


class TestFailClosed:

    def test_missing_secret_rejects_everything(self, directory, sign_bold):
        app = create_app(settings=Settings(_env_file=None), directory=directory, start_scheduler=False)
        tip = app.state.ledger.create_tip(5000, "fan@example.com", "default")
        body, headers = sign_bold(_bold(tip.id), secret="")
        with TestClient(app, raise_server_exceptions=False) as client:
            resp = client.post("/webhooks/bold", content=body, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["reason"] == "secret_not_configured"
        assert tip.status == TipStatus.PENDING

    def test_paypal_without_certificates(self, directory, sign_paypal):
        app = create_app(
            settings=Settings(_env_file=None, paypal_webhook_id="WH-1"),
            directory=directory,
            start_scheduler=False,
        )
        payload = {"event_type": "PAYMENT.CAPTURE.COMPLETED", "resource": {"id": "CAP-1", "custom_id": "x"}}
        body, headers = sign_paypal(payload)
        with TestClient(app, raise_server_exceptions=False) as client:
            resp = client.post("/webhooks/paypal", content=body, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["reason"] == "certificate_verifier_not_configured"
