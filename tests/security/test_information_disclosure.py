"""P3 MEDIUM: Information disclosure tests.

Verifies secrets and internals are not exposed through webhook responses.
Secrets, submitted signatures, stack traces, exception text.
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest


def _bold(tip_id: str) -> dict:
    return {"reference": tip_id, "status": "APPROVED", "amount": 5000, "transaction_id": "TX-1"}


def _assert_clean(text: str) -> None:
    assert "Traceback" not in text
    assert "File \"" not in text


class TestErrorResponseSafety:
    """Error responses should not leak internals."""

    def test_forged_signature_not_echoed(self, client, tip, sign_bold):
        body, headers = sign_bold(_bold(tip.id), secret="attacker-secret")
        resp = client.post("/webhooks/bold", content=body, headers=headers)
        assert resp.status_code == 401
        assert headers["x-bold-signature"] not in resp.text
        _assert_clean(resp.text)

    def test_secret_never_in_error_body(self, client, settings, tip, sign_bold):
        body, headers = sign_bold(_bold(tip.id), secret="attacker-secret")
        resp = client.post("/webhooks/bold", content=body, headers=headers)
        assert settings.bold_secret_key not in resp.text

    def test_invalid_json_error_safe(self, client):
        resp = client.post("/webhooks/bold", content=b"not json")
        assert resp.status_code == 400
        assert resp.json()["reason"] == "invalid_json"
        _assert_clean(resp.text)

    def test_validation_error_lists_fields_not_values(self, client):
        resp = client.post(
            "/webhooks/stripe",
            content=json.dumps({"id": "evt_1", "type": 12345, "data": "secret-looking-value"}),
        )
        assert resp.status_code == 400
        assert "secret-looking-value" not in resp.text

    def test_internal_error_is_generic(self, app, client, tip, sign_bold):
        body, headers = sign_bold(_bold(tip.id))
        with patch.object(
            app.state.engine, "settle", side_effect=RuntimeError("db password=hunter2")
        ):
            resp = client.post("/webhooks/bold", content=body, headers=headers)
        assert resp.status_code == 500
        assert resp.json()["error"] == "Internal processing error"
        assert "hunter2" not in resp.text
        assert "RuntimeError" not in resp.text
        _assert_clean(resp.text)

    def test_error_body_has_fixed_fields(self, client):
        resp = client.post("/webhooks/bold", content=b"{}")
        assert set(resp.json()) == {"error", "reason", "request_id", "timestamp", "retryable"}


class TestHealthSafety:
    """Health endpoints report configuration state, never configuration values."""

    @pytest.mark.parametrize("path", ["/health", "/webhooks/health"])
    def test_health_has_no_secrets(self, client, settings, path):
        resp = client.get(path)
        assert resp.status_code == 200
        for secret in (
            settings.bold_secret_key,
            settings.mercadopago_webhook_secret,
            settings.stripe_webhook_secret,
            settings.paypal_webhook_id,
        ):
            assert secret not in resp.text

    def test_webhook_health_reports_flags(self, client):
        data = client.get("/webhooks/health").json()
        assert data["bold_configured"] is True
        assert data["stripe_configured"] is True
        assert "BEGIN" not in json.dumps(data)
