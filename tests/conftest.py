"""Shared fixtures for the tipgate test suite.

Every test builds its own components; nothing here is module-global.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
import uuid

import pytest
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from tipgate.alerts.protocol import AlertDispatcher, AlertEvent
from tipgate.config import Settings
from tipgate.ledger.directory import InMemoryPerformerDirectory, Performer
from tipgate.ledger.settlement import SettlementEngine
from tipgate.ledger.store import TipLedger
from tipgate.security.admission import AdmissionController
from tipgate.webhooks.dispatcher import WebhookDispatcher
from tipgate.webhooks.idempotency import ReplayGuard
from tipgate.webhooks.processors import build_processors
from tipgate.webhooks.verification import PinnedCertificateVerifier, Transmission

BOLD_SECRET = "bold-test-secret"
MERCADOPAGO_SECRET = "mp-test-secret"
STRIPE_SECRET = "whsec_test_secret"
PAYPAL_WEBHOOK_ID = "WH-TEST-0001"
PAYPAL_CERT_ID = "CERT-TEST-1"


class RecordingSink:
    """Alert sink that keeps every event in memory."""

    def __init__(self, sink_id: str = "recording") -> None:
        self._sink_id = sink_id
        self.events: list[AlertEvent] = []

    @property
    def sink_id(self) -> str:
        return self._sink_id

    @property
    def is_configured(self) -> bool:
        return True

    def send(self, event: AlertEvent) -> None:
        self.events.append(event)

    def kinds(self, category: str | None = None) -> list[str]:
        return [e.kind for e in self.events if category is None or e.category == category]


class FakeClock:
    """Manually advanced clock for replay-guard expiry tests."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(scope="session")
def paypal_private_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def paypal_public_pem(paypal_private_key) -> str:
    return paypal_private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode()


@pytest.fixture
def settings(paypal_public_pem) -> Settings:
    return Settings(
        _env_file=None,
        bold_secret_key=BOLD_SECRET,
        mercadopago_webhook_secret=MERCADOPAGO_SECRET,
        stripe_webhook_secret=STRIPE_SECRET,
        paypal_webhook_id=PAYPAL_WEBHOOK_ID,
        paypal_certificates={PAYPAL_CERT_ID: paypal_public_pem},
        trusted_ip_prefixes=["181.78.23.", "190.90.8."],
    )


@pytest.fixture
def directory() -> InMemoryPerformerDirectory:
    return InMemoryPerformerDirectory([
        Performer(
            id="default",
            name="Demo Performer",
            email="demo@example.com",
            currency="COP",
            tip_min_amount=1000,
            credentials={"bold": "bold-acct", "mercadopago": "mp-acct"},
        ),
        Performer(
            id="usd",
            name="USD Performer",
            email="usd@example.com",
            currency="USD",
            tip_min_amount=100,
            credentials={"paypal": "pp-acct", "stripe": "acct_123"},
        ),
    ])


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def alerts(sink):
    dispatcher = AlertDispatcher(max_workers=1)
    dispatcher.register(sink)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def ledger(directory) -> TipLedger:
    return TipLedger(directory)


@pytest.fixture
def engine(ledger, directory, alerts) -> SettlementEngine:
    return SettlementEngine(ledger, directory, alerts)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def replay_guard() -> ReplayGuard:
    return ReplayGuard(retention_seconds=1800)


@pytest.fixture
def admission() -> AdmissionController:
    return AdmissionController(
        default_limit="50/minute",
        trusted_limit="100/minute",
        trusted_prefixes=["181.78.23.", "190.90.8."],
    )


@pytest.fixture
def processors(settings):
    return build_processors(settings)


@pytest.fixture
def dispatcher(processors, replay_guard, admission, engine, alerts) -> WebhookDispatcher:
    return WebhookDispatcher(processors, replay_guard, admission, engine, alerts)


# ── Signing helpers ───────────────────────────────────────────────────────


def _encode(payload) -> bytes:
    if isinstance(payload, bytes):
        return payload
    return json.dumps(payload).encode()


@pytest.fixture
def sign_bold():
    """(payload) -> (body, headers) signed with the Bold secret (hex digest)."""

    def _sign(payload, secret: str = BOLD_SECRET, header: str = "x-bold-signature"):
        body = _encode(payload)
        sig = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
        return body, {header: sig}

    return _sign


@pytest.fixture
def sign_mercadopago():
    """(payload) -> (body, headers) signed with the Mercado Pago secret (base64 digest)."""

    def _sign(payload, secret: str = MERCADOPAGO_SECRET):
        body = _encode(payload)
        digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
        return body, {"x-mp-signature": "sha256=" + base64.b64encode(digest).decode()}

    return _sign


@pytest.fixture
def sign_stripe():
    """(payload) -> (body, headers) with a Stripe-Signature header."""

    def _sign(payload, secret: str = STRIPE_SECRET, timestamp: int | None = None):
        body = _encode(payload)
        ts = timestamp if timestamp is not None else int(time.time())
        sig = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
        return body, {"stripe-signature": f"t={ts},v1={sig}"}

    return _sign


@pytest.fixture
def sign_paypal(paypal_private_key):
    """(payload) -> (body, headers) carrying a valid PayPal transmission signature."""
    signer = PinnedCertificateVerifier(PAYPAL_WEBHOOK_ID, {})

    def _sign(payload, timestamp: int | None = None, transmission_id: str | None = None):
        body = _encode(payload)
        transmission = Transmission(
            transmission_id=transmission_id or str(uuid.uuid4()),
            cert_id=PAYPAL_CERT_ID,
            signature="",
            transmission_time=str(timestamp if timestamp is not None else int(time.time())),
            auth_algo="SHA256withRSA",
        )
        signature = paypal_private_key.sign(
            signer.signed_message(transmission, body), padding.PKCS1v15(), hashes.SHA256()
        )
        return body, {
            "paypal-transmission-id": transmission.transmission_id,
            "paypal-cert-id": transmission.cert_id,
            "paypal-transmission-sig": base64.b64encode(signature).decode(),
            "paypal-transmission-time": transmission.transmission_time,
            "paypal-auth-algo": transmission.auth_algo,
        }

    return _sign
