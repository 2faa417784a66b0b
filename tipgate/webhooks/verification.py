"""Webhook signature verification: one verifier per authentication scheme.

Security contract:
- HMAC comparisons use hmac.compare_digest() (constant-time, no timing attacks)
- Missing headers or unparseable values -> MALFORMED before any crypto work
- Missing secret / certificate configuration -> MALFORMED (fail-closed)
- Transmission timestamps outside the tolerance window -> INAUTHENTIC
- Results carry diagnostics only: never the secret, never the full signature

Verifiers are pure: alerting on bad results is the dispatcher's job.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import re
import time
import zlib
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

logger = logging.getLogger(__name__)

_SIGNATURE_PREFIX_RE = re.compile(r"^(?:hmac-sha256=|sha256=)", re.IGNORECASE)
_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
_SHA256_DIGEST_SIZE = hashlib.sha256().digest_size

# Default staleness tolerance (seconds)
DEFAULT_MAX_AGE_SECONDS = 300


class VerificationOutcome(str, Enum):
    AUTHENTIC = "authentic"
    INAUTHENTIC = "inauthentic"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying one delivery."""

    outcome: VerificationOutcome
    reason: str = ""
    diagnostics: dict[str, Any] = field(default_factory=dict)

    @property
    def authentic(self) -> bool:
        return self.outcome == VerificationOutcome.AUTHENTIC

    @classmethod
    def ok(cls) -> VerificationResult:
        return cls(VerificationOutcome.AUTHENTIC)

    @classmethod
    def inauthentic(cls, reason: str, **diagnostics: Any) -> VerificationResult:
        return cls(VerificationOutcome.INAUTHENTIC, reason, diagnostics)

    @classmethod
    def malformed(cls, reason: str, **diagnostics: Any) -> VerificationResult:
        return cls(VerificationOutcome.MALFORMED, reason, diagnostics)


def _first_header(headers: Mapping[str, str], names: tuple[str, ...]) -> str | None:
    for name in names:
        value = headers.get(name)
        if value:
            return value.strip()
    return None


def _redact(signature: str) -> str:
    return signature[:8] + "..."


def decode_signature(signature: str) -> bytes | None:
    """Decode a hex or base64 HMAC signature, stripping any algorithm prefix.

    Returns None when the value is neither encoding.
    """
    value = _SIGNATURE_PREFIX_RE.sub("", signature.strip())
    if len(value) == _SHA256_DIGEST_SIZE * 2 and _HEX_RE.match(value):
        return bytes.fromhex(value)
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        return None


class HmacSignatureVerifier:
    """HMAC-SHA256 over the raw body, signature in one of several headers.

    Accepts hex or base64 digests, with or without a ``sha256=`` prefix.
    """

    def __init__(self, secret: str, header_names: tuple[str, ...]) -> None:
        self._secret = secret
        self.header_names = tuple(h.lower() for h in header_names)

    @property
    def is_configured(self) -> bool:
        return bool(self._secret)

    def verify(self, body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        if not self._secret:
            logger.warning("HMAC secret not set; rejecting webhook")
            return VerificationResult.malformed("secret_not_configured")

        signature = _first_header(headers, self.header_names)
        if not signature:
            return VerificationResult.malformed(
                "missing_signature", expected_headers=list(self.header_names)
            )

        digest = decode_signature(signature)
        if digest is None or len(digest) != _SHA256_DIGEST_SIZE:
            return VerificationResult.malformed(
                "bad_signature_format", signature_length=len(signature)
            )

        expected = hmac.new(self._secret.encode("utf-8"), body, hashlib.sha256).digest()
        if hmac.compare_digest(expected, digest):
            return VerificationResult.ok()

        return VerificationResult.inauthentic(
            "invalid_signature",
            signature_prefix=_redact(signature),
            payload_length=len(body),
            algorithm="HMAC-SHA256",
        )


class StripeSignatureVerifier:
    """Stripe v1 scheme: ``Stripe-Signature: t=<ts>,v1=<sig>[,v1=<sig>]``.

    The signed payload is ``"<ts>." + body``. Several v1 entries may be
    present during secret rotation; any match authenticates.
    """

    header_name = "stripe-signature"

    def __init__(
        self,
        secret: str,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._secret = secret
        self._max_age = max_age_seconds
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return bool(self._secret)

    def verify(self, body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        if not self._secret:
            logger.warning("Stripe webhook secret not set; rejecting webhook")
            return VerificationResult.malformed("secret_not_configured")

        header = headers.get(self.header_name)
        if not header:
            return VerificationResult.malformed(
                "missing_signature", expected_headers=[self.header_name]
            )

        # Parse header: t=timestamp,v1=sig1,v1=sig2,...
        timestamp_str: str | None = None
        v1_sigs: list[str] = []
        for item in header.split(","):
            kv = item.strip().split("=", 1)
            if len(kv) != 2:
                continue
            key, value = kv
            if key == "t":
                timestamp_str = value
            elif key == "v1":
                v1_sigs.append(value)

        if not timestamp_str or not v1_sigs:
            return VerificationResult.malformed("bad_signature_format")

        try:
            timestamp = int(timestamp_str)
        except ValueError:
            return VerificationResult.malformed("bad_timestamp")

        now = self._clock() if self._clock else time.time()
        age = now - timestamp
        if abs(age) > self._max_age:
            return VerificationResult.inauthentic("stale", age_seconds=int(age))

        signed_payload = f"{timestamp}.".encode("utf-8") + body
        expected = hmac.new(
            self._secret.encode("utf-8"), signed_payload, hashlib.sha256
        ).hexdigest()

        if any(hmac.compare_digest(expected, sig) for sig in v1_sigs):
            return VerificationResult.ok()

        return VerificationResult.inauthentic(
            "invalid_signature",
            signature_prefix=_redact(v1_sigs[0]),
            payload_length=len(body),
        )


@dataclass(frozen=True)
class Transmission:
    """Authentication headers of a certificate-signed delivery."""

    transmission_id: str
    cert_id: str
    signature: str
    transmission_time: str
    auth_algo: str

    @property
    def timestamp(self) -> int:
        return int(self.transmission_time)


@runtime_checkable
class CertificateVerifier(Protocol):
    """Checks a transmission signature against the processor's certificate."""

    def verify(self, transmission: Transmission, body: bytes) -> bool:
        ...


def load_rsa_public_key(pem: str | bytes) -> rsa.RSAPublicKey:
    """Load an RSA public key from a PEM certificate or PEM public key."""
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    if b"BEGIN CERTIFICATE" in data:
        key = x509.load_pem_x509_certificate(data).public_key()
    else:
        key = serialization.load_pem_public_key(data)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("Transmission certificates must carry an RSA key")
    return key


class PinnedCertificateVerifier:
    """Verifies SHA256withRSA transmission signatures against pinned keys.

    Signed message: ``transmission_id|transmission_time|webhook_id|crc32(body)``.
    Keys are pinned by certificate id; an unknown id never verifies. The
    certificate chain is not walked.
    """

    def __init__(self, webhook_id: str, certificates: Mapping[str, str | bytes]) -> None:
        self._webhook_id = webhook_id
        self._keys = {cert_id: load_rsa_public_key(pem) for cert_id, pem in certificates.items()}

    @property
    def cert_ids(self) -> list[str]:
        return list(self._keys)

    def signed_message(self, transmission: Transmission, body: bytes) -> bytes:
        crc = zlib.crc32(body) & 0xFFFFFFFF
        return (
            f"{transmission.transmission_id}|{transmission.transmission_time}"
            f"|{self._webhook_id}|{crc}"
        ).encode("utf-8")

    def verify(self, transmission: Transmission, body: bytes) -> bool:
        key = self._keys.get(transmission.cert_id)
        if key is None:
            logger.warning("Unknown transmission certificate id: %s", transmission.cert_id)
            return False
        try:
            signature = base64.b64decode(transmission.signature, validate=True)
        except (binascii.Error, ValueError):
            return False
        try:
            key.verify(
                signature,
                self.signed_message(transmission, body),
                padding.PKCS1v15(),
                hashes.SHA256(),
            )
        except InvalidSignature:
            return False
        return True


class TransmissionVerifier:
    """Certificate/transmission scheme (PayPal).

    Checks, in order: configuration, header presence, header shape,
    staleness, then the pluggable certificate verifier.
    """

    HEADER_TRANSMISSION_ID = "paypal-transmission-id"
    HEADER_CERT_ID = "paypal-cert-id"
    HEADER_SIGNATURE = "paypal-transmission-sig"
    HEADER_TIME = "paypal-transmission-time"
    HEADER_ALGO = "paypal-auth-algo"
    REQUIRED_HEADERS = (
        HEADER_TRANSMISSION_ID,
        HEADER_CERT_ID,
        HEADER_SIGNATURE,
        HEADER_TIME,
        HEADER_ALGO,
    )
    EXPECTED_ALGO = "SHA256withRSA"
    MIN_SIGNATURE_LENGTH = 50

    def __init__(
        self,
        certificate_verifier: CertificateVerifier | None,
        max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._certificates = certificate_verifier
        self._max_age = max_age_seconds
        self._clock = clock

    @property
    def is_configured(self) -> bool:
        return self._certificates is not None

    def verify(self, body: bytes, headers: Mapping[str, str]) -> VerificationResult:
        if self._certificates is None:
            logger.warning("No certificate verifier configured; rejecting webhook")
            return VerificationResult.malformed("certificate_verifier_not_configured")

        missing = [h for h in self.REQUIRED_HEADERS if not headers.get(h)]
        if missing:
            return VerificationResult.malformed("missing_headers", missing=missing)

        transmission = Transmission(
            transmission_id=headers[self.HEADER_TRANSMISSION_ID],
            cert_id=headers[self.HEADER_CERT_ID],
            signature=headers[self.HEADER_SIGNATURE],
            transmission_time=headers[self.HEADER_TIME],
            auth_algo=headers[self.HEADER_ALGO],
        )

        if (
            len(transmission.signature) < self.MIN_SIGNATURE_LENGTH
            or transmission.auth_algo != self.EXPECTED_ALGO
        ):
            return VerificationResult.malformed(
                "bad_signature_format",
                signature_length=len(transmission.signature),
                auth_algo=transmission.auth_algo[:32],
                expected_algo=self.EXPECTED_ALGO,
            )

        try:
            timestamp = transmission.timestamp
        except ValueError:
            return VerificationResult.malformed("bad_timestamp")

        now = self._clock() if self._clock else time.time()
        age = now - timestamp
        if abs(age) > self._max_age:
            return VerificationResult.inauthentic(
                "stale", age_seconds=int(age), max_age_seconds=self._max_age
            )

        try:
            valid = self._certificates.verify(transmission, body)
        except Exception:
            logger.warning("Certificate verification raised", exc_info=True)
            return VerificationResult.inauthentic("verification_error")

        if valid:
            return VerificationResult.ok()
        return VerificationResult.inauthentic(
            "invalid_signature",
            cert_id=transmission.cert_id[:64],
            signature_prefix=_redact(transmission.signature),
            payload_length=len(body),
        )
