"""Error taxonomy for webhook processing and tip settlement.

Every rejection the dispatcher produces maps to one subclass of WebhookError.
The class decides the HTTP status, whether the caller may retry, and whether
a security alert accompanies the rejection.
"""

from __future__ import annotations

from typing import Any


class WebhookError(Exception):
    """Base class for every failure surfaced to a webhook caller."""

    status_code = 500
    retryable = False
    alert = True
    default_reason = "error"

    def __init__(
        self,
        message: str = "",
        *,
        reason: str | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.__class__.__name__)
        self.reason = reason or self.default_reason
        self.detail = detail or {}


class MalformedRequest(WebhookError):
    """Bad payload shape or authentication headers. No state change."""

    status_code = 400
    default_reason = "malformed_request"


class TipNotFound(MalformedRequest):
    """The notification references a tip the ledger does not hold."""

    default_reason = "unknown_tip"


class AuthenticationFailure(WebhookError):
    """Signature did not verify, or the delivery is stale."""

    status_code = 401
    default_reason = "invalid_signature"


class UnknownProcessor(WebhookError):
    status_code = 404
    alert = False
    default_reason = "unknown_processor"


class ReplayDetected(WebhookError):
    """The idempotency key was already processed. Logged, not alerted."""

    status_code = 409
    alert = False
    default_reason = "already_processed"


class ConflictingTransition(WebhookError):
    """The event would move a tip along a transition the state machine forbids.

    The settlement engine emits the security alert itself, with tip context.
    """

    status_code = 409
    alert = False
    default_reason = "conflicting_transition"


class UnsupportedProcessorOrCurrency(WebhookError):
    """No enabled, credentialed processor supports the tip's currency."""

    status_code = 422
    default_reason = "unsupported_processor_or_currency"


class RateLimited(WebhookError):
    status_code = 429
    retryable = True
    default_reason = "rate_limited"

    def __init__(self, message: str = "", *, retry_after: int = 60, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class TransientFault(WebhookError):
    """A collaborator (e.g. the performer directory) is unavailable."""

    status_code = 503
    retryable = True
    default_reason = "transient_fault"


class InternalFault(WebhookError):
    status_code = 500
    retryable = True
    default_reason = "internal_error"


class TipValidationError(ValueError):
    """Tip creation rejected its input (amount, e-mail, performer)."""
