"""Webhook HTTP handlers: FastAPI route handlers for inbound payment webhooks.

Each handler:
1. Reads the raw body (needed for signature verification)
2. Builds a lowercase header dict
3. Resolves the client address (X-Forwarded-For only behind trusted proxies)
4. Hands everything to the WebhookDispatcher and renders its response

All decisions live in the dispatcher; handlers are transport only.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from tipgate.security.admission import get_client_ip
from tipgate.webhooks.dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)


def register_webhook_routes(
    app: FastAPI,
    dispatcher: WebhookDispatcher,
    trusted_proxies: str = "",
) -> None:
    """Register webhook endpoint routes on the FastAPI app."""

    async def _handle(request: Request, provider: str) -> JSONResponse:
        body = await request.body()
        headers = {k.lower(): v for k, v in request.headers.items()}
        client_ip = get_client_ip(request, trusted_proxies)
        response = dispatcher.handle(
            provider, body, headers, client_ip=client_ip, path=request.url.path
        )
        return JSONResponse(response.body, status_code=response.status_code, headers=response.headers)

    @app.get("/webhooks/health")
    async def webhook_health():
        """Liveness and configuration flags (never secret values)."""
        return dispatcher.health()

    @app.post("/webhooks/bold")
    async def bold_webhook(request: Request):
        """Receive Bold status notifications (HMAC-verified)."""
        return await _handle(request, "bold")

    @app.post("/webhooks/paypal")
    async def paypal_webhook(request: Request):
        """Receive PayPal capture events (transmission-certificate verified)."""
        return await _handle(request, "paypal")

    @app.post("/webhooks/mercadopago")
    async def mercadopago_webhook(request: Request):
        """Receive Mercado Pago payment notifications (HMAC-verified)."""
        return await _handle(request, "mercadopago")

    @app.post("/webhooks/stripe")
    async def stripe_webhook(request: Request):
        """Receive Stripe payment events (signature-verified)."""
        return await _handle(request, "stripe")

    @app.post("/webhooks/{provider}")
    async def unknown_webhook(request: Request, provider: str):
        """Anything else is answered by the dispatcher as an unknown processor."""
        return await _handle(request, provider)

    logger.info(
        "Webhook routes registered: /webhooks/{%s}", ",".join(sorted(dispatcher.processors))
    )
