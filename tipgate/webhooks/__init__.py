"""Webhook inbound system.

Receives payment notifications from Bold, PayPal, Mercado Pago and Stripe.
Each webhook is rate-limited, shape-checked, signature-verified,
deduplicated and settled against the tip ledger.
"""
