"""tipgate: verified payment-webhook settlement for a tip ledger."""

__version__ = "1.0.0"
