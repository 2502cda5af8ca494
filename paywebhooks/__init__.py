"""Payment provider webhook receiver.

Receives webhooks from Stripe and PayPal. Each webhook is signature-verified,
deduplicated through the idempotency ledger, and applied to the
subscription registry.
"""
