# app/access/__init__.py
"""
Paid access grants.

This package issues and validates the session ids sold by the gateway.
Payments are simulated: no on-chain verification is performed.

Key components:
- catalog: the two product tiers, their prices and lifetimes
- grants: grant records and the in-memory grant store
- ledger: bounded history of payments for display
- service: GrantService, the single owner of grants and ledger
- audit: optional JSON-lines audit trail of grant events

Configuration is loaded from environment variables via app.core.config.
"""
