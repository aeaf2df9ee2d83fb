# backend/bizledger/apps/billing/__init__.py
"""
Billing app

Handles:
- Plan catalogue and limits
- Stripe customer linkage, checkout and customer-portal sessions
- Stripe webhooks keeping `accounts.subscription_status` in sync
- Billing audit trail

Submodules are imported explicitly by callers (`from bizledger.apps.billing
import services`) so the accounts app can use `plans` without pulling in
the Stripe client.
"""
