# backend/bizledger/apps/accounts/__init__.py
"""
Accounts app

Responsible for:
- Billing accounts, businesses and user-business role memberships
- Persistence results (`store`) used by the admission layer and billing
- Account resolution (user -> business -> account)
- Business-scoped endpoints guarded by role checks
- The auth-session probe used by the frontend

Identity itself belongs to the external identity service; this app only
keeps the identity-service user id on membership rows.
"""

from . import models, schemas, services, store  # noqa: F401

__all__ = ["models", "schemas", "services", "store"]
