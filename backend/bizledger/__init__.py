# backend/bizledger/__init__.py
"""
Import ORM models so that Base.metadata.create_all() sees every table.

The model classes live in bizledger/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models  # accounts / businesses / roles / billing audit

__all__ = ["accounts_models"]
