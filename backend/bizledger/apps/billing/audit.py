"""Billing audit trail.

One `billing_audit_logs` row per billing fact worth keeping (a Stripe
customer linked to an account, a webhook-driven status change). Extra keyword
arguments become the row's JSON `details`.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bizledger.apps.accounts import models

logger = logging.getLogger(__name__)

CUSTOMER_CREATED = "CUSTOMER_CREATED"
SUBSCRIPTION_STATUS_CHANGED = "SUBSCRIPTION_STATUS_CHANGED"


def record(
    db: Session, event_type: str, *, account_id: Optional[str] = None, **details: Any
) -> models.BillingAuditLog:
    entry = models.BillingAuditLog(
        account_id=account_id,
        event_type=event_type,
        details=json.dumps(details, sort_keys=True, default=str) if details else "",
    )
    db.add(entry)
    db.commit()
    return entry


def try_record(
    db: Session, event_type: str, *, account_id: Optional[str] = None, **details: Any
) -> Optional[models.BillingAuditLog]:
    """Like `record`, but a failed write is rolled back and logged instead of raised."""
    try:
        return record(db, event_type, account_id=account_id, **details)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(
            "billing audit write failed",
            extra={"event_type": event_type, "account_id": account_id, "error": exc.__class__.__name__},
        )
        return None
