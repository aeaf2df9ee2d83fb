"""
Billing synchronisation between local accounts and Stripe.

Two flows live here:

- checkout / portal (user initiated): resolve the caller's account, make
  sure it is linked to exactly one Stripe customer, then open a hosted
  session and hand back its URL;
- webhooks (Stripe initiated, at-least-once, unordered): verify the
  signature, then overwrite the cached subscription status of the account
  joined by Stripe customer id.

Every webhook mutation is a last-write-wins overwrite, so redelivery is
safe without deduplication. Events are applied in arrival order with no
version check: a stale event delivered late wins over a newer one.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from bizledger.apps.accounts import models, services as account_services, store
from bizledger.apps.accounts.models import PlanCode, SubscriptionStatus
from bizledger.apps.accounts.store import Err
from bizledger.errors import InternalError, NotFound, UpstreamError
from bizledger.security import Identity

from . import audit, plans
from .gateway import StripeGateway

logger = logging.getLogger(__name__)

SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

# Webhook outcomes, reported back for logging and tests.
OUTCOME_UPDATED = "updated"
OUTCOME_NO_ACCOUNT = "no_account"
OUTCOME_IGNORED = "ignored"
OUTCOME_FAILED = "failed"


# ---------------------------------------------------------------------------
# Customer linkage
# ---------------------------------------------------------------------------


def get_or_create_customer(
    db: Session,
    gateway: StripeGateway,
    *,
    identity: Identity,
    account: models.Account,
) -> str:
    """
    Return the account's Stripe customer id, creating the customer on first use.

    Creating the customer and storing its id are two separate steps. The
    store only writes the id while the column is still empty, so when two
    requests race the first stored id wins and the loser's customer is left
    orphaned in Stripe (logged for cleanup).
    """
    if account.stripe_customer_id:
        return account.stripe_customer_id

    customer_id = gateway.create_customer(
        email=identity.email,
        metadata={"user_id": identity.id, "account_id": account.id},
    )
    logger.info(
        "stripe customer created",
        extra={"account_id": account.id, "customer_id": customer_id},
    )

    result = store.set_customer_id_if_absent(db, account_id=account.id, customer_id=customer_id)
    if isinstance(result, Err):
        logger.error(
            "could not store stripe customer id; customer is orphaned",
            extra={"account_id": account.id, "customer_id": customer_id},
        )
        raise InternalError("Could not link billing customer")

    if result.value:
        audit.try_record(
            db,
            audit.CUSTOMER_CREATED,
            account_id=account.id,
            customer_id=customer_id,
            user_id=identity.id,
        )
        return customer_id

    reloaded = store.get_account(db, account.id)
    if isinstance(reloaded, Err) or reloaded.value is None or not reloaded.value.stripe_customer_id:
        raise InternalError("Could not link billing customer")
    winner = reloaded.value.stripe_customer_id
    logger.warning(
        "customer id race lost; orphaned stripe customer",
        extra={"account_id": account.id, "customer_id": winner, "orphan_customer_id": customer_id},
    )
    return winner


# ---------------------------------------------------------------------------
# Checkout / portal / subscription read
# ---------------------------------------------------------------------------


def create_checkout_session(
    db: Session,
    gateway: StripeGateway,
    *,
    identity: Identity,
    price_id: str,
    success_url: str,
    cancel_url: str,
) -> str:
    account = account_services.resolve_account_for_user(db, user_id=identity.id)
    customer_id = get_or_create_customer(db, gateway, identity=identity, account=account)

    url = gateway.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"user_id": identity.id, "account_id": account.id},
    )
    logger.info(
        "checkout session created",
        extra={"account_id": account.id, "price_id": price_id},
    )
    return url


def create_portal_session(
    db: Session,
    gateway: StripeGateway,
    *,
    identity: Identity,
    return_url: str,
) -> str:
    account = account_services.resolve_account_for_user(db, user_id=identity.id)
    if not account.stripe_customer_id:
        raise NotFound("No billing account found")

    url = gateway.create_portal_session(
        customer_id=account.stripe_customer_id,
        return_url=return_url,
    )
    logger.info("portal session created", extra={"account_id": account.id})
    return url


def get_subscription_overview(
    db: Session,
    gateway: StripeGateway,
    *,
    identity: Identity,
) -> Tuple[models.Account, Optional[Dict[str, Any]]]:
    """
    The caller's account plus Stripe's most recent subscription for it.

    A Stripe failure here only loses the live view; the cached account
    status is still returned.
    """
    account = account_services.resolve_account_for_user(db, user_id=identity.id)

    subscription = None
    if account.stripe_customer_id:
        try:
            subscription = gateway.latest_subscription(account.stripe_customer_id)
        except UpstreamError:
            logger.warning(
                "could not fetch stripe subscription",
                extra={"account_id": account.id},
            )
    return account, subscription


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


def _customer_id(obj: Dict[str, Any]) -> Optional[str]:
    customer = obj.get("customer")
    if isinstance(customer, dict):
        customer = customer.get("id")
    return str(customer) if customer else None


def _first_price_id(subscription: Dict[str, Any]) -> Optional[str]:
    try:
        return subscription["items"]["data"][0]["price"]["id"]
    except (KeyError, IndexError, TypeError):
        return None


def _overwrite_status(
    db: Session,
    *,
    event: Dict[str, Any],
    customer_id: Optional[str],
    status: str,
    plan: Optional[str] = None,
) -> str:
    if not customer_id:
        logger.warning(
            "webhook event has no customer id",
            extra={"event_id": event.get("id"), "event_type": event.get("type")},
        )
        return OUTCOME_NO_ACCOUNT

    result = store.update_status_by_customer(db, customer_id=customer_id, status=status, plan=plan)
    if isinstance(result, Err):
        logger.error(
            "failed to update subscription status",
            extra={"customer_id": customer_id, "status": status, "event_id": event.get("id")},
        )
        return OUTCOME_FAILED

    if result.value == 0:
        logger.warning(
            "no account for stripe customer; recoverable inconsistency",
            extra={"customer_id": customer_id, "event_id": event.get("id"), "event_type": event.get("type")},
        )
        return OUTCOME_NO_ACCOUNT

    account = store.find_account_by_customer(db, customer_id)
    account_id = None if isinstance(account, Err) or account.value is None else account.value.id
    audit.try_record(
        db,
        audit.SUBSCRIPTION_STATUS_CHANGED,
        account_id=account_id,
        event_id=event.get("id"),
        stripe_event=event.get("type"),
        status=status,
        plan=plan,
    )
    return OUTCOME_UPDATED


def apply_event(db: Session, event: Dict[str, Any]) -> str:
    """Apply one verified event to local state; returns the outcome."""
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object") or {}

    if event_type in {SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED}:
        status = str(obj.get("status") or "").upper()
        if not status:
            logger.warning("subscription event without status", extra={"event_id": event.get("id")})
            return OUTCOME_IGNORED
        return _overwrite_status(
            db,
            event=event,
            customer_id=_customer_id(obj),
            status=status,
            plan=plans.plan_for_price(_first_price_id(obj)),
        )

    if event_type == SUBSCRIPTION_DELETED:
        return _overwrite_status(
            db,
            event=event,
            customer_id=_customer_id(obj),
            status=SubscriptionStatus.CANCELED.value,
            plan=PlanCode.FREE.value,
        )

    if event_type == INVOICE_PAYMENT_FAILED:
        logger.info("payment failed for invoice", extra={"invoice_id": obj.get("id")})
        return _overwrite_status(
            db,
            event=event,
            customer_id=_customer_id(obj),
            status=SubscriptionStatus.PAST_DUE.value,
        )

    if event_type == INVOICE_PAYMENT_SUCCEEDED:
        logger.info("payment succeeded for invoice", extra={"invoice_id": obj.get("id")})
        return OUTCOME_IGNORED

    logger.info("unhandled webhook event type", extra={"event_type": event_type})
    return OUTCOME_IGNORED


def process_webhook(
    db: Session,
    gateway: StripeGateway,
    *,
    payload: bytes,
    signature: Optional[str],
) -> str:
    """
    Verify and apply a Stripe webhook delivery.

    Signature problems raise BadRequest before anything is written. Once
    the signature checks out the delivery is always acknowledged: a
    failure while applying it is logged and reported as OUTCOME_FAILED
    instead of raising, so Stripe does not redeliver.
    """
    event = gateway.parse_webhook(payload, signature)
    logger.info(
        "stripe webhook received",
        extra={"event_id": event.get("id"), "event_type": event.get("type")},
    )

    try:
        return apply_event(db, event)
    except Exception:
        db.rollback()
        logger.exception(
            "webhook handler error",
            extra={"event_id": event.get("id"), "event_type": event.get("type")},
        )
        return OUTCOME_FAILED
