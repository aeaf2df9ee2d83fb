"""
Thin wrapper around the Stripe API.

The billing services only talk to Stripe through `StripeGateway`, so tests
can swap in a fake with the same methods. Every Stripe API error is
re-raised as UpstreamError; webhook verification failures as BadRequest.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import stripe

from bizledger.errors import BadRequest, InternalError, UpstreamError

logger = logging.getLogger(__name__)

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")

try:
    STRIPE_WEBHOOK_TOLERANCE_SECONDS = int(os.getenv("STRIPE_WEBHOOK_TOLERANCE_SECONDS", "300"))
except ValueError:
    STRIPE_WEBHOOK_TOLERANCE_SECONDS = 300


class StripeGateway:
    def __init__(
        self,
        secret_key: str = STRIPE_SECRET_KEY,
        *,
        webhook_secret: str = STRIPE_WEBHOOK_SECRET,
        webhook_tolerance: int = STRIPE_WEBHOOK_TOLERANCE_SECONDS,
    ) -> None:
        if not secret_key:
            raise RuntimeError("STRIPE_SECRET_KEY environment variable is not set")
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.webhook_tolerance = webhook_tolerance

    # -- customers / sessions ------------------------------------------------

    def create_customer(self, *, email: str, metadata: Dict[str, str]) -> str:
        try:
            customer = stripe.Customer.create(
                api_key=self.secret_key,
                email=email or None,
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            logger.error("stripe customer create failed", extra={"error": exc.__class__.__name__})
            raise UpstreamError() from exc
        return customer["id"]

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Dict[str, str],
    ) -> str:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
            )
        except stripe.StripeError as exc:
            logger.error("stripe checkout session failed", extra={"error": exc.__class__.__name__})
            raise UpstreamError() from exc
        return session["url"]

    def create_portal_session(self, *, customer_id: str, return_url: str) -> str:
        try:
            session = stripe.billing_portal.Session.create(
                api_key=self.secret_key,
                customer=customer_id,
                return_url=return_url,
            )
        except stripe.StripeError as exc:
            logger.error("stripe portal session failed", extra={"error": exc.__class__.__name__})
            raise UpstreamError() from exc
        return session["url"]

    def latest_subscription(self, customer_id: str) -> Optional[Dict[str, Any]]:
        try:
            subscriptions = stripe.Subscription.list(
                api_key=self.secret_key,
                customer=customer_id,
                status="all",
                limit=1,
            )
        except stripe.StripeError as exc:
            logger.error("stripe subscription list failed", extra={"error": exc.__class__.__name__})
            raise UpstreamError() from exc
        data = subscriptions["data"]
        if not data:
            return None
        return data[0].to_dict()

    # -- webhooks ------------------------------------------------------------

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify `signature` over the exact request bytes and decode the event.

        Returns the event as a plain dict.
        """
        if not self.webhook_secret:
            logger.warning("webhook received but STRIPE_WEBHOOK_SECRET is not configured")
            raise InternalError("Webhook secret not configured")
        if not signature:
            raise BadRequest("Webhook signature verification failed")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"),
                signature,
                self.webhook_secret,
                self.webhook_tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            logger.warning("webhook signature verification failed", extra={"error": str(exc)})
            raise BadRequest("Webhook signature verification failed") from exc

        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise BadRequest("Invalid webhook payload") from exc
        if not isinstance(event, dict) or "type" not in event:
            raise BadRequest("Invalid webhook payload")
        return event
