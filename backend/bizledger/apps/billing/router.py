# backend/bizledger/apps/billing/router.py

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from bizledger.database import get_db
from bizledger.security import Identity, get_current_identity
from . import schemas, services
from .gateway import StripeGateway

router = APIRouter(prefix="/billing", tags=["billing"])


def get_gateway(request: Request) -> StripeGateway:
    return request.app.state.stripe_gateway


@router.post("/checkout", response_model=schemas.SessionUrlResponse)
def create_checkout(
    payload: schemas.CheckoutRequest,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    url = services.create_checkout_session(
        db,
        gateway,
        identity=identity,
        price_id=payload.price_id,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
    )
    return {"url": url}


@router.post("/portal", response_model=schemas.SessionUrlResponse)
def create_portal(
    payload: schemas.PortalRequest,
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    url = services.create_portal_session(
        db,
        gateway,
        identity=identity,
        return_url=payload.return_url,
    )
    return {"url": url}


@router.get("/subscription", response_model=schemas.SubscriptionResponse)
def get_subscription(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    account, subscription = services.get_subscription_overview(db, gateway, identity=identity)
    return {"account": account, "subscription": subscription}


@router.post("/webhook", response_model=schemas.WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
):
    """
    Stripe event sink. No bearer token: the signature over the raw body is
    the only authentication, so the body is read as bytes, never re-parsed
    before verification.
    """
    payload = await request.body()
    await run_in_threadpool(
        services.process_webhook,
        db,
        gateway,
        payload=payload,
        signature=stripe_signature,
    )
    return {"received": True}


@router.get("/health")
def billing_health(request: Request):
    gateway: StripeGateway = request.app.state.stripe_gateway
    return {
        "status": "ok",
        "module": "billing",
        "stripe_configured": bool(gateway.secret_key),
        "webhook_secret_configured": bool(gateway.webhook_secret),
    }
