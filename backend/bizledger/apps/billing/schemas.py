from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


def _require_http_url(value: str) -> str:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("must be an absolute http(s) URL")
    return value


class CheckoutRequest(BaseModel):
    price_id: str = Field(..., alias="priceId", min_length=1)
    success_url: str = Field(..., alias="successUrl")
    cancel_url: str = Field(..., alias="cancelUrl")

    @field_validator("success_url", "cancel_url")
    @classmethod
    def check_urls(cls, value: str) -> str:
        return _require_http_url(value)

    class Config:
        populate_by_name = True


class PortalRequest(BaseModel):
    return_url: str = Field(..., alias="returnUrl")

    @field_validator("return_url")
    @classmethod
    def check_return_url(cls, value: str) -> str:
        return _require_http_url(value)

    class Config:
        populate_by_name = True


class SessionUrlResponse(BaseModel):
    url: str


class AccountRead(BaseModel):
    id: str
    stripe_customer_id: Optional[str] = None
    subscription_status: str
    plan: str
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class SubscriptionResponse(BaseModel):
    account: AccountRead
    subscription: Optional[Dict[str, Any]] = None


class WebhookAck(BaseModel):
    received: bool = True
