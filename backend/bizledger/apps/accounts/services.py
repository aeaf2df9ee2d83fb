from __future__ import annotations

from dataclasses import dataclass
from typing import List

from sqlalchemy.orm import Session

from bizledger.errors import InternalError, NotFound
from . import models, store
from .store import Err


@dataclass(frozen=True)
class Membership:
    business: models.Business
    role: str


# ---------------------------------------------------------------------------
# Account resolution
# ---------------------------------------------------------------------------


def resolve_business_id_for_user(db: Session, *, user_id: str) -> str:
    result = store.first_business_role_for_user(db, user_id=user_id)
    if isinstance(result, Err) or result.value is None:
        raise NotFound("Business role not found for user")
    return result.value.business_id


def get_account_by_business_id(db: Session, *, business_id: str) -> models.Account:
    business_result = store.get_business(db, business_id)
    if isinstance(business_result, Err):
        raise NotFound("Business not found or has no associated account")
    business = business_result.value
    if business is None or not business.account_id:
        raise NotFound("Business not found or has no associated account")

    account_result = store.get_account(db, business.account_id)
    if isinstance(account_result, Err) or account_result.value is None:
        raise NotFound("Account not found")
    return account_result.value


def resolve_account_for_user(db: Session, *, user_id: str) -> models.Account:
    """
    Map an authenticated user to its billing account:
    user_business_roles -> businesses -> accounts.

    Stops at the first missing link with NotFound.
    """
    business_id = resolve_business_id_for_user(db, user_id=user_id)
    return get_account_by_business_id(db, business_id=business_id)


# ---------------------------------------------------------------------------
# Memberships
# ---------------------------------------------------------------------------


def list_memberships(db: Session, *, user_id: str) -> List[Membership]:
    result = store.list_business_roles_for_user(db, user_id=user_id)
    if isinstance(result, Err):
        raise InternalError("Could not load businesses")
    return [Membership(business=row.business, role=row.role) for row in result.value]
