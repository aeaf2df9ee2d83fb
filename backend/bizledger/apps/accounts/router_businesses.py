# backend/bizledger/apps/accounts/router_businesses.py

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from bizledger.apps.billing import plans
from bizledger.database import get_db
from bizledger.errors import Forbidden, InternalError, NotFound
from bizledger.security import (
    BusinessAccess,
    Identity,
    get_current_identity,
    require_business_role,
)
from . import schemas, services, store
from .models import BusinessRole
from .store import Err

router = APIRouter(prefix="/businesses", tags=["businesses"])

ANY_MEMBER = (BusinessRole.OWNER, BusinessRole.ADMIN, BusinessRole.MEMBER, BusinessRole.ACCOUNTANT)
MANAGERS = (BusinessRole.OWNER, BusinessRole.ADMIN)


@router.get("", response_model=List[schemas.MembershipRead])
def list_my_businesses(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    memberships = services.list_memberships(db, user_id=identity.id)
    return [{"business": m.business, "role": m.role} for m in memberships]


@router.get("/{business_id}", response_model=schemas.MembershipRead)
def get_business(
    access: BusinessAccess = Depends(require_business_role(*ANY_MEMBER)),
    db: Session = Depends(get_db),
):
    result = store.get_business(db, access.business_id)
    if isinstance(result, Err):
        raise InternalError("Could not load business")
    if result.value is None:
        raise NotFound("Business not found")
    return {"business": result.value, "role": access.role}


@router.get("/{business_id}/transactions", response_model=List[schemas.TransactionRead])
def list_transactions(
    limit: int = Query(100, ge=1, le=500),
    access: BusinessAccess = Depends(require_business_role(*ANY_MEMBER)),
    db: Session = Depends(get_db),
):
    result = store.list_transactions(db, business_id=access.business_id, limit=limit)
    if isinstance(result, Err):
        raise InternalError("Could not load transactions")
    return result.value


@router.post(
    "/{business_id}/transactions",
    response_model=schemas.TransactionRead,
    status_code=status.HTTP_201_CREATED,
)
def create_transaction(
    payload: schemas.TransactionCreate,
    access: BusinessAccess = Depends(require_business_role(*MANAGERS)),
    db: Session = Depends(get_db),
):
    account = services.get_account_by_business_id(db, business_id=access.business_id)
    counted = store.count_transactions_for_account(db, account_id=account.id)
    if isinstance(counted, Err):
        raise InternalError("Could not check plan limits")
    if not plans.within_limit(account.plan, "transactions", counted.value):
        raise Forbidden("Plan limit reached")

    created = store.insert_transaction(
        db,
        business_id=access.business_id,
        txn_date=payload.txn_date,
        amount=payload.amount,
        direction=payload.direction.value,
        description=payload.description,
        category=payload.category,
    )
    if isinstance(created, Err):
        raise InternalError("Could not save transaction")
    return created.value
