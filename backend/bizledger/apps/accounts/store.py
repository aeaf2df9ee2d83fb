# backend/bizledger/apps/accounts/store.py
"""
Point queries and updates over the accounts tables.

Every function returns a `Result`: `Ok(value)` on success or
`Err(PersistenceError)` when the database call itself failed. Absence of
a row is a successful lookup (`Ok(None)`), never an error. Callers branch
on `isinstance(result, Err)` and decide how a failure surfaces.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Generic, List, Optional, TypeVar, Union

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PersistenceError:
    operation: str
    detail: str


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: PersistenceError


Result = Union[Ok[T], Err]


def _failed(db: Session, operation: str, exc: SQLAlchemyError) -> Err:
    db.rollback()
    logger.error(
        "persistence call failed",
        extra={"operation": operation, "error": exc.__class__.__name__},
    )
    return Err(PersistenceError(operation=operation, detail=str(exc)))


# ---------------------------------------------------------------------------
# ROLES + BUSINESSES
# ---------------------------------------------------------------------------


def find_business_role(
    db: Session, *, user_id: str, business_id: str
) -> Result[Optional[models.UserBusinessRole]]:
    try:
        row = (
            db.query(models.UserBusinessRole)
            .filter(
                models.UserBusinessRole.user_id == user_id,
                models.UserBusinessRole.business_id == business_id,
            )
            .one_or_none()
        )
    except SQLAlchemyError as exc:
        return _failed(db, "find_business_role", exc)
    return Ok(row)


def first_business_role_for_user(
    db: Session, *, user_id: str
) -> Result[Optional[models.UserBusinessRole]]:
    """First membership in table order; callers must not rely on which one."""
    try:
        row = (
            db.query(models.UserBusinessRole)
            .filter(models.UserBusinessRole.user_id == user_id)
            .first()
        )
    except SQLAlchemyError as exc:
        return _failed(db, "first_business_role_for_user", exc)
    return Ok(row)


def list_business_roles_for_user(
    db: Session, *, user_id: str
) -> Result[List[models.UserBusinessRole]]:
    try:
        rows = (
            db.query(models.UserBusinessRole)
            .filter(models.UserBusinessRole.user_id == user_id)
            .all()
        )
    except SQLAlchemyError as exc:
        return _failed(db, "list_business_roles_for_user", exc)
    return Ok(rows)


def get_business(db: Session, business_id: str) -> Result[Optional[models.Business]]:
    try:
        row = db.get(models.Business, business_id)
    except SQLAlchemyError as exc:
        return _failed(db, "get_business", exc)
    return Ok(row)


# ---------------------------------------------------------------------------
# ACCOUNTS
# ---------------------------------------------------------------------------


def get_account(db: Session, account_id: str) -> Result[Optional[models.Account]]:
    try:
        row = db.get(models.Account, account_id, populate_existing=True)
    except SQLAlchemyError as exc:
        return _failed(db, "get_account", exc)
    return Ok(row)


def set_customer_id_if_absent(
    db: Session, *, account_id: str, customer_id: str
) -> Result[bool]:
    """
    Attach `customer_id` to the account only while it has none.

    Returns Ok(True) when this call wrote the value, Ok(False) when another
    writer got there first (the stored id is left untouched).
    """
    stmt = (
        update(models.Account)
        .where(
            models.Account.id == account_id,
            models.Account.stripe_customer_id.is_(None),
        )
        .values(stripe_customer_id=customer_id, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        return _failed(db, "set_customer_id_if_absent", exc)
    return Ok(result.rowcount == 1)


def update_status_by_customer(
    db: Session,
    *,
    customer_id: str,
    status: str,
    plan: Optional[str] = None,
) -> Result[int]:
    """
    Overwrite the subscription status of the account joined to
    `customer_id`. Returns the number of matched accounts (0 or 1).
    """
    values = {"subscription_status": status, "updated_at": datetime.utcnow()}
    if plan is not None:
        values["plan"] = plan
    stmt = (
        update(models.Account)
        .where(models.Account.stripe_customer_id == customer_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        return _failed(db, "update_status_by_customer", exc)
    return Ok(result.rowcount)


def find_account_by_customer(
    db: Session, customer_id: str
) -> Result[Optional[models.Account]]:
    try:
        row = (
            db.query(models.Account)
            .filter(models.Account.stripe_customer_id == customer_id)
            .one_or_none()
        )
    except SQLAlchemyError as exc:
        return _failed(db, "find_account_by_customer", exc)
    return Ok(row)


# ---------------------------------------------------------------------------
# TRANSACTIONS
# ---------------------------------------------------------------------------


def list_transactions(
    db: Session, *, business_id: str, limit: int = 100
) -> Result[List[models.Transaction]]:
    try:
        rows = (
            db.query(models.Transaction)
            .filter(models.Transaction.business_id == business_id)
            .order_by(models.Transaction.txn_date.desc(), models.Transaction.created_at.desc())
            .limit(limit)
            .all()
        )
    except SQLAlchemyError as exc:
        return _failed(db, "list_transactions", exc)
    return Ok(rows)


def count_transactions_for_account(db: Session, *, account_id: str) -> Result[int]:
    try:
        total = (
            db.query(models.Transaction)
            .join(models.Business, models.Business.id == models.Transaction.business_id)
            .filter(models.Business.account_id == account_id)
            .count()
        )
    except SQLAlchemyError as exc:
        return _failed(db, "count_transactions_for_account", exc)
    return Ok(total)


def insert_transaction(
    db: Session,
    *,
    business_id: str,
    txn_date: date,
    amount: Decimal,
    direction: str,
    description: str = "",
    category: str = "",
) -> Result[models.Transaction]:
    row = models.Transaction(
        business_id=business_id,
        txn_date=txn_date,
        amount=amount,
        direction=direction,
        description=description,
        category=category,
    )
    try:
        db.add(row)
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as exc:
        return _failed(db, "insert_transaction", exc)
    return Ok(row)
