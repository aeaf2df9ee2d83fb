# backend/bizledger/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import relationship

from bizledger.database import Base
from bizledger.ids import generate_id


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class BusinessRole(str, enum.Enum):
    """Roles a user can hold on a single business."""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    ACCOUNTANT = "accountant"


class SubscriptionStatus(str, enum.Enum):
    """
    Known values of `Account.subscription_status`.

    The column itself is a free string: subscription events store the
    payment processor's status verbatim (uppercased), so new upstream
    statuses do not need a migration.
    """

    INACTIVE = "INACTIVE"
    TRIALING = "TRIALING"
    ACTIVE = "ACTIVE"
    INCOMPLETE = "INCOMPLETE"
    INCOMPLETE_EXPIRED = "INCOMPLETE_EXPIRED"
    PAST_DUE = "PAST_DUE"
    UNPAID = "UNPAID"
    PAUSED = "PAUSED"
    CANCELED = "CANCELED"


class PlanCode(str, enum.Enum):
    FREE = "FREE"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


class TransactionDirection(str, enum.Enum):
    CREDIT = "credit"
    DEBIT = "debit"


# ---------------------------------------------------------------------------
# ACCOUNT + BUSINESS
# ---------------------------------------------------------------------------


class Account(Base):
    """
    Billing entity behind one or more businesses.

    `stripe_customer_id` is filled lazily on first checkout and is the
    join key for every webhook update; once set it never changes.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=lambda: generate_id("ACC"))
    stripe_customer_id = Column(String(255), unique=True, nullable=True, index=True)
    subscription_status = Column(
        String(32),
        nullable=False,
        default=SubscriptionStatus.INACTIVE.value,
    )
    plan = Column(String(32), nullable=False, default=PlanCode.FREE.value)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    businesses = relationship("Business", back_populates="account", lazy="selectin")


class Business(Base):
    __tablename__ = "businesses"

    id = Column(String(36), primary_key=True, default=lambda: generate_id("BIZ"))
    name = Column(String(255), nullable=False)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    account = relationship("Account", back_populates="businesses")
    roles = relationship("UserBusinessRole", back_populates="business", lazy="selectin")


class UserBusinessRole(Base):
    """
    Membership of an identity-service user in a business.

    `user_id` is the subject issued by the identity service; users are not
    stored locally.
    """

    __tablename__ = "user_business_roles"
    __table_args__ = (
        UniqueConstraint("user_id", "business_id", name="uq_user_business_role"),
    )

    id = Column(String(36), primary_key=True, default=lambda: generate_id("UBR"))
    user_id = Column(String(64), nullable=False, index=True)
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False, index=True)
    role = Column(String(32), nullable=False, default=BusinessRole.MEMBER.value)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)

    business = relationship("Business", back_populates="roles")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_business_date", "business_id", "txn_date"),
    )

    id = Column(String(36), primary_key=True, default=lambda: generate_id("TXN"))
    business_id = Column(String(36), ForeignKey("businesses.id"), nullable=False)
    txn_date = Column(Date, nullable=False)
    description = Column(String(255), nullable=False, default="")
    category = Column(String(64), nullable=False, default="")
    direction = Column(String(8), nullable=False, default=TransactionDirection.DEBIT.value)
    amount = Column(Numeric(14, 2), nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)


# ---------------------------------------------------------------------------
# BILLING AUDIT
# ---------------------------------------------------------------------------


class BillingAuditLog(Base):
    __tablename__ = "billing_audit_logs"

    id = Column(String(36), primary_key=True, default=lambda: generate_id("BAL"))
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=True, index=True)
    event_type = Column(String(64), nullable=False, index=True)
    details = Column(Text, nullable=False, default="")

    created_at = Column(DateTime(timezone=True), nullable=False, default=datetime.utcnow)
