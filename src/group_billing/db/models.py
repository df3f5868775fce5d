# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
SQLAlchemy models for group membership, access policy and funding.

Group id lists are stored as JSON arrays through GroupIDList, which cleans
values on write (drops nulls, zeros and duplicates) and decodes legacy
shapes on read.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, List, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from ..core.types import GroupSet

# Quota and balance columns
AMOUNT = Numeric(20, 6, asdecimal=True)

FUNDING_STATUS_PENDING = "pending"
FUNDING_STATUS_PAID = "paid"
FUNDING_STATUS_REFUNDED = "refunded"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _empty_groups() -> GroupSet:
    return GroupSet()


class GroupIDList(TypeDecorator):
    """JSON array of user group ids, exposed as a GroupSet."""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> List[int]:
        return list(GroupSet.parse(value).values())

    def process_result_value(self, value: Any, dialect) -> GroupSet:
        return GroupSet.parse(value)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class UserGroup(Base):
    """A tenant group users can belong to."""

    __tablename__ = "user_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class User(Base):
    """
    Caller identity with its two independent group memberships.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    # Groups granting access to models and credentials
    access_group_ids: Mapped[GroupSet] = mapped_column(
        GroupIDList, nullable=False, default=_empty_groups
    )
    # Groups the user is billed under
    billing_group_ids: Mapped[GroupSet] = mapped_column(
        GroupIDList, nullable=False, default=_empty_groups
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class CredentialGroup(Base):
    """Credentials sharing an access restriction and a rate limit."""

    __tablename__ = "credential_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    rate_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Empty = usable by every caller
    user_group_ids: Mapped[GroupSet] = mapped_column(
        GroupIDList, nullable=False, default=_empty_groups
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )


class Credential(Base):
    """An upstream credential and the group that owns it."""

    __tablename__ = "credentials"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    provider: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    credential_group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("credential_groups.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )


class ModelPolicy(Base):
    """User groups allowed to request a provider's model."""

    __tablename__ = "model_policies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    model_name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    user_group_ids: Mapped[GroupSet] = mapped_column(
        GroupIDList, nullable=False, default=_empty_groups
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("provider", "model_name", name="uq_model_policy_provider_model"),
    )


class FundingRecord(Base):
    """
    Subscription quota for one period, scoped to a user and optionally a group.

    left_quota only decreases within the period. Records differing only
    in user_group_id never share a counter.
    """

    __tablename__ = "funding_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    user_group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("user_groups.id", ondelete="SET NULL"), nullable=True
    )
    plan_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    total_quota: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    left_quota: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    # 0 = no daily cap
    daily_quota: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    daily_used: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    daily_used_on: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    used_quota_micros: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FUNDING_STATUS_PAID
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_funding_records_user_group", "user_id", "user_group_id"),
        Index("idx_funding_records_period_end", "period_end"),
    )


class PrepaidCard(Base):
    """
    Redeemed prepaid balance, scoped to the redeeming user and optionally a group.
    """

    __tablename__ = "prepaid_cards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    card_sn: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    amount: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    balance: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    spent_micros: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    user_group_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("user_groups.id", ondelete="SET NULL"), nullable=True
    )
    redeemed_user_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    redeemed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        Index("idx_prepaid_cards_redeemed_group", "redeemed_user_id", "user_group_id"),
    )
