# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio

from group_billing.core.config import BillingSettings
from group_billing.db import (
    FundingRecord,
    PrepaidCard,
    User,
    UserGroup,
    create_engine_from_settings,
    create_schema,
    create_session_factory,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class BillingDB:
    """Seeding and read-back helpers over a session factory."""

    def __init__(self, sessions):
        self.sessions = sessions

    async def add(self, *rows) -> None:
        async with self.sessions() as session:
            async with session.begin():
                session.add_all(rows)

    async def funding_record(self, record_id: int) -> FundingRecord:
        async with self.sessions() as session:
            return await session.get(FundingRecord, record_id)

    async def prepaid_card(self, card_id: int) -> PrepaidCard:
        async with self.sessions() as session:
            return await session.get(PrepaidCard, card_id)

    async def left_quota(self, record_id: int) -> Decimal:
        return (await self.funding_record(record_id)).left_quota

    async def balance(self, card_id: int) -> Decimal:
        return (await self.prepaid_card(card_id)).balance


def make_group(group_id: int) -> UserGroup:
    return UserGroup(id=group_id, name=f"group{group_id}")


def make_user(user_id: int, access=(), billing=()) -> User:
    return User(
        id=user_id,
        username=f"user{user_id}",
        access_group_ids=list(access),
        billing_group_ids=list(billing),
    )


def make_record(
    record_id: int,
    user_id: int,
    group_id: Optional[int],
    left,
    total=None,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
    **kwargs,
) -> FundingRecord:
    return FundingRecord(
        id=record_id,
        user_id=user_id,
        user_group_id=group_id,
        plan_name=f"bill{record_id}",
        period_start=period_start or NOW - timedelta(days=1),
        period_end=period_end or NOW + timedelta(days=30),
        total_quota=Decimal(str(total if total is not None else left)),
        left_quota=Decimal(str(left)),
        **kwargs,
    )


def make_card(
    card_id: int,
    user_id: Optional[int],
    group_id: Optional[int],
    balance,
    redeemed_at: Optional[datetime] = None,
    **kwargs,
) -> PrepaidCard:
    return PrepaidCard(
        id=card_id,
        name=f"card{card_id}",
        card_sn=f"SN-{card_id:04d}",
        amount=Decimal(str(balance)),
        balance=Decimal(str(balance)),
        user_group_id=group_id,
        redeemed_user_id=user_id,
        redeemed_at=redeemed_at or (NOW - timedelta(hours=card_id) if user_id else None),
        **kwargs,
    )


@pytest.fixture
def settings(tmp_path) -> BillingSettings:
    return BillingSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'billing.db'}",
        sqlite_timeout=30.0,
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine_from_settings(settings)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessions(engine):
    return create_session_factory(engine)


@pytest.fixture
def db(sessions) -> BillingDB:
    return BillingDB(sessions)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
