# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Group-isolated quota deduction.

Costs are charged against the billing scope the selector recorded: first a
subscription funding record of exactly that group, then a prepaid card of
exactly that group. Every decrement is one conditional UPDATE guarded by
"remaining >= amount", so concurrent requests never overdraw a record.
Row locks are never taken explicitly.

Deduction is not idempotent: calling it twice charges twice. Callers that
retry must deduplicate on their own request key.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Callable, List, Optional, Union

from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import InsufficientFundsError, StoreUnavailableError
from ..core.types import AccessContext
from ..db.models import FUNDING_STATUS_PAID, FundingRecord, PrepaidCard

lib_logger = logging.getLogger("group_billing")

SOURCE_FUNDING_RECORD = "funding_record"
SOURCE_PREPAID_CARD = "prepaid_card"

Amount = Union[Decimal, int, float, str]


def _to_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    # str() first so floats like 0.1 keep their printed value
    return Decimal(str(amount))


def _group_scope(column: Any, group_id: Optional[int]) -> Any:
    """Exact group match; no group only matches unscoped rows."""
    if group_id is None:
        return column.is_(None)
    return column == group_id


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class QuotaDeductionEngine:
    """
    Applies request costs to funding records and prepaid balances.

    Usage inside a caller transaction:
        async with session.begin():
            deducted = await engine.deduct(session, user_id, group_id, amount, micros)

    Or with its own transaction, reading the scope from the request context:
        source = await engine.charge(context, amount, micros)
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize QuotaDeductionEngine.

        Args:
            session_factory: Needed only for charge()
            clock: Returns the current UTC time; used for validity periods
        """
        self._session_factory = session_factory
        self._clock = clock or _utc_now

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    async def deduct(
        self,
        session: AsyncSession,
        user_id: int,
        group_id: Optional[int],
        amount: Amount,
        cost_micros: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Deduct an amount from the first funding source that fully covers it.

        Must run inside an open transaction on session. Subscription funding
        records are tried before prepaid cards; amounts are never split.

        Args:
            session: Session with an open transaction
            user_id: Caller identity
            group_id: Billing group from the request scope, None if unscoped
            amount: Cost in quota units
            cost_micros: Same cost in integer micro-units, tallied on the source
            now: Override for the current time

        Returns:
            False if no source could cover the amount; nothing was changed

        Raises:
            StoreUnavailableError: The store failed; the transaction must roll back
        """
        if self._validate(amount, cost_micros) == 0:
            return True
        source = await self._deduct(session, user_id, group_id, amount, cost_micros, now)
        return source is not None

    async def deduct_funding_record(
        self,
        session: AsyncSession,
        user_id: int,
        group_id: Optional[int],
        amount: Amount,
        cost_micros: int,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Deduct from a subscription funding record of exactly this group.

        Among valid records the one whose period ends first is charged first;
        ties go to the lower id.
        """
        amount = self._validate(amount, cost_micros)
        if amount == 0:
            return True
        now = now or self._clock()
        try:
            return await self._charge_funding_record(
                session, user_id, group_id, amount, cost_micros, now
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Funding record deduction failed for user {user_id}: {e}"
            ) from e

    async def deduct_prepaid_balance(
        self,
        session: AsyncSession,
        user_id: int,
        group_id: Optional[int],
        amount: Amount,
        cost_micros: int,
    ) -> bool:
        """
        Deduct from a prepaid card redeemed by user_id for exactly this group.

        The earliest redeemed card is charged first; ties go to the lower id.
        """
        amount = self._validate(amount, cost_micros)
        if amount == 0:
            return True
        try:
            return await self._charge_prepaid_card(
                session, user_id, group_id, amount, cost_micros
            )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Prepaid balance deduction failed for user {user_id}: {e}"
            ) from e

    async def charge(
        self,
        context: AccessContext,
        amount: Amount,
        cost_micros: int,
    ) -> Optional[str]:
        """
        Charge a finished request in its own transaction.

        Reads the caller and billing group from the context metadata written
        by the selector. The transaction rolls back when the amount cannot be
        covered or the awaiting task is cancelled before commit.

        Returns:
            The funding source charged ("funding_record" or "prepaid_card"),
            or None for a zero amount

        Raises:
            ValueError: The context names no caller
            InsufficientFundsError: No source of the scope covers the amount
            StoreUnavailableError: The store failed
        """
        if self._session_factory is None:
            raise RuntimeError("charge() needs a session factory")
        user_id = context.user_id
        if user_id is None:
            raise ValueError("access context has no user_id to charge")
        group_id = context.billing_group_id

        async with self._session_factory() as session:
            async with session.begin():
                source = await self._deduct(session, user_id, group_id, amount, cost_micros)
                if source is None and _to_decimal(amount) != 0:
                    raise InsufficientFundsError(user_id, group_id, amount)
        return source

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _deduct(
        self,
        session: AsyncSession,
        user_id: int,
        group_id: Optional[int],
        amount: Amount,
        cost_micros: int,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        amount = self._validate(amount, cost_micros)
        if amount == 0:
            return None
        now = now or self._clock()

        try:
            if await self._charge_funding_record(
                session, user_id, group_id, amount, cost_micros, now
            ):
                source = SOURCE_FUNDING_RECORD
            elif await self._charge_prepaid_card(
                session, user_id, group_id, amount, cost_micros
            ):
                source = SOURCE_PREPAID_CARD
            else:
                lib_logger.warning(
                    f"Insufficient funds for user {user_id} (group: {group_id}): "
                    f"no source covers {amount}"
                )
                return None
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Quota deduction failed for user {user_id}: {e}"
            ) from e

        lib_logger.info(
            f"Deducted {amount} ({cost_micros} micros) from {source} "
            f"for user {user_id} (group: {group_id})"
        )
        return source

    @staticmethod
    def _validate(amount: Amount, cost_micros: int) -> Decimal:
        value = _to_decimal(amount)
        if value < 0:
            raise ValueError(f"amount must not be negative: {amount}")
        if cost_micros < 0:
            raise ValueError(f"cost_micros must not be negative: {cost_micros}")
        return value

    async def _charge_funding_record(
        self,
        session: AsyncSession,
        user_id: int,
        group_id: Optional[int],
        amount: Decimal,
        cost_micros: int,
        now: datetime,
    ) -> bool:
        today: date = now.date()
        # Daily usage restarts when the last charge was on another day
        used_today = case(
            (FundingRecord.daily_used_on == today, FundingRecord.daily_used),
            else_=Decimal("0"),
        )
        within_daily_cap = or_(
            FundingRecord.daily_quota <= 0,
            used_today + amount <= FundingRecord.daily_quota,
        )

        candidates: List[int] = list(
            (
                await session.execute(
                    select(FundingRecord.id)
                    .where(
                        FundingRecord.user_id == user_id,
                        _group_scope(FundingRecord.user_group_id, group_id),
                        FundingRecord.is_enabled.is_(True),
                        FundingRecord.status == FUNDING_STATUS_PAID,
                        FundingRecord.period_start <= now,
                        FundingRecord.period_end > now,
                        FundingRecord.left_quota >= amount,
                        within_daily_cap,
                    )
                    .order_by(FundingRecord.period_end.asc(), FundingRecord.id.asc())
                )
            ).scalars()
        )

        for record_id in candidates:
            result = await session.execute(
                update(FundingRecord)
                .where(
                    FundingRecord.id == record_id,
                    FundingRecord.left_quota >= amount,
                    within_daily_cap,
                )
                .values(
                    left_quota=FundingRecord.left_quota - amount,
                    daily_used=used_today + amount,
                    daily_used_on=today,
                    used_quota_micros=FundingRecord.used_quota_micros + cost_micros,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                lib_logger.debug(f"Charged funding record {record_id} for user {user_id}")
                return True
            # A concurrent request drained this record first
            lib_logger.debug(f"Funding record {record_id} no longer covers {amount}")
        return False

    async def _charge_prepaid_card(
        self,
        session: AsyncSession,
        user_id: int,
        group_id: Optional[int],
        amount: Decimal,
        cost_micros: int,
    ) -> bool:
        candidates: List[int] = list(
            (
                await session.execute(
                    select(PrepaidCard.id)
                    .where(
                        PrepaidCard.redeemed_user_id == user_id,
                        PrepaidCard.redeemed_at.is_not(None),
                        _group_scope(PrepaidCard.user_group_id, group_id),
                        PrepaidCard.is_enabled.is_(True),
                        PrepaidCard.balance >= amount,
                    )
                    .order_by(PrepaidCard.redeemed_at.asc(), PrepaidCard.id.asc())
                )
            ).scalars()
        )

        for card_id in candidates:
            result = await session.execute(
                update(PrepaidCard)
                .where(PrepaidCard.id == card_id, PrepaidCard.balance >= amount)
                .values(
                    balance=PrepaidCard.balance - amount,
                    spent_micros=PrepaidCard.spent_micros + cost_micros,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                lib_logger.debug(f"Charged prepaid card {card_id} for user {user_id}")
                return True
            lib_logger.debug(f"Prepaid card {card_id} no longer covers {amount}")
        return False
