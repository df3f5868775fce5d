# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Group membership lookup for caller identities.

A caller whose membership cannot be resolved (anonymous, unknown, or the
store is down) gets None back and is not group filtered downstream.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.types import AccessContext, GroupSet, Membership
from ..db.models import User

lib_logger = logging.getLogger("group_billing")

# Expired entries are swept once the cache grows past this size
_CACHE_SWEEP_SIZE = 1024


def _normalize_user_id(user_id: Any) -> Optional[int]:
    if user_id is None or isinstance(user_id, bool):
        return None
    try:
        value = int(str(user_id).strip())
    except ValueError:
        return None
    return value if value > 0 else None


class MembershipResolver:
    """
    Resolves a caller identity to its access and billing group sets.

    Usage:
        resolver = MembershipResolver(session_factory, cache_ttl=5)
        membership = await resolver.resolve(user_id)
        if membership is None:
            ...  # ungated request path
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]],
        cache_ttl: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize MembershipResolver.

        Args:
            session_factory: Factory for sessions used outside a caller transaction
            cache_ttl: Seconds a resolved membership is reused (0 disables caching)
            clock: Monotonic time source
        """
        self._session_factory = session_factory
        self._cache_ttl = max(0.0, cache_ttl)
        self._clock = clock
        # user_id -> (expires_at, membership)
        self._cache: Dict[int, Tuple[float, Membership]] = {}

    async def resolve(
        self,
        user_id: Any,
        session: Optional[AsyncSession] = None,
    ) -> Optional[Membership]:
        """
        Resolve a caller's group memberships.

        Args:
            user_id: Caller identity (int or decimal string)
            session: Session of an open transaction to read through. Reads
                then see the transaction's own writes and skip the cache.

        Returns:
            Membership, or None if the identity is unknown or unresolvable
        """
        normalized = _normalize_user_id(user_id)
        if normalized is None:
            return None

        if session is None and self._cache_ttl > 0:
            cached = self._cache.get(normalized)
            if cached:
                if cached[0] > self._clock():
                    return cached[1]
                self._cache.pop(normalized, None)

        try:
            if session is not None:
                membership = await self._load(session, normalized)
            elif self._session_factory is not None:
                async with self._session_factory() as own_session:
                    membership = await self._load(own_session, normalized)
            else:
                return None
        except SQLAlchemyError as e:
            lib_logger.warning(
                f"Membership lookup failed for user {normalized}, "
                f"treating request as ungated: {e}"
            )
            return None
        except ValueError as e:
            # Stored group ids that cannot be decoded
            lib_logger.warning(
                f"Unreadable group membership for user {normalized}, "
                f"treating request as ungated: {e}"
            )
            return None

        if membership is not None and session is None and self._cache_ttl > 0:
            self._store(normalized, membership)
        return membership

    async def resolve_from_context(
        self,
        context: AccessContext,
        session: Optional[AsyncSession] = None,
    ) -> Optional[Membership]:
        """Resolve the caller named by the context's user_id metadata."""
        return await self.resolve(context.user_id, session=session)

    def _store(self, user_id: int, membership: Membership) -> None:
        now = self._clock()
        if len(self._cache) >= _CACHE_SWEEP_SIZE:
            for key, (expires_at, _) in list(self._cache.items()):
                if expires_at <= now:
                    del self._cache[key]
        self._cache[user_id] = (now + self._cache_ttl, membership)

    def invalidate(self, user_id: Any = None) -> None:
        """Drop one cached membership, or all of them when user_id is None."""
        if user_id is None:
            self._cache.clear()
            return
        normalized = _normalize_user_id(user_id)
        if normalized is not None:
            self._cache.pop(normalized, None)

    async def _load(self, session: AsyncSession, user_id: int) -> Optional[Membership]:
        result = await session.execute(
            select(User.access_group_ids, User.billing_group_ids).where(User.id == user_id)
        )
        row = result.first()
        if row is None:
            lib_logger.debug(f"No user {user_id}, membership unresolved")
            return None
        access, billing = row
        return Membership(
            access=GroupSet.parse(access),
            billing=GroupSet.parse(billing),
        )
