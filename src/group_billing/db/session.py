# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Async engine and session factory setup.
"""

import logging
from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..core.config import BillingSettings
from .models import Base

lib_logger = logging.getLogger("group_billing")


def create_engine_from_settings(settings: BillingSettings) -> AsyncEngine:
    """
    Create the async engine for the configured database.

    SQLite connections get a busy timeout so concurrent writers wait for
    the write lock instead of failing immediately.
    """
    connect_args: Dict[str, Any] = {}
    if settings.is_sqlite:
        connect_args["timeout"] = settings.sqlite_timeout
    engine = create_async_engine(
        settings.database_url,
        echo=settings.sql_echo,
        connect_args=connect_args,
    )
    lib_logger.debug(f"Created database engine for {engine.url.render_as_string()}")
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory used by the resolver, policy loader and deduction engine."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
