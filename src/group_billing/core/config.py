# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Runtime settings for the group billing library.

Environment variables:
    GROUP_BILLING_DATABASE_URL: SQLAlchemy async URL
        (default: sqlite+aiosqlite:///group_billing.db)
    GROUP_BILLING_MEMBERSHIP_CACHE_TTL: Membership cache TTL in seconds (default: 0, disabled)
    GROUP_BILLING_RATE_LIMIT_WINDOW: Rate limit window in seconds (default: 1)
    GROUP_BILLING_SQLITE_TIMEOUT: SQLite busy timeout in seconds (default: 30)
    GROUP_BILLING_SQL_ECHO: Log emitted SQL (default: false)

Values from an optional .env file are used where the process environment
does not set the variable.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional, Union

from dotenv import dotenv_values

lib_logger = logging.getLogger("group_billing")

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///group_billing.db"
DEFAULT_MEMBERSHIP_CACHE_TTL = 0.0
DEFAULT_RATE_LIMIT_WINDOW = 1.0
DEFAULT_SQLITE_TIMEOUT = 30.0


@dataclass(frozen=True)
class BillingSettings:
    """Settings shared by the store, resolver and rate limiter."""

    database_url: str = DEFAULT_DATABASE_URL
    membership_cache_ttl: float = DEFAULT_MEMBERSHIP_CACHE_TTL
    rate_limit_window: float = DEFAULT_RATE_LIMIT_WINDOW
    sqlite_timeout: float = DEFAULT_SQLITE_TIMEOUT
    sql_echo: bool = False

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")


def _env_float(
    values: Mapping[str, Optional[str]], name: str, default: float, minimum: float
) -> float:
    """Parse a float setting, falling back to the default on bad input."""
    raw = values.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        lib_logger.warning(f"Invalid {name} value {raw!r}, using default {default}")
        return default
    if value < minimum:
        lib_logger.warning(f"{name} must be >= {minimum}, using default {default}")
        return default
    return value


def _env_bool(values: Mapping[str, Optional[str]], name: str) -> bool:
    raw = values.get(name)
    if raw is None:
        return False
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_settings(
    env_file: Optional[Union[str, Path]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> BillingSettings:
    """
    Load settings from the environment and an optional .env file.

    Args:
        env_file: Path to a .env file; process variables take precedence
        environ: Environment mapping to read instead of os.environ

    Returns:
        BillingSettings instance
    """
    values: Dict[str, Optional[str]] = {}
    if env_file is not None:
        env_path = Path(env_file)
        if env_path.exists():
            values.update(dotenv_values(env_path))
        else:
            lib_logger.warning(f"Env file {env_path} not found, using process environment only")
    values.update(os.environ if environ is None else environ)

    database_url = (values.get("GROUP_BILLING_DATABASE_URL") or "").strip()
    window = _env_float(
        values, "GROUP_BILLING_RATE_LIMIT_WINDOW", DEFAULT_RATE_LIMIT_WINDOW, 0.001
    )

    return BillingSettings(
        database_url=database_url or DEFAULT_DATABASE_URL,
        membership_cache_ttl=_env_float(
            values,
            "GROUP_BILLING_MEMBERSHIP_CACHE_TTL",
            DEFAULT_MEMBERSHIP_CACHE_TTL,
            0.0,
        ),
        rate_limit_window=window,
        sqlite_timeout=_env_float(
            values, "GROUP_BILLING_SQLITE_TIMEOUT", DEFAULT_SQLITE_TIMEOUT, 0.0
        ),
        sql_echo=_env_bool(values, "GROUP_BILLING_SQL_ECHO"),
    )
