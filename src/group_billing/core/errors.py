# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Error types raised by credential selection and quota deduction.
"""

from decimal import Decimal
from typing import Optional, Union


class GroupBillingError(Exception):
    """Base class for all group billing errors."""


class AccessDeniedError(GroupBillingError):
    """
    The caller's groups are not allowed to use the requested model.

    Fatal to the request; retrying will not help.
    """

    def __init__(self, provider: str, model: str):
        self.provider = provider
        self.model = model
        super().__init__(
            f"Access denied: model {provider}/{model} is restricted to other user groups"
        )


class NoEligibleCredentialError(GroupBillingError):
    """
    Every candidate credential was excluded.

    Counts tell whether group restrictions or rate limits were the cause;
    rate-limited requests may succeed once the window moves on.
    """

    def __init__(
        self,
        provider: str,
        model: str,
        unusable: int = 0,
        restricted: int = 0,
        rate_limited: int = 0,
    ):
        self.provider = provider
        self.model = model
        self.unusable = unusable
        self.restricted = restricted
        self.rate_limited = rate_limited
        super().__init__(
            f"No eligible credential for {provider}/{model} "
            f"(unusable={unusable}, group_restricted={restricted}, "
            f"rate_limited={rate_limited})"
        )

    @property
    def retryable(self) -> bool:
        """True when at least one candidate was only held back by a rate limit."""
        return self.rate_limited > 0


class InsufficientFundsError(GroupBillingError):
    """No funding source of the billing scope covers the amount."""

    def __init__(
        self,
        user_id: int,
        group_id: Optional[int],
        amount: Union[Decimal, float],
    ):
        self.user_id = user_id
        self.group_id = group_id
        self.amount = amount
        scope = f"group {group_id}" if group_id is not None else "no group"
        super().__init__(
            f"Insufficient funds: user {user_id} ({scope}) cannot cover {amount}"
        )


class StoreUnavailableError(GroupBillingError):
    """The relational store failed while reading or writing billing data."""


def mask_credential(credential: str, style: str = "short") -> str:
    """
    Mask a credential key for log output.

    Args:
        credential: The credential key
        style: "short" keeps the last 6 characters, "full" keeps a prefix too

    Returns:
        Masked credential string
    """
    if not credential:
        return "<empty>"
    if len(credential) <= 8:
        return "..." + credential[-2:]
    if style == "full":
        return f"{credential[:4]}...{credential[-4:]}"
    return "..." + credential[-6:]
