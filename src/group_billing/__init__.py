# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Group-scoped credential selection and quota deduction for LLM API proxies.

Usage:
    settings = load_settings(".env")
    engine = create_engine_from_settings(settings)
    sessions = create_session_factory(engine)

    selector = CredentialSelector(
        MembershipResolver(sessions, cache_ttl=settings.membership_cache_ttl),
        policy_store,
        GroupRateLimiter(settings.rate_limit_window),
    )
    credential = await selector.pick(context, provider, model, options, candidates)
    ...
    await QuotaDeductionEngine(sessions).charge(context, amount, cost_micros)
"""

from .access.membership import MembershipResolver
from .access.policy import (
    CredentialAccessPolicy,
    ModelAccessPolicy,
    ModelPolicyEntry,
    PolicySnapshotStore,
    PolicyStore,
)
from .billing.deduction import QuotaDeductionEngine
from .core.config import BillingSettings, load_settings
from .core.errors import (
    AccessDeniedError,
    GroupBillingError,
    InsufficientFundsError,
    NoEligibleCredentialError,
    StoreUnavailableError,
)
from .core.types import (
    METADATA_BILLING_GROUP_ID,
    METADATA_USER_ID,
    AccessContext,
    BillingScope,
    Credential,
    CredentialGroupPolicy,
    CredentialStatus,
    GroupSet,
    Membership,
    Restriction,
)
from .db.session import create_engine_from_settings, create_schema, create_session_factory
from .limits.rate_limiter import GroupRateLimiter
from .selection.selector import CredentialSelector

__all__ = [
    "METADATA_BILLING_GROUP_ID",
    "METADATA_USER_ID",
    "AccessContext",
    "AccessDeniedError",
    "BillingScope",
    "BillingSettings",
    "Credential",
    "CredentialAccessPolicy",
    "CredentialGroupPolicy",
    "CredentialSelector",
    "CredentialStatus",
    "GroupBillingError",
    "GroupRateLimiter",
    "GroupSet",
    "InsufficientFundsError",
    "Membership",
    "MembershipResolver",
    "ModelAccessPolicy",
    "ModelPolicyEntry",
    "NoEligibleCredentialError",
    "PolicySnapshotStore",
    "PolicyStore",
    "QuotaDeductionEngine",
    "Restriction",
    "StoreUnavailableError",
    "create_engine_from_settings",
    "create_schema",
    "create_session_factory",
    "load_settings",
]
