# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Group-aware credential selection.

The selector decides which candidate credential a caller may use for a
model and records the billing scope the request will be charged against.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from ..access.membership import MembershipResolver
from ..access.policy import CredentialAccessPolicy, ModelAccessPolicy, PolicyStore
from ..core.errors import AccessDeniedError, NoEligibleCredentialError, mask_credential
from ..core.types import (
    AccessContext,
    BillingScope,
    Credential,
    CredentialGroupPolicy,
    Membership,
    Restriction,
)
from ..limits.rate_limiter import GroupRateLimiter

lib_logger = logging.getLogger("group_billing")


class CredentialSelector:
    """
    Picks the first eligible credential from a caller-ordered candidate list.

    Eligibility:
    - the caller's groups may use the requested model
    - the credential is active
    - the credential's group restriction admits the caller
    - the credential group's rate limit admits one more call

    Example:
        selector = CredentialSelector(resolver, policy_store, GroupRateLimiter())
        credential = await selector.pick(context, "openai", "gpt-4", {}, candidates)
        # context.metadata now carries billing_user_group_id when scoped
    """

    def __init__(
        self,
        resolver: MembershipResolver,
        policy_store: PolicyStore,
        rate_limiter: Optional[GroupRateLimiter] = None,
        resolve_rate_limit: Optional[Callable[[CredentialGroupPolicy], int]] = None,
    ):
        """
        Initialize CredentialSelector.

        Args:
            resolver: Membership resolver for caller identities
            policy_store: Model and credential policy lookups
            rate_limiter: Per credential-group limiter; None disables rate limiting
            resolve_rate_limit: Optional override for a group's rate limit
        """
        self._resolver = resolver
        self._model_policy = ModelAccessPolicy(policy_store)
        self._credential_policy = CredentialAccessPolicy(policy_store)
        self._rate_limiter = rate_limiter
        self._resolve_rate_limit = resolve_rate_limit

    @property
    def model_policy(self) -> ModelAccessPolicy:
        return self._model_policy

    @property
    def credential_policy(self) -> CredentialAccessPolicy:
        return self._credential_policy

    async def pick(
        self,
        context: AccessContext,
        provider: str,
        model: str,
        options: Optional[Dict[str, Any]],
        candidates: Sequence[Credential],
        session: Optional[AsyncSession] = None,
    ) -> Credential:
        """
        Select a credential and stamp the billing scope onto the context.

        Args:
            context: Request access context; must carry user_id to be group filtered
            provider: Provider name
            model: Canonical model name
            options: Provider-agnostic request options (not inspected)
            candidates: Credentials in preference order
            session: Optional open session to resolve membership through

        Returns:
            The selected credential

        Raises:
            AccessDeniedError: The model is restricted to groups the caller is not in
            NoEligibleCredentialError: Every candidate was excluded
        """
        credential, _ = await self.pick_with_scope(
            context, provider, model, options, candidates, session=session
        )
        return credential

    async def pick_with_scope(
        self,
        context: AccessContext,
        provider: str,
        model: str,
        options: Optional[Dict[str, Any]],
        candidates: Sequence[Credential],
        session: Optional[AsyncSession] = None,
    ) -> Tuple[Credential, BillingScope]:
        """Same as pick(), also returning the billing scope written to the context."""
        membership = await self._resolver.resolve_from_context(context, session=session)

        # Model restrictions apply before any credential is looked at
        if not self._model_policy.lookup(provider, model).permits(membership):
            lib_logger.info(
                f"Denied {provider}/{model} for user {context.user_id}: "
                f"model restricted to other groups"
            )
            raise AccessDeniedError(provider, model)

        unusable = 0
        restricted = 0
        rate_limited = 0

        for credential in candidates:
            if credential is None or not credential.usable:
                unusable += 1
                continue

            group = self._credential_policy.group_for(credential)
            restriction = group.restriction if group else Restriction.unrestricted()
            if not restriction.permits(membership):
                restricted += 1
                continue

            if group is not None and not self._admit(group):
                rate_limited += 1
                continue

            scope = self._billing_scope(membership, restriction)
            context.set_billing_scope(scope)
            lib_logger.debug(
                f"Selected credential {mask_credential(credential.id)} for "
                f"{provider}/{model} (group: {group.id if group else None}, "
                f"billing group: {scope.group_id})"
            )
            return credential, scope

        lib_logger.warning(
            f"No eligible credential for {provider}/{model} out of {len(candidates)} "
            f"(unusable={unusable}, group_restricted={restricted}, rate_limited={rate_limited})"
        )
        raise NoEligibleCredentialError(
            provider,
            model,
            unusable=unusable,
            restricted=restricted,
            rate_limited=rate_limited,
        )

    def eligible_models(
        self,
        provider: str,
        model_ids: List[str],
        membership: Optional[Membership],
    ) -> List[str]:
        """Model ids from a catalog the caller is allowed to request."""
        return self._model_policy.visible_models(provider, model_ids, membership)

    def _admit(self, group: CredentialGroupPolicy) -> bool:
        if self._rate_limiter is None:
            return True
        limit = group.rate_limit
        if self._resolve_rate_limit is not None:
            limit = self._resolve_rate_limit(group)
        return self._rate_limiter.admit(group.id, limit)

    @staticmethod
    def _billing_scope(
        membership: Optional[Membership], restriction: Restriction
    ) -> BillingScope:
        if membership is None:
            return BillingScope()
        return BillingScope(membership.billing_group_for(restriction))
