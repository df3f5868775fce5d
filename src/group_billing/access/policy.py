# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Model and credential access policies.

Policies are read through the PolicyStore interface. The bundled
PolicySnapshotStore keeps immutable snapshots in memory; refreshing them
(on a timer, after admin edits, ...) is owned by the embedding service.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Protocol,
    Tuple,
)

from sqlalchemy import Text, select, type_coerce
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.types import (
    Credential,
    CredentialGroupPolicy,
    GroupSet,
    Membership,
    Restriction,
)
from ..db import models

lib_logger = logging.getLogger("group_billing")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def normalize_provider(provider: Optional[str]) -> str:
    return (provider or "").strip().lower()


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_row_groups(raw: Any, what: str) -> Optional[GroupSet]:
    try:
        return GroupSet.parse(raw)
    except ValueError as e:
        lib_logger.warning(f"Skipping {what}: unreadable user group ids ({e})")
        return None


class PolicyStore(Protocol):
    """Read interface the selector uses for policy lookups."""

    def model_groups(self, provider: str, model: str) -> Optional[GroupSet]:
        """Groups allowed to use a model, or None if no policy exists."""
        ...

    def credential_group(self, credential_id: str) -> Optional[CredentialGroupPolicy]:
        """The group owning a credential, or None if it has none."""
        ...


@dataclass(frozen=True)
class ModelPolicyEntry:
    """One model policy row as held in a snapshot."""

    provider: str
    model: str
    groups: GroupSet = field(default_factory=GroupSet)


@dataclass(frozen=True)
class _ModelSnapshot:
    updated_at: datetime
    groups: Mapping[Tuple[str, str], GroupSet]


@dataclass(frozen=True)
class _CredentialSnapshot:
    updated_at: datetime
    groups: Mapping[int, CredentialGroupPolicy]
    bindings: Mapping[str, int]


class PolicySnapshotStore:
    """
    In-memory PolicyStore backed by swappable snapshots.

    Each store_* call builds a new snapshot and replaces the reference in one
    assignment, so concurrent readers see either the old or the new policy set.
    """

    def __init__(self):
        self._models = _ModelSnapshot(_EPOCH, {})
        self._credentials = _CredentialSnapshot(_EPOCH, {}, {})

    # =========================================================================
    # READ INTERFACE
    # =========================================================================

    def model_groups(self, provider: str, model: str) -> Optional[GroupSet]:
        return self._models.groups.get((normalize_provider(provider), model))

    def credential_group(self, credential_id: str) -> Optional[CredentialGroupPolicy]:
        snapshot = self._credentials
        group_id = snapshot.bindings.get(credential_id)
        if group_id is None:
            return None
        return snapshot.groups.get(group_id)

    @property
    def models_updated_at(self) -> datetime:
        return self._models.updated_at

    @property
    def credentials_updated_at(self) -> datetime:
        return self._credentials.updated_at

    # =========================================================================
    # REFRESH
    # =========================================================================

    def store_model_policies(
        self,
        updated_at: datetime,
        policies: Iterable[ModelPolicyEntry],
    ) -> bool:
        """
        Replace the model policy snapshot.

        Returns:
            False if the snapshot is older than the one already stored
        """
        updated_at = _as_utc(updated_at)
        if updated_at < self._models.updated_at:
            lib_logger.debug(
                f"Ignoring stale model policy snapshot from {updated_at.isoformat()}"
            )
            return False
        groups: Dict[Tuple[str, str], GroupSet] = {}
        for entry in policies:
            model = entry.model.strip()
            if not model:
                continue
            groups[(normalize_provider(entry.provider), model)] = entry.groups
        self._models = _ModelSnapshot(updated_at, groups)
        lib_logger.info(f"Stored {len(groups)} model policies")
        return True

    def store_credential_groups(
        self,
        updated_at: datetime,
        groups: Iterable[CredentialGroupPolicy],
        bindings: Mapping[str, int],
    ) -> bool:
        """
        Replace the credential group snapshot.

        Args:
            updated_at: Snapshot timestamp
            groups: Credential groups
            bindings: credential id -> credential group id

        Returns:
            False if the snapshot is older than the one already stored
        """
        updated_at = _as_utc(updated_at)
        if updated_at < self._credentials.updated_at:
            lib_logger.debug(
                f"Ignoring stale credential group snapshot from {updated_at.isoformat()}"
            )
            return False
        by_id = {group.id: group for group in groups}
        self._credentials = _CredentialSnapshot(updated_at, by_id, dict(bindings))
        lib_logger.info(
            f"Stored {len(by_id)} credential groups covering {len(bindings)} credentials"
        )
        return True

    async def load_from_database(
        self,
        session: AsyncSession,
        updated_at: Optional[datetime] = None,
    ) -> None:
        """
        Rebuild both snapshots from the policy tables.

        Group id columns are decoded row by row; a row whose ids cannot be
        read is skipped with a warning and the rest of the refresh proceeds.
        """
        updated_at = updated_at or datetime.now(timezone.utc)

        policy_rows = await session.execute(
            select(
                models.ModelPolicy.provider,
                models.ModelPolicy.model_name,
                type_coerce(models.ModelPolicy.user_group_ids, Text),
            ).where(models.ModelPolicy.is_enabled.is_(True))
        )
        entries: List[ModelPolicyEntry] = []
        for provider, model_name, raw_groups in policy_rows:
            groups = _parse_row_groups(raw_groups, f"model policy {provider}/{model_name}")
            if groups is not None:
                entries.append(
                    ModelPolicyEntry(provider=provider, model=model_name, groups=groups)
                )
        self.store_model_policies(updated_at, entries)

        group_rows = await session.execute(
            select(
                models.CredentialGroup.id,
                models.CredentialGroup.name,
                models.CredentialGroup.rate_limit,
                type_coerce(models.CredentialGroup.user_group_ids, Text),
            )
        )
        groups_by_id: Dict[int, CredentialGroupPolicy] = {}
        for group_id, name, rate_limit, raw_groups in group_rows:
            user_groups = _parse_row_groups(raw_groups, f"credential group {group_id}")
            if user_groups is None:
                continue
            groups_by_id[group_id] = CredentialGroupPolicy(
                id=group_id,
                name=name,
                restriction=Restriction.from_groups(user_groups),
                rate_limit=rate_limit,
            )

        binding_rows = await session.execute(
            select(models.Credential.key, models.Credential.credential_group_id).where(
                models.Credential.credential_group_id.is_not(None)
            )
        )
        bindings = {
            key: group_id for key, group_id in binding_rows if group_id in groups_by_id
        }
        self.store_credential_groups(updated_at, groups_by_id.values(), bindings)


class ModelAccessPolicy:
    """Which user groups may request a (provider, model) pair."""

    def __init__(self, store: PolicyStore):
        self._store = store

    def lookup(self, provider: str, model: str) -> Restriction:
        """
        Restriction for a canonical model name.

        Provider matching is case-insensitive; model names match exactly.
        A missing policy and an empty group list both mean unrestricted.
        """
        return Restriction.from_groups(self._store.model_groups(provider, model))

    def allows(
        self, provider: str, model: str, membership: Optional[Membership]
    ) -> bool:
        return self.lookup(provider, model).permits(membership)

    def visible_models(
        self,
        provider: str,
        model_ids: Iterable[str],
        membership: Optional[Membership],
    ) -> List[str]:
        """Filter a model id list down to the models the caller may request."""
        if membership is None:
            return list(model_ids)
        visible = []
        for model_id in model_ids:
            model = (model_id or "").strip()
            if model and not self.allows(provider, model, membership):
                continue
            visible.append(model_id)
        return visible


class CredentialAccessPolicy:
    """Which user groups may use a credential, via its owning group."""

    def __init__(self, store: PolicyStore):
        self._store = store

    def group_for(self, credential: Credential) -> Optional[CredentialGroupPolicy]:
        return self._store.credential_group(credential.id)

    def restriction_for(self, credential: Credential) -> Restriction:
        group = self.group_for(credential)
        if group is None:
            return Restriction.unrestricted()
        return group.restriction
