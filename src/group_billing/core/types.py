# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

"""
Shared type definitions for the group billing library.

This module contains the value types used across the access, selection
and billing packages: group sets, restrictions, memberships, credentials
and the request-scoped access context.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    Optional,
    Tuple,
)


# =============================================================================
# METADATA KEYS
# =============================================================================

# Keys of the request-scoped access metadata map
METADATA_USER_ID = "user_id"
METADATA_BILLING_GROUP_ID = "billing_user_group_id"


# =============================================================================
# GROUP TYPES
# =============================================================================


def _coerce_group_id(value: Any) -> Optional[int]:
    """Return a positive group id, or None for null/zero/negative values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        group_id = int(value)
    except (TypeError, ValueError):
        return None
    return group_id if group_id > 0 else None


class GroupSet:
    """
    Deduplicated set of tenant group ids.

    Iteration keeps first-seen order, which matters when the first matching
    group is picked as a billing scope. Equality ignores order.
    Zero and null ids are never members.
    """

    __slots__ = ("_ids",)

    def __init__(self, ids: Optional[Iterable[Any]] = None):
        seen = set()
        ordered = []
        for raw in ids or ():
            group_id = _coerce_group_id(raw)
            if group_id is None or group_id in seen:
                continue
            seen.add(group_id)
            ordered.append(group_id)
        self._ids: Tuple[int, ...] = tuple(ordered)

    @classmethod
    def parse(cls, raw: Any) -> "GroupSet":
        """
        Decode a stored group id value.

        Accepts None, a single id, a list of ids (null members dropped),
        or JSON text/bytes holding any of those.

        Raises:
            ValueError: If the value cannot be interpreted as group ids
        """
        if raw is None:
            return cls()
        if isinstance(raw, GroupSet):
            return raw
        if isinstance(raw, (bytes, bytearray, memoryview)):
            raw = bytes(raw).decode("utf-8")
        if isinstance(raw, str):
            text = raw.strip()
            if not text:
                return cls()
            try:
                raw = json.loads(text)
            except json.JSONDecodeError as e:
                raise ValueError(f"invalid group id json: {text!r}") from e
            if raw is None:
                return cls()
        if isinstance(raw, bool):
            raise ValueError(f"unsupported group id value: {raw!r}")
        if isinstance(raw, int):
            return cls([raw])
        if isinstance(raw, (list, tuple, set, frozenset)):
            for item in raw:
                if item is not None and (
                    isinstance(item, bool) or not isinstance(item, int)
                ):
                    raise ValueError(f"unsupported group id member: {item!r}")
            return cls(raw)
        raise ValueError(f"unsupported group id type: {type(raw).__name__}")

    def union(self, other: "GroupSet") -> "GroupSet":
        return GroupSet(self._ids + tuple(other))

    def intersects(self, other: "GroupSet") -> bool:
        return not set(self._ids).isdisjoint(other)

    def first_in(self, other: "GroupSet") -> Optional[int]:
        """Return the first id of this set (in order) that is also in other."""
        for group_id in self._ids:
            if group_id in other:
                return group_id
        return None

    @property
    def primary(self) -> Optional[int]:
        return self._ids[0] if self._ids else None

    def values(self) -> Tuple[int, ...]:
        return self._ids

    def __iter__(self) -> Iterator[int]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    def __bool__(self) -> bool:
        return bool(self._ids)

    def __contains__(self, group_id: object) -> bool:
        return group_id in self._ids

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GroupSet):
            return NotImplemented
        return set(self._ids) == set(other._ids)

    def __hash__(self) -> int:
        return hash(frozenset(self._ids))

    def __repr__(self) -> str:
        return f"GroupSet({list(self._ids)!r})"


@dataclass(frozen=True)
class Membership:
    """
    A caller's group memberships.

    Access and billing groups are independent. Access checks test the
    union of both; billing groups win when picking the charged scope.
    """

    access: GroupSet = field(default_factory=GroupSet)
    billing: GroupSet = field(default_factory=GroupSet)

    @property
    def union(self) -> GroupSet:
        return self.billing.union(self.access)

    def billing_group_for(self, restriction: "Restriction") -> Optional[int]:
        """
        Pick the group to charge for a credential with this restriction.

        Returns None when the restriction is open or nothing matches.
        """
        if not restriction.is_restricted:
            return None
        matched = self.billing.first_in(restriction.groups)
        if matched is None:
            matched = self.access.first_in(restriction.groups)
        return matched


@dataclass(frozen=True)
class Restriction:
    """
    Group restriction on a model or credential group.

    An explicit tag instead of "empty list means open": groups is None
    for an unrestricted resource and a non-empty GroupSet otherwise.
    """

    groups: Optional[GroupSet] = None

    @classmethod
    def unrestricted(cls) -> "Restriction":
        return cls(None)

    @classmethod
    def restricted_to(cls, groups: Iterable[Any]) -> "Restriction":
        group_set = groups if isinstance(groups, GroupSet) else GroupSet(groups)
        if not group_set:
            raise ValueError("a restriction needs at least one group id")
        return cls(group_set)

    @classmethod
    def from_groups(cls, groups: Optional[Iterable[Any]]) -> "Restriction":
        """Coalesce None and empty group lists to unrestricted."""
        if groups is None:
            return cls.unrestricted()
        group_set = groups if isinstance(groups, GroupSet) else GroupSet(groups)
        return cls(group_set) if group_set else cls.unrestricted()

    @property
    def is_restricted(self) -> bool:
        return self.groups is not None

    def permits(self, membership: Optional[Membership]) -> bool:
        """
        Check whether a caller may use the restricted resource.

        A caller without resolved membership is not group filtered.
        """
        if self.groups is None or membership is None:
            return True
        return self.groups.intersects(membership.union)


# =============================================================================
# CREDENTIAL TYPES
# =============================================================================


class CredentialStatus(str, Enum):
    """Lifecycle status of an upstream credential."""

    ACTIVE = "active"
    DISABLED = "disabled"
    UNAVAILABLE = "unavailable"


@dataclass
class Credential:
    """
    Candidate upstream credential.

    Handed to the selector in the caller's preference order.
    """

    id: str  # Stable credential key
    status: CredentialStatus = CredentialStatus.ACTIVE
    provider: Optional[str] = None
    attributes: Dict[str, Any] = field(default_factory=dict)

    @property
    def usable(self) -> bool:
        return self.status == CredentialStatus.ACTIVE


@dataclass(frozen=True)
class CredentialGroupPolicy:
    """
    Access and rate limit settings shared by a credential group.
    """

    id: int
    name: str = ""
    restriction: Restriction = field(default_factory=Restriction.unrestricted)
    rate_limit: int = 0  # Requests per window, 0 = unlimited


# =============================================================================
# BILLING TYPES
# =============================================================================


@dataclass(frozen=True)
class BillingScope:
    """The tenant group a request is charged against, if any."""

    group_id: Optional[int] = None

    @property
    def is_restricted(self) -> bool:
        return self.group_id is not None

    @property
    def metadata_value(self) -> Optional[str]:
        return str(self.group_id) if self.group_id is not None else None


# =============================================================================
# REQUEST TYPES
# =============================================================================


@dataclass
class AccessContext:
    """
    Request-scoped access metadata.

    The selector writes the resolved billing group here and the
    deduction engine reads it back after the upstream call.
    """

    metadata: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_user(cls, user_id: Optional[int]) -> "AccessContext":
        if not user_id:
            return cls()
        return cls(metadata={METADATA_USER_ID: str(user_id)})

    @property
    def user_id(self) -> Optional[int]:
        return _parse_metadata_id(self.metadata.get(METADATA_USER_ID))

    @property
    def billing_group_id(self) -> Optional[int]:
        return _parse_metadata_id(self.metadata.get(METADATA_BILLING_GROUP_ID))

    def set_billing_scope(self, scope: BillingScope) -> None:
        if scope.is_restricted:
            self.metadata[METADATA_BILLING_GROUP_ID] = scope.metadata_value
        else:
            self.metadata.pop(METADATA_BILLING_GROUP_ID, None)


def _parse_metadata_id(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    raw = raw.strip()
    if not raw.isdigit():
        return None
    value = int(raw)
    return value if value > 0 else None
