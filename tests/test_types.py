# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

import pytest

from group_billing.core.errors import mask_credential
from group_billing.core.types import (
    METADATA_BILLING_GROUP_ID,
    METADATA_USER_ID,
    AccessContext,
    BillingScope,
    Credential,
    CredentialStatus,
    GroupSet,
    Membership,
    Restriction,
)


# =============================================================================
# GROUP SETS
# =============================================================================


def test_group_set_drops_nulls_zeros_and_duplicates():
    groups = GroupSet([3, None, 0, 1, 3, -2, 1])
    assert groups.values() == (3, 1)
    assert groups.primary == 3


def test_group_set_equality_ignores_order():
    assert GroupSet([1, 2]) == GroupSet([2, 1])
    assert hash(GroupSet([1, 2])) == hash(GroupSet([2, 1]))
    assert GroupSet() != GroupSet([1])


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, ()),
        ("", ()),
        ("null", ()),
        (5, (5,)),
        ("5", (5,)),
        ([1, None, 2], (1, 2)),
        ("[1, null, 2, 1]", (1, 2)),
        (b"[4]", (4,)),
        ("[]", ()),
    ],
)
def test_group_set_parse(raw, expected):
    assert GroupSet.parse(raw).values() == expected


@pytest.mark.parametrize("raw", ["not json", '{"a": 1}', '["x"]', 1.5, True, [True]])
def test_group_set_parse_rejects_garbage(raw):
    with pytest.raises(ValueError):
        GroupSet.parse(raw)


def test_group_set_first_in_keeps_own_order():
    assert GroupSet([4, 2, 9]).first_in(GroupSet([9, 2])) == 2
    assert GroupSet([4]).first_in(GroupSet([1])) is None


# =============================================================================
# RESTRICTIONS AND MEMBERSHIP
# =============================================================================


def test_restriction_from_groups_coalesces_empty():
    assert not Restriction.from_groups(None).is_restricted
    assert not Restriction.from_groups([]).is_restricted
    assert not Restriction.from_groups([0, None]).is_restricted
    assert Restriction.from_groups([2]).is_restricted


def test_restriction_permits():
    restriction = Restriction.restricted_to([2, 3])

    assert restriction.permits(Membership(access=GroupSet([3])))
    assert restriction.permits(Membership(billing=GroupSet([2])))
    assert not restriction.permits(Membership(access=GroupSet([1])))
    assert not restriction.permits(Membership())
    assert restriction.permits(None)
    assert Restriction.unrestricted().permits(Membership())


def test_billing_group_precedence():
    membership = Membership(access=GroupSet([1, 2]), billing=GroupSet([3, 2]))

    assert membership.billing_group_for(Restriction.restricted_to([1, 2])) == 2
    assert membership.billing_group_for(Restriction.restricted_to([1])) == 1
    assert membership.billing_group_for(Restriction.restricted_to([9])) is None
    assert membership.billing_group_for(Restriction.unrestricted()) is None


# =============================================================================
# CONTEXT AND CREDENTIALS
# =============================================================================


def test_access_context_metadata():
    context = AccessContext.for_user(12)
    assert context.metadata == {METADATA_USER_ID: "12"}
    assert context.user_id == 12
    assert context.billing_group_id is None

    context.set_billing_scope(BillingScope(4))
    assert context.metadata[METADATA_BILLING_GROUP_ID] == "4"
    assert context.billing_group_id == 4

    context.set_billing_scope(BillingScope())
    assert METADATA_BILLING_GROUP_ID not in context.metadata


def test_access_context_ignores_malformed_ids():
    context = AccessContext(metadata={METADATA_USER_ID: "abc", METADATA_BILLING_GROUP_ID: "0"})
    assert context.user_id is None
    assert context.billing_group_id is None
    assert AccessContext.for_user(None).metadata == {}


def test_only_active_credentials_are_usable():
    assert Credential("sk-a").usable
    assert not Credential("sk-a", status=CredentialStatus.DISABLED).usable
    assert not Credential("sk-a", status=CredentialStatus.UNAVAILABLE).usable


def test_mask_credential():
    assert mask_credential("sk-abcdefghijkl") == "...ghijkl"
    assert mask_credential("sk-abcdefghijkl", style="full") == "sk-a...ijkl"
    assert mask_credential("short") == "...rt"
    assert mask_credential("") == "<empty>"
