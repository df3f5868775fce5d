# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

import io
from datetime import timedelta
from decimal import Decimal

import pytest
from rich.console import Console

from conftest import NOW, make_card, make_group, make_record, make_user
from group_billing.db.models import FUNDING_STATUS_REFUNDED
from proxy_app.billing_viewer import (
    BillingViewer,
    build_funding_table,
    build_prepaid_table,
    create_progress_bar,
    format_amount,
    format_group,
    record_state,
    summarize_by_group,
)

NAMES = {1: "group1", 2: "group2"}


def _render(renderable) -> str:
    console = Console(file=io.StringIO(), width=160, record=True)
    console.print(renderable)
    return console.export_text()


def test_format_amount():
    assert format_amount(Decimal("5.000000")) == "5"
    assert format_amount(Decimal("50.000000")) == "50"
    assert format_amount(Decimal("2.500000")) == "2.5"
    assert format_amount(Decimal("0.000000")) == "0"
    assert format_amount(None) == "-"


def test_format_group():
    assert format_group(1, NAMES) == "group1 (#1)"
    assert format_group(9, NAMES) == "#9"
    assert format_group(None, NAMES) == "(no group)"


def test_create_progress_bar():
    assert create_progress_bar(Decimal("5"), Decimal("10"), width=10) == "▓" * 5 + "░" * 5
    assert create_progress_bar(Decimal("0"), Decimal("10"), width=4) == "░" * 4
    assert create_progress_bar(Decimal("5"), Decimal("0"), width=4) == "░" * 4


def test_record_state():
    assert record_state(make_record(1, 1, 1, 10), NOW) == "active"
    assert record_state(make_record(1, 1, 1, 10, period_end=NOW), NOW) == "expired"
    assert (
        record_state(make_record(1, 1, 1, 10, period_start=NOW + timedelta(days=1)), NOW)
        == "upcoming"
    )
    assert record_state(make_record(1, 1, 1, 10, is_enabled=False), NOW) == "disabled"
    assert (
        record_state(make_record(1, 1, 1, 10, status=FUNDING_STATUS_REFUNDED), NOW)
        == "unpaid"
    )


def test_build_funding_table():
    records = [make_record(1, 1, 1, 5, total=10), make_record(2, 1, None, 3)]

    table = build_funding_table(records, NAMES, NOW)
    text = _render(table)

    assert table.row_count == 2
    assert "group1 (#1)" in text
    assert "(no group)" in text
    assert "5/10" in text
    assert "Active" in text


def test_build_prepaid_table():
    cards = [make_card(1, 1, 2, 8), make_card(2, 1, 1, 4, is_enabled=False)]

    table = build_prepaid_table(cards, NAMES)
    text = _render(table)

    assert table.row_count == 2
    assert "group2 (#2)" in text
    assert "8/8" in text
    assert "card2 (disabled)" in text


def test_summarize_by_group():
    records = [
        make_record(1, 1, 1, 5),
        make_record(2, 1, 1, 7, period_end=NOW - timedelta(days=1)),
        make_record(3, 1, None, 2),
    ]
    cards = [make_card(1, 1, 1, 3), make_card(2, 1, 2, 4, is_enabled=False)]

    totals = summarize_by_group(records, cards, NOW)

    assert totals == {1: Decimal("8"), None: Decimal("2")}


@pytest.mark.asyncio
async def test_viewer_loads_and_renders_user(db, settings):
    await db.add(
        make_group(1),
        make_group(2),
        make_user(1, access=[1], billing=[2]),
        make_record(1, 1, 1, 10),
        make_card(1, 1, 2, 6),
        make_record(2, 2, 1, 99),
    )
    console = Console(file=io.StringIO(), width=160, record=True)
    viewer = BillingViewer(settings, console=console)

    snapshot = await viewer.load(1)
    viewer.render(snapshot, now=NOW)
    text = console.export_text()

    assert [record.id for record in snapshot.records] == [1]
    assert [card.id for card in snapshot.cards] == [1]
    assert snapshot.group_names == {1: "group1", 2: "group2"}
    assert "Billing balances for user1 (#1)" in text
    assert "Subscriptions" in text
    assert "Prepaid Cards" in text
    assert "group2 (#2): 6" in text


@pytest.mark.asyncio
async def test_viewer_reports_unknown_user(engine, settings):
    console = Console(file=io.StringIO(), width=160, record=True)
    viewer = BillingViewer(settings, console=console)

    snapshot = await viewer.load(404)
    viewer.render(snapshot)

    assert snapshot.user is None
    assert "User not found" in console.export_text()
