# SPDX-License-Identifier: MIT
# Copyright (c) 2026 Mirrowel

"""
Billing Balance Viewer.

Reads a user's subscription funding records and prepaid cards straight
from the billing database and renders them per group scope.

Usage:
    python -m proxy_app.billing_viewer --user 42 [--env-file .env]
"""

import argparse
import asyncio
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from rich.console import Console
from rich.table import Table
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from group_billing.core.config import BillingSettings, load_settings
from group_billing.db import (
    FundingRecord,
    PrepaidCard,
    User,
    UserGroup,
    create_engine_from_settings,
    create_session_factory,
)
from group_billing.db.models import FUNDING_STATUS_PAID


# =============================================================================
# DISPLAY CONFIGURATION
# =============================================================================

BAR_WIDTH = 12

# Funding record states: (label, color)
STATE_DISPLAY = {
    "active": ("Active", "green"),
    "upcoming": ("Upcoming", "cyan"),
    "expired": ("Expired", "dim"),
    "disabled": ("Disabled", "red"),
    "unpaid": ("Unpaid", "yellow"),
}

# =============================================================================


def format_amount(value: Optional[Decimal]) -> str:
    """Format a quota amount without trailing zeros (e.g., 5.000000 -> 5)."""
    if value is None:
        return "-"
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    text = f"{value.normalize():f}"
    return "0" if text in ("-0", "") else text


def format_group(group_id: Optional[int], names: Dict[int, str]) -> str:
    """Format a group scope for display."""
    if group_id is None:
        return "(no group)"
    name = names.get(group_id)
    return f"{name} (#{group_id})" if name else f"#{group_id}"


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return _as_utc(value).strftime("%Y-%m-%d %H:%M")


def create_progress_bar(left: Optional[Decimal], total: Optional[Decimal], width: int = BAR_WIDTH) -> str:
    """Create a text bar showing the remaining share of a total."""
    if not total or left is None or total <= 0:
        return "░" * width
    ratio = min(max(left / total, Decimal("0")), Decimal("1"))
    filled = int(ratio * width)
    return "▓" * filled + "░" * (width - filled)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back without tzinfo; they were written as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def record_state(record: FundingRecord, now: Optional[datetime] = None) -> str:
    """Classify a funding record for display."""
    now = _as_utc(now or datetime.now(timezone.utc))
    if record.is_enabled is False:
        return "disabled"
    if (record.status or FUNDING_STATUS_PAID) != FUNDING_STATUS_PAID:
        return "unpaid"
    if record.period_end is not None and _as_utc(record.period_end) <= now:
        return "expired"
    if record.period_start is not None and _as_utc(record.period_start) > now:
        return "upcoming"
    return "active"


def build_funding_table(
    records: Iterable[FundingRecord],
    names: Dict[int, str],
    now: Optional[datetime] = None,
) -> Table:
    """Table of subscription funding records, one row per record."""
    table = Table(title="Subscriptions", expand=False)
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Group", style="cyan")
    table.add_column("Plan")
    table.add_column("Remaining", justify="right")
    table.add_column("", min_width=BAR_WIDTH)
    table.add_column("Daily", justify="right")
    table.add_column("Period")
    table.add_column("State")

    for record in records:
        label, color = STATE_DISPLAY[record_state(record, now)]
        daily = "-"
        if record.daily_quota and record.daily_quota > 0:
            daily = f"{format_amount(record.daily_used or Decimal('0'))}/{format_amount(record.daily_quota)}"
        table.add_row(
            str(record.id),
            format_group(record.user_group_id, names),
            record.plan_name or "-",
            f"{format_amount(record.left_quota)}/{format_amount(record.total_quota)}",
            create_progress_bar(record.left_quota, record.total_quota),
            daily,
            f"{format_date(record.period_start)} → {format_date(record.period_end)}",
            f"[{color}]{label}[/{color}]",
        )
    return table


def build_prepaid_table(cards: Iterable[PrepaidCard], names: Dict[int, str]) -> Table:
    """Table of redeemed prepaid cards, one row per card."""
    table = Table(title="Prepaid Cards", expand=False)
    table.add_column("ID", justify="right", style="dim")
    table.add_column("Group", style="cyan")
    table.add_column("Card")
    table.add_column("Balance", justify="right")
    table.add_column("", min_width=BAR_WIDTH)
    table.add_column("Redeemed")

    for card in cards:
        name = card.name or card.card_sn
        if card.is_enabled is False:
            name = f"[red]{name} (disabled)[/red]"
        table.add_row(
            str(card.id),
            format_group(card.user_group_id, names),
            name,
            f"{format_amount(card.balance)}/{format_amount(card.amount)}",
            create_progress_bar(card.balance, card.amount),
            format_date(card.redeemed_at),
        )
    return table


def summarize_by_group(
    records: Sequence[FundingRecord],
    cards: Sequence[PrepaidCard],
    now: Optional[datetime] = None,
) -> Dict[Optional[int], Decimal]:
    """Spendable amount per group scope: active records plus prepaid balances."""
    totals: Dict[Optional[int], Decimal] = {}
    for record in records:
        if record_state(record, now) == "active":
            totals[record.user_group_id] = totals.get(
                record.user_group_id, Decimal("0")
            ) + (record.left_quota or Decimal("0"))
    for card in cards:
        if card.is_enabled is not False:
            totals[card.user_group_id] = totals.get(
                card.user_group_id, Decimal("0")
            ) + (card.balance or Decimal("0"))
    return totals


# =============================================================================
# DATA LOADING
# =============================================================================


@dataclass
class BillingSnapshot:
    """Everything the viewer shows for one user."""

    user: Optional[User] = None
    records: List[FundingRecord] = field(default_factory=list)
    cards: List[PrepaidCard] = field(default_factory=list)
    group_names: Dict[int, str] = field(default_factory=dict)


class BillingViewer:
    """Loads and renders billing balances for one user."""

    def __init__(
        self,
        settings: Optional[BillingSettings] = None,
        console: Optional[Console] = None,
    ):
        self.settings = settings or load_settings()
        self.console = console or Console()

    async def load(self, user_id: int) -> BillingSnapshot:
        engine = create_engine_from_settings(self.settings)
        sessions = create_session_factory(engine)
        try:
            async with sessions() as session:
                user = await session.get(User, user_id)
                if user is None:
                    return BillingSnapshot()
                records = (
                    await session.execute(
                        select(FundingRecord)
                        .where(FundingRecord.user_id == user_id)
                        .order_by(FundingRecord.period_end.asc(), FundingRecord.id.asc())
                    )
                ).scalars().all()
                cards = (
                    await session.execute(
                        select(PrepaidCard)
                        .where(PrepaidCard.redeemed_user_id == user_id)
                        .order_by(PrepaidCard.redeemed_at.asc(), PrepaidCard.id.asc())
                    )
                ).scalars().all()
                groups = (await session.execute(select(UserGroup.id, UserGroup.name))).all()
        finally:
            await engine.dispose()

        return BillingSnapshot(
            user=user,
            records=list(records),
            cards=list(cards),
            group_names={group_id: name for group_id, name in groups},
        )

    def render(self, snapshot: BillingSnapshot, now: Optional[datetime] = None) -> None:
        user = snapshot.user
        if user is None:
            self.console.print("[yellow]User not found.[/yellow]")
            return

        names = snapshot.group_names
        self.console.print("━" * 78)
        self.console.print(f"[bold cyan]Billing balances for {user.username} (#{user.id})[/bold cyan]")
        self.console.print("━" * 78)
        self.console.print(
            "Access groups: "
            + (", ".join(format_group(g, names) for g in user.access_group_ids) or "-")
        )
        self.console.print(
            "Billing groups: "
            + (", ".join(format_group(g, names) for g in user.billing_group_ids) or "-")
        )
        self.console.print()

        if snapshot.records:
            self.console.print(build_funding_table(snapshot.records, names, now))
        else:
            self.console.print("[dim]No subscriptions.[/dim]")
        if snapshot.cards:
            self.console.print(build_prepaid_table(snapshot.cards, names))
        else:
            self.console.print("[dim]No prepaid cards.[/dim]")

        totals = summarize_by_group(snapshot.records, snapshot.cards, now)
        if totals:
            self.console.print()
            self.console.print("[bold]Spendable per group:[/bold]")
            for group_id, amount in totals.items():
                self.console.print(f"   {format_group(group_id, names)}: {format_amount(amount)}")

    def run(self, user_id: int) -> int:
        try:
            with self.console.status("[bold]Reading billing data...", spinner="dots"):
                snapshot = asyncio.run(self.load(user_id))
        except SQLAlchemyError as e:
            self.console.print(f"[red]Could not read billing database: {e}[/red]")
            return 1
        self.render(snapshot)
        return 0 if snapshot.user is not None else 2


def run_billing_viewer(argv: Optional[List[str]] = None) -> int:
    """Entry point for the billing viewer."""
    parser = argparse.ArgumentParser(description="Show a user's billing balances")
    parser.add_argument("--user", type=int, required=True, help="User id")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    args = parser.parse_args(argv)

    viewer = BillingViewer(load_settings(args.env_file))
    return viewer.run(args.user)


if __name__ == "__main__":
    sys.exit(run_billing_viewer())
