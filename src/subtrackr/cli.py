"""CLI for SubTrackr using Typer."""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .exceptions import SubTrackrError
from .models import (
    BillingCycle,
    CustomCycle,
    DailyCycle,
    MonthlyCycle,
    NotificationPreferences,
    SubscriptionRecord,
    SubscriptionStatus,
    WeeklyCycle,
    YearlyCycle,
)
from .money import Money, StaticRateProvider
from .notifications import plan
from .scheduler import describe_cycle, next_renewal
from .store import LocalStore, open_store
from .summary import monthly_cost, spending_summary
from .sync.cli import app as sync_app
from .ui import confirm, display_name, select_subscription_interactive

app = typer.Typer(
    name="subtrackr",
    help="Track subscriptions, renewals and reminders across devices",
)
app.add_typer(sync_app, name="sync", help="Synchronize with the remote store")

console = Console()

CYCLE_KINDS = ("daily", "weekly", "monthly", "yearly", "custom")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


@contextmanager
def _session(verbose: bool) -> Iterator[tuple[Settings, LocalStore]]:
    """Load settings, open the store and report errors uniformly."""
    setup_logging(verbose)
    store = None
    try:
        settings = load_settings()
        store = open_store(settings)
        yield settings, store
    except SubTrackrError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        if verbose:
            raise
        sys.exit(1)
    except ValueError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        sys.exit(1)
    finally:
        if store is not None:
            store.db.close()


# ============================================================================
# Parsing helpers
# ============================================================================


def parse_date(value: str) -> date:
    """Parse an ISO date option."""
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise typer.BadParameter(f"Invalid date {value!r}, expected YYYY-MM-DD") from e


def parse_amount(value: str) -> Decimal:
    """Parse a decimal amount option."""
    try:
        return Decimal(value)
    except InvalidOperation as e:
        raise typer.BadParameter(f"Invalid amount {value!r}") from e


def build_cycle(
    kind: str,
    anchor: date,
    day: int | None = None,
    month: int | None = None,
    interval: int | None = None,
) -> BillingCycle:
    """
    Build a billing cycle from CLI options.

    Monthly and yearly cycles default to the anchor's day and month.
    """
    kind = kind.lower()
    if kind == "daily":
        return DailyCycle()
    if kind == "weekly":
        return WeeklyCycle()
    if kind == "monthly":
        return MonthlyCycle(day_of_month=day if day is not None else anchor.day)
    if kind == "yearly":
        return YearlyCycle(
            month=month if month is not None else anchor.month,
            day=day if day is not None else anchor.day,
        )
    if kind == "custom":
        if interval is None:
            raise typer.BadParameter("--interval is required for custom cycles")
        return CustomCycle(interval_days=interval)
    raise typer.BadParameter(
        f"Unknown cycle {kind!r}, expected one of: {', '.join(CYCLE_KINDS)}"
    )


def adjust_cycle(
    cycle: BillingCycle,
    day: int | None = None,
    month: int | None = None,
    interval: int | None = None,
) -> BillingCycle:
    """Apply --day/--month/--interval to an existing cycle, keeping its kind."""
    fields = {
        "monthly": {"day": "day_of_month"},
        "yearly": {"day": "day", "month": "month"},
        "custom": {"interval": "interval_days"},
    }.get(cycle.kind, {})
    given = {
        option: value
        for option, value in (("day", day), ("month", month), ("interval", interval))
        if value is not None
    }
    unsupported = sorted(set(given) - set(fields))
    if unsupported:
        raise typer.BadParameter(
            f"--{unsupported[0]} does not apply to {cycle.kind} cycles; "
            "pass --cycle to change the cycle"
        )
    return cycle.model_copy(
        update={fields[option]: value for option, value in given.items()}
    )


def _resolve_record(
    store: LocalStore, record_id: str | None, action: str
) -> SubscriptionRecord | None:
    """Find a record by id/prefix, or ask the user to pick one."""
    if record_id:
        return store.find(record_id)

    selected = select_subscription_interactive(store.list_records(), action=action)
    if selected is None:
        console.print("[yellow]No subscription selected.[/yellow]")
        return None
    return store.get(selected)


# ============================================================================
# Display helpers
# ============================================================================


def format_money(money: Money, use_color: bool = True) -> str:
    """Format money with its currency code, highlighting it in green."""
    text = str(money)
    return f"[green]{text}[/green]" if use_color else text


def display_records(records: list[SubscriptionRecord], as_of: date):
    """Display subscriptions in a table."""
    table = Table(title="Subscriptions", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="dim", width=8)
    table.add_column("Name", style="cyan")
    table.add_column("Cost", justify="right")
    table.add_column("Cycle")
    table.add_column("Next renewal", justify="center")
    table.add_column("Status")

    for record in records:
        renewal = next_renewal(
            record.billing_cycle, record.anchor_date, as_of - timedelta(days=1)
        )
        status = record.status.value
        if record.status != SubscriptionStatus.ACTIVE:
            status = f"[dim]{status}[/dim]"
        table.add_row(
            record.id[:8],
            record.name,
            format_money(record.cost),
            describe_cycle(record.billing_cycle),
            renewal.isoformat() if record.is_active else "—",
            status,
        )

    console.print(table)


def display_record(record: SubscriptionRecord, as_of: date):
    """Display one subscription in detail."""
    console.print(f"\n[bold]{record.name}[/bold]")
    console.print(f"  ID: {record.id}")
    console.print(f"  Cost: {format_money(record.cost)} ({describe_cycle(record.billing_cycle)})")
    console.print(f"  Monthly equivalent: {format_money(monthly_cost(record).quantize())}")
    console.print(f"  Anchor date: {record.anchor_date}")
    console.print(f"  Status: {record.status.value}")
    if record.is_active:
        renewal = next_renewal(
            record.billing_cycle, record.anchor_date, as_of - timedelta(days=1)
        )
        console.print(f"  Next renewal: {renewal}")
    if record.notes:
        console.print(f"  Notes: {record.notes}")
    console.print(f"  [dim]Logical clock: {record.clock}[/dim]\n")


# ============================================================================
# Commands
# ============================================================================


@app.command()
def add(
    name: str = typer.Argument(..., help="Subscription name"),
    cost: str = typer.Option(..., "--cost", help="Cost per billing cycle"),
    currency: str = typer.Option("USD", "--currency", help="ISO currency code"),
    cycle: str = typer.Option("monthly", "--cycle", help="daily/weekly/monthly/yearly/custom"),
    anchor: str | None = typer.Option(None, "--anchor", help="First billing date (YYYY-MM-DD)"),
    day: int | None = typer.Option(None, "--day", help="Day of month for monthly/yearly"),
    month: int | None = typer.Option(None, "--month", help="Month for yearly cycles"),
    interval: int | None = typer.Option(None, "--interval", help="Days between renewals (custom)"),
    notes: str | None = typer.Option(None, "--notes", help="Free-form notes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Add a new subscription."""
    anchor_date = parse_date(anchor) if anchor else date.today()
    billing_cycle = build_cycle(cycle, anchor_date, day, month, interval)

    with _session(verbose) as (_settings, store):
        record = store.create(
            name=name,
            cost=Money(amount=parse_amount(cost), currency=currency),
            billing_cycle=billing_cycle,
            anchor_date=anchor_date,
            notes=notes,
        )
        console.print(f"\n[bold green]✓ Added {display_name(record)}[/bold green]")
        display_record(record, date.today())


@app.command("list")
def list_subscriptions(
    status: str | None = typer.Option(None, "--status", help="active/paused/cancelled"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List subscriptions."""
    with _session(verbose) as (_settings, store):
        status_filter = SubscriptionStatus(status.lower()) if status else None
        records = store.list_records(status=status_filter)
        if not records:
            console.print("[yellow]No subscriptions found.[/yellow]")
            return
        display_records(records, date.today())


@app.command()
def show(
    record_id: str | None = typer.Argument(None, help="Subscription id or prefix"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show one subscription."""
    with _session(verbose) as (_settings, store):
        record = _resolve_record(store, record_id, "Show")
        if record is not None:
            display_record(record, date.today())


@app.command()
def edit(
    record_id: str | None = typer.Argument(None, help="Subscription id or prefix"),
    name: str | None = typer.Option(None, "--name", help="New name"),
    cost: str | None = typer.Option(None, "--cost", help="New cost per cycle"),
    currency: str | None = typer.Option(None, "--currency", help="New currency code"),
    cycle: str | None = typer.Option(None, "--cycle", help="New billing cycle"),
    anchor: str | None = typer.Option(None, "--anchor", help="New anchor date"),
    day: int | None = typer.Option(None, "--day", help="Day of month for monthly/yearly"),
    month: int | None = typer.Option(None, "--month", help="Month for yearly cycles"),
    interval: int | None = typer.Option(None, "--interval", help="Days between renewals"),
    notes: str | None = typer.Option(None, "--notes", help="New notes"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Edit a subscription."""
    with _session(verbose) as (_settings, store):
        record = _resolve_record(store, record_id, "Edit")
        if record is None:
            return

        changes: dict = {}
        if name is not None:
            changes["name"] = name
        if notes is not None:
            changes["notes"] = notes
        if cost is not None or currency is not None:
            changes["cost"] = Money(
                amount=parse_amount(cost) if cost is not None else record.cost.amount,
                currency=currency or record.cost.currency,
            )
        anchor_date = parse_date(anchor) if anchor else record.anchor_date
        if anchor is not None:
            changes["anchor_date"] = anchor_date
        if cycle is not None:
            changes["billing_cycle"] = build_cycle(cycle, anchor_date, day, month, interval)
        elif day is not None or month is not None or interval is not None:
            changes["billing_cycle"] = adjust_cycle(
                record.billing_cycle, day, month, interval
            )

        if not changes:
            console.print("[yellow]Nothing to change.[/yellow]")
            return

        updated = store.update(record.id, **changes)
        console.print(f"\n[bold green]✓ Updated {display_name(updated)}[/bold green]")
        display_record(updated, date.today())


def _set_status(record_id: str | None, status: SubscriptionStatus, verbose: bool):
    with _session(verbose) as (_settings, store):
        record = _resolve_record(store, record_id, status.value.capitalize())
        if record is None:
            return
        updated = store.set_status(record.id, status)
        console.print(
            f"[bold green]✓ {display_name(updated)} is now {updated.status.value}[/bold green]"
        )


@app.command()
def pause(
    record_id: str | None = typer.Argument(None, help="Subscription id or prefix"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Pause a subscription (no reminders while paused)."""
    _set_status(record_id, SubscriptionStatus.PAUSED, verbose)


@app.command()
def resume(
    record_id: str | None = typer.Argument(None, help="Subscription id or prefix"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Resume a paused or cancelled subscription."""
    _set_status(record_id, SubscriptionStatus.ACTIVE, verbose)


@app.command()
def cancel(
    record_id: str | None = typer.Argument(None, help="Subscription id or prefix"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Mark a subscription as cancelled (kept for history)."""
    _set_status(record_id, SubscriptionStatus.CANCELLED, verbose)


@app.command()
def remove(
    record_id: str | None = typer.Argument(None, help="Subscription id or prefix"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Delete a subscription on every device."""
    with _session(verbose) as (_settings, store):
        record = _resolve_record(store, record_id, "Remove")
        if record is None:
            return
        if not yes and not confirm(f"Delete {display_name(record)}?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return
        store.delete(record.id)
        console.print(f"[bold green]✓ Deleted {display_name(record)}[/bold green]")


@app.command()
def due(
    days: int = typer.Option(7, "--days", "-d", help="Look-ahead window in days"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show active subscriptions renewing soon."""
    today = date.today()
    with _session(verbose) as (_settings, store):
        renewals = store.list_due_before(today + timedelta(days=days + 1), as_of=today)
        if not renewals:
            console.print(f"[green]Nothing renews in the next {days} days.[/green]")
            return

        table = Table(title=f"Due in the next {days} days", header_style="bold magenta")
        table.add_column("Date", justify="center")
        table.add_column("In", justify="right")
        table.add_column("Name", style="cyan")
        table.add_column("Cost", justify="right")
        for item in renewals:
            table.add_row(
                item.renewal_date.isoformat(),
                f"{(item.renewal_date - today).days}d",
                item.record.name,
                format_money(item.record.cost),
            )
        console.print(table)


@app.command()
def reminders(
    days: int | None = typer.Option(None, "--days", "-d", help="Planning horizon in days"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show the reminders that would be scheduled."""
    with _session(verbose) as (settings, store):
        records = store.list_records()
        preferences = NotificationPreferences(
            lead_days=settings.reminder_lead_days,
            reminder_time=settings.reminder_time,
        )
        horizon = timedelta(days=days if days is not None else settings.reminder_horizon_days)
        planned = plan(records, preferences, horizon, now=datetime.now())
        if not planned:
            console.print("[green]No reminders in the planning horizon.[/green]")
            return

        names = {record.id: record.name for record in records}
        table = Table(title="Planned reminders", header_style="bold magenta")
        table.add_column("Fire at", justify="center")
        table.add_column("Name", style="cyan")
        table.add_column("Renews", justify="center")
        table.add_column("Lead", justify="right")
        for reminder in planned:
            table.add_row(
                reminder.fire_at.strftime("%Y-%m-%d %H:%M"),
                names.get(reminder.record_id, reminder.record_id[:8]),
                reminder.renewal_date.isoformat(),
                f"{reminder.lead_days}d",
            )
        console.print(table)


@app.command()
def summary(
    currency: str | None = typer.Option(None, "--currency", help="Base currency for totals"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show monthly and yearly spending across currencies."""
    with _session(verbose) as (settings, store):
        base_currency = (currency or settings.base_currency).upper()
        rates = StaticRateProvider(settings.base_currency, settings.exchange_rates)
        result = spending_summary(store.list_records(), rates, base_currency)

        console.print(f"\n[bold]Spending summary ({result.active_count} active):[/bold]")
        for code, subtotal in result.by_currency.items():
            console.print(f"  {code}: {format_money(subtotal)} / month")
        console.print()
        console.print(f"  Monthly total: {format_money(result.monthly_total)}")
        console.print(f"  Yearly total:  {format_money(result.yearly_total)}\n")


if __name__ == "__main__":
    app()
