"""CLI for the trip ledger using Typer."""

import logging
import sys
from datetime import date
from decimal import Decimal, InvalidOperation

import typer
from rich.console import Console
from rich.table import Table

from ..config import load_settings
from ..currency import CURRENCY_DECIMALS, CURRENCY_SYMBOLS, format_currency
from ..db import Database
from ..exceptions import PartialPersistenceError, SplitValidationError
from ..models import (
    Balance,
    ConversionFailure,
    Currency,
    CustomSplit,
    EqualSplit,
    PercentageSplit,
    SplitPolicy,
    SplitPolicyVariant,
    Transaction,
)
from .balances import is_settled
from .minimizer import transactions_for
from .service import LedgerService

app = typer.Typer(
    name="ledger",
    help="Record shared trip expenses in any currency and settle up",
)

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def parse_amount(value: str) -> Decimal:
    """Parse a CLI amount into a Decimal."""
    try:
        return Decimal(value)
    except InvalidOperation:
        raise typer.BadParameter(f"'{value}' is not a valid amount") from None


def parse_date(value: str | None) -> date:
    """Parse an ISO date, defaulting to today."""
    if value is None:
        return date.today()
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a YYYY-MM-DD date") from None


def parse_shares(shares: list[str]) -> dict[str, Decimal]:
    """Parse repeated NAME=VALUE options."""
    parsed = {}
    for share in shares:
        name, sep, value = share.partition("=")
        if not sep or not name:
            raise typer.BadParameter(f"'{share}' should look like NAME=VALUE")
        parsed[name.strip()] = parse_amount(value.strip())
    return parsed


def build_policy(split: SplitPolicy, shares: list[str]) -> SplitPolicyVariant:
    """Build a split policy from the --split and --share options."""
    if split == SplitPolicy.EQUAL:
        return EqualSplit()
    if split == SplitPolicy.CUSTOM:
        return CustomSplit(amounts=parse_shares(shares))
    if split == SplitPolicy.PERCENTAGE:
        return PercentageSplit(percentages=parse_shares(shares))
    raise typer.BadParameter("Itemized expenses can't be entered from the CLI")


def format_money(amount: Decimal, currency: Currency, use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: (£85.02)
    Positive amounts have spaces:      £85.02
    The spaces ensure decimal points align in tables.
    """
    symbol = CURRENCY_SYMBOLS[currency]
    digits = CURRENCY_DECIMALS[currency]
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"({symbol}[red]{abs_amount:,.{digits}f}[/red])"
        return f"({symbol}{abs_amount:,.{digits}f})"
    if use_color:
        return f" [green]{symbol}{abs_amount:,.{digits}f}[/green] "
    return f" {symbol}{abs_amount:,.{digits}f} "


def display_balances(balances: list[Balance], currency: Currency):
    """Display balances in a table."""
    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Participant", style="cyan")
    table.add_column("Paid", justify="right")
    table.add_column("Owes", justify="right")
    table.add_column("Settled out", justify="right")
    table.add_column("Settled in", justify="right")
    table.add_column("Net", justify="right")

    for balance in balances:
        table.add_row(
            balance.participant_id,
            format_money(balance.total_paid, currency, use_color=False),
            format_money(balance.total_owed, currency, use_color=False),
            format_money(balance.settlements_paid, currency, use_color=False),
            format_money(balance.settlements_received, currency, use_color=False),
            format_money(balance.net, currency),
        )

    console.print(table)


def display_transactions(transactions: list[Transaction], currency: Currency):
    """Display suggested payments."""
    if not transactions:
        console.print("[green]✓ Everyone is settled up[/green]")
        return

    console.print(f"\n[bold]Suggested payments ({len(transactions)}):[/bold]")
    for t in transactions:
        console.print(
            f"  {t.from_participant} → {t.to_participant}: "
            f"{format_currency(t.amount, currency)}"
        )


@app.command()
def rate(
    from_currency: Currency = typer.Argument(..., help="Currency to convert from"),
    to_currency: Currency | None = typer.Argument(
        None, help="Currency to convert to (defaults to the settlement currency)"
    ),
    on: str | None = typer.Option(None, "--date", "-d", help="Date (YYYY-MM-DD)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Look up the historical FX rate for a date."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        db = Database(settings.database_path)
        service = LedgerService(settings, db)

        target = to_currency or settings.settlement_currency
        result = service.resolver.resolve(parse_date(on), from_currency, target)
        if isinstance(result, ConversionFailure):
            console.print(
                f"\n[bold red]Error:[/bold red] No rate for {from_currency}->{target} "
                f"on {result.requested_date}: {result.reason}"
            )
            sys.exit(1)

        console.print(
            f"\n1 {from_currency} = [bold]{result.rate}[/bold] {target} "
            f"[dim](rate date {result.date}, {result.source})[/dim]"
        )

    except typer.BadParameter:
        raise
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "service" in locals():
            service.close()
        if "db" in locals():
            db.close()


@app.command()
def add_expense(
    trip: str = typer.Option(..., "--trip", "-t", help="Trip id"),
    paid_by: str = typer.Option(..., "--paid-by", "-p", help="Who paid"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount paid"),
    currency: Currency = typer.Option(
        Currency.GBP, "--currency", "-c", help="Currency paid in"
    ),
    participants: list[str] = typer.Option(
        ..., "--with", "-w", help="Participant sharing the expense (repeatable)"
    ),
    split: SplitPolicy = typer.Option(
        SplitPolicy.EQUAL, "--split", "-s", help="How to split the expense"
    ),
    shares: list[str] = typer.Option(
        [], "--share", help="NAME=VALUE amount or percentage (repeatable)"
    ),
    on: str | None = typer.Option(None, "--date", "-d", help="Payment date"),
    description: str = typer.Option("", "--description", help="What it was for"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """
    Record an expense and split it between participants.

    Foreign-currency amounts are converted at the historical rate for the
    payment date. If no rate can be fetched, a 1:1 rate is used and the
    expense is flagged as approximate.
    """
    setup_logging(verbose)

    try:
        settings = load_settings()
        db = Database(settings.database_path)
        service = LedgerService(settings, db)

        result = service.create_expense(
            trip_id=trip,
            paid_by=paid_by,
            amount=parse_amount(amount),
            currency=currency,
            payment_date=parse_date(on),
            participant_ids=participants,
            policy=build_policy(split, shares),
            description=description,
        )

        for warning in result.warnings:
            console.print(f"[yellow]⚠️  {warning}[/yellow]")

        expense = result.expense
        console.print(
            f"\n[bold green]✓ Expense {expense.id} recorded:[/bold green] "
            f"{format_currency(expense.amount, expense.currency)}"
        )
        if (
            expense.currency != settings.settlement_currency
            and expense.settlement_amount is not None
        ):
            converted = format_currency(
                expense.settlement_amount, settings.settlement_currency
            )
            console.print(f"  = {converted} at {expense.fx_rate}")
        for s in result.splits:
            console.print(
                f"  {s.participant_id}: {format_currency(s.amount, expense.currency)}"
            )

    except SplitValidationError as e:
        console.print(f"\n[bold yellow]⚠️  {e}[/bold yellow]\n")
        sys.exit(1)
    except PartialPersistenceError as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        console.print("[dim]Re-run the split step before relying on balances.[/dim]")
        sys.exit(1)
    except typer.BadParameter:
        raise
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "service" in locals():
            service.close()
        if "db" in locals():
            db.close()


@app.command()
def record_settlement(
    trip: str = typer.Option(..., "--trip", "-t", help="Trip id"),
    from_participant: str = typer.Option(..., "--from", help="Who paid"),
    to_participant: str = typer.Option(..., "--to", help="Who received"),
    amount: str = typer.Option(..., "--amount", "-a", help="Amount paid"),
    method: str | None = typer.Option(None, "--method", help="e.g. bank transfer"),
    notes: str | None = typer.Option(None, "--notes", help="Free-form notes"),
    on: str | None = typer.Option(None, "--date", "-d", help="Settlement date"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record a payment made between two participants."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        db = Database(settings.database_path)
        service = LedgerService(settings, db)

        settlement = service.record_settlement(
            trip_id=trip,
            from_participant=from_participant,
            to_participant=to_participant,
            amount=parse_amount(amount),
            settled_at=parse_date(on),
            method=method,
            notes=notes,
        )

        console.print(
            f"\n[bold green]✓ Settlement recorded:[/bold green] "
            f"{settlement.from_participant} → {settlement.to_participant} "
            f"{format_currency(settlement.amount, settings.settlement_currency)}"
        )

    except typer.BadParameter:
        raise
    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "service" in locals():
            service.close()
        if "db" in locals():
            db.close()


@app.command()
def balances(
    trip: str = typer.Option(..., "--trip", "-t", help="Trip id"),
    me: str | None = typer.Option(
        None, "--me", help="Only show payments involving this participant"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show balances and the fewest payments that would settle the trip."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        db = Database(settings.database_path)
        service = LedgerService(settings, db)
        currency = settings.settlement_currency

        trip_balances = service.get_balances(trip)
        if not trip_balances:
            console.print(f"[yellow]No activity recorded for trip {trip}.[/yellow]")
            return

        display_balances(trip_balances, currency)

        if is_settled(trip_balances, settings.balance_tolerance):
            console.print("[green]✓ Everyone is settled up[/green]")
            return

        transactions = service.suggest_settlement(trip)
        if me is None:
            display_transactions(transactions, currency)
            return

        mine = transactions_for(transactions, me)
        console.print(f"\n[bold]{me} pays:[/bold]")
        for t in mine.to_pay:
            console.print(
                f"  → {t.to_participant}: {format_currency(t.amount, currency)}"
            )
        if not mine.to_pay:
            console.print("  [dim]nothing[/dim]")
        console.print(f"[bold]{me} receives:[/bold]")
        for t in mine.to_receive:
            console.print(
                f"  ← {t.from_participant}: {format_currency(t.amount, currency)}"
            )
        if not mine.to_receive:
            console.print("  [dim]nothing[/dim]")

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "service" in locals():
            service.close()
        if "db" in locals():
            db.close()


@app.command()
def history(
    trip: str = typer.Option(..., "--trip", "-t", help="Trip id"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List recorded settlements, most recent first."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        db = Database(settings.database_path)
        service = LedgerService(settings, db)

        settlements = service.get_settlement_history(trip)
        if not settlements:
            console.print("[yellow]No settlements recorded.[/yellow]")
            return

        table = Table(
            title="Settlements", show_header=True, header_style="bold magenta"
        )
        table.add_column("Date", style="dim")
        table.add_column("From", style="cyan")
        table.add_column("To", style="cyan")
        table.add_column("Amount", justify="right")
        table.add_column("Method", style="yellow")
        for s in settlements:
            table.add_row(
                str(s.settled_at),
                s.from_participant,
                s.to_participant,
                format_money(s.amount, settings.settlement_currency, use_color=False),
                s.method or "",
            )
        console.print(table)

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "service" in locals():
            service.close()
        if "db" in locals():
            db.close()


@app.command()
def clear_cache(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Wipe the FX rate cache."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        db = Database(settings.database_path)
        service = LedgerService(settings, db)

        removed = service.resolver.clear_cache()
        console.print(f"[green]✓ Cleared {removed} cached rates[/green]")

    except Exception as e:
        console.print(f"\n[bold red]Error:[/bold red] {e}")
        if verbose:
            raise
        sys.exit(1)
    finally:
        if "service" in locals():
            service.close()
        if "db" in locals():
            db.close()


if __name__ == "__main__":
    app()
