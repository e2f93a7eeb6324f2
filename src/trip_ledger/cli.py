"""CLI for Trip Ledger."""

import typer

from .currency import CURRENCY_SYMBOLS, get_currency_name, get_supported_currencies
from .ledger.cli import app as ledger_app

app = typer.Typer(
    name="trip-ledger",
    help="Shared trip expenses across currencies, settled in one",
)

app.add_typer(ledger_app, name="ledger", help="Expenses, balances and settlements")


@app.command()
def currencies():
    """List supported currencies."""
    for currency in get_supported_currencies():
        typer.echo(
            f"{currency}  {CURRENCY_SYMBOLS[currency].strip():<4} "
            f"{get_currency_name(currency)}"
        )


if __name__ == "__main__":
    app()
