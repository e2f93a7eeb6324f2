"""Currency metadata, rounding and display helpers."""

from decimal import ROUND_HALF_UP, Decimal

from .models import Currency

# Minor-unit digits per currency
CURRENCY_DECIMALS: dict[Currency, int] = {
    Currency.GBP: 2,
    Currency.EUR: 2,
    Currency.USD: 2,
    Currency.CHF: 2,
    Currency.JPY: 0,
    Currency.AUD: 2,
    Currency.CAD: 2,
}

CURRENCY_SYMBOLS: dict[Currency, str] = {
    Currency.GBP: "£",
    Currency.EUR: "€",
    Currency.USD: "$",
    Currency.CHF: "CHF ",
    Currency.JPY: "¥",
    Currency.AUD: "A$",
    Currency.CAD: "C$",
}

CURRENCY_NAMES: dict[Currency, str] = {
    Currency.GBP: "British Pound",
    Currency.EUR: "Euro",
    Currency.USD: "US Dollar",
    Currency.CHF: "Swiss Franc",
    Currency.JPY: "Japanese Yen",
    Currency.AUD: "Australian Dollar",
    Currency.CAD: "Canadian Dollar",
}


def get_supported_currencies() -> list[Currency]:
    """Get all supported currencies."""
    return list(Currency)


def get_currency_name(currency: Currency) -> str:
    """Get currency display name."""
    return CURRENCY_NAMES.get(currency, str(currency))


def minor_unit(currency: Currency) -> Decimal:
    """Smallest representable amount, e.g. 0.01 for GBP, 1 for JPY."""
    return Decimal(1).scaleb(-CURRENCY_DECIMALS.get(currency, 2))


def quantize(amount: Decimal, currency: Currency) -> Decimal:
    """
    Round an amount to the currency's minor unit.
    Uses ROUND_HALF_UP for consistency.

    Args:
        amount: Amount as Decimal
        currency: Currency the amount is expressed in

    Returns:
        Rounded amount
    """
    return amount.quantize(minor_unit(currency), rounding=ROUND_HALF_UP)


def format_currency(amount: Decimal, currency: Currency) -> str:
    """
    Format currency amount with symbol.

    Examples:
        format_currency(Decimal("123.45"), Currency.GBP) -> "£123.45"
        format_currency(Decimal("1234.6"), Currency.JPY) -> "¥1,235"
    """
    symbol = CURRENCY_SYMBOLS.get(currency, str(currency))
    rounded = quantize(amount, currency)
    if CURRENCY_DECIMALS.get(currency, 2) == 0:
        return f"{symbol}{rounded:,.0f}"
    return f"{symbol}{rounded:,.2f}"
