"""Currency conversion for cost estimates.

All provider pricing is published in USD. Estimates are additionally
expressed in a display currency chosen in the routing configuration. Rates
are static approximations; budget limits are always evaluated in USD.
"""

from __future__ import annotations

from enum import StrEnum


class Currency(StrEnum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"


# 1 USD = X currency
_EXCHANGE_RATES: dict[Currency, float] = {
    Currency.USD: 1.0,
    Currency.EUR: 0.92,
    Currency.GBP: 0.79,
}

_SYMBOLS: dict[Currency, str] = {
    Currency.USD: "$",
    Currency.EUR: "€",
    Currency.GBP: "£",
}


def get_exchange_rate(currency: Currency | str) -> float:
    """Return the USD → currency rate.

    Raises:
        ValueError: If the currency is not supported
    """
    try:
        return _EXCHANGE_RATES[Currency(currency)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unsupported currency: {currency}") from exc


def convert_from_usd(usd_amount: float, currency: Currency | str) -> float:
    """Convert a USD amount into the target currency."""
    return usd_amount * get_exchange_rate(currency)


def supported_currencies() -> list[Currency]:
    return list(_EXCHANGE_RATES)


def format_currency(amount: float, currency: Currency | str) -> str:
    """Format an amount for display, e.g. "€0.002300" or "$1.2500".

    API costs are tiny, so amounts below one cent keep six decimals.
    """
    code = Currency(currency)
    symbol = _SYMBOLS.get(code, code.value)
    if amount < 0.01:
        return f"{symbol}{amount:.6f}"
    return f"{symbol}{amount:.4f}"


def update_exchange_rates(rates: dict[Currency | str, float]) -> None:
    """Replace rates for known currencies. Unknown codes are ignored."""
    for code, rate in rates.items():
        try:
            currency = Currency(code)
        except ValueError:
            continue
        if rate <= 0:
            raise ValueError(f"Exchange rate for {currency} must be positive")
        _EXCHANGE_RATES[currency] = rate
