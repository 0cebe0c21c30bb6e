# folio_core/schemas/validators.py
"""
Shared field validators for the activity and snapshot schemas.

- Currency codes: trimmed, upper-cased, three letters
- Currency-keyed amount maps (cash balances, realized gains)
- Ledger dates: nothing before the epoch
"""

import re
from datetime import date
from decimal import Decimal

ISO_CURRENCY = re.compile(r"^[A-Z]{3}$")

EARLIEST_LEDGER_DATE = date(1970, 1, 1)


def validate_currency(value: str) -> str:
    """
    Normalize a currency code ("usd", " EUR " -> "USD", "EUR").

    Raises:
        ValueError: Empty, non-string or not three letters
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Currency cannot be empty")

    code = value.strip().upper()
    if not ISO_CURRENCY.match(code):
        raise ValueError(f"Invalid currency code '{code}': expected three letters (ISO 4217)")
    return code


def validate_currency_amounts(value: dict[str, Decimal]) -> dict[str, Decimal]:
    """Normalize the keys of a per-currency amount map; duplicate keys after normalization are rejected."""
    normalized: dict[str, Decimal] = {}
    for currency, amount in value.items():
        code = validate_currency(currency)
        if code in normalized:
            raise ValueError(f"Currency '{code}' appears more than once")
        normalized[code] = amount
    return normalized


def validate_ledger_date(value: date) -> date:
    if value < EARLIEST_LEDGER_DATE:
        raise ValueError(f"Date {value} is before {EARLIEST_LEDGER_DATE}")
    return value
