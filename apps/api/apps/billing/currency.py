"""
Money helpers shared by pricing, the ledger and the exchange-rate adapter.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from django.conf import settings

CENT = Decimal('0.01')
RATE_PRECISION = Decimal('0.000001')

CURRENCY_SYMBOLS = {
    'HNL': 'L.',
    'USD': '$',
}


def to_decimal(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals to Decimal (floats via str)."""
    if isinstance(value, float):
        value = str(value)
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f'Not a valid amount: {value!r}')
    if not result.is_finite():
        raise ValueError(f'Not a valid amount: {value!r}')
    return result


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def quantize_rate(value) -> Decimal:
    return to_decimal(value).quantize(RATE_PRECISION, rounding=ROUND_HALF_UP)


def format_currency(amount, currency: str = 'HNL') -> str:
    """
    Format an amount with the clinic's currency symbol.

    >>> format_currency(Decimal('1300'), 'HNL')
    'L. 1,300.00'
    >>> format_currency('100', 'USD')
    '$ 100.00'
    """
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    try:
        value = quantize_money(amount)
    except ValueError:
        value = Decimal('0.00')
    return f'{symbol} {value:,.2f}'


def get_default_currency() -> str:
    """Clinic currency: the core.AppSettings row, else CLINIC_DEFAULT_CURRENCY."""
    from apps.core.models import AppSettings

    app_settings = AppSettings.load()
    if app_settings is not None and app_settings.default_currency:
        return app_settings.default_currency.upper()
    return settings.CLINIC_DEFAULT_CURRENCY
