"""
Currency conversion adapter.

Resolves an amount in one currency into another using the exchange-rate
service (``EXCHANGE_RATE_API_URL/<base>`` answering ``{"rates": {...}}``).
Lookups carry a short timeout and live rates are cached. When the service
fails, the clinic's own currency pair (HNL/USD) falls back to a fixed rate
and the result is flagged ``source='fallback'``; any other pair raises
NoRateAvailable instead of guessing.
"""
import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional

import requests
from django.conf import settings
from django.core.cache import cache
from django.core.exceptions import ValidationError
from django.utils import timezone

from apps.billing.currency import quantize_money, quantize_rate, to_decimal
from apps.billing.exceptions import ExternalServiceError
from apps.billing.models import RateSource
from apps.core.observability import metrics, get_sanitized_logger
from apps.core.observability.events import log_rate_fallback

logger = get_sanitized_logger(__name__)

CACHE_KEY_TEMPLATE = 'exchange-rates:{base}'


class NoRateAvailable(ValidationError):
    """Raised when no live or fallback rate exists for a currency pair."""
    pass


@dataclass(frozen=True)
class ConversionResult:
    original_amount: Decimal
    original_currency: str
    converted_amount: Decimal
    target_currency: str
    rate: Decimal
    source: str
    timestamp: datetime

    @property
    def is_fallback(self) -> bool:
        return self.source == RateSource.FALLBACK


class ExchangeRateClient:
    """
    HTTP client for the exchange-rate service.

    Every failure mode (network error, timeout, non-2xx, malformed body,
    missing target currency) is raised as ExternalServiceError.
    """

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 cache_seconds: Optional[int] = None):
        self.base_url = (base_url or settings.EXCHANGE_RATE_API_URL).rstrip('/')
        self.timeout = timeout if timeout is not None else settings.EXCHANGE_RATE_TIMEOUT_SECONDS
        self.cache_seconds = cache_seconds if cache_seconds is not None else settings.EXCHANGE_RATE_CACHE_SECONDS

    def fetch_rates(self, base: str) -> dict:
        cache_key = CACHE_KEY_TEMPLATE.format(base=base)
        rates = cache.get(cache_key)
        if rates is not None:
            return rates

        url = f'{self.base_url}/{base}'
        start_time = time.time()
        try:
            response = requests.get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as e:
            raise ExternalServiceError(f'Exchange-rate lookup failed for {base}: {e}') from e
        except ValueError as e:
            raise ExternalServiceError(f'Exchange-rate service returned invalid JSON for {base}') from e
        finally:
            metrics.exchange_rate_lookup_duration_seconds.observe(time.time() - start_time)

        rates = payload.get('rates') if isinstance(payload, dict) else None
        if not isinstance(rates, dict):
            raise ExternalServiceError(f'Exchange-rate response for {base} has no rates')

        cache.set(cache_key, rates, self.cache_seconds)
        return rates

    def get_rate(self, from_currency: str, to_currency: str) -> Decimal:
        rates = self.fetch_rates(from_currency)
        raw_rate = rates.get(to_currency)
        if raw_rate is None:
            raise ExternalServiceError(f'No rate from {from_currency} to {to_currency}')
        try:
            rate = to_decimal(raw_rate)
        except ValueError as e:
            raise ExternalServiceError(f'Invalid rate from {from_currency} to {to_currency}: {raw_rate!r}') from e
        if rate <= 0:
            raise ExternalServiceError(f'Non-positive rate from {from_currency} to {to_currency}')
        return rate


def fallback_rate(from_currency: str, to_currency: str) -> Optional[Decimal]:
    """Fixed rate for the clinic's HNL/USD pair, None for any other pair."""
    usd_hnl = Decimal(str(settings.EXCHANGE_RATE_FALLBACK_USD_HNL))
    if (from_currency, to_currency) == ('USD', 'HNL'):
        return usd_hnl
    if (from_currency, to_currency) == ('HNL', 'USD'):
        return Decimal('1') / usd_hnl
    return None


def convert(amount, from_currency: str, to_currency: str,
            client: Optional[ExchangeRateClient] = None) -> ConversionResult:
    """
    Convert ``amount`` from ``from_currency`` to ``to_currency``.

    Raises:
        ValidationError: amount is not a number
        NoRateAvailable: service unavailable and no fallback for the pair
    """
    try:
        original_amount = quantize_money(amount)
    except (ValueError, InvalidOperation):
        raise ValidationError({'amount': f'Invalid amount: {amount!r}'})

    from_currency = from_currency.upper()
    to_currency = to_currency.upper()

    if from_currency == to_currency:
        metrics.currency_conversions_total.labels(source=RateSource.IDENTITY).inc()
        return ConversionResult(
            original_amount=original_amount,
            original_currency=from_currency,
            converted_amount=original_amount,
            target_currency=to_currency,
            rate=Decimal('1'),
            source=RateSource.IDENTITY,
            timestamp=timezone.now(),
        )

    client = client or ExchangeRateClient()
    try:
        rate = client.get_rate(from_currency, to_currency)
        source = RateSource.API
    except ExternalServiceError as e:
        rate = fallback_rate(from_currency, to_currency)
        if rate is None:
            metrics.exceptions_total.labels(
                exception_type='NoRateAvailable',
                location='exchange_rates.convert'
            ).inc()
            logger.warning(
                'No exchange rate available',
                extra={'from_currency': from_currency, 'to_currency': to_currency, 'error': str(e)}
            )
            raise NoRateAvailable(
                f'No exchange rate available from {from_currency} to {to_currency}',
                code='no_rate_available',
            )
        source = RateSource.FALLBACK
        log_rate_fallback(from_currency, to_currency, quantize_rate(rate), reason=str(e))

    metrics.currency_conversions_total.labels(source=source).inc()
    return ConversionResult(
        original_amount=original_amount,
        original_currency=from_currency,
        converted_amount=quantize_money(original_amount * rate),
        target_currency=to_currency,
        rate=quantize_rate(rate),
        source=source,
        timestamp=timezone.now(),
    )
