"""
USD exchange rates for local-currency display and intent snapshots.

``CoinbaseRateSource`` fetches live rates; ``FxRateCache`` owns the TTL and
falls back to a fixed table whenever the source fails, so a quote never
fails because the rate provider is down.
"""
import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

import requests

from homeward.pricing import CENT

logger = logging.getLogger(__name__)

FALLBACK_RATES = {
    'USD': Decimal('1'),
    'MXN': Decimal('17.5'),
    'COP': Decimal('4000'),
    'TRY': Decimal('32'),
    'KES': Decimal('150'),
    'PHP': Decimal('56'),
    'MAD': Decimal('10'),
    'EGP': Decimal('31'),
    'PEN': Decimal('3.7'),
    'ZAR': Decimal('18'),
    'RON': Decimal('4.5'),
    'THB': Decimal('35'),
    'EUR': Decimal('0.92'),
    'GBP': Decimal('0.79'),
}

CURRENCY_SYMBOLS = {
    'USD': '$', 'MXN': '$', 'COP': '$', 'EUR': '€', 'GBP': '£',
    'TRY': '₺', 'KES': 'KSh', 'PHP': '₱', 'MAD': 'DH', 'EGP': 'E£',
    'PEN': 'S/', 'ZAR': 'R', 'RON': 'lei', 'THB': '฿',
}

CITY_CURRENCIES = {
    'mexico-city': 'MXN',
    'bogota': 'COP',
    'istanbul': 'TRY',
    'nairobi': 'KES',
    'manila': 'PHP',
    'casablanca': 'MAD',
    'cairo': 'EGP',
    'lima': 'PEN',
    'johannesburg': 'ZAR',
    'bucharest': 'RON',
    'bangkok': 'THB',
}


class CoinbaseRateSource:
    """Live USD-based rates from the Coinbase exchange-rates endpoint."""

    def __init__(self, url, timeout=5):
        self.url = url
        self.timeout = timeout

    def fetch_rates(self):
        response = requests.get(self.url, timeout=self.timeout)
        response.raise_for_status()
        raw = (response.json().get('data') or {}).get('rates')
        if not raw:
            raise ValueError('exchange-rate response carried no rates')

        rates = {}
        for currency, fallback in FALLBACK_RATES.items():
            try:
                rate = Decimal(str(raw[currency]))
            except (KeyError, ArithmeticError, TypeError, ValueError):
                rate = fallback
            rates[currency] = rate if rate > 0 else fallback
        rates['USD'] = Decimal('1')
        return rates


class FxRateCache:
    """
    Caches the rate table for ``ttl_seconds`` using the injected clock.
    After a failed fetch the fallback table is served for
    ``fallback_ttl_seconds`` before the source is tried again.
    """

    def __init__(self, source, clock, ttl_seconds=300, fallback_ttl_seconds=60):
        self.source = source
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds)
        self.fallback_ttl = timedelta(seconds=fallback_ttl_seconds)
        self._rates = None
        self._expires_at = None

    def rates(self):
        now = self.clock.now()
        if self._rates is not None and now < self._expires_at:
            return self._rates

        try:
            rates = self.source.fetch_rates()
        except Exception as e:
            logger.warning("FX rate fetch failed, using fallback rates: %s", e)
            self._rates = dict(FALLBACK_RATES)
            self._expires_at = now + self.fallback_ttl
            return self._rates

        self._rates = rates
        self._expires_at = now + self.ttl
        return rates

    def rate_for(self, currency):
        return self.rates().get((currency or 'USD').upper(), Decimal('1'))

    def invalidate(self):
        self._rates = None
        self._expires_at = None


def usd_to_local(usd_amount, currency, rates):
    rate = rates.get(currency, Decimal('1'))
    return (Decimal(usd_amount) * rate).quantize(CENT, rounding=ROUND_HALF_UP)


def local_to_usd(local_amount, currency, rates):
    rate = rates.get(currency, Decimal('1'))
    return (Decimal(local_amount) / rate).quantize(CENT, rounding=ROUND_HALF_UP)


def format_local_currency(amount, currency):
    """Format amount with the currency's symbol, e.g. ``KSh1,250.00``."""
    symbol = CURRENCY_SYMBOLS.get(currency, currency)
    return '{}{:,.2f}'.format(symbol, Decimal(amount))


def currency_for_city(city_slug):
    return CITY_CURRENCIES.get(city_slug, 'USD')
