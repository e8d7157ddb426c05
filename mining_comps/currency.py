from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, Mapping, Optional

import httpx

from mining_comps.cache import TTLCache
from mining_comps.retry import with_retry

logger = logging.getLogger(__name__)

BASE_CURRENCY = "CAD"
DEFAULT_RATES_TO_CAD: Dict[str, float] = {"CAD": 1.0, "USD": 1.35, "AUD": 0.90, "GBP": 1.72}
EXCHANGE_RATE_URL = "https://api.exchangerate.host/convert"

_SUFFIX_CURRENCY = {
    "TO": "CAD",
    "V": "CAD",
    "CN": "CAD",
    "NE": "CAD",
    "AX": "AUD",
    "L": "GBP",
}


def home_currency(ticker: str) -> str:
    """Currency a ticker trades in, inferred from its exchange suffix."""
    ticker = (ticker or "").upper()
    if "." not in ticker:
        return "USD"
    return _SUFFIX_CURRENCY.get(ticker.rsplit(".", 1)[1], "USD")


class CurrencyConverter:
    """Converts amounts through a table of rates expressed as 1 unit -> CAD."""

    def __init__(self, rates_to_cad: Optional[Mapping[str, float]] = None) -> None:
        rates = dict(DEFAULT_RATES_TO_CAD if rates_to_cad is None else rates_to_cad)
        rates[BASE_CURRENCY] = 1.0
        self.rates_to_cad = {code.upper(): float(rate) for code, rate in rates.items() if rate and rate > 0}

    def rate(self, from_currency: str, to_currency: str) -> Optional[float]:
        src = self.rates_to_cad.get(from_currency.upper())
        dst = self.rates_to_cad.get(to_currency.upper())
        if src is None or dst is None:
            return None
        return src / dst

    def convert(self, value: float, from_currency: Optional[str], to_currency: Optional[str]) -> Optional[float]:
        """Return `value` expressed in `to_currency`, or None when no rate is known."""
        if value is None:
            return None
        if (from_currency or "").upper() == (to_currency or "").upper():
            return value
        if not from_currency or not to_currency:
            return None
        rate = self.rate(from_currency, to_currency)
        if rate is None:
            return None
        return value * rate


async def _fetch_rate(client: httpx.AsyncClient, currency: str) -> float:
    resp = await client.get(EXCHANGE_RATE_URL, params={"from": currency, "to": BASE_CURRENCY})
    resp.raise_for_status()
    payload = resp.json()
    rate = payload.get("result")
    if not rate:
        raise ValueError(f"No rate in response for {currency}/{BASE_CURRENCY}")
    return float(rate)


async def fetch_rates_to_cad(
    client: httpx.AsyncClient,
    currencies: Iterable[str],
    fallback: Optional[Mapping[str, float]] = None,
    max_attempts: int = 3,
    base_delay: float = 1.0,
) -> Dict[str, float]:
    """Look up live rates to CAD; currencies that fail keep their fallback rate."""
    rates = dict(fallback or DEFAULT_RATES_TO_CAD)
    wanted = sorted({c.upper() for c in currencies if c and c.upper() != BASE_CURRENCY})

    async def _one(code: str) -> Optional[float]:
        try:
            return await with_retry(lambda: _fetch_rate(client, code), max_attempts, base_delay)
        except Exception as exc:  # noqa: BLE001
            logger.warning("FX lookup failed for %s/%s, keeping %s: %s", code, BASE_CURRENCY, rates.get(code), exc)
            return None

    results = await asyncio.gather(*(_one(code) for code in wanted))
    for code, rate in zip(wanted, results):
        if rate is not None:
            rates[code] = rate
            logger.info("Fetched exchange rate %s/%s: %s", code, BASE_CURRENCY, rate)
    rates[BASE_CURRENCY] = 1.0
    return rates


async def load_converter(
    client: httpx.AsyncClient,
    cache: TTLCache[Dict[str, float]],
    fallback: Mapping[str, float],
    max_attempts: int = 3,
    base_delay: float = 1.0,
) -> CurrencyConverter:
    """Converter backed by cached live rates, refreshed once the cache expires."""
    rates = cache.get()
    if rates is None:
        rates = await fetch_rates_to_cad(client, fallback.keys(), fallback, max_attempts, base_delay)
        cache.put(rates)
    return CurrencyConverter(rates)
