from __future__ import annotations

import math
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import httpx

from mining_comps.models import Company, Reading
from mining_comps.retry import with_retry

SourceReport = Dict[str, Reading]

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
}


class FactSource(Protocol):
    """Anything that can report readings for a company; missing keys are null readings."""

    name: str

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport: ...


def to_number(value: Any) -> Optional[float]:
    """Coerce API values ("123.4", 5, None, "None", NaN) to a float or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def build_report(source: str, values: Mapping[str, Tuple[Any, Optional[str]]]) -> SourceReport:
    """Turn {fact: (raw value, currency)} into readings, skipping values that did not parse."""
    report: SourceReport = {}
    for key, (raw, currency) in values.items():
        number = to_number(raw)
        if number is not None:
            report[key] = Reading(source=source, value=number, currency=currency)
    return report


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    params: Optional[Mapping[str, Any]] = None,
    max_attempts: int = 3,
    base_delay: float = 1.0,
) -> Any:
    async def _call() -> Any:
        resp = await client.get(url, params=params)
        resp.raise_for_status()
        return resp.json()

    return await with_retry(_call, max_attempts, base_delay)


async def get_html(
    client: httpx.AsyncClient,
    url: str,
    max_attempts: int = 2,
    base_delay: float = 3.0,
) -> Tuple[str, str]:
    """GET a page with browser-like headers; returns (final url, body)."""

    async def _call() -> Tuple[str, str]:
        resp = await client.get(url, headers=DEFAULT_HEADERS)
        resp.raise_for_status()
        return str(resp.url), resp.text

    return await with_retry(_call, max_attempts, base_delay)
