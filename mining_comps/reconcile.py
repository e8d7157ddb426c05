"""Merge several noisy readings of one fact into a single resolved value.

Every fact family (price, market cap, reserves, revenue...) goes through the
same routine; only its `FactSpec` differs.

Policy:
- no usable reading -> 0 (callers treat it as "no data"), not flagged
- one usable reading -> that value
- several -> spread = max - min, compared relative to the preferred source's
  value (else the first usable one). Within the threshold the plain mean is
  used, otherwise the preferred/first value is kept and the fact is flagged.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from mining_comps.currency import CurrencyConverter, home_currency
from mining_comps.models import FactSpec, Reading, ResolvedFact

logger = logging.getLogger(__name__)

_DEFAULT_CONVERTER = CurrencyConverter()


def _usable(spec: FactSpec, reading: Reading) -> bool:
    value = reading.value
    if value is None or not math.isfinite(value):
        return False
    if spec.positive_only and value <= 0:
        return False
    return True


def _normalize(
    spec: FactSpec, readings: Sequence[Reading], converter: CurrencyConverter, ticker: str
) -> List[Tuple[str, float]]:
    valid: List[Tuple[str, float]] = []
    for reading in readings:
        if reading is None or not _usable(spec, reading):
            continue
        if spec.expected_currency is None:
            valid.append((reading.source, float(reading.value)))
            continue
        currency = reading.currency or spec.default_currency or home_currency(ticker)
        converted = converter.convert(float(reading.value), currency, spec.expected_currency)
        if converted is None:
            logger.warning(
                "No rate %s->%s for %s %s from %s; dropping reading",
                currency,
                spec.expected_currency,
                ticker,
                spec.key,
                reading.source,
            )
            continue
        valid.append((reading.source, converted))
    return valid


def _relative(variance: float, reference: float) -> float:
    if variance == 0:
        return 0.0
    if reference == 0:
        return math.inf
    return variance / abs(reference)


def _describe(readings: Sequence[Reading]) -> str:
    parts = []
    for reading in readings:
        if reading is None:
            continue
        value = "N/A" if reading.value is None else f"{reading.value:g}"
        parts.append(f"{reading.source}={value} {reading.currency or '?'}".rstrip())
    return ", ".join(parts) or "no sources"


def reconcile(
    spec: FactSpec,
    readings: Sequence[Reading],
    converter: Optional[CurrencyConverter] = None,
    ticker: str = "",
    now: Optional[datetime] = None,
) -> ResolvedFact:
    """Resolve `readings` of one fact into a `ResolvedFact` in `spec.expected_currency`."""
    if not isinstance(spec, FactSpec):
        raise TypeError(f"reconcile() needs a FactSpec, got {type(spec).__name__}")

    valid = _normalize(spec, readings or [], converter or _DEFAULT_CONVERTER, ticker)
    sources = [source for source, _ in valid]
    values = [value for _, value in valid]

    variance = 0.0
    relative = 0.0
    flagged = False
    if not values:
        value = 0.0
    elif len(values) == 1:
        value = values[0]
    else:
        variance = max(values) - min(values)
        preferred = next((v for s, v in valid if s == spec.preferred_source), None)
        reference = preferred if preferred is not None else values[0]
        relative = _relative(variance, reference)
        if relative <= spec.variance_threshold:
            value = sum(values) / len(values)
        else:
            value = reference
            flagged = True

    resolved = ResolvedFact(
        key=spec.key,
        value=value,
        currency=spec.expected_currency,
        contributing_sources=sources,
        variance=variance,
        relative_variance=relative,
        flagged=flagged,
        timestamp=now or datetime.now(timezone.utc),
    )

    unit = spec.expected_currency or spec.unit
    log = logger.warning if flagged else logger.info
    log(
        "[%s] %s: %s, variance=%.4g (%.2f%%), resolved=%.6g %s%s",
        ticker or "-",
        spec.key,
        _describe(readings or []),
        variance,
        relative * 100 if math.isfinite(relative) else math.inf,
        value,
        unit,
        " FLAGGED" if flagged else "",
    )
    return resolved
