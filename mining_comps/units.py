from __future__ import annotations

import re
from typing import Optional

SILVER_TO_GOLD_RATIO = 80.0

_MULTIPLIERS = {"K": 1e3, "M": 1e6, "B": 1e9, "T": 1e12}
_NUMBER_RE = re.compile(r"(-?\d+(?:\.\d+)?)(?:\s*([KMBT])(?![A-Za-z])(?!\s*oz\b))?", re.IGNORECASE)


def silver_to_gold_equivalent(silver_moz: Optional[float], ratio: float = SILVER_TO_GOLD_RATIO) -> Optional[float]:
    """Express silver ounces as gold-equivalent ounces at a fixed Ag:Au ratio."""
    if silver_moz is None:
        return None
    if ratio <= 0:
        raise ValueError("ratio must be positive")
    return silver_moz / ratio


def gold_equivalent(
    gold_moz: Optional[float], silver_moz: Optional[float], ratio: float = SILVER_TO_GOLD_RATIO
) -> Optional[float]:
    """Combine gold and silver ounces into one AuEq figure; None when both are missing."""
    if gold_moz is None and silver_moz is None:
        return None
    return (gold_moz or 0.0) + (silver_to_gold_equivalent(silver_moz, ratio) or 0.0)


def koz_to_moz(koz: Optional[float]) -> Optional[float]:
    return None if koz is None else koz / 1000.0


def moz_to_koz(moz: Optional[float]) -> Optional[float]:
    return None if moz is None else moz * 1000.0


def parse_abbreviated_number(text: Optional[str]) -> Optional[float]:
    """Parse scraped figures like "1.2B", "$650M", "12.5 K" or "1,234.5".

    A letter followed by "oz" is an ounce unit ("1.2 M oz" is 1.2 Moz), not
    a multiplier. Returns None for empty, unparseable or zero values so a
    blank cell on a page never turns into a legitimate-looking 0.
    """
    if not text:
        return None
    cleaned = text.replace(",", "").replace("$", "").replace("−", "-").strip()
    match = _NUMBER_RE.search(cleaned)
    if not match:
        return None
    value = float(match.group(1))
    suffix = (match.group(2) or "").upper()
    value *= _MULTIPLIERS.get(suffix, 1.0)
    return value or None
