from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

import pandas as pd

from mining_comps.models import Company

logger = logging.getLogger(__name__)

_SUFFIX_RE = re.compile(r"\s+(inc|corp|corporation|ltd|limited|co|company|incorporated)\.?$", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-z0-9 ]")

NAME_MATCH_THRESHOLD = 0.7


def normalize_name(name: Optional[str]) -> str:
    """Lower-case a company name and drop its corporate suffix and punctuation."""
    if not name:
        return ""
    stripped = _SUFFIX_RE.sub("", name.strip()).strip().lower()
    return _NON_ALNUM_RE.sub("", stripped)


def url_slug(name: Optional[str]) -> str:
    return re.sub(r"\s+", "-", normalize_name(name))


def _bigrams(text: str) -> List[str]:
    text = text.replace(" ", "")
    return [text[i : i + 2] for i in range(len(text) - 1)]


def name_similarity(first: str, second: str) -> float:
    """Dice coefficient over character bigrams (1.0 for identical strings)."""
    first = first.replace(" ", "")
    second = second.replace(" ", "")
    if first == second:
        return 1.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    pool = {}
    for gram in _bigrams(first):
        pool[gram] = pool.get(gram, 0) + 1
    overlap = 0
    for gram in _bigrams(second):
        if pool.get(gram, 0) > 0:
            pool[gram] -= 1
            overlap += 1
    return 2.0 * overlap / (len(first) + len(second) - 2)


def names_match(fetched_name: Optional[str], company: Company, threshold: float = NAME_MATCH_THRESHOLD) -> bool:
    """Whether a scraped company name plausibly refers to `company`."""
    fetched = normalize_name(fetched_name)
    if not fetched:
        return False
    candidates = [company.name, company.name_alt]
    return any(
        name_similarity(fetched, normalize_name(candidate)) > threshold for candidate in candidates if candidate
    )


def exchange_code(ticker: str) -> str:
    ticker = ticker.upper()
    if ticker.endswith(".TO"):
        return "tsx"
    if ticker.endswith(".V"):
        return "tsxv"
    return "cse"


def default_news_link(company: Company) -> str:
    return f"https://www.miningfeeds.com/stock/{url_slug(company.name)}-{exchange_code(company.ticker)}/"


def _clean(value: object) -> Optional[str]:
    if value is None or (isinstance(value, float) and pd.isna(value)):
        return None
    text = str(value).strip()
    return text or None


def load_companies(path: Path) -> List[Company]:
    """Read the tickers CSV (TICKER, NAME and optional NAMEALT / NEWS / WEBSITE columns)."""
    df = pd.read_csv(path, dtype=str, encoding="utf-8-sig", skip_blank_lines=True)
    df.columns = [str(col).replace("\ufeff", "").strip().upper() for col in df.columns]
    if "TICKER" not in df.columns:
        raise ValueError(f"{path} has no TICKER column (found: {', '.join(df.columns)})")

    companies: List[Company] = []
    seen: set[str] = set()
    for row in df.to_dict(orient="records"):
        ticker = _clean(row.get("TICKER"))
        if not ticker or ticker.lower() == "undefined":
            logger.warning("Skipping row with invalid ticker: %s", row)
            continue
        ticker = ticker.upper()
        if ticker in seen:
            logger.warning("Skipping duplicate ticker %s", ticker)
            continue
        seen.add(ticker)

        company = Company(
            ticker=ticker,
            name=_clean(row.get("NAME")) or ticker,
            name_alt=_clean(row.get("NAMEALT")),
            news_link=_clean(row.get("NEWS")),
            website=_clean(row.get("WEBSITE")),
        )
        if not company.news_link:
            company.news_link = default_news_link(company)
        companies.append(company)

    logger.info("Loaded %s companies from %s", len(companies), path)
    return companies
