from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from mining_comps.facts import FACT_SPECS
from mining_comps.models import CompanyListing, CompanyRecord

NA = "N/A"


def _fact_value(record: CompanyRecord, key: str) -> Optional[float]:
    fact = record.facts.get(key)
    if fact is None or not fact.has_data:
        return None
    return fact.value


def _per_oz(numerator: Optional[float], resources_moz: Optional[float]) -> Optional[float]:
    if not numerator or not resources_moz:
        return None
    return numerator / (resources_moz * 1e6)


def to_listing(record: CompanyRecord) -> CompanyListing:
    """Flatten a record for the comparison table; facts nobody reported stay null."""
    values = {key: _fact_value(record, key) for key in FACT_SPECS}
    resources = values.get("resources_au_moz")
    return CompanyListing(
        name=record.name,
        ticker=record.ticker,
        news_link=record.news_link,
        last_updated=record.last_updated,
        ev_per_oz=_per_oz(values.get("enterprise_value"), resources),
        market_cap_per_oz=_per_oz(values.get("market_cap"), resources),
        flagged_facts=[key for key, fact in record.facts.items() if fact.flagged],
        **values,
    )


def build_listing(
    records: Iterable[CompanyRecord], sort: Optional[str] = None, descending: bool = True
) -> List[CompanyListing]:
    rows = [to_listing(r) for r in records]
    if sort:
        if sort not in CompanyListing.model_fields:
            raise ValueError(f"Cannot sort by {sort}")
        present = [r for r in rows if getattr(r, sort) is not None]
        missing = [r for r in rows if getattr(r, sort) is None]
        present.sort(key=lambda r: getattr(r, sort), reverse=descending)
        rows = present + missing
    return rows


def format_fact(value: Optional[float], scale: float = 1.0, digits: int = 2, suffix: str = "") -> str:
    """Render a fact for display; missing or zero values read "N/A"."""
    if value is None or value == 0:
        return NA
    return f"{value / scale:,.{digits}f}{suffix}"


def rank_scores(rows: Sequence[Mapping[str, Any]], key: str, higher_better: bool) -> Dict[str, float]:
    """Percentile score per ticker for one metric, ties sharing their average rank.

    Rows without a value for `key` get no score. Best value scores 1.0.
    """
    valid = [r for r in rows if r.get(key) is not None]
    if not valid:
        return {}
    ordered = sorted(valid, key=lambda r: r[key], reverse=higher_better)
    total = len(ordered)
    scores: Dict[str, float] = {}
    start = 0
    while start < total:
        end = start
        while end + 1 < total and ordered[end + 1][key] == ordered[start][key]:
            end += 1
        avg_rank = (start + 1 + end + 1) / 2
        for row in ordered[start : end + 1]:
            scores[row["ticker"]] = (total - avg_rank + 1) / total
        start = end + 1
    return scores
