from __future__ import annotations

from typing import Dict, Final

from mining_comps.models import FactSpec

YAHOO = "yahoo_finance"
MINING_FEEDS = "mining_feeds"

PRICE_THRESHOLD = 0.02
FINANCIAL_THRESHOLD = 0.05

_SPECS = [
    FactSpec(
        key="stock_price",
        label="Stock price",
        expected_currency="CAD",
        default_currency=None,
        variance_threshold=PRICE_THRESHOLD,
        preferred_source=YAHOO,
        positive_only=True,
        unit="CAD",
    ),
    FactSpec(
        key="market_cap",
        label="Market cap",
        expected_currency="CAD",
        default_currency=None,
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=YAHOO,
        positive_only=True,
        unit="CAD",
    ),
    FactSpec(
        key="number_of_shares",
        label="Shares outstanding",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=YAHOO,
        positive_only=True,
    ),
    FactSpec(
        key="cash",
        label="Cash",
        expected_currency="CAD",
        default_currency="USD",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=YAHOO,
        unit="CAD",
    ),
    FactSpec(
        key="debt",
        label="Debt",
        expected_currency="CAD",
        default_currency="USD",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=YAHOO,
        unit="CAD",
    ),
    FactSpec(
        key="enterprise_value",
        label="Enterprise value",
        expected_currency="CAD",
        default_currency=None,
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=YAHOO,
        unit="CAD",
    ),
    FactSpec(
        key="revenue",
        label="Revenue",
        expected_currency="CAD",
        default_currency="USD",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=YAHOO,
        unit="CAD",
    ),
    FactSpec(
        key="net_income",
        label="Net income",
        expected_currency="CAD",
        default_currency="USD",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=YAHOO,
        unit="CAD",
    ),
    FactSpec(
        key="reserves_au_moz",
        label="Reserves (Moz AuEq)",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=MINING_FEEDS,
        positive_only=True,
        unit="Moz",
    ),
    FactSpec(
        key="resources_au_moz",
        label="Resources (Moz AuEq)",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=MINING_FEEDS,
        positive_only=True,
        unit="Moz",
    ),
    FactSpec(
        key="production_total_au_eq_koz",
        label="Production (koz AuEq)",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=MINING_FEEDS,
        positive_only=True,
        unit="koz",
    ),
    FactSpec(
        key="aisc_last_year",
        label="AISC last year",
        expected_currency="USD",
        default_currency="USD",
        variance_threshold=FINANCIAL_THRESHOLD,
        preferred_source=MINING_FEEDS,
        positive_only=True,
        unit="USD/oz",
    ),
]

FACT_SPECS: Final[Dict[str, FactSpec]] = {spec.key: spec for spec in _SPECS}


def get_fact_spec(key: str) -> FactSpec:
    """Look up a registered fact family; unknown keys are a programming error."""
    try:
        return FACT_SPECS[key]
    except KeyError:
        raise KeyError(f"Unknown fact key: {key}") from None
