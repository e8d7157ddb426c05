from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class Company(BaseModel):
    """One row of the companies input list."""

    ticker: str = Field(..., description="Ticker symbol with exchange suffix (upper-case), e.g. ABX.TO.")
    name: str = Field(..., description="Display name.")
    name_alt: Optional[str] = Field(None, description="Alternate name used for fuzzy matching scraped names.")
    news_link: Optional[str] = Field(None, description="Link to the company's latest news page.")
    website: Optional[str] = Field(None, description="Company homepage, used for overview scraping.")
    urls: Dict[str, str] = Field(
        default_factory=dict, description="Validated page URLs by type (homepage, jmn, mining_feeds, ...)."
    )

    @field_validator("ticker")
    @classmethod
    def _upper_ticker(cls, value: str) -> str:
        return value.strip().upper()


class CompanyUrl(BaseModel):
    """A page URL checked for one ticker; rediscovered once it is older than the freshness window."""

    ticker: str
    url_type: str = Field(..., description="homepage, yahoo_finance, tradingview, mining_feeds or jmn.")
    url: str
    last_checked: datetime


class Reading(BaseModel):
    """One source's observation of one fact; `value=None` means the source had nothing."""

    source: str = Field(..., description="Source identifier, e.g. yahoo_finance.")
    value: Optional[float] = Field(None, description="Observed value, null when absent or failed.")
    currency: Optional[str] = Field(None, description="ISO currency code reported by the source, if any.")

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().upper()
        return value or None


class FactSpec(BaseModel):
    """Static description of a fact family and how disagreement between sources is settled."""

    key: str = Field(..., description="Fact key, e.g. stock_price.")
    label: str = Field(..., description="Human readable label.")
    expected_currency: Optional[str] = Field(
        None, description="Currency the resolved value is stored in; null for unit-only facts (ounces)."
    )
    default_currency: Optional[str] = Field(
        None, description="Currency assumed for untagged readings; null means the exchange home currency."
    )
    variance_threshold: float = Field(..., gt=0, description="Relative difference above which sources disagree.")
    preferred_source: str = Field(..., description="Source used as reference and tie-break on disagreement.")
    positive_only: bool = Field(False, description="Treat non-positive readings as absent.")
    unit: str = Field("", description="Display unit.")


class ResolvedFact(BaseModel):
    """Outcome of reconciling the readings of one fact for one ticker."""

    key: str
    value: float = 0.0
    currency: Optional[str] = None
    contributing_sources: List[str] = Field(default_factory=list)
    variance: float = 0.0
    relative_variance: float = 0.0
    flagged: bool = False
    timestamp: datetime

    @property
    def has_data(self) -> bool:
        return bool(self.contributing_sources)


class CompanyRecord(BaseModel):
    """All resolved facts of one ticker, overwritten on each run and never deleted."""

    ticker: str
    name: str
    name_alt: Optional[str] = None
    news_link: Optional[str] = None
    facts: Dict[str, ResolvedFact] = Field(default_factory=dict)
    created_at: datetime
    last_updated: datetime


class CompanyListing(BaseModel):
    """Flat row served to the comparison table; missing facts are null, never zero."""

    name: str
    ticker: str
    news_link: Optional[str] = None
    last_updated: Optional[datetime] = None
    stock_price: Optional[float] = None
    market_cap: Optional[float] = None
    number_of_shares: Optional[float] = None
    cash: Optional[float] = None
    debt: Optional[float] = None
    enterprise_value: Optional[float] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    reserves_au_moz: Optional[float] = None
    resources_au_moz: Optional[float] = None
    production_total_au_eq_koz: Optional[float] = None
    aisc_last_year: Optional[float] = None
    ev_per_oz: Optional[float] = Field(None, description="Enterprise value (CAD) per ounce of AuEq resources.")
    market_cap_per_oz: Optional[float] = Field(None, description="Market cap (CAD) per ounce of AuEq resources.")
    flagged_facts: List[str] = Field(default_factory=list)


class IngestionSummary(BaseModel):
    """Outcome of a pipeline run."""

    total_companies: int
    written_companies: int
    flagged_facts: int = 0
    sources: List[str]
    errors: List[str] = Field(default_factory=list)


class UrlDiscoverySummary(BaseModel):
    """Outcome of a URL discovery pass."""

    total_companies: int
    updated_companies: int
    urls_found: int = 0
    errors: List[str] = Field(default_factory=list)
