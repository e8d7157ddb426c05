from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup, Tag

from mining_comps.companies import exchange_code, names_match, normalize_name, url_slug
from mining_comps.errors import SourceUnavailable
from mining_comps.ingestion.base import SourceReport, build_report, get_html
from mining_comps.models import Company
from mining_comps.units import (
    SILVER_TO_GOLD_RATIO,
    gold_equivalent,
    parse_abbreviated_number,
    silver_to_gold_equivalent,
)

logger = logging.getLogger(__name__)

# Selectors live here so a site redesign only touches this table.
TRADINGVIEW_SELECTORS = {
    "name": ".tv-symbol-header__title",
    "price": ".js-symbol-last",
    "market_cap": ".js-symbol-market-cap",
}
MINING_FEEDS_SELECTORS = {
    "name": [".company-breadcrumbs .active a", "h1"],
    "price": ".stock-data .price",
    "market_cap": ".stock-data .market-cap",
    "reserves_gold": ".mining-data .reserves-gold",
    "reserves_silver": ".mining-data .reserves-silver",
    "resources_gold": ".mining-data .resources-gold",
    "resources_silver": ".mining-data .resources-silver",
    "production_koz": ".mining-data .production",
    "aisc": ".mining-data .aisc",
}
JMN_SELECTORS = {
    "rows": ".stock-table tbody tr",
    "ticker": ".ticker",
    "name": ".company",
    "price": ".last-trade",
    "market_cap": ".market-cap",
}
JMN_GROUP_PAGES = [
    "https://www.juniorminingnetwork.com/mining-stocks/gold-mining-stocks.html",
    "https://www.juniorminingnetwork.com/mining-stocks/silver-mining-stocks.html",
]
OVERVIEW_PATHS = ["/investors/overview/", "/company/overview/", "/about-us/"]

_GOLD_OVERVIEW_RE = re.compile(r"indicated mineral resources.*?(\d+\.?\d*)\s*Moz\s*AuEq", re.IGNORECASE)
_SILVER_OVERVIEW_RE = re.compile(r"silver.*?(\d+\.?\d*)\s*Moz", re.IGNORECASE)


def _text(soup: Tag, selector: str) -> Optional[str]:
    node = soup.select_one(selector)
    if node is None:
        return None
    text = node.get_text(strip=True)
    return text or None


def _number(soup: Tag, selector: str) -> Optional[float]:
    return parse_abbreviated_number(_text(soup, selector))


def base_symbol(ticker: str) -> str:
    return ticker.upper().split(".")[0]


def check_name(source: str, company: Company, fetched_name: Optional[str], final_url: str, url_token: str) -> None:
    """Reject pages that are about a different company.

    A mismatched name is tolerated when the page URL still carries the
    ticker or slug we asked for.
    """
    if not fetched_name or names_match(fetched_name, company):
        return
    logger.warning(
        "%s name mismatch for %s: expected %r or %r, got %r",
        source,
        company.ticker,
        company.name,
        company.name_alt,
        fetched_name,
    )
    if url_token.lower() not in final_url.lower():
        raise SourceUnavailable(source, f"URL mismatch for {company.ticker}: {final_url}")
    logger.info("Using %s data for %s despite name mismatch", source, company.ticker)


def tradingview_url(ticker: str) -> str:
    return f"https://www.tradingview.com/symbols/{exchange_code(ticker).upper()}-{base_symbol(ticker)}/"


def parse_tradingview(html: str) -> Tuple[Optional[str], Optional[float], Optional[float]]:
    """Return (company name, price, market cap) from a TradingView symbol page."""
    soup = BeautifulSoup(html, "html.parser")
    return (
        _text(soup, TRADINGVIEW_SELECTORS["name"]),
        _number(soup, TRADINGVIEW_SELECTORS["price"]),
        _number(soup, TRADINGVIEW_SELECTORS["market_cap"]),
    )


class TradingViewSource:
    """TradingView symbol page (price and market cap in the listing currency)."""

    name = "tradingview"

    def __init__(self, max_attempts: int = 2, base_delay: float = 3.0) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport:
        url = company.urls.get("tradingview") or tradingview_url(company.ticker)
        try:
            final_url, html = await get_html(client, url, self.max_attempts, self.base_delay)
        except Exception as exc:  # noqa: BLE001
            raise SourceUnavailable(self.name, f"{url}: {exc}") from exc

        page_name, price, market_cap = parse_tradingview(html)
        check_name(self.name, company, page_name, final_url, base_symbol(company.ticker))
        if price is None and market_cap is None:
            raise SourceUnavailable(self.name, f"no price data on {url} (selectors may have changed)")
        logger.info("TradingView fetched for %s: price=%s, market_cap=%s", company.ticker, price, market_cap)
        return build_report(self.name, {"stock_price": (price, None), "market_cap": (market_cap, None)})


def mining_feeds_url(company: Company) -> str:
    return f"https://www.miningfeeds.com/stock/{url_slug(company.name)}-{exchange_code(company.ticker)}/"


def parse_mining_feeds(html: str, ratio: float = SILVER_TO_GOLD_RATIO) -> Tuple[Optional[str], Dict[str, Optional[float]]]:
    """Return (company name, facts) from a MiningFeeds stock page.

    Silver figures are folded into gold-equivalent ounces here, before they
    ever become readings.
    """
    soup = BeautifulSoup(html, "html.parser")
    page_name = None
    for selector in MINING_FEEDS_SELECTORS["name"]:
        page_name = _text(soup, selector)
        if page_name:
            break

    sel = MINING_FEEDS_SELECTORS
    facts = {
        "stock_price": _number(soup, sel["price"]),
        "market_cap": _number(soup, sel["market_cap"]),
        "reserves_au_moz": gold_equivalent(
            _number(soup, sel["reserves_gold"]), _number(soup, sel["reserves_silver"]), ratio
        ),
        "resources_au_moz": gold_equivalent(
            _number(soup, sel["resources_gold"]), _number(soup, sel["resources_silver"]), ratio
        ),
        "production_total_au_eq_koz": _number(soup, sel["production_koz"]),
        "aisc_last_year": _number(soup, sel["aisc"]),
    }
    return page_name, facts


class MiningFeedsSource:
    """MiningFeeds stock page: quote plus reserves, resources, production and AISC."""

    name = "mining_feeds"

    def __init__(self, max_attempts: int = 2, base_delay: float = 3.0, ratio: float = SILVER_TO_GOLD_RATIO) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.ratio = ratio

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport:
        url = company.urls.get("mining_feeds") or mining_feeds_url(company)
        try:
            final_url, html = await get_html(client, url, self.max_attempts, self.base_delay)
        except Exception as exc:  # noqa: BLE001
            raise SourceUnavailable(self.name, f"{url}: {exc}") from exc

        page_name, facts = parse_mining_feeds(html, self.ratio)
        check_name(self.name, company, page_name, final_url, url_slug(company.name))
        currencies = {"aisc_last_year": "USD"}
        report = build_report(self.name, {key: (value, currencies.get(key)) for key, value in facts.items()})
        if not report:
            raise SourceUnavailable(self.name, f"no data on {url} (selectors may have changed)")
        logger.info("MiningFeeds fetched %s readings for %s", len(report), company.ticker)
        return report


def parse_jmn_table(html: str, company: Company) -> Optional[Tuple[str, Optional[float], Optional[float]]]:
    """Find `company` in a Junior Mining Network group table: (row name, price, market cap)."""
    soup = BeautifulSoup(html, "html.parser")
    wanted_tickers = {company.ticker, base_symbol(company.ticker)}
    wanted_names = {normalize_name(company.name), normalize_name(company.name_alt)} - {""}
    for row in soup.select(JMN_SELECTORS["rows"]):
        ticker = (_text(row, JMN_SELECTORS["ticker"]) or "").upper()
        row_name = _text(row, JMN_SELECTORS["name"]) or ""
        if ticker in wanted_tickers or normalize_name(row_name) in wanted_names:
            return row_name, _number(row, JMN_SELECTORS["price"]), _number(row, JMN_SELECTORS["market_cap"])
    return None


class JuniorMiningNetworkSource:
    """Junior Mining Network gold/silver group tables."""

    name = "junior_mining_network"

    def __init__(self, max_attempts: int = 2, base_delay: float = 3.0, pages: Optional[List[str]] = None) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.pages = pages or list(JMN_GROUP_PAGES)

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport:
        errors = []
        for url in self.pages:
            try:
                _, html = await get_html(client, url, self.max_attempts, self.base_delay)
            except Exception as exc:  # noqa: BLE001
                logger.warning("JMN fetch failed for %s on %s: %s", company.ticker, url, exc)
                errors.append(str(exc))
                continue
            found = parse_jmn_table(html, company)
            if not found:
                continue
            row_name, price, market_cap = found
            if price is None and market_cap is None:
                continue
            if not names_match(row_name, company):
                logger.warning("JMN name mismatch for %s: expected %r, got %r", company.ticker, company.name, row_name)
            logger.info("JMN found %s on %s: price=%s, market_cap=%s", company.ticker, url, price, market_cap)
            return build_report(self.name, {"stock_price": (price, None), "market_cap": (market_cap, None)})

        if errors and len(errors) == len(self.pages):
            raise SourceUnavailable(self.name, "; ".join(errors))
        return {}


def parse_overview_text(text: str, ratio: float = SILVER_TO_GOLD_RATIO) -> Optional[float]:
    """Resources in Moz AuEq from a company overview page, or None when not stated.

    A stated AuEq figure wins; a silver-only figure is converted at `ratio`.
    """
    flat = re.sub(r"\s+", " ", text or "")
    gold = _GOLD_OVERVIEW_RE.search(flat)
    if gold:
        return float(gold.group(1))
    silver = _SILVER_OVERVIEW_RE.search(flat)
    if silver:
        return silver_to_gold_equivalent(float(silver.group(1)), ratio)
    return None


class CompanyOverviewSource:
    """Resource figures quoted on the company's own overview page."""

    name = "company_overview"

    def __init__(self, max_attempts: int = 1, base_delay: float = 1.0, ratio: float = SILVER_TO_GOLD_RATIO) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.ratio = ratio

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport:
        homepage = company.website or company.urls.get("homepage")
        if not homepage:
            return {}
        website = homepage.rstrip("/")
        for path in OVERVIEW_PATHS:
            url = f"{website}{path}"
            try:
                _, html = await get_html(client, url, self.max_attempts, self.base_delay)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to fetch overview data from %s: %s", url, exc)
                continue
            text = BeautifulSoup(html, "html.parser").get_text(" ")
            resources = parse_overview_text(text, self.ratio)
            if resources:
                logger.info("Overview for %s on %s: %s Moz AuEq", company.ticker, url, resources)
                return build_report(self.name, {"resources_au_moz": (resources, None)})
        return {}
