from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from mining_comps.companies import exchange_code
from mining_comps.config import Settings
from mining_comps.errors import PersistenceFailure
from mining_comps.ingestion.base import get_html, get_json, to_number
from mining_comps.ingestion.scrapers import mining_feeds_url, tradingview_url
from mining_comps.ingestion.sources import YahooFinanceSource, alpha_vantage_symbol
from mining_comps.models import Company, CompanyUrl, UrlDiscoverySummary
from mining_comps.storage import CompanyStore

logger = logging.getLogger(__name__)

URL_TYPES = ("yahoo_finance", "tradingview", "mining_feeds", "jmn", "homepage")

YAHOO_QUOTE_URL = "https://finance.yahoo.com/quote/{ticker}/"
JMN_QUOTE_URL = "https://www.juniorminingnetwork.com/market-data/stock-quote/{slug}.html"
ALPHA_VANTAGE_URL = "https://www.alphavantage.co/query"

# Anchor texts that usually point at the company's own site on a quote page.
HOMEPAGE_LINK_TEXT = ("website", "company site")

_CORP_SUFFIX_RE = re.compile(r"\b(ltd|inc|corp|limited|incorporated)\b", re.IGNORECASE)


def jmn_slugs(name: str) -> List[str]:
    """Candidate Junior Mining Network quote-page slugs, most likely first."""
    base = re.sub(r"[^a-z0-9\s&]", "", (name or "").lower()).strip()
    bare = re.sub(r"\s+", " ", _CORP_SUFFIX_RE.sub("", base)).strip()
    candidates = []
    for text in (base, bare):
        candidates.append(re.sub(r"\s+", "-", text))
        candidates.append(re.sub(r"\s+", "", text))
    for text in (base, bare):
        candidates.append(re.sub(r"\s+", "-", text).replace("&", "--"))
        candidates.append(re.sub(r"\s+", "", text).replace("&", ""))

    slugs: List[str] = []
    for slug in candidates:
        if slug and slug not in slugs:
            slugs.append(slug)
    return slugs


def mining_feeds_candidates(company: Company) -> List[str]:
    """The normalised-name MiningFeeds URL, then the raw-name variant the site also uses."""
    raw = re.sub(r"-+", "-", re.sub(r"[^a-z0-9]", "-", company.name.lower())).strip("-")
    urls = [mining_feeds_url(company), f"https://www.miningfeeds.com/stock/{raw}-{exchange_code(company.ticker)}/"]
    return list(dict.fromkeys(urls))


def clean_url(url: Optional[str]) -> Optional[str]:
    """Trim stray punctuation, force a scheme and drop the trailing slash."""
    if not url or not isinstance(url, str):
        return None
    cleaned = re.sub(r"[.,;:!?]$", "", url.strip())
    if not cleaned:
        return None
    if not cleaned.startswith("http"):
        cleaned = f"https://{cleaned}"
    return cleaned.rstrip("/")


def _host(url: str) -> str:
    host = urlparse(url).netloc.lower()
    return host[4:] if host.startswith("www.") else host


def is_relevant_homepage(company: Company, url: Optional[str]) -> bool:
    """A homepage is plausible when its domain contains the squashed company name or the ticker."""
    if not url:
        return False
    domain = _host(url).rsplit(".", 1)[0]
    ticker = company.ticker.lower().split(".")[0]
    # One-letter symbols would match almost any domain.
    tokens = [ticker] if len(ticker) > 1 else []
    names = [company.name, company.name_alt]
    squashed = [re.sub(r"[^a-z0-9]", "", n.lower()) for n in names if n]
    bare = [re.sub(r"[^a-z0-9]", "", _CORP_SUFFIX_RE.sub("", n.lower())) for n in names if n]
    return any(token and token in domain for token in [*tokens, *squashed, *bare])


def extract_homepage(html: str, page_url: str) -> Optional[str]:
    """Find the company's own website on a quote page.

    Links labelled like "Company Website" or "Company Site" win; otherwise the first external
    .com/.ca link that is not the quote site itself.
    """
    soup = BeautifulSoup(html, "html.parser")
    page_host = _host(page_url)
    anchors = list(soup.find_all("a", href=True))
    for anchor in anchors:
        label = " ".join([anchor.get_text(" ", strip=True), anchor.get("title") or ""]).lower()
        if any(text in label for text in HOMEPAGE_LINK_TEXT):
            return clean_url(urljoin(page_url, anchor["href"]))
    for anchor in anchors:
        href = anchor["href"]
        if not href.startswith("http") or _host(href) == page_host:
            continue
        if ".com" in href or ".ca" in href:
            return clean_url(href)
    return None


def is_fresh(entry: Optional[CompanyUrl], now: datetime, max_age: timedelta) -> bool:
    return entry is not None and now - entry.last_checked < max_age


class CompanyUrlFinder:
    """Discover and validate the page URLs the scrapers use for one company.

    Each URL type is checked independently; types validated within `max_age_days`
    are kept as they are unless `force` is set.
    """

    def __init__(
        self,
        alpha_vantage_key: Optional[str] = None,
        max_attempts: int = 2,
        base_delay: float = 2.0,
        max_age_days: float = 7.0,
        quote_lookup: Callable[[str], Mapping[str, Any]] = YahooFinanceSource._load_info,
    ) -> None:
        self.alpha_vantage_key = alpha_vantage_key
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_age = timedelta(days=max_age_days)
        self.quote_lookup = quote_lookup

    async def fetch_page(self, client: httpx.AsyncClient, url: str) -> Optional[Tuple[str, str]]:
        """(final url, body) when the page answers, else None."""
        try:
            return await get_html(client, url, self.max_attempts, self.base_delay)
        except Exception as exc:  # noqa: BLE001
            logger.info("URL check failed for %s: %s", url, exc)
            return None

    async def ticker_listed(self, client: httpx.AsyncClient, ticker: str) -> bool:
        """Yahoo knows a price for the ticker; Alpha Vantage is asked when Yahoo does not."""
        try:
            info = await asyncio.to_thread(self.quote_lookup, ticker)
            if to_number(info.get("regularMarketPrice") or info.get("currentPrice")) is not None:
                return True
        except Exception as exc:  # noqa: BLE001
            logger.warning("Yahoo validation failed for %s: %s", ticker, exc)

        if not self.alpha_vantage_key:
            return False
        params = {"function": "GLOBAL_QUOTE", "symbol": alpha_vantage_symbol(ticker), "apikey": self.alpha_vantage_key}
        try:
            payload = await get_json(client, ALPHA_VANTAGE_URL, params, self.max_attempts, self.base_delay)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Alpha Vantage validation failed for %s: %s", ticker, exc)
            return False
        quote = payload.get("Global Quote") if isinstance(payload, dict) else None
        return bool(quote) and quote.get("05. price") is not None

    async def _first_page(
        self, client: httpx.AsyncClient, candidates: Iterable[str]
    ) -> Optional[Tuple[str, str]]:
        for url in candidates:
            page = await self.fetch_page(client, url)
            if page is not None:
                return page
        return None

    async def _homepage(
        self, client: httpx.AsyncClient, company: Company, quote_pages: List[Tuple[str, str]]
    ) -> Optional[str]:
        if company.website:
            page = await self.fetch_page(client, clean_url(company.website) or company.website)
            if page is not None:
                return clean_url(page[0])
            logger.warning("Configured website for %s does not answer: %s", company.ticker, company.website)

        for page_url, html in quote_pages:
            candidate = extract_homepage(html, page_url)
            if not candidate:
                continue
            if not is_relevant_homepage(company, candidate):
                logger.info("Homepage %s from %s not relevant to %s", candidate, page_url, company.name)
                continue
            page = await self.fetch_page(client, candidate)
            if page is not None:
                return clean_url(page[0])
        return None

    async def discover(
        self,
        client: httpx.AsyncClient,
        company: Company,
        existing: Optional[Mapping[str, CompanyUrl]] = None,
        now: Optional[datetime] = None,
        force: bool = False,
    ) -> Dict[str, str]:
        """Validated URLs by type for the types that need (re)checking."""
        now = now or datetime.now(timezone.utc)
        existing = existing or {}

        def due(kind: str) -> bool:
            if force or not is_fresh(existing.get(kind), now, self.max_age):
                return True
            logger.info("Using existing %s URL for %s: %s", kind, company.ticker, existing[kind].url)
            return False

        found: Dict[str, str] = {}
        if due("yahoo_finance") and await self.ticker_listed(client, company.ticker):
            found["yahoo_finance"] = YAHOO_QUOTE_URL.format(ticker=company.ticker)

        if due("tradingview"):
            page = await self.fetch_page(client, tradingview_url(company.ticker))
            if page is not None:
                found["tradingview"] = page[0]

        quote_pages: List[Tuple[str, str]] = []
        if due("mining_feeds"):
            page = await self._first_page(client, mining_feeds_candidates(company))
            if page is not None:
                found["mining_feeds"] = page[0]
                quote_pages.append(page)

        if due("jmn") or due("homepage"):
            urls = [JMN_QUOTE_URL.format(slug=slug) for slug in jmn_slugs(company.name)]
            page = await self._first_page(client, urls)
            if page is not None:
                found["jmn"] = page[0]
                quote_pages.insert(0, page)

        if due("homepage"):
            homepage = await self._homepage(client, company, quote_pages)
            if homepage:
                found["homepage"] = homepage

        missing = [kind for kind in URL_TYPES if kind not in found and kind not in existing]
        logger.info(
            "URLs for %s: found %s; none for %s", company.ticker, sorted(found) or "-", missing or "-"
        )
        return found


async def populate_company_urls(
    store: CompanyStore,
    companies: Iterable[Company],
    finder: CompanyUrlFinder,
    max_concurrency: int = 2,
    delay_between_tickers: float = 0.0,
    request_timeout_seconds: float = 15.0,
    force: bool = False,
    client: Optional[httpx.AsyncClient] = None,
) -> UrlDiscoverySummary:
    """Discover URLs for each company and save them to `store`.

    A company whose URLs cannot be saved is recorded in the summary errors and
    the pass carries on.
    """
    selected = list(companies)
    semaphore = asyncio.Semaphore(max(1, max_concurrency))
    errors: List[str] = []
    updated = 0
    found_total = 0

    async def _one(http: httpx.AsyncClient, company: Company) -> None:
        nonlocal updated, found_total
        async with semaphore:
            try:
                existing = store.get_urls(company.ticker)
                found = await finder.discover(http, company, existing, force=force)
                if found:
                    store.save_urls(company.ticker, found)
                    updated += 1
                    found_total += len(found)
            except PersistenceFailure as exc:
                logger.error("Could not store URLs for %s: %s", company.ticker, exc.reason)
                errors.append(f"{company.ticker} persistence: {exc.reason}")
            finally:
                if delay_between_tickers:
                    await asyncio.sleep(delay_between_tickers)

    if client is not None:
        await asyncio.gather(*(_one(client, c) for c in selected))
    else:
        timeout = httpx.Timeout(request_timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as http:
            await asyncio.gather(*(_one(http, c) for c in selected))

    logger.info(
        "URL discovery complete: %s/%s companies updated, %s URLs, %s errors",
        updated,
        len(selected),
        found_total,
        len(errors),
    )
    return UrlDiscoverySummary(
        total_companies=len(selected), updated_companies=updated, urls_found=found_total, errors=errors
    )


def build_url_finder(settings: Settings) -> CompanyUrlFinder:
    return CompanyUrlFinder(
        alpha_vantage_key=settings.alpha_vantage_key,
        max_attempts=settings.max_retries,
        base_delay=settings.retry_base_delay_seconds,
        max_age_days=settings.url_max_age_days,
    )
