from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

import httpx
import yfinance as yf

from mining_comps.companies import names_match
from mining_comps.config import Settings
from mining_comps.errors import SourceUnavailable
from mining_comps.ingestion.base import FactSource, SourceReport, build_report, get_json
from mining_comps.ingestion.manual import ManualEntrySource
from mining_comps.ingestion.scrapers import (
    CompanyOverviewSource,
    JuniorMiningNetworkSource,
    MiningFeedsSource,
    TradingViewSource,
)
from mining_comps.models import Company
from mining_comps.retry import with_retry

logger = logging.getLogger(__name__)


def parse_yahoo_info(info: Mapping[str, Any], company: Company, source: str = "yahoo_finance") -> SourceReport:
    """Map a yfinance `Ticker.info` payload to readings.

    A name mismatch is tolerated when the returned symbol is the requested
    ticker; otherwise the quote is for something else and is rejected.
    """
    if not info:
        raise SourceUnavailable(source, f"empty quote for {company.ticker}")
    fetched_name = info.get("shortName") or info.get("longName") or ""
    if not names_match(fetched_name, company):
        symbol = str(info.get("symbol") or "").upper()
        if symbol != company.ticker:
            raise SourceUnavailable(source, f"ticker mismatch for {company.ticker}: got {symbol or '?'}")
        logger.warning(
            "Yahoo name mismatch for %s: expected %r or %r, got %r; using data anyway",
            company.ticker,
            company.name,
            company.name_alt,
            fetched_name,
        )

    quote_ccy = info.get("currency")
    financial_ccy = info.get("financialCurrency")
    price = info.get("regularMarketPrice") or info.get("currentPrice")
    return build_report(
        source,
        {
            "stock_price": (price, quote_ccy),
            "market_cap": (info.get("marketCap"), quote_ccy),
            "number_of_shares": (info.get("sharesOutstanding"), None),
            "enterprise_value": (info.get("enterpriseValue"), quote_ccy),
            "cash": (info.get("totalCash"), financial_ccy),
            "debt": (info.get("totalDebt"), financial_ccy),
            "revenue": (info.get("totalRevenue"), financial_ccy),
            "net_income": (info.get("netIncomeToCommon"), financial_ccy),
        },
    )


class YahooFinanceSource:
    """Yahoo Finance quote + key statistics through yfinance."""

    name = "yahoo_finance"

    def __init__(self, max_attempts: int = 3, base_delay: float = 5.0) -> None:
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    @staticmethod
    def _load_info(ticker: str) -> Dict[str, Any]:
        return dict(yf.Ticker(ticker).info or {})

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport:
        try:
            info = await with_retry(
                lambda: asyncio.to_thread(self._load_info, company.ticker), self.max_attempts, self.base_delay
            )
        except Exception as exc:  # noqa: BLE001
            raise SourceUnavailable(self.name, f"{company.ticker}: {exc}") from exc
        report = parse_yahoo_info(info, company, self.name)
        logger.info("Fetched %s readings for %s from %s", len(report), company.ticker, self.name)
        return report


def alpha_vantage_symbol(ticker: str) -> str:
    ticker = ticker.upper()
    if ticker.endswith(".TO"):
        return ticker[:-3] + ".TRT"
    if ticker.endswith(".V"):
        return ticker[:-2] + ".TRV"
    return ticker


def _check_alpha_payload(payload: Any) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise ValueError("unexpected Alpha Vantage payload")
    for marker in ("Note", "Information", "Error Message"):
        if marker in payload:
            raise ValueError(f"Alpha Vantage: {payload[marker]}")
    return payload


def parse_alpha_vantage(
    quote: Optional[Mapping[str, Any]],
    balance: Optional[Mapping[str, Any]],
    income: Optional[Mapping[str, Any]],
    source: str = "alpha_vantage",
) -> SourceReport:
    values: Dict[str, Tuple[Any, Optional[str]]] = {}
    global_quote = (quote or {}).get("Global Quote") or {}
    if global_quote:
        values["stock_price"] = (global_quote.get("05. price"), None)

    latest_balance = ((balance or {}).get("annualReports") or [{}])[0]
    if latest_balance:
        ccy = latest_balance.get("reportedCurrency") or "USD"
        values["cash"] = (latest_balance.get("cashAndCashEquivalentsAtCarryingValue"), ccy)
        values["debt"] = (latest_balance.get("longTermDebt"), ccy)

    latest_income = ((income or {}).get("annualReports") or [{}])[0]
    if latest_income:
        ccy = latest_income.get("reportedCurrency") or "USD"
        values["revenue"] = (latest_income.get("totalRevenue"), ccy)
        values["net_income"] = (latest_income.get("netIncome"), ccy)
    return build_report(source, values)


class AlphaVantageSource:
    """Alpha Vantage quote, balance sheet and income statement (API key required)."""

    name = "alpha_vantage"
    base_url = "https://www.alphavantage.co/query"

    def __init__(self, api_key: Optional[str], max_attempts: int = 3, base_delay: float = 5.0) -> None:
        self.api_key = api_key
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def _call(self, client: httpx.AsyncClient, function: str, symbol: str) -> Optional[Mapping[str, Any]]:
        params = {"function": function, "symbol": symbol, "apikey": self.api_key}

        async def _once() -> Mapping[str, Any]:
            resp = await client.get(self.base_url, params=params)
            resp.raise_for_status()
            return _check_alpha_payload(resp.json())

        try:
            return await with_retry(_once, self.max_attempts, self.base_delay)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Alpha Vantage %s failed for %s: %s", function, symbol, exc)
            return None

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport:
        if not self.api_key:
            logger.info("Skipping %s for %s: no API key configured", self.name, company.ticker)
            return {}
        symbol = alpha_vantage_symbol(company.ticker)
        quote, balance, income = await asyncio.gather(
            self._call(client, "GLOBAL_QUOTE", symbol),
            self._call(client, "BALANCE_SHEET", symbol),
            self._call(client, "INCOME_STATEMENT", symbol),
        )
        if quote is None and balance is None and income is None:
            raise SourceUnavailable(self.name, f"all calls failed for {company.ticker}")
        report = parse_alpha_vantage(quote, balance, income, self.name)
        logger.info("Fetched %s readings for %s from %s", len(report), company.ticker, self.name)
        return report


def fmp_symbol(ticker: str) -> str:
    return ticker.upper().replace(".TO", "").replace(".V", "")


def parse_fmp(profile: Any, income: Any, balance: Any, source: str = "fmp") -> SourceReport:
    profile_item = (profile or [{}])[0] if isinstance(profile, list) else {}
    income_item = (income or [{}])[0] if isinstance(income, list) else {}
    balance_item = (balance or [{}])[0] if isinstance(balance, list) else {}

    quote_ccy = profile_item.get("currency")
    income_ccy = income_item.get("reportedCurrency") or "USD"
    balance_ccy = balance_item.get("reportedCurrency") or "USD"
    cash = balance_item.get("cashAndCashEquivalents", balance_item.get("cashAndEquivalents"))
    return build_report(
        source,
        {
            "stock_price": (profile_item.get("price"), quote_ccy),
            "market_cap": (profile_item.get("mktCap"), quote_ccy),
            "revenue": (income_item.get("revenue"), income_ccy),
            "net_income": (income_item.get("netIncome"), income_ccy),
            "debt": (balance_item.get("totalDebt"), balance_ccy),
            "cash": (cash, balance_ccy),
        },
    )


class FinancialModelingPrepSource:
    """Financial Modeling Prep profile and latest statements (API key required)."""

    name = "fmp"
    base_url = "https://financialmodelingprep.com/api/v3"

    def __init__(self, api_key: Optional[str], max_attempts: int = 3, base_delay: float = 1.0) -> None:
        self.api_key = api_key
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def fetch(self, client: httpx.AsyncClient, company: Company) -> SourceReport:
        if not self.api_key:
            logger.info("Skipping %s for %s: no API key configured", self.name, company.ticker)
            return {}
        symbol = fmp_symbol(company.ticker)
        params = {"apikey": self.api_key}
        try:
            profile, income, balance = await asyncio.gather(
                get_json(client, f"{self.base_url}/profile/{symbol}", params, self.max_attempts, self.base_delay),
                get_json(
                    client,
                    f"{self.base_url}/income-statement/{symbol}",
                    {**params, "limit": 1},
                    self.max_attempts,
                    self.base_delay,
                ),
                get_json(
                    client,
                    f"{self.base_url}/balance-sheet-statement/{symbol}",
                    {**params, "limit": 1},
                    self.max_attempts,
                    self.base_delay,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            raise SourceUnavailable(self.name, f"{company.ticker}: {exc}") from exc
        report = parse_fmp(profile, income, balance, self.name)
        logger.info("Fetched %s readings for %s from %s", len(report), company.ticker, self.name)
        return report


def default_sources(settings: Settings) -> List[FactSource]:
    """Factory for the configured source list, in reconciliation order."""
    attempts = settings.max_retries
    delay = settings.retry_base_delay_seconds
    registry = {
        "yahoo_finance": lambda: YahooFinanceSource(attempts, delay),
        "alpha_vantage": lambda: AlphaVantageSource(settings.alpha_vantage_key, attempts, delay),
        "fmp": lambda: FinancialModelingPrepSource(settings.fmp_api_key, attempts, delay),
        "tradingview": lambda: TradingViewSource(attempts, delay),
        "mining_feeds": lambda: MiningFeedsSource(attempts, delay, settings.silver_gold_ratio),
        "junior_mining_network": lambda: JuniorMiningNetworkSource(attempts, delay),
        "company_overview": lambda: CompanyOverviewSource(attempts, delay, settings.silver_gold_ratio),
    }

    sources: List[FactSource] = []
    for name in settings.enabled_sources:
        factory = registry.get(name)
        if factory is None:
            logger.warning("Unknown source %r in SOURCES, ignoring", name)
            continue
        sources.append(factory())
    if settings.manual_entry:
        sources.append(ManualEntrySource(timeout_seconds=settings.manual_timeout_seconds))
    return sources
