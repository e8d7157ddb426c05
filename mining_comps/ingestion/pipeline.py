from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import httpx

from mining_comps.cache import TTLCache
from mining_comps.companies import load_companies
from mining_comps.config import settings
from mining_comps.currency import CurrencyConverter, load_converter
from mining_comps.errors import PersistenceFailure, SourceUnavailable
from mining_comps.facts import FACT_SPECS
from mining_comps.ingestion.base import FactSource, SourceReport
from mining_comps.ingestion.sources import default_sources
from mining_comps.models import Company, IngestionSummary, Reading, ResolvedFact
from mining_comps.provenance import ProvenanceLog
from mining_comps.reconcile import reconcile
from mining_comps.storage import CompanyStore, build_store

logger = logging.getLogger(__name__)

DERIVED = "derived"


def collect_readings(sources: Sequence[str], reports: Mapping[str, SourceReport]) -> Dict[str, List[Reading]]:
    """One reading per source per fact, in source order; sources without data give null readings."""
    readings: Dict[str, List[Reading]] = {}
    for key in FACT_SPECS:
        readings[key] = [reports.get(name, {}).get(key) or Reading(source=name) for name in sources]
    return readings


def _known(facts: Mapping[str, ResolvedFact], key: str) -> Optional[float]:
    fact = facts.get(key)
    return fact.value if fact is not None and fact.has_data else None


def derive_missing(facts: Mapping[str, ResolvedFact]) -> Dict[str, Reading]:
    """Readings computed from other resolved facts, for facts no source reported.

    market cap = price x shares; enterprise value = market cap + debt - cash.
    """
    derived: Dict[str, Reading] = {}
    price = _known(facts, "stock_price")
    shares = _known(facts, "number_of_shares")
    market_cap = _known(facts, "market_cap")
    if market_cap is None and price and shares:
        market_cap = price * shares
        derived["market_cap"] = Reading(source=DERIVED, value=market_cap, currency="CAD")

    debt = _known(facts, "debt")
    cash = _known(facts, "cash")
    if _known(facts, "enterprise_value") is None and market_cap and (debt is not None or cash is not None):
        ev = market_cap + (debt or 0.0) - (cash or 0.0)
        derived["enterprise_value"] = Reading(source=DERIVED, value=ev, currency="CAD")
    return derived


class ReconciliationPipeline:
    """Fetch every source for each company, reconcile each fact, persist, and log provenance."""

    def __init__(
        self,
        store: CompanyStore,
        sources: Iterable[FactSource],
        converter: Optional[CurrencyConverter] = None,
        provenance: Optional[ProvenanceLog] = None,
        request_timeout_seconds: float = 15.0,
        source_timeout_seconds: float = 45.0,
        max_concurrency: int = 3,
        delay_between_tickers: float = 0.0,
        companies_csv: Optional[Path] = None,
        allowlist: Optional[Iterable[str]] = None,
        fx_cache: Optional[TTLCache[Dict[str, float]]] = None,
        fx_attempts: int = 3,
    ) -> None:
        self.store = store
        self.sources = list(sources)
        self.converter = converter or CurrencyConverter()
        self.provenance = provenance
        self.request_timeout_seconds = request_timeout_seconds
        self.source_timeout_seconds = source_timeout_seconds
        self.max_concurrency = max(1, max_concurrency)
        self.delay_between_tickers = delay_between_tickers
        self.companies_csv = companies_csv
        self.allowlist = {t.upper() for t in allowlist or []}
        self.fx_cache = fx_cache
        self.fx_attempts = fx_attempts

    @property
    def source_names(self) -> List[str]:
        return [src.name for src in self.sources]

    async def _fetch_single(
        self, client: httpx.AsyncClient, source: FactSource, company: Company
    ) -> Tuple[str, SourceReport, Optional[str]]:
        # Interactive sources carry their own per-prompt timeout.
        timeout = None if getattr(source, "interactive", False) else self.source_timeout_seconds
        try:
            report = await asyncio.wait_for(source.fetch(client, company), timeout)
            return (source.name, report or {}, None)
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %ss for %s", source.name, timeout, company.ticker)
            return (source.name, {}, f"timed out after {timeout}s")
        except SourceUnavailable as exc:
            logger.warning("%s unavailable for %s: %s", source.name, company.ticker, exc.reason)
            return (source.name, {}, exc.reason)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Error fetching %s from %s", company.ticker, source.name)
            return (source.name, {}, str(exc))

    def resolve(
        self,
        company: Company,
        readings: Mapping[str, List[Reading]],
        converter: Optional[CurrencyConverter] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, ResolvedFact]:
        """Reconcile every fact family, then fill market cap / EV from other facts when nobody reported them."""
        converter = converter or self.converter
        now = now or datetime.now(timezone.utc)
        by_fact = {key: list(readings.get(key, [])) for key in FACT_SPECS}
        facts = {
            key: reconcile(spec, by_fact[key], converter, company.ticker, now) for key, spec in FACT_SPECS.items()
        }
        # Market cap first, since a derived market cap can unlock enterprise value.
        for key in ("market_cap", "enterprise_value"):
            reading = derive_missing(facts).get(key)
            if reading is None:
                continue
            by_fact[key].append(reading)
            facts[key] = reconcile(FACT_SPECS[key], by_fact[key], converter, company.ticker, now)
            logger.info("[%s] %s derived from other facts: %.6g", company.ticker, key, reading.value)

        if self.provenance is not None:
            for key, spec in FACT_SPECS.items():
                self.provenance.record(company.ticker, spec, by_fact[key], facts[key])
        return facts

    def _with_urls(self, company: Company) -> Company:
        """Attach stored page URLs so scrapers fetch validated pages instead of guessed ones."""
        try:
            stored = self.store.get_urls(company.ticker)
        except PersistenceFailure as exc:
            logger.warning("Stored URLs unavailable for %s: %s", company.ticker, exc.reason)
            return company
        if not stored:
            return company
        urls = {kind: entry.url for kind, entry in stored.items()}
        urls.update(company.urls)
        return company.model_copy(update={"urls": urls})

    async def process_company(
        self, client: httpx.AsyncClient, company: Company, converter: Optional[CurrencyConverter] = None
    ) -> Tuple[Dict[str, ResolvedFact], List[str]]:
        """Fetch, reconcile and persist one ticker. PersistenceFailure propagates."""
        company = self._with_urls(company)
        results = await asyncio.gather(*(self._fetch_single(client, src, company) for src in self.sources))
        reports = {name: report for name, report, _ in results}
        errors = [f"{company.ticker} {name}: {error}" for name, _, error in results if error]

        readings = collect_readings(self.source_names, reports)
        facts = self.resolve(company, readings, converter)
        self.store.upsert(company, facts)
        return facts, errors

    def _companies(self, companies: Optional[Iterable[Company]]) -> List[Company]:
        if companies is None:
            if self.companies_csv is None:
                raise ValueError("No companies given and no companies CSV configured")
            companies = load_companies(self.companies_csv)
        selected = list(companies)
        if self.allowlist:
            selected = [c for c in selected if c.ticker in self.allowlist]
        return selected

    async def _converter(self, client: httpx.AsyncClient) -> CurrencyConverter:
        if self.fx_cache is None:
            return self.converter
        return await load_converter(client, self.fx_cache, self.converter.rates_to_cad, self.fx_attempts)

    async def run_once(self, companies: Optional[Iterable[Company]] = None) -> IngestionSummary:
        """Process every company with bounded concurrency and return a summary.

        A failed write is logged and the batch moves on to the next ticker.
        """
        selected = self._companies(companies)
        semaphore = asyncio.Semaphore(self.max_concurrency)
        errors: List[str] = []
        written = 0
        flagged = 0

        timeout = httpx.Timeout(self.request_timeout_seconds)
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            converter = await self._converter(client)

            async def _one(company: Company) -> None:
                nonlocal written, flagged
                async with semaphore:
                    try:
                        facts, fetch_errors = await self.process_company(client, company, converter)
                    except PersistenceFailure as exc:
                        logger.error("Could not persist %s: %s", company.ticker, exc.reason)
                        errors.append(f"{company.ticker} persistence: {exc.reason}")
                        return
                    finally:
                        if self.delay_between_tickers:
                            await asyncio.sleep(self.delay_between_tickers)
                    written += 1
                    flagged += sum(1 for fact in facts.values() if fact.flagged)
                    errors.extend(fetch_errors)

            await asyncio.gather(*(_one(c) for c in selected))

        logger.info(
            "Run complete: %s/%s companies written, %s flagged facts, %s errors",
            written,
            len(selected),
            flagged,
            len(errors),
        )
        return IngestionSummary(
            total_companies=len(selected),
            written_companies=written,
            flagged_facts=flagged,
            sources=self.source_names,
            errors=errors,
        )


def build_pipeline() -> ReconciliationPipeline:
    """Create a pipeline with default settings, store and sources."""
    return ReconciliationPipeline(
        store=build_store(settings),
        sources=default_sources(settings),
        converter=CurrencyConverter(settings.rates_to_cad),
        provenance=ProvenanceLog(settings.provenance_path),
        request_timeout_seconds=settings.request_timeout_seconds,
        source_timeout_seconds=settings.source_timeout_seconds,
        max_concurrency=settings.max_concurrency,
        delay_between_tickers=settings.delay_between_tickers_seconds,
        companies_csv=settings.companies_csv,
        allowlist=settings.symbol_allowlist,
        fx_cache=TTLCache(settings.fx_cache_ttl_seconds) if settings.live_fx else None,
        fx_attempts=settings.max_retries,
    )
