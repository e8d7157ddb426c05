from __future__ import annotations

import argparse
import asyncio
import json
import logging

from mining_comps.companies import load_companies
from mining_comps.config import settings
from mining_comps.ingestion.company_urls import build_url_finder, populate_company_urls
from mining_comps.storage import build_store

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find and validate quote-page and homepage URLs per company.")
    parser.add_argument("--tickers", nargs="*", help="Only process these tickers (default: all).")
    parser.add_argument("--force", action="store_true", help="Re-check URLs validated within the last days too.")
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    companies = load_companies(settings.companies_csv)
    wanted = {t.upper() for t in args.tickers or []} or settings.symbol_allowlist
    if wanted:
        companies = [c for c in companies if c.ticker in wanted]

    summary = await populate_company_urls(
        build_store(settings),
        companies,
        build_url_finder(settings),
        max_concurrency=min(2, settings.max_concurrency),
        delay_between_tickers=settings.delay_between_tickers_seconds,
        request_timeout_seconds=settings.request_timeout_seconds,
        force=args.force,
    )
    logger.info("URL discovery summary: %s", summary.model_dump())
    print(json.dumps(summary.model_dump(), indent=2))


if __name__ == "__main__":
    asyncio.run(main())
