from __future__ import annotations

import argparse
import asyncio
import json
import logging

from mining_comps.ingestion.pipeline import build_pipeline

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one reconciliation pass over the companies CSV.")
    parser.add_argument("--tickers", nargs="*", help="Only process these tickers (default: all).")
    return parser.parse_args()


async def main() -> None:
    args = parse_args()
    pipeline = build_pipeline()
    if args.tickers:
        pipeline.allowlist = {t.upper() for t in args.tickers}
    summary = await pipeline.run_once()
    logger.info("Reconciliation summary: %s", summary.model_dump())
    print(json.dumps(summary.model_dump(), indent=2, default=str))


if __name__ == "__main__":
    asyncio.run(main())
